"""
Smart paste: turn free-form pasted text into watchlist entries.

Pure and deterministic, no I/O. The pipeline, one stage per function:

    split_lines      raw text -> trimmed non-empty lines
    is_header_line   header (only keywords, no progress numbers) or item?
    parse_header     header -> defaults for the lines below it
    extract_fields   item line -> LineFields (numbers and keywords consumed)
    build_item       LineFields + defaults -> NewWatchlistItem
    classify         items -> to-add / duplicate buckets

Example input:

    Anime Continue Old
    one piece s1 e1 p1 series dub
    demon slayer movie

The first line is a header: every item below it inherits sub-type Anime,
status Waiting and release Old until another header overrides some of
those fields.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional, TypeVar

from .types import (
    ItemType,
    Language,
    NewWatchlistItem,
    ReleaseType,
    SmartPasteResult,
    Status,
    SubType,
    WatchlistItem,
    duplicate_key,
    format_title,
)

E = TypeVar("E")

TYPE_WORDS = {
    "tv series": ItemType.TV_SERIES,
    "series": ItemType.TV_SERIES,
    "tv": ItemType.TV_SERIES,
    "movies": ItemType.MOVIES,
    "movie": ItemType.MOVIES,
    "film": ItemType.MOVIES,
}

SUB_TYPE_WORDS = {sub_type.value.lower(): sub_type for sub_type in SubType}

STATUS_WORDS = {
    "continue": Status.WAITING,
    "continuing": Status.WAITING,
    "contiune": Status.WAITING,
    "waiting": Status.WAITING,
    "watch": Status.WATCH,
    "watching": Status.WATCH,
    "stopped": Status.STOPPED,
    "stop": Status.STOPPED,
    "complete": Status.COMPLETED,
    "completed": Status.COMPLETED,
}

LANGUAGE_WORDS = {
    "eng": Language.DUB,
    "english": Language.DUB,
    "dub": Language.DUB,
    "sub": Language.SUB,
    "japanese": Language.SUB,
    "jpn": Language.SUB,
}

RELEASE_WORDS = {
    "new": ReleaseType.NEW,
    "old": ReleaseType.OLD,
}


def _vocabulary_pattern(words: Iterable[str]) -> re.Pattern:
    # Longest phrases first so "tv series" wins over "tv"
    phrases = sorted(words, key=len, reverse=True)
    alternatives = "|".join(r"\s+".join(map(re.escape, p.split())) for p in phrases)
    return re.compile(rf"\b({alternatives})\b", re.IGNORECASE)


TYPE_RE = _vocabulary_pattern(TYPE_WORDS)
SUB_TYPE_RE = _vocabulary_pattern(SUB_TYPE_WORDS)
STATUS_RE = _vocabulary_pattern(STATUS_WORDS)
LANGUAGE_RE = _vocabulary_pattern(LANGUAGE_WORDS)
RELEASE_RE = _vocabulary_pattern(RELEASE_WORDS)

SEASON_RE = re.compile(r"\b(?:season|s)\s?(\d+)\b", re.IGNORECASE)
EPISODE_RE = re.compile(r"\b(?:episode|ep|e)\s?\.?(\d+)\b", re.IGNORECASE)
PART_RE = re.compile(r"\b(?:part|p)\s?(\d+)\b", re.IGNORECASE)
TRAILING_NUMBER_RE = re.compile(r"(?:^|\s)(\d{1,2})\s*$")

BRACKETS_RE = re.compile(r"\[[^\]]*\]|\([^)]*\)")
SEPARATORS_RE = re.compile(r"[|,/\\:;\-]")
WORD_RE = re.compile(r"[a-z0-9]+", re.IGNORECASE)

HEADER_VOCABULARIES = (TYPE_RE, SUB_TYPE_RE, STATUS_RE, RELEASE_RE)


@dataclass
class HeaderDefaults:
    """Running context set by header lines."""
    type: Optional[ItemType] = None
    sub_type: Optional[SubType] = None
    status: Optional[Status] = None
    release_type: Optional[ReleaseType] = None

    def merged(self, other: "HeaderDefaults") -> "HeaderDefaults":
        """Fields set in other override; the rest are kept."""
        return HeaderDefaults(
            type=other.type or self.type,
            sub_type=other.sub_type or self.sub_type,
            status=other.status or self.status,
            release_type=other.release_type or self.release_type,
        )


@dataclass
class LineFields:
    """What an item line yielded before defaults are applied."""
    title: str = ""
    type: Optional[ItemType] = None
    sub_type: Optional[SubType] = None
    status: Optional[Status] = None
    language: Optional[Language] = None
    release_type: Optional[ReleaseType] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    part: Optional[int] = None


def split_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def _lookup(words: dict[str, E], matched: str) -> E:
    return words[" ".join(matched.lower().split())]


def _has_progress_marker(line: str) -> bool:
    return any(p.search(line) for p in (SEASON_RE, EPISODE_RE, PART_RE, TRAILING_NUMBER_RE))


def is_header_line(line: str) -> bool:
    """
    A header holds only keywords (type, sub-type, status, release) and no
    season/episode/part or trailing number.
    """
    if _has_progress_marker(line):
        return False
    remaining = line
    for pattern in HEADER_VOCABULARIES:
        remaining = pattern.sub(" ", remaining)
    if remaining == line:
        return False
    return not WORD_RE.search(remaining)


def parse_header(line: str) -> HeaderDefaults:
    """Pull the fields a header line sets."""
    defaults = HeaderDefaults()
    match = TYPE_RE.search(line)
    if match:
        defaults.type = _lookup(TYPE_WORDS, match.group(1))
    match = SUB_TYPE_RE.search(line)
    if match:
        defaults.sub_type = _lookup(SUB_TYPE_WORDS, match.group(1))
    match = STATUS_RE.search(line)
    if match:
        defaults.status = _lookup(STATUS_WORDS, match.group(1))
    match = RELEASE_RE.search(line)
    if match:
        defaults.release_type = _lookup(RELEASE_WORDS, match.group(1))
    return defaults


def _take_number(pattern: re.Pattern, text: str) -> tuple[Optional[int], str]:
    match = pattern.search(text)
    if not match:
        return None, text
    return int(match.group(1)), text[:match.start()] + " " + text[match.end():]


def _take_keyword(
    pattern: re.Pattern, words: dict[str, E], text: str
) -> tuple[Optional[E], str]:
    match = pattern.search(text)
    if not match:
        return None, text
    return _lookup(words, match.group(1)), text[:match.start()] + " " + text[match.end():]


def extract_fields(line: str, defaults: Optional[HeaderDefaults] = None) -> LineFields:
    """
    Consume progress numbers and keywords from an item line.

    Each matched token is cut out of the line as it is consumed, so what's
    left is the title. A small trailing number nobody claimed becomes the
    season (series) or part (movies) if that field is still unset.
    """
    defaults = defaults or HeaderDefaults()
    fields = LineFields()
    text = f" {line} "

    fields.season, text = _take_number(SEASON_RE, text)
    fields.episode, text = _take_number(EPISODE_RE, text)
    fields.part, text = _take_number(PART_RE, text)
    fields.type, text = _take_keyword(TYPE_RE, TYPE_WORDS, text)
    fields.sub_type, text = _take_keyword(SUB_TYPE_RE, SUB_TYPE_WORDS, text)
    fields.status, text = _take_keyword(STATUS_RE, STATUS_WORDS, text)
    fields.language, text = _take_keyword(LANGUAGE_RE, LANGUAGE_WORDS, text)
    fields.release_type, text = _take_keyword(RELEASE_RE, RELEASE_WORDS, text)

    text = BRACKETS_RE.sub(" ", text)
    text = SEPARATORS_RE.sub(" ", text)
    text = " ".join(text.split())

    match = TRAILING_NUMBER_RE.search(text)
    if match:
        number = int(match.group(1))
        item_type = fields.type or defaults.type or ItemType.TV_SERIES
        slot = "part" if item_type is ItemType.MOVIES else "season"
        if 1 <= number <= 99 and getattr(fields, slot) is None:
            setattr(fields, slot, number)
            text = text[:match.start()].strip()

    fields.title = format_title(text)
    return fields


def build_item(fields: LineFields, defaults: HeaderDefaults) -> Optional[NewWatchlistItem]:
    """Apply header defaults and fallbacks. None if no title survived."""
    if not fields.title:
        return None
    return NewWatchlistItem(
        title=fields.title,
        type=fields.type or defaults.type or ItemType.TV_SERIES,
        status=fields.status or defaults.status or Status.WATCH,
        sub_type=fields.sub_type or defaults.sub_type or SubType.ANIME,
        season=fields.season,
        episode=fields.episode,
        part=fields.part,
        language=fields.language or Language.DUB,
        release_type=fields.release_type or defaults.release_type or ReleaseType.NEW,
    )


def classify(
    items: Iterable[NewWatchlistItem], existing: Iterable[WatchlistItem]
) -> tuple[list[NewWatchlistItem], list[NewWatchlistItem]]:
    """Split items into (to_add, duplicates) against the list and the batch itself."""
    existing_keys = {item.duplicate_key for item in existing}
    seen: set[tuple[str, str]] = set()
    to_add, duplicates = [], []
    for item in items:
        key = duplicate_key(item.title, item.type)
        if key in existing_keys or key in seen:
            duplicates.append(item)
        else:
            to_add.append(item)
            seen.add(key)
    return to_add, duplicates


def parse_smart_paste_text(
    text: str, existing: Iterable[WatchlistItem] = ()
) -> SmartPasteResult:
    """Parse pasted text into to-add, duplicate and unparsable buckets."""
    defaults = HeaderDefaults()
    parsed: list[NewWatchlistItem] = []
    unparsable: list[str] = []

    for line in split_lines(text):
        if is_header_line(line):
            defaults = defaults.merged(parse_header(line))
            continue
        item = build_item(extract_fields(line, defaults), defaults)
        if item is None:
            unparsable.append(line)
        else:
            parsed.append(item)

    to_add, duplicates = classify(parsed, existing)
    return SmartPasteResult(to_add=to_add, duplicates=duplicates, unparsable=unparsable)
