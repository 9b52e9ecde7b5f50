"""
Data types for the watchlist.
"""

import re
import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional


class ItemType(str, Enum):
    TV_SERIES = "TV Series"
    MOVIES = "Movies"


class SubType(str, Enum):
    ANIME = "Anime"
    BOLLYWOOD = "Bollywood"
    HOLLYWOOD = "Hollywood"
    ASIAN = "Asian"
    TURKISH = "Turkish"
    TOLLYWOOD = "Tollywood"
    KOLLYWOOD = "Kollywood"
    SANDALWOOD = "Sandalwood"


class Status(str, Enum):
    WATCH = "Watch"
    WAITING = "Waiting"
    COMPLETED = "Completed"
    STOPPED = "Stopped"


class Language(str, Enum):
    SUB = "SUB"
    DUB = "DUB"


class ReleaseType(str, Enum):
    NEW = "New"
    OLD = "Old"


# Fields the server assigns on insert; never sent in insert payloads
SERVER_ASSIGNED_FIELDS = ("created_at", "updated_at")

# Fields a partial update may never change
IMMUTABLE_FIELDS = ("id", "created_at", "user_id")

_ENUM_FIELDS = {
    "type": ItemType,
    "sub_type": SubType,
    "status": Status,
    "language": Language,
    "release_type": ReleaseType,
}


def utc_now() -> str:
    """Current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def new_item_id() -> str:
    """Client-generated opaque identifier for a new item."""
    return str(uuid.uuid4())


def _coerce_enum(name: str, value: Any) -> Any:
    enum_cls = _ENUM_FIELDS.get(name)
    if enum_cls is None or value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value!r}") from None


@dataclass
class NewWatchlistItem:
    """A watchlist entry as entered by the user, before it has an identity."""
    title: str
    type: ItemType = ItemType.TV_SERIES
    status: Status = Status.WATCH
    sub_type: Optional[SubType] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    part: Optional[int] = None
    language: Optional[Language] = None
    release_type: Optional[ReleaseType] = None
    favorite: bool = False

    def __post_init__(self):
        for name in _ENUM_FIELDS:
            setattr(self, name, _coerce_enum(name, getattr(self, name)))


@dataclass
class WatchlistItem:
    """
    A tracked media entry, as stored locally and remotely.

    (normalized title, type) is unique within one owner's collection.
    """
    id: str
    title: str
    type: ItemType
    status: Status
    user_id: str
    created_at: str = ""
    updated_at: str = ""
    sub_type: Optional[SubType] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    part: Optional[int] = None
    language: Optional[Language] = None
    release_type: Optional[ReleaseType] = None
    favorite: bool = False

    def __post_init__(self):
        for name in _ENUM_FIELDS:
            setattr(self, name, _coerce_enum(name, getattr(self, name)))

    @classmethod
    def create(cls, new: NewWatchlistItem, owner_id: str) -> "WatchlistItem":
        """Stamp a new entry with an id, owner and timestamps."""
        now = utc_now()
        return cls(
            id=new_item_id(),
            title=format_title(new.title),
            type=new.type,
            status=new.status,
            user_id=owner_id,
            created_at=now,
            updated_at=now,
            sub_type=new.sub_type,
            season=new.season,
            episode=new.episode,
            part=new.part,
            language=new.language,
            release_type=new.release_type,
            favorite=new.favorite or False,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WatchlistItem":
        """Build from a record dict. Unknown keys (server columns) are ignored."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs.setdefault("favorite", False)
        if kwargs["favorite"] is None:
            kwargs["favorite"] = False
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-compatible dict with enum values unwrapped."""
        data = asdict(self)
        for name in _ENUM_FIELDS:
            if data[name] is not None:
                data[name] = data[name].value
        return data

    def to_insert_payload(self) -> dict[str, Any]:
        """Record for a remote insert; timestamps are left to the server."""
        data = self.to_dict()
        for name in SERVER_ASSIGNED_FIELDS:
            data.pop(name, None)
        return data

    def merged(self, updates: dict[str, Any]) -> "WatchlistItem":
        """Return a copy with a partial update applied (last write wins per field)."""
        validate_updates(updates)
        coerced = {k: _coerce_enum(k, v) for k, v in updates.items()}
        return replace(self, **coerced)

    @property
    def duplicate_key(self) -> tuple[str, str]:
        return duplicate_key(self.title, self.type)


_ITEM_FIELDS = frozenset(f.name for f in fields(WatchlistItem))


def validate_updates(updates: dict[str, Any]) -> None:
    """Reject partial updates naming unknown fields."""
    unknown = set(updates) - _ITEM_FIELDS
    if unknown:
        raise ValueError(f"Unknown item fields: {sorted(unknown)}")


def update_payload(updates: dict[str, Any]) -> dict[str, Any]:
    """Shape a partial update for the wire: enums unwrapped, identity fields dropped."""
    payload = {}
    for key, value in updates.items():
        if key in IMMUTABLE_FIELDS:
            continue
        payload[key] = value.value if isinstance(value, Enum) else value
    return payload


def duplicate_key(title: str, item_type: Any) -> tuple[str, str]:
    """Case- and whitespace-insensitive identity of an entry within one owner's list."""
    type_value = item_type.value if isinstance(item_type, Enum) else str(item_type)
    return (title.strip().lower(), type_value.strip().lower())


def format_title(title: str) -> str:
    """Title-case a string.

    Each space-separated word gets an uppercase first letter and a lowercase
    rest. Words containing a digit (e.g. "s5", "part2") are kept verbatim.
    """
    if not title:
        return ""
    words = []
    for word in title.strip().split(" "):
        if not word:
            words.append("")
        elif re.search(r"\d", word):
            words.append(word)
        else:
            words.append(word[0].upper() + word[1:].lower())
    return " ".join(words)


# ---------------------------------------------------------------------------
# Release date parsing
# ---------------------------------------------------------------------------

_MONTHS = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)

_YEAR_RE = re.compile(r"\b(202\d)\b")


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year, 12, 31)
    return date.fromordinal(date(year, month + 1, 1).toordinal() - 1)


def parse_release_date(text: str) -> Optional[date]:
    """
    Interpret a loose release date string.

    Understands ISO dates, "<month> <year>", "early/mid/late <year>",
    quarters ("Q3 2025") and a bare year. Returns None for "TBA" and
    anything without a recognizable year.
    """
    if not text or text.strip().lower() == "tba":
        return None

    try:
        return datetime.fromisoformat(text.strip()).date()
    except ValueError:
        pass

    lower = text.lower()
    match = _YEAR_RE.search(lower)
    if not match:
        return None
    year = int(match.group(1))

    for index, month in enumerate(_MONTHS, start=1):
        if month in lower:
            return _month_end(year, index)

    if "late" in lower:
        return date(year, 12, 31)
    if "early" in lower:
        return date(year, 3, 31)
    if "mid" in lower:
        return date(year, 7, 1)

    quarters = {"q1": (3, 31), "q2": (6, 30), "q3": (9, 30), "q4": (12, 31)}
    for quarter, (month, day) in quarters.items():
        if quarter in lower:
            return date(year, month, day)

    return date(year, 12, 31)


@dataclass
class SmartPasteResult:
    """Buckets produced by the smart-paste parser."""
    to_add: list[NewWatchlistItem] = field(default_factory=list)
    duplicates: list[NewWatchlistItem] = field(default_factory=list)
    unparsable: list[str] = field(default_factory=list)
