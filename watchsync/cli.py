"""
CLI interface for the offline-first watchlist.

Usage:
    watchsync add "Frieren" --status Watch
    watchsync list --status Waiting
    watchsync paste list.txt
    watchsync sync
"""

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar, Union

import typer
from typing_extensions import Annotated

from .api import DELETE_ALL, Watchlist
from .config import StoreConfig, load_or_create_config
from .connectivity import Connectivity, probe
from .local_store import LocalStore
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .notices import ERROR, Notice, Notifier
from .remote import NullRemoteStore, PostgrestRemoteStore
from .types import (
    ItemType,
    Language,
    NewWatchlistItem,
    ReleaseType,
    Status,
    SubType,
    WatchlistItem,
)

# Owner id used when no remote is configured (purely local list)
LOCAL_OWNER = "local"

T = TypeVar("T")

# Set WATCHSYNC_VERBOSE=1 to enable debug mode via environment
if os.environ.get("WATCHSYNC_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode()


def _version_callback(value: bool):
    if value:
        from . import __version__
        print(f"watchsync {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_store_override: Optional[Path] = None
_force_offline = False


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _offline_callback(value: bool):
    global _force_offline
    _force_offline = value


app = typer.Typer(
    name="watchsync",
    help="Offline-first watchlist with background sync.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="WATCHSYNC_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
    offline: Annotated[bool, typer.Option(
        "--offline",
        help="Work offline: queue changes locally without contacting the remote",
        callback=_offline_callback,
        is_eager=True,
    )] = False,
):
    """Offline-first watchlist with background sync."""


def _echo_notice(notice: Notice) -> None:
    typer.echo(notice.message, err=notice.level == ERROR)


def _remote_for(config: StoreConfig):
    if not config.remote.configured:
        return NullRemoteStore()
    return PostgrestRemoteStore(
        config.remote.api_url,
        config.remote.api_key,
        table=config.remote.table,
        poll_interval=config.remote.poll_interval,
    )


async def _is_reachable(config: StoreConfig) -> bool:
    if _force_offline or not config.remote.configured:
        return False
    return await probe(config.remote.api_url)


def _run(operation: Callable[[Watchlist], Awaitable[T]]) -> T:
    """Open the store, run one operation against a started Watchlist, close."""
    config = load_or_create_config(_store_override)
    configure_ops_log(config.path)

    owner_id = config.owner_id
    if not owner_id:
        if config.remote.configured:
            typer.echo(
                "Error: owner id is not set (WATCHSYNC_OWNER_ID or [owner] id in "
                f"{config.config_path})",
                err=True,
            )
            raise typer.Exit(1)
        owner_id = LOCAL_OWNER

    async def session() -> T:
        remote = _remote_for(config)
        local = LocalStore(config.database_path)
        try:
            connectivity = Connectivity(online=await _is_reachable(config))
            watchlist = Watchlist(
                remote, local, owner_id,
                connectivity=connectivity,
                notifier=Notifier(_echo_notice),
            )
            await watchlist.start()
            try:
                return await operation(watchlist)
            finally:
                await watchlist.close()
        finally:
            await remote.close()
            local.close()

    return asyncio.run(session())


def _describe(item: Union[WatchlistItem, NewWatchlistItem]) -> str:
    progress = []
    if item.season is not None:
        progress.append(f"S{item.season}")
    if item.episode is not None:
        progress.append(f"E{item.episode}")
    if item.part is not None:
        progress.append(f"P{item.part}")
    details = [item.type.value, item.status.value]
    if item.sub_type is not None:
        details.append(item.sub_type.value)
    if item.language is not None:
        details.append(item.language.value)
    star = " *" if item.favorite else ""
    progress_text = f" {' '.join(progress)}" if progress else ""
    return f"{item.title}{progress_text}  [{', '.join(details)}]{star}"


def _format_item(item: WatchlistItem) -> str:
    return f"{item.id}  {_describe(item)}"


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    title: Annotated[str, typer.Argument(help="Title of the movie or series")],
    item_type: Annotated[ItemType, typer.Option(
        "--type", "-t", case_sensitive=False, help="TV Series or Movies"
    )] = ItemType.TV_SERIES,
    status: Annotated[Status, typer.Option(
        "--status", case_sensitive=False, help="Watch status"
    )] = Status.WATCH,
    sub_type: Annotated[Optional[SubType], typer.Option(
        "--sub-type", case_sensitive=False, help="Sub-type (e.g. Anime)"
    )] = None,
    season: Annotated[Optional[int], typer.Option("--season", min=1)] = None,
    episode: Annotated[Optional[int], typer.Option("--episode", min=1)] = None,
    part: Annotated[Optional[int], typer.Option("--part", min=1)] = None,
    language: Annotated[Optional[Language], typer.Option(
        "--language", case_sensitive=False
    )] = None,
    release: Annotated[Optional[ReleaseType], typer.Option(
        "--release", case_sensitive=False, help="New or Old"
    )] = None,
    favorite: Annotated[bool, typer.Option("--favorite", help="Mark as favorite")] = False,
):
    """Add an item to the watchlist."""
    item = NewWatchlistItem(
        title=title,
        type=item_type,
        status=status,
        sub_type=sub_type,
        season=season,
        episode=episode,
        part=part,
        language=language,
        release_type=release,
        favorite=favorite,
    )
    item_id = _run(lambda wl: wl.add_item(item))
    if item_id is None:
        raise typer.Exit(1)
    typer.echo(item_id)


@app.command("list")
def list_items(
    status: Annotated[Optional[Status], typer.Option(
        "--status", case_sensitive=False, help="Only items with this status"
    )] = None,
    output_json: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
):
    """List items, newest first."""
    async def collect(wl: Watchlist) -> list[WatchlistItem]:
        return wl.items

    items = _run(collect)
    if status is not None:
        items = [item for item in items if item.status is status]
    if output_json:
        typer.echo(json.dumps([item.to_dict() for item in items], indent=2, ensure_ascii=False))
        return
    for item in items:
        typer.echo(_format_item(item))


@app.command()
def update(
    item_id: Annotated[str, typer.Argument(help="Item id")],
    title: Annotated[Optional[str], typer.Option("--title")] = None,
    status: Annotated[Optional[Status], typer.Option("--status", case_sensitive=False)] = None,
    season: Annotated[Optional[int], typer.Option("--season", min=1)] = None,
    episode: Annotated[Optional[int], typer.Option("--episode", min=1)] = None,
    part: Annotated[Optional[int], typer.Option("--part", min=1)] = None,
    favorite: Annotated[Optional[bool], typer.Option(
        "--favorite/--no-favorite", help="Set or clear favorite"
    )] = None,
):
    """Change fields of an existing item."""
    updates = {
        name: value
        for name, value in (
            ("title", title),
            ("status", status),
            ("season", season),
            ("episode", episode),
            ("part", part),
            ("favorite", favorite),
        )
        if value is not None
    }
    if not updates:
        typer.echo("Error: nothing to update", err=True)
        raise typer.Exit(1)

    async def apply(wl: Watchlist) -> bool:
        if wl.get(item_id) is None:
            typer.echo(f"Error: no item with id {item_id}", err=True)
            return False
        return await wl.update_item(item_id, updates)

    if not _run(apply):
        raise typer.Exit(1)


@app.command()
def delete(
    item_ids: Annotated[list[str], typer.Argument(help="Item id(s) to delete")],
):
    """Delete one or more items."""
    async def apply(wl: Watchlist) -> bool:
        if len(item_ids) == 1:
            return await wl.delete_item(item_ids[0])
        return await wl.delete_multiple_items(item_ids)

    if not _run(apply):
        raise typer.Exit(1)


@app.command("delete-status")
def delete_status(
    status: Annotated[str, typer.Argument(
        help=f"Status to clear ({', '.join(s.value for s in Status)}) or {DELETE_ALL}"
    )],
):
    """Delete every item with a status."""
    if status.upper() == DELETE_ALL:
        status = DELETE_ALL
    else:
        status = next((s.value for s in Status if s.value.lower() == status.lower()), status)
    if not _run(lambda wl: wl.delete_by_status(status)):
        raise typer.Exit(1)


@app.command()
def paste(
    file: Annotated[Optional[Path], typer.Argument(
        help="Text file to parse (default: stdin)", exists=True, dir_okay=False
    )] = None,
    dry_run: Annotated[bool, typer.Option(
        "--dry-run", "-n", help="Show what would be added without adding"
    )] = False,
):
    """
    Add items from free-form text, one per line.

    \b
    Header lines (keywords only) set defaults for the lines below:
      Anime Continue Old
      one piece s1 e1 p1 series dub
      demon slayer movie
    """
    text = file.read_text(encoding="utf-8") if file is not None else sys.stdin.read()

    async def apply(wl: Watchlist) -> bool:
        result = wl.parse_smart_paste_text(text)
        for item in result.to_add:
            typer.echo(f"+ {_describe(item)}")
        for item in result.duplicates:
            typer.echo(f"= {item.title} (already in list)")
        for line in result.unparsable:
            typer.echo(f"? {line}", err=True)
        if dry_run or not result.to_add:
            return True
        return await wl.add_multiple_items(result.to_add)

    if not _run(apply):
        raise typer.Exit(1)


@app.command()
def sync():
    """Push queued changes and refresh from the remote."""
    async def apply(wl: Watchlist) -> bool:
        if not wl.is_online:
            typer.echo("Offline: changes stay queued until the remote is reachable.", err=True)
            return False
        # start() already ran a pass; report what's left
        return not wl.get_pending_sync_ids()

    if not _run(apply):
        raise typer.Exit(1)


@app.command()
def pending():
    """Show ids of items with changes not yet synced."""
    async def collect(wl: Watchlist) -> list[str]:
        return wl.get_pending_sync_ids()

    for item_id in _run(collect):
        typer.echo(item_id)


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="watchsync CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
