"""
watchsync: offline-first watchlist sync.

Keeps a personal watchlist usable without connectivity. Edits apply to an
in-memory collection immediately, are persisted to a local SQLite mirror,
and are queued (with coalescing) until the remote table is reachable.
A reconciliation pass replays the queue in order, then refreshes from the
remote; a live listener applies changes made in other sessions.

Quick start:
    from watchsync import Watchlist, LocalStore, PostgrestRemoteStore, NewWatchlistItem

    watchlist = Watchlist(PostgrestRemoteStore(url, key), LocalStore(db_path), owner_id)
    await watchlist.start()
    await watchlist.add_item(NewWatchlistItem("Frieren"))
"""

__version__ = "0.1.0"

from .api import Watchlist
from .connectivity import Connectivity
from .errors import ValidationError, WatchsyncError
from .local_store import LocalStore
from .notices import Notice, Notifier
from .reconcile import SyncResult, SyncState
from .remote import ChangeEvent, PostgrestRemoteStore, RemoteError
from .smart_paste import parse_smart_paste_text
from .types import (
    ItemType,
    Language,
    NewWatchlistItem,
    ReleaseType,
    SmartPasteResult,
    Status,
    SubType,
    WatchlistItem,
)

__all__ = [
    "__version__",
    "Watchlist",
    "Connectivity",
    "ValidationError",
    "WatchsyncError",
    "LocalStore",
    "Notice",
    "Notifier",
    "SyncResult",
    "SyncState",
    "ChangeEvent",
    "PostgrestRemoteStore",
    "RemoteError",
    "parse_smart_paste_text",
    "ItemType",
    "Language",
    "NewWatchlistItem",
    "ReleaseType",
    "SmartPasteResult",
    "Status",
    "SubType",
    "WatchlistItem",
]
