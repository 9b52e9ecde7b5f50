"""
Watchlist: the offline-first API callers use.

Wires the mutation queue, reconciliation engine and live listener around
one in-memory collection. Every operation returns a status value and
posts a notice; remote and queue failures never raise out of here.

    store = LocalStore(path / "watchsync.db")
    remote = PostgrestRemoteStore(api_url, api_key)
    watchlist = Watchlist(remote, store, owner_id)
    await watchlist.start()
    item_id = await watchlist.add_item(NewWatchlistItem("Frieren"))
"""

import logging
from typing import Any, Iterable, Optional, Union

from .collection import Collection
from .connectivity import Connectivity
from .errors import ValidationError
from .listener import LiveChangeListener
from .notices import Notifier
from .protocol import LocalStoreProtocol, RemoteStoreProtocol
from .queue import MutationQueue
from .reconcile import Reconciler, SyncResult, SyncState
from .smart_paste import parse_smart_paste_text
from .types import (
    NewWatchlistItem,
    SmartPasteResult,
    Status,
    WatchlistItem,
    format_title,
    validate_updates,
)

logger = logging.getLogger(__name__)

# Sentinel: use the default success notice
DEFAULT_MESSAGE = object()

DELETE_ALL = "ALL"


class Watchlist:
    """One owner's watchlist, kept usable offline and reconciled when online."""

    def __init__(
        self,
        remote: RemoteStoreProtocol,
        local_store: LocalStoreProtocol,
        owner_id: str,
        *,
        connectivity: Optional[Connectivity] = None,
        notifier: Optional[Notifier] = None,
    ):
        if not owner_id:
            raise ValueError("owner_id is required")
        self._remote = remote
        self._local = local_store
        self._owner_id = owner_id
        self.connectivity = connectivity or Connectivity(online=True)
        self.notifier = notifier or Notifier()

        self._collection = Collection()
        self._queue = MutationQueue(self._collection, local_store, remote, self.connectivity)
        self._reconciler = Reconciler(
            remote, local_store, self._collection, owner_id,
            lock=self._queue.lock,
            notifier=self.notifier,
            inflight=self._queue.inflight_ids,
        )
        self._listener = LiveChangeListener(self._collection, self._reconciler, local_store)
        self._inflight: set[str] = set()
        self._queued_ids: list[str] = []

        self.connectivity.on_change(self._on_connectivity_change)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def items(self) -> list[WatchlistItem]:
        return self._collection.snapshot()

    @property
    def is_online(self) -> bool:
        return self.connectivity.online

    @property
    def is_syncing(self) -> bool:
        return self._reconciler.is_running

    @property
    def sync_state(self) -> SyncState:
        return self._reconciler.state

    def get(self, item_id: str) -> Optional[WatchlistItem]:
        return self._collection.get(item_id)

    def get_pending_sync_ids(self) -> list[str]:
        """Entities with local changes the remote hasn't acknowledged yet."""
        ids = dict.fromkeys(self._queued_ids)
        ids.update(dict.fromkeys(sorted(self._inflight)))
        return list(ids)

    def _refresh_pending(self) -> None:
        self._queued_ids = self._queue.pending_ids()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Load the local mirror, then reconcile and listen if online."""
        self._collection.reset(self._local.get_all())
        self._refresh_pending()
        logger.info("Loaded %d cached items, %d pending", len(self._collection), len(self._queued_ids))
        if self.is_online:
            await self.trigger_sync()
            await self._listener.start(self._remote, self._owner_id)

    async def set_online(self, online: bool) -> None:
        """Feed a connectivity change (e.g. from an OS network signal)."""
        await self.connectivity.set_online(online)

    async def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self.notifier.notify("You are back online!")
            await self.trigger_sync()
            await self._listener.start(self._remote, self._owner_id)
        else:
            self.notifier.notify("You are offline. Changes will be saved locally.")
            await self._listener.stop()

    async def close(self) -> None:
        await self._listener.stop()

    async def trigger_sync(self) -> SyncResult:
        """Run a reconciliation pass now (no-op if one is running or offline)."""
        if not self.is_online:
            self._refresh_pending()
            return SyncResult(ok=False, skipped=True, pending_ids=list(self._queued_ids))
        result = await self._reconciler.run()
        self._refresh_pending()
        return result

    async def _after_queued_write(self) -> None:
        """Queued while online (entity had earlier unsynced changes): push now."""
        if self.is_online:
            await self.trigger_sync()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _prepare(self, item: NewWatchlistItem) -> WatchlistItem:
        if not item.title or not item.title.strip():
            raise ValidationError("Title is required.")
        return WatchlistItem.create(item, self._owner_id)

    async def add_item(self, item: NewWatchlistItem) -> Optional[str]:
        """Add one item. Returns its id, or None if rejected or failed."""
        try:
            new_item = self._prepare(item)
        except ValidationError as e:
            self.notifier.error(str(e))
            return None

        if self._collection.find_duplicate(new_item.title, new_item.type) is not None:
            self.notifier.notify("This item is already in your watchlist.")
            return None

        self._inflight.add(new_item.id)
        try:
            result = await self._queue.record_add(new_item)
        finally:
            self._inflight.discard(new_item.id)

        if result.queued:
            self._refresh_pending()
            self.notifier.notify("Item saved locally. Will sync when online.")
            return new_item.id
        if not result.ok:
            self.notifier.error("Failed to add item.")
            return None
        self.notifier.notify("Item added successfully!")
        return new_item.id

    async def add_multiple_items(self, items: Iterable[NewWatchlistItem]) -> bool:
        """Add a batch (e.g. the to-add bucket of a smart paste)."""
        try:
            new_items = [self._prepare(item) for item in items]
        except ValidationError as e:
            self.notifier.error(str(e))
            return False
        if not new_items:
            return True

        ids = [item.id for item in new_items]
        self._inflight.update(ids)
        try:
            result = await self._queue.record_add_multiple(new_items)
        finally:
            self._inflight.difference_update(ids)

        if result.queued:
            self._refresh_pending()
            self.notifier.notify(f"{len(new_items)} items saved locally. Will sync when online.")
            return True
        if not result.ok:
            self.notifier.error("Failed to add some items.")
            return False
        self.notifier.notify(f"{len(result.items)} items added successfully.")
        return True

    async def update_item(
        self,
        item_id: str,
        updates: dict[str, Any],
        *,
        success_message: Union[str, None, object] = DEFAULT_MESSAGE,
    ) -> bool:
        """
        Apply a partial update.

        success_message replaces the default success notice; None
        suppresses it.
        """
        updates = dict(updates)
        try:
            validate_updates(updates)
            if "title" in updates:
                if not isinstance(updates["title"], str) or not updates["title"].strip():
                    raise ValidationError("Title is required.")
                updates["title"] = format_title(updates["title"])
            current = self._collection.get(item_id)
            if current is not None:
                current.merged(updates)
        except ValueError as e:
            self.notifier.error(str(e))
            return False

        self._inflight.add(item_id)
        try:
            result = await self._queue.record_update(item_id, updates)
        finally:
            self._inflight.discard(item_id)

        if result.queued:
            self._refresh_pending()
            self.notifier.notify("Changes saved locally. Will sync when online.")
            await self._after_queued_write()
            return True
        if not result.ok:
            if result.error is not None:
                self.notifier.error("Failed to update item.")
            return False

        message = "Item updated!" if success_message is DEFAULT_MESSAGE else success_message
        if message:
            self.notifier.notify(message)
        return True

    async def delete_item(self, item_id: str) -> bool:
        self._inflight.add(item_id)
        try:
            result = await self._queue.record_delete(item_id)
        finally:
            self._inflight.discard(item_id)

        if result.queued:
            self._refresh_pending()
            self.notifier.notify("Item removed locally. Will sync when online.")
            await self._after_queued_write()
            return True
        if not result.ok:
            self.notifier.error("Failed to delete item.")
            return False
        self.notifier.notify("Item deleted.")
        return True

    async def delete_multiple_items(self, item_ids: Iterable[str]) -> bool:
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return True

        self._inflight.update(ids)
        try:
            result = await self._queue.record_delete_multiple(ids)
        finally:
            self._inflight.difference_update(ids)

        if result.queued:
            self._refresh_pending()
            self.notifier.notify(f"{len(ids)} items removed locally. Will sync when online.")
            await self._after_queued_write()
            return True
        if not result.ok:
            self.notifier.error("Failed to delete items.")
            return False
        self.notifier.notify(f"{len(ids)} items deleted.")
        return True

    async def delete_by_status(self, status: Union[Status, str]) -> bool:
        """Delete every item with a status, or everything with "ALL"."""
        if status == DELETE_ALL:
            ids = [item.id for item in self._collection]
            label = "all"
        else:
            try:
                status = Status(status)
            except ValueError:
                self.notifier.error(f"Unknown status: {status!r}")
                return False
            ids = [item.id for item in self._collection if item.status is status]
            label = status.value
        if not ids:
            self.notifier.error(f'No items with status "{label}" to delete.')
            return False
        return await self.delete_multiple_items(ids)

    # -------------------------------------------------------------------------
    # Smart paste
    # -------------------------------------------------------------------------

    def parse_smart_paste_text(
        self, text: str, existing: Optional[Iterable[WatchlistItem]] = None
    ) -> SmartPasteResult:
        """Parse pasted text against the current list (or a given one)."""
        return parse_smart_paste_text(
            text, self._collection.snapshot() if existing is None else existing
        )
