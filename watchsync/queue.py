"""
Mutation queue manager.

Turns each user intent into either an immediate remote write (online) or
an optimistic in-memory change plus a durable queued action (offline),
keeping the queue minimal by coalescing edits on the same entity:

- an update to an entity whose ADD is still queued is folded into the ADD
  (the remote never sees an UPDATE for a row it doesn't have yet)
- successive updates fold into one UPDATE, last write wins per field
- deleting an entity whose ADD is still queued drops the ADD instead of
  queuing a DELETE; queued UPDATEs for a deleted entity are dropped
- a DELETE is never queued twice for the same entity

So the queue never holds contradictory actions (e.g. ADD and DELETE) for
one id.

Online writes that fail roll back the optimistic change and are reported
to the caller; they are not queued. The one exception: while an entity
still has queued actions (a drain hasn't reached it yet), its edits go
through the queue even when online, so they are replayed after the
earlier ones rather than racing them.

Queue read-modify-write sections run under ``lock``; the reconciliation
engine holds the same lock while it applies and removes an action.

While a direct write waits for its response, its id is listed by
``inflight_ids()``; a refresh keeps the in-memory version of those ids.
"""

import asyncio
import logging
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional

from .actions import (
    AddAction,
    AddMultipleAction,
    DeleteAction,
    DeleteMultipleAction,
    QueuedAction,
    UpdateAction,
    pending_ids,
)
from .collection import Collection
from .connectivity import Connectivity
from .protocol import LocalStoreProtocol, RemoteStoreProtocol
from .remote import RemoteError
from .types import IMMUTABLE_FIELDS, WatchlistItem, update_payload, utc_now

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Outcome of one recorded mutation."""
    ok: bool
    queued: bool = False
    item_ids: list[str] = field(default_factory=list)
    items: list[WatchlistItem] = field(default_factory=list)
    error: Optional[RemoteError] = None


def overlay_pending(
    items: list[WatchlistItem], actions: Iterable[QueuedAction]
) -> list[WatchlistItem]:
    """Re-apply still-queued actions on top of a fetched remote collection.

    Used after a refresh so unsent local changes stay visible.
    """
    result = list(items)
    for action in actions:
        if isinstance(action, (AddAction, AddMultipleAction)):
            adds = [action.item] if isinstance(action, AddAction) else action.items
            present = {item.id for item in result}
            result[:0] = [item for item in reversed(adds) if item.id not in present]
        elif isinstance(action, UpdateAction):
            result = [
                item.merged(action.updates) if item.id == action.entity_id else item
                for item in result
            ]
        else:
            doomed = set(action.entity_ids())
            result = [item for item in result if item.id not in doomed]
    return result


def keep_local_versions(
    items: list[WatchlistItem], collection: Collection, item_ids: Iterable[str]
) -> list[WatchlistItem]:
    """Let the in-memory copy win for ids whose direct remote write is in flight.

    A fetched collection can predate such a write. Items still in memory
    replace (or are put ahead of) their fetched versions; items no longer
    in memory are dropped.
    """
    local = {item_id: collection.get(item_id) for item_id in item_ids}
    if not local:
        return list(items)
    result = [local[item.id] if item.id in local else item for item in items]
    result = [item for item in result if item is not None]
    present = {item.id for item in result}
    missing = [item for item in collection if item.id in local and item.id not in present]
    return missing + result


class MutationQueue:
    """Single writer of the pending-action log."""

    def __init__(
        self,
        collection: Collection,
        local_store: LocalStoreProtocol,
        remote: RemoteStoreProtocol,
        connectivity: Connectivity,
    ):
        self._collection = collection
        self._local = local_store
        self._remote = remote
        self._connectivity = connectivity
        self.lock = asyncio.Lock()
        self._inflight: Counter = Counter()

    @property
    def online(self) -> bool:
        return self._connectivity.online

    def pending_ids(self) -> list[str]:
        """Ids of entities with queued, unacknowledged changes."""
        return pending_ids(self._local.list())

    def inflight_ids(self) -> list[str]:
        """Ids with a direct remote write awaiting its response."""
        return list(self._inflight)

    @contextmanager
    def _writing(self, item_ids: list[str]) -> Iterator[None]:
        self._inflight.update(item_ids)
        try:
            yield
        finally:
            self._inflight.subtract(item_ids)
            self._inflight += Counter()  # drop zero counts

    def _save_mirror(self) -> None:
        self._local.put_all(self._collection.snapshot())

    def _must_queue(self, item_ids: Iterable[str]) -> bool:
        if not self.online:
            return True
        queued = set(self.pending_ids())
        return any(item_id in queued for item_id in item_ids)

    # -------------------------------------------------------------------------
    # Adds
    # -------------------------------------------------------------------------

    async def record_add(self, item: WatchlistItem) -> WriteResult:
        """Put a new item at the head of the collection and persist it."""
        self._collection.prepend(item)

        if not self.online:
            self._save_mirror()
            async with self.lock:
                self._local.append(AddAction(item))
            return WriteResult(ok=True, queued=True, item_ids=[item.id], items=[item])

        try:
            with self._writing([item.id]):
                row = await self._remote.insert(item.to_insert_payload())
        except RemoteError as e:
            logger.error("Error adding item %s: %s", item.id, e)
            self._collection.remove(item.id)
            return WriteResult(ok=False, item_ids=[item.id], error=e)

        stored = WatchlistItem.from_dict({**item.to_dict(), **row})
        # Gone if a live DELETE arrived while the insert was in flight
        if self._collection.replace(item.id, stored):
            self._save_mirror()
        return WriteResult(ok=True, item_ids=[item.id], items=[stored])

    async def record_add_multiple(self, items: list[WatchlistItem]) -> WriteResult:
        """Batched record_add.

        Optimistically the last item of the batch ends up on top. Once the
        remote accepts the batch, the stored rows go to the head in the
        order the remote returned them.
        """
        ids = [item.id for item in items]
        if not items:
            return WriteResult(ok=True)
        self._collection.prepend(*reversed(items))

        if not self.online:
            self._save_mirror()
            async with self.lock:
                self._local.append(AddMultipleAction(list(items)))
            return WriteResult(ok=True, queued=True, item_ids=ids, items=list(items))

        try:
            with self._writing(ids):
                rows = await self._remote.insert([item.to_insert_payload() for item in items])
        except RemoteError as e:
            logger.error("Error adding %d items: %s", len(items), e)
            self._collection.remove_many(ids)
            return WriteResult(ok=False, item_ids=ids, error=e)

        by_id = {row.get("id"): row for row in rows}
        merged = {
            item.id: WatchlistItem.from_dict({**item.to_dict(), **by_id.get(item.id, {})})
            for item in items
        }
        order = list(dict.fromkeys(
            [row.get("id") for row in rows if row.get("id") in merged]
            + [item_id for item_id in ids if item_id not in by_id]
        ))
        present = [item_id for item_id in order if item_id in self._collection]
        self._collection.remove_many(present)
        self._collection.prepend(*(merged[item_id] for item_id in present))
        self._save_mirror()
        return WriteResult(ok=True, item_ids=ids, items=[merged[item_id] for item_id in order])

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    async def record_update(self, item_id: str, updates: dict[str, Any]) -> WriteResult:
        """Merge a partial update into an item and persist it."""
        original = self._collection.get(item_id)
        if original is None:
            return WriteResult(ok=False, item_ids=[item_id])

        updates = {k: v for k, v in updates.items() if k not in IMMUTABLE_FIELDS}
        updates["updated_at"] = utc_now()
        merged = self._collection.merge(item_id, updates)

        if self._must_queue([item_id]):
            self._save_mirror()
            async with self.lock:
                self._coalesce_update(item_id, updates)
            return WriteResult(ok=True, queued=True, item_ids=[item_id], items=[merged])

        try:
            with self._writing([item_id]):
                await self._remote.update(item_id, update_payload(updates))
        except RemoteError as e:
            logger.error("Error updating item %s: %s", item_id, e)
            self._collection.replace(item_id, original)
            return WriteResult(ok=False, item_ids=[item_id], error=e)
        self._save_mirror()
        return WriteResult(ok=True, item_ids=[item_id], items=[merged])

    def _coalesce_update(self, item_id: str, updates: dict[str, Any]) -> None:
        actions = self._local.list()

        for action in actions:
            if isinstance(action, AddAction) and action.item.id == item_id:
                action.item = action.item.merged(updates)
                self._local.update(action)
                logger.debug("Folded update of %s into queued ADD %d", item_id, action.id)
                return
            if isinstance(action, AddMultipleAction) and action.touches(item_id):
                action.items = [
                    item.merged(updates) if item.id == item_id else item
                    for item in action.items
                ]
                self._local.update(action)
                logger.debug("Folded update of %s into queued ADD_MULTIPLE %d", item_id, action.id)
                return

        for action in actions:
            if isinstance(action, UpdateAction) and action.entity_id == item_id:
                action.updates = {**action.updates, **updates}
                self._local.update(action)
                logger.debug("Merged update of %s into queued UPDATE %d", item_id, action.id)
                return

        self._local.append(UpdateAction(item_id, dict(updates)))

    # -------------------------------------------------------------------------
    # Deletes
    # -------------------------------------------------------------------------

    async def record_delete(self, item_id: str) -> WriteResult:
        """Remove an item from the collection and persist the removal."""
        removed = self._collection.remove_many([item_id])

        if self._must_queue([item_id]):
            self._save_mirror()
            async with self.lock:
                if self._absorb_delete(item_id):
                    self._local.append(DeleteAction(item_id))
            return WriteResult(ok=True, queued=True, item_ids=[item_id])

        try:
            with self._writing([item_id]):
                await self._remote.delete(item_id)
        except RemoteError as e:
            if not e.is_not_found:
                logger.error("Error deleting item %s: %s", item_id, e)
                self._collection.restore(removed)
                return WriteResult(ok=False, item_ids=[item_id], error=e)
            logger.info("Item %s was already gone remotely", item_id)
        self._save_mirror()
        return WriteResult(ok=True, item_ids=[item_id])

    async def record_delete_multiple(self, item_ids: list[str]) -> WriteResult:
        """Remove several items; offline, queue one DELETE_MULTIPLE for what's left.

        Each id is coalesced the same way as a single delete before the
        batch action is queued.
        """
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return WriteResult(ok=True)
        removed = self._collection.remove_many(ids)

        if self._must_queue(ids):
            self._save_mirror()
            async with self.lock:
                remaining = [item_id for item_id in ids if self._absorb_delete(item_id)]
                if remaining:
                    self._local.append(DeleteMultipleAction(remaining))
            return WriteResult(ok=True, queued=True, item_ids=ids)

        try:
            with self._writing(ids):
                await self._remote.delete(ids)
        except RemoteError as e:
            if not e.is_not_found:
                logger.error("Error deleting %d items: %s", len(ids), e)
                self._collection.restore(removed)
                return WriteResult(ok=False, item_ids=ids, error=e)
        self._save_mirror()
        return WriteResult(ok=True, item_ids=ids)

    def _absorb_delete(self, item_id: str) -> bool:
        """Coalesce a delete against the queue.

        Returns True if a remote delete still has to be queued for the id,
        False if the queue already accounts for it.
        """
        actions = self._local.list()

        for action in actions:
            if isinstance(action, AddAction) and action.item.id == item_id:
                self._local.remove(action.id)
                logger.debug("Dropped queued ADD %d for deleted %s", action.id, item_id)
                return False
            if isinstance(action, AddMultipleAction) and action.touches(item_id):
                action.items = [item for item in action.items if item.id != item_id]
                if action.items:
                    self._local.update(action)
                else:
                    self._local.remove(action.id)
                logger.debug("Stripped %s from queued ADD_MULTIPLE %d", item_id, action.id)
                return False

        already_deleted = False
        for action in actions:
            if isinstance(action, UpdateAction) and action.entity_id == item_id:
                self._local.remove(action.id)
                logger.debug("Dropped queued UPDATE %d for deleted %s", action.id, item_id)
            elif isinstance(action, (DeleteAction, DeleteMultipleAction)) and action.touches(item_id):
                already_deleted = True

        return not already_deleted
