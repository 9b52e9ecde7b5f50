"""
Reconciliation engine.

Drains the durable action queue against the remote store, then replaces
local state with the remote truth:

    IDLE -> DRAINING -> REFRESHING -> IDLE
    DRAINING -> (halt) -> IDLE
    REFRESHING -> (fetch failed) -> FAILED -> IDLE

Actions are applied strictly oldest first, re-reading the queue from the
durable store before each one. Replays are idempotent: inserting a row
that already exists, or updating/deleting one that is already gone,
counts as applied. Any other error halts the drain with the remaining
actions left in place; the next connectivity change or manual trigger
retries.

Only one pass runs at a time. A trigger arriving mid-pass returns at once
as skipped; the running pass takes another round for it if the queue is
not empty yet.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

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
from .notices import Notifier
from .protocol import LocalStoreProtocol, RemoteStoreProtocol
from .queue import keep_local_versions, overlay_pending
from .remote import RemoteError
from .types import WatchlistItem

logger = logging.getLogger(__name__)

# Drain+refresh rounds in one pass while actions keep arriving mid-pass;
# each trigger skipped during the pass allows one round beyond this
MAX_ROUNDS = 3


class SyncState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"
    REFRESHING = "refreshing"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of one reconciliation pass."""
    ok: bool
    applied: int = 0
    skipped: bool = False
    halted_action: Optional[int] = None
    error: Optional[RemoteError] = None
    pending_ids: list[str] = field(default_factory=list)


class Reconciler:
    """Applies queued actions remotely and refreshes the local collection."""

    def __init__(
        self,
        remote: RemoteStoreProtocol,
        local_store: LocalStoreProtocol,
        collection: Collection,
        owner_id: str,
        *,
        lock: Optional[asyncio.Lock] = None,
        notifier: Optional[Notifier] = None,
        inflight: Optional[Callable[[], Iterable[str]]] = None,
    ):
        self._remote = remote
        self._local = local_store
        self._collection = collection
        self._owner_id = owner_id
        self._lock = lock or asyncio.Lock()
        self._notifier = notifier or Notifier()
        self._inflight = inflight or (lambda: ())
        self._state = SyncState.IDLE
        self._rerun_requested = False

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        """True while draining or refreshing."""
        return self._state in (SyncState.DRAINING, SyncState.REFRESHING)

    def pending_ids(self) -> list[str]:
        return pending_ids(self._local.list())

    async def run(self) -> SyncResult:
        """Run one reconciliation pass."""
        if self.is_running:
            logger.info("Reconciliation already in progress, skipping")
            self._rerun_requested = True
            return SyncResult(ok=True, skipped=True, pending_ids=self.pending_ids())

        had_actions = bool(self._local.list())
        if had_actions:
            self._notifier.notify("Syncing offline changes...")

        applied = 0
        rounds = 0
        self._rerun_requested = False
        try:
            while True:
                rounds += 1
                if self._local.list():
                    self._state = SyncState.DRAINING
                    count, error, action = await self._drain()
                    applied += count
                    if error is not None:
                        self._notifier.error("Failed to sync some changes. Please retry.")
                        return SyncResult(
                            ok=False,
                            applied=applied,
                            halted_action=action.id,
                            error=error,
                            pending_ids=self.pending_ids(),
                        )

                self._state = SyncState.REFRESHING
                try:
                    await self._refresh()
                except RemoteError as e:
                    self._state = SyncState.FAILED
                    logger.error("Failed to fetch remote collection: %s", e)
                    if had_actions:
                        self._notifier.error("Sync complete, but failed to fetch latest data.")
                    else:
                        self._notifier.error("Failed to fetch latest data.")
                    return SyncResult(
                        ok=False, applied=applied, error=e, pending_ids=self.pending_ids(),
                    )

                if not self._local.list():
                    break
                if rounds >= MAX_ROUNDS:
                    # A trigger skipped during this pass earns one more round
                    if not self._rerun_requested:
                        break
                    self._rerun_requested = False
        finally:
            self._state = SyncState.IDLE

        if applied:
            logger.info("Synced %d queued actions", applied)
            self._notifier.notify("Offline changes synced successfully!")
        return SyncResult(ok=True, applied=applied, pending_ids=self.pending_ids())

    async def _drain(self) -> tuple[int, Optional[RemoteError], Optional[QueuedAction]]:
        """Apply queued actions oldest first until empty or a real failure."""
        applied = 0
        while True:
            async with self._lock:
                actions = self._local.list()
                if not actions:
                    return applied, None, None
                action = actions[0]
                try:
                    await self._apply(action)
                except RemoteError as e:
                    logger.warning(
                        "Halting drain at action %d (%s): %s", action.id, action.kind.value, e,
                    )
                    return applied, e, action
                self._local.remove(action.id)
            applied += 1

    async def _apply(self, action: QueuedAction) -> None:
        """Issue the remote write for one action, absorbing idempotent replays."""
        if isinstance(action, AddAction):
            try:
                await self._remote.insert(action.item.to_insert_payload())
            except RemoteError as e:
                if not e.is_unique_violation:
                    raise
                logger.info("Action %d: item %s already exists remotely", action.id, action.item.id)

        elif isinstance(action, AddMultipleAction):
            payloads = [item.to_insert_payload() for item in action.items]
            try:
                await self._remote.insert(payloads)
            except RemoteError as e:
                if not e.is_unique_violation:
                    raise
                # The batch is rejected as a whole; insert rows one at a time
                # so rows that don't exist yet still land.
                logger.info("Action %d: batch partially present, inserting rows singly", action.id)
                for payload in payloads:
                    try:
                        await self._remote.insert(payload)
                    except RemoteError as row_error:
                        if not row_error.is_unique_violation:
                            raise

        elif isinstance(action, UpdateAction):
            payload = action.payload()["updates"]
            if not payload:
                return
            try:
                await self._remote.update(action.entity_id, payload)
            except RemoteError as e:
                if not e.is_not_found:
                    raise
                logger.warning(
                    "Action %d (UPDATE) failed because item %s was not found. "
                    "Assuming it was deleted elsewhere. Skipping.",
                    action.id, action.entity_id,
                )

        elif isinstance(action, (DeleteAction, DeleteMultipleAction)):
            target = action.entity_id if isinstance(action, DeleteAction) else action.ids
            try:
                await self._remote.delete(target)
            except RemoteError as e:
                if not e.is_not_found:
                    raise
                logger.info("Action %d: already deleted remotely", action.id)

        else:
            raise TypeError(f"Unknown action type: {type(action).__name__}")

    async def _refresh(self) -> None:
        """Overwrite the collection and mirror with the remote truth."""
        rows = await self._remote.select_all(self._owner_id)
        items = [WatchlistItem.from_dict(row) for row in rows]
        items = overlay_pending(items, self._local.list())
        items = keep_local_versions(items, self._collection, self._inflight())
        self._collection.reset(items)
        self._local.put_all(items)
        logger.debug("Refreshed %d items from remote", len(items))
