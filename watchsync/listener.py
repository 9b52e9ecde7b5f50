"""
Live change listener.

Merges row changes made by other sessions into the in-memory collection
while online. Events are applied in delivery order, except that every
event arriving during a reconciliation pass is dropped: the pass ends
with a full refresh that supersedes them.
"""

import logging
from typing import Optional

from .collection import Collection
from .protocol import LocalStoreProtocol, RemoteStoreProtocol, SubscriptionProtocol
from .reconcile import Reconciler
from .remote import ChangeEvent
from .types import WatchlistItem

logger = logging.getLogger(__name__)


class LiveChangeListener:
    """Applies remote change events to the collection."""

    def __init__(
        self,
        collection: Collection,
        reconciler: Reconciler,
        local_store: Optional[LocalStoreProtocol] = None,
    ):
        self._collection = collection
        self._reconciler = reconciler
        self._local = local_store
        self._subscription: Optional[SubscriptionProtocol] = None

    @property
    def active(self) -> bool:
        return self._subscription is not None

    async def start(self, remote: RemoteStoreProtocol, owner_id: str) -> None:
        """Subscribe to the owner's change feed (no-op if already subscribed)."""
        if self._subscription is None:
            self._subscription = remote.subscribe(owner_id, self.handle)
            logger.debug("Live change listener started for %s", owner_id)

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
            logger.debug("Live change listener stopped")

    def handle(self, event: ChangeEvent) -> bool:
        """Apply one event. Returns False if it was dropped or had no effect."""
        if self._reconciler.is_running:
            logger.debug("Dropping %s event during reconciliation", event.event_type)
            return False

        record_id = event.record_id
        if not record_id:
            return False

        changed = False
        if event.event_type == "INSERT":
            if record_id not in self._collection:
                try:
                    item = WatchlistItem.from_dict(event.new)
                except (TypeError, ValueError) as e:
                    logger.warning("Ignoring malformed INSERT event for %s: %s", record_id, e)
                    return False
                self._collection.prepend(item)
                changed = True

        elif event.event_type == "UPDATE":
            current = self._collection.get(record_id)
            if current is not None:
                try:
                    merged = WatchlistItem.from_dict({**current.to_dict(), **event.new})
                except (TypeError, ValueError) as e:
                    logger.warning("Ignoring malformed UPDATE event for %s: %s", record_id, e)
                    return False
                changed = self._collection.replace(record_id, merged)

        elif event.event_type == "DELETE":
            changed = self._collection.remove(record_id) is not None

        if changed and self._local is not None:
            self._local.put_all(self._collection.snapshot())
        return changed
