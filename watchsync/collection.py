"""
In-memory working set of watchlist items.

This is what callers read: it reflects optimistic local state
immediately and is overwritten by the remote truth after each
reconciliation pass. Order is the user's view order (newest first);
nothing here re-sorts.
"""

from typing import Any, Iterable, Iterator, Optional

from .types import WatchlistItem, duplicate_key


class Collection:
    """Ordered list of items with id lookups."""

    def __init__(self, items: Optional[Iterable[WatchlistItem]] = None):
        self._items: list[WatchlistItem] = list(items or [])

    def __iter__(self) -> Iterator[WatchlistItem]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: str) -> bool:
        return self.index(item_id) is not None

    def index(self, item_id: str) -> Optional[int]:
        for i, item in enumerate(self._items):
            if item.id == item_id:
                return i
        return None

    def get(self, item_id: str) -> Optional[WatchlistItem]:
        i = self.index(item_id)
        return self._items[i] if i is not None else None

    def snapshot(self) -> list[WatchlistItem]:
        return list(self._items)

    def reset(self, items: Iterable[WatchlistItem]) -> None:
        """Overwrite the whole working set."""
        self._items = list(items)

    def prepend(self, *items: WatchlistItem) -> None:
        """Put items at the head, first argument first."""
        self._items[:0] = items

    def insert(self, position: int, item: WatchlistItem) -> None:
        self._items.insert(min(position, len(self._items)), item)

    def replace(self, item_id: str, item: WatchlistItem) -> bool:
        """Swap in a new version of an item. No-op if the id is gone."""
        i = self.index(item_id)
        if i is None:
            return False
        self._items[i] = item
        return True

    def merge(self, item_id: str, updates: dict[str, Any]) -> Optional[WatchlistItem]:
        """Apply a partial update in place; returns the merged item."""
        current = self.get(item_id)
        if current is None:
            return None
        merged = current.merged(updates)
        self.replace(item_id, merged)
        return merged

    def remove(self, item_id: str) -> Optional[WatchlistItem]:
        i = self.index(item_id)
        if i is None:
            return None
        return self._items.pop(i)

    def remove_many(self, item_ids: Iterable[str]) -> list[tuple[int, WatchlistItem]]:
        """Remove items by id; returns (original position, item) pairs for rollback."""
        doomed = set(item_ids)
        removed = [(i, item) for i, item in enumerate(self._items) if item.id in doomed]
        self._items = [item for item in self._items if item.id not in doomed]
        return removed

    def restore(self, removed: list[tuple[int, WatchlistItem]]) -> None:
        """Put back items taken out by remove_many, skipping any that reappeared."""
        for position, item in sorted(removed, key=lambda pair: pair[0]):
            if item.id not in self:
                self.insert(position, item)

    def find_duplicate(self, title: str, item_type: Any) -> Optional[WatchlistItem]:
        key = duplicate_key(title, item_type)
        for item in self._items:
            if item.duplicate_key == key:
                return item
        return None
