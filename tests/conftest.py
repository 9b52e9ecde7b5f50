"""
Shared pytest fixtures for watchsync tests.

Provides an in-memory remote store so the engine can be exercised without
a network.
"""

import copy
from pathlib import Path
from typing import Any, Optional, Union

import pytest

from watchsync.api import Watchlist
from watchsync.connectivity import Connectivity
from watchsync.local_store import LocalStore
from watchsync.notices import Notifier
from watchsync.remote import NETWORK_ERROR, NOT_FOUND, UNIQUE_VIOLATION, ChangeEvent, RemoteError


class MockSubscription:
    def __init__(self, remote: "MockRemoteStore", handler):
        self._remote = remote
        self.handler = handler
        self.closed = False

    async def close(self) -> None:
        self.closed = True
        if self in self._remote.subscriptions:
            self._remote.subscriptions.remove(self)


class MockRemoteStore:
    """
    In-memory remote table.

    Behaves like the real store for the error codes the engine cares
    about: inserting an existing id raises UNIQUE_VIOLATION, updating or
    deleting a missing id raises NOT_FOUND. Queue failures with fail_next().
    """

    def __init__(self):
        self.rows: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.subscriptions: list[MockSubscription] = []
        self._failures: list[tuple[str, RemoteError]] = []

    def fail_next(self, operation: str, code: str = NETWORK_ERROR, message: str = "boom") -> None:
        """Make the next call to an operation ("insert", "update", ...) raise."""
        self._failures.append((operation, RemoteError(message, code)))

    def _check_failure(self, operation: str) -> None:
        for i, (op, error) in enumerate(self._failures):
            if op == operation:
                del self._failures[i]
                raise error

    def calls_to(self, operation: str) -> list[Any]:
        return [args for op, args in self.calls if op == operation]

    async def insert(self, records: Union[dict, list[dict]]):
        self.calls.append(("insert", copy.deepcopy(records)))
        self._check_failure("insert")
        batch = [records] if isinstance(records, dict) else records
        if any(record["id"] in self.rows for record in batch):
            raise RemoteError("duplicate key value violates unique constraint", UNIQUE_VIOLATION)
        stored = []
        for record in batch:
            row = dict(record)
            row.setdefault("created_at", "2025-01-01T00:00:00+00:00")
            row.setdefault("updated_at", row["created_at"])
            self.rows[row["id"]] = row
            stored.append(dict(row))
        return stored[0] if isinstance(records, dict) else stored

    async def update(self, record_id: str, partial: dict):
        self.calls.append(("update", (record_id, copy.deepcopy(partial))))
        self._check_failure("update")
        if record_id not in self.rows:
            raise RemoteError(f"No row {record_id}", NOT_FOUND)
        self.rows[record_id].update(partial)
        return dict(self.rows[record_id])

    async def delete(self, record_ids: Union[str, list[str]]):
        self.calls.append(("delete", copy.deepcopy(record_ids)))
        self._check_failure("delete")
        if isinstance(record_ids, str):
            if record_ids not in self.rows:
                raise RemoteError(f"No row {record_ids}", NOT_FOUND)
            del self.rows[record_ids]
            return
        for record_id in record_ids:
            self.rows.pop(record_id, None)

    async def select_all(self, owner_id: str):
        self.calls.append(("select_all", owner_id))
        self._check_failure("select_all")
        rows = [dict(row) for row in self.rows.values() if row.get("user_id") == owner_id]
        return sorted(rows, key=lambda row: row.get("created_at", ""), reverse=True)

    def subscribe(self, owner_id: str, handler):
        subscription = MockSubscription(self, handler)
        self.subscriptions.append(subscription)
        return subscription

    def emit(self, event: ChangeEvent) -> None:
        """Deliver a change event to every subscriber."""
        for subscription in list(self.subscriptions):
            subscription.handler(event)

    async def close(self) -> None:
        pass


@pytest.fixture
def mock_remote():
    return MockRemoteStore()


@pytest.fixture
def local_store(tmp_path: Path):
    store = LocalStore(tmp_path / "watchsync.db")
    yield store
    store.close()


@pytest.fixture
def make_watchlist(mock_remote, local_store):
    """Factory for a Watchlist wired to the mock remote and a temp store."""

    def factory(online: bool = True, owner_id: str = "owner-1",
                notifier: Optional[Notifier] = None) -> Watchlist:
        return Watchlist(
            mock_remote,
            local_store,
            owner_id,
            connectivity=Connectivity(online=online),
            notifier=notifier or Notifier(),
        )

    return factory
