"""
Protocol definitions for the sync engine's collaborators.

- RemoteStoreProtocol: the remote source of truth (PostgrestRemoteStore,
  or an in-memory stand-in under test)
- LocalStoreProtocol: the durable local store (LocalStore)
"""

from typing import Any, Optional, Protocol, Union, runtime_checkable

from .actions import QueuedAction
from .remote import ChangeHandler
from .types import WatchlistItem


@runtime_checkable
class SubscriptionProtocol(Protocol):
    """Handle for a live change feed."""

    async def close(self) -> None: ...


@runtime_checkable
class RemoteStoreProtocol(Protocol):
    """
    Remote CRUD + subscription service for one table.

    Failures raise RemoteError; the codes UNIQUE_VIOLATION (insert of an
    existing row) and NOT_FOUND (update/delete of a missing row) are the
    ones the reconciliation engine treats as already-applied.
    """

    async def insert(
        self, records: Union[dict[str, Any], list[dict[str, Any]]]
    ) -> Union[dict[str, Any], list[dict[str, Any]]]: ...

    async def update(self, record_id: str, partial: dict[str, Any]) -> Any: ...

    async def delete(self, record_ids: Union[str, list[str]]) -> None: ...

    async def select_all(self, owner_id: str) -> list[dict[str, Any]]: ...

    def subscribe(self, owner_id: str, handler: ChangeHandler) -> SubscriptionProtocol: ...


@runtime_checkable
class LocalStoreProtocol(Protocol):
    """Durable item mirror plus ordered action queue."""

    def put_all(self, items: list[WatchlistItem], namespace: str = ...) -> None: ...

    def get_all(self, namespace: str = ...) -> list[WatchlistItem]: ...

    def clear(self, namespace: str = ...) -> None: ...

    def append(self, action: QueuedAction) -> QueuedAction: ...

    def update(self, action: QueuedAction) -> None: ...

    def remove(self, action_id: int) -> None: ...

    def list(self) -> list[QueuedAction]: ...

    def cache_put(self, namespace: str, key: str, data: Any) -> None: ...

    def cache_get(self, namespace: str, key: str, **kwargs: Any) -> Optional[Any]: ...
