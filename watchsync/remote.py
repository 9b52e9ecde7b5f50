"""
HTTP client for the remote watchlist table.

Talks to a PostgREST endpoint (the REST layer Supabase exposes at
/rest/v1). Row-level errors come back as JSON bodies carrying a Postgres
or PostgREST error code; those codes are surfaced on RemoteError so the
reconciliation engine can recognize idempotent replays.

PostgREST has no push channel, so subscribe() is implemented as a
polling change feed: the owner's rows are re-read every poll interval
and diffed against the previous snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import httpx

logger = logging.getLogger(__name__)

# Postgres unique_violation: the row already exists
UNIQUE_VIOLATION = "23505"
# PostgREST "no rows" for single-row operations
NOT_FOUND = "PGRST116"
# Transport failure (no response at all)
NETWORK_ERROR = "network"

DEFAULT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 15.0


class RemoteError(Exception):
    """A remote store operation failed."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION

    @property
    def is_not_found(self) -> bool:
        return self.code == NOT_FOUND


@dataclass
class ChangeEvent:
    """A row change originating from another session."""
    event_type: str  # "INSERT", "UPDATE" or "DELETE"
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)

    @property
    def record_id(self) -> Optional[str]:
        source = self.old if self.event_type == "DELETE" else self.new
        return source.get("id")


ChangeHandler = Callable[[ChangeEvent], None]


def diff_snapshots(
    previous: dict[str, dict], current: dict[str, dict]
) -> list[ChangeEvent]:
    """Change events turning one id->row snapshot into the next."""
    events = []
    for row_id, row in current.items():
        before = previous.get(row_id)
        if before is None:
            events.append(ChangeEvent("INSERT", new=row))
        elif before != row:
            events.append(ChangeEvent("UPDATE", new=row, old=before))
    for row_id, row in previous.items():
        if row_id not in current:
            events.append(ChangeEvent("DELETE", old=row))
    return events


class PollingSubscription:
    """Background task that polls the owner's rows and emits change events."""

    def __init__(
        self,
        store: "PostgrestRemoteStore",
        owner_id: str,
        handler: ChangeHandler,
        interval: float,
    ):
        self._store = store
        self._owner_id = owner_id
        self._handler = handler
        self._interval = interval
        self._snapshot: Optional[dict[str, dict]] = None
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def poll_once(self) -> int:
        """Read the owner's rows and dispatch changes since the last poll.

        The first poll only records a baseline. Returns events dispatched.
        """
        rows = await self._store.select_all(self._owner_id)
        current = {row["id"]: row for row in rows if "id" in row}
        if self._snapshot is None:
            self._snapshot = current
            return 0
        events = diff_snapshots(self._snapshot, current)
        self._snapshot = current
        for event in events:
            try:
                self._handler(event)
            except Exception:
                logger.exception("Change handler failed on %s %s", event.event_type, event.record_id)
        return len(events)

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except RemoteError as e:
                logger.warning("Change feed poll failed: %s", e)
            except Exception:
                logger.exception("Change feed poll failed")
            await asyncio.sleep(self._interval)

    async def close(self) -> None:
        """Stop polling."""
        if self._task is not None:
            task, self._task = self._task, None
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Change feed task ended with an error")


class PostgrestRemoteStore:
    """Remote CRUD + change feed over a PostgREST table."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        table: str = "watchlist",
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._table = table
        self._poll_interval = poll_interval

        # Refuse non-HTTPS for remote APIs (the key would be sent in cleartext)
        if not self._api_url.startswith("https://"):
            from urllib.parse import urlparse
            host = urlparse(self._api_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                raise ValueError(
                    f"Remote API URL must use HTTPS (got {self._api_url}). "
                    "Use HTTPS to protect API credentials, or use localhost for local development."
                )

        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=f"{self._api_url}/rest/v1",
            headers=headers,
            timeout=DEFAULT_TIMEOUT,
            transport=transport,
        )

    @property
    def table(self) -> str:
        return self._table

    async def _request(
        self,
        method: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = await self._client.request(
                method, f"/{self._table}", params=params, json=json, headers=headers,
            )
        except httpx.TransportError as e:
            raise RemoteError(f"{method} {self._table} failed: {e}", NETWORK_ERROR) from e

        if resp.status_code >= 400:
            raise _error_from_response(resp)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(
                f"{method} {self._table} returned a malformed body: {e}", str(resp.status_code)
            ) from e

    async def insert(
        self, records: Union[dict[str, Any], list[dict[str, Any]]]
    ) -> Union[dict[str, Any], list[dict[str, Any]]]:
        """Insert one record or a batch. Returns the stored row(s)."""
        rows = await self._request("POST", json=records, prefer="return=representation")
        rows = rows or []
        if isinstance(records, dict):
            return rows[0] if rows else dict(records)
        return rows

    async def update(self, record_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        """Update one row by id. Raises RemoteError(NOT_FOUND) if no row matched."""
        rows = await self._request(
            "PATCH",
            params={"id": f"eq.{record_id}"},
            json=partial,
            prefer="return=representation",
        )
        if not rows:
            raise RemoteError(f"No {self._table} row with id {record_id}", NOT_FOUND)
        return rows[0]

    async def delete(self, record_ids: Union[str, list[str]]) -> None:
        """Delete one row by id, or a set of rows.

        Deleting a single missing row raises RemoteError(NOT_FOUND); batch
        deletes ignore ids that are already gone.
        """
        if isinstance(record_ids, str):
            rows = await self._request(
                "DELETE", params={"id": f"eq.{record_ids}"}, prefer="return=representation",
            )
            if not rows:
                raise RemoteError(f"No {self._table} row with id {record_ids}", NOT_FOUND)
            return
        if not record_ids:
            return
        id_list = ",".join(f'"{rid}"' for rid in record_ids)
        await self._request("DELETE", params={"id": f"in.({id_list})"})

    async def select_all(self, owner_id: str) -> list[dict[str, Any]]:
        """All of an owner's rows, newest first."""
        rows = await self._request(
            "GET",
            params={
                "select": "*",
                "user_id": f"eq.{owner_id}",
                "order": "created_at.desc",
            },
        )
        return rows or []

    def subscribe(self, owner_id: str, handler: ChangeHandler) -> PollingSubscription:
        """Start a change feed for an owner's rows. Call close() on the result to stop."""
        subscription = PollingSubscription(self, owner_id, handler, self._poll_interval)
        subscription.start()
        return subscription

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def _error_from_response(resp: httpx.Response) -> RemoteError:
    """Map a PostgREST error response to a RemoteError with its code."""
    code = str(resp.status_code)
    message = resp.text
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("code") or code
        message = body.get("message") or message
    return RemoteError(f"Remote error {resp.status_code}: {message}", code)


class NullRemoteStore:
    """Remote stand-in for a store with no remote configured. Every call fails as unreachable."""

    async def insert(self, records):
        raise RemoteError("No remote configured", NETWORK_ERROR)

    async def update(self, record_id, partial):
        raise RemoteError("No remote configured", NETWORK_ERROR)

    async def delete(self, record_ids):
        raise RemoteError("No remote configured", NETWORK_ERROR)

    async def select_all(self, owner_id):
        raise RemoteError("No remote configured", NETWORK_ERROR)

    def subscribe(self, owner_id, handler):
        raise RemoteError("No remote configured", NETWORK_ERROR)

    async def close(self) -> None:
        pass
