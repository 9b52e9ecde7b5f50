"""Tests for watchsync.remote: PostgREST client over httpx."""

import asyncio
import json

import httpx
import pytest

from watchsync.remote import (
    NETWORK_ERROR,
    NOT_FOUND,
    UNIQUE_VIOLATION,
    ChangeEvent,
    NullRemoteStore,
    PollingSubscription,
    PostgrestRemoteStore,
    RemoteError,
    diff_snapshots,
)


def _store(handler) -> PostgrestRemoteStore:
    return PostgrestRemoteStore(
        "https://db.example.com", "test-key", transport=httpx.MockTransport(handler),
    )


class TestHTTPSEnforcement:

    def test_allows_https(self):
        PostgrestRemoteStore("https://db.example.com", "key")

    def test_allows_localhost(self):
        PostgrestRemoteStore("http://localhost:54321", "key")

    def test_rejects_plain_http(self):
        with pytest.raises(ValueError, match="must use HTTPS"):
            PostgrestRemoteStore("http://db.example.com", "key")


class TestRequests:

    @pytest.mark.asyncio
    async def test_insert_sends_auth_and_returns_row(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json=[{"id": "a", "created_at": "t"}])

        store = _store(handler)
        row = await store.insert({"id": "a"})
        await store.close()

        assert row == {"id": "a", "created_at": "t"}
        assert seen["url"] == "https://db.example.com/rest/v1/watchlist"
        assert seen["headers"]["apikey"] == "test-key"
        assert seen["headers"]["authorization"] == "Bearer test-key"
        assert seen["headers"]["prefer"] == "return=representation"
        assert seen["body"] == {"id": "a"}

    @pytest.mark.asyncio
    async def test_batch_insert_returns_rows(self):
        store = _store(lambda request: httpx.Response(201, json=json.loads(request.content)))
        rows = await store.insert([{"id": "a"}, {"id": "b"}])
        assert [row["id"] for row in rows] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unique_violation_code(self):
        def handler(request):
            return httpx.Response(409, json={"code": "23505", "message": "duplicate key"})

        with pytest.raises(RemoteError) as exc_info:
            await _store(handler).insert({"id": "a"})
        assert exc_info.value.code == UNIQUE_VIOLATION
        assert exc_info.value.is_unique_violation

    @pytest.mark.asyncio
    async def test_status_code_when_body_has_no_code(self):
        with pytest.raises(RemoteError) as exc_info:
            await _store(lambda request: httpx.Response(503, text="down")).select_all("u")
        assert exc_info.value.code == "503"

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(RemoteError) as exc_info:
            await _store(handler).select_all("u")
        assert exc_info.value.code == NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_malformed_body_is_remote_error(self):
        with pytest.raises(RemoteError) as exc_info:
            await _store(lambda request: httpx.Response(200, content=b"not json")).select_all("u")
        assert exc_info.value.code == "200"

    @pytest.mark.asyncio
    async def test_update_filters_by_id(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["id"] = request.url.params["id"]
            return httpx.Response(200, json=[{"id": "a", "episode": 2}])

        row = await _store(handler).update("a", {"episode": 2})
        assert row["episode"] == 2
        assert seen == {"method": "PATCH", "id": "eq.a"}

    @pytest.mark.asyncio
    async def test_update_of_missing_row_is_not_found(self):
        with pytest.raises(RemoteError) as exc_info:
            await _store(lambda request: httpx.Response(200, json=[])).update("a", {"episode": 2})
        assert exc_info.value.is_not_found

    @pytest.mark.asyncio
    async def test_single_delete_of_missing_row_is_not_found(self):
        with pytest.raises(RemoteError) as exc_info:
            await _store(lambda request: httpx.Response(200, json=[])).delete("a")
        assert exc_info.value.code == NOT_FOUND

    @pytest.mark.asyncio
    async def test_batch_delete_uses_in_filter(self):
        seen = {}

        def handler(request):
            seen["id"] = request.url.params["id"]
            return httpx.Response(204)

        await _store(handler).delete(["a", "b"])
        assert seen["id"] == 'in.("a","b")'

    @pytest.mark.asyncio
    async def test_select_all_filters_owner(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json=[{"id": "a"}])

        rows = await _store(handler).select_all("owner-1")
        assert rows == [{"id": "a"}]
        assert seen["user_id"] == "eq.owner-1"
        assert seen["order"] == "created_at.desc"


class TestChangeFeed:

    def test_diff_snapshots(self):
        previous = {"a": {"id": "a", "episode": 1}, "b": {"id": "b"}}
        current = {"a": {"id": "a", "episode": 2}, "c": {"id": "c"}}
        events = {(e.event_type, e.record_id) for e in diff_snapshots(previous, current)}
        assert events == {("UPDATE", "a"), ("INSERT", "c"), ("DELETE", "b")}

    @pytest.mark.asyncio
    async def test_first_poll_is_baseline(self):
        rows = [[{"id": "a"}], [{"id": "a"}, {"id": "b"}]]
        store = _store(lambda request: httpx.Response(200, json=rows.pop(0)))
        received: list[ChangeEvent] = []
        subscription = PollingSubscription(store, "u", received.append, interval=60)

        assert await subscription.poll_once() == 0
        assert await subscription.poll_once() == 1
        assert received[0].event_type == "INSERT"
        assert received[0].record_id == "b"

    @pytest.mark.asyncio
    async def test_subscribe_and_close(self):
        store = _store(lambda request: httpx.Response(200, json=[]))
        subscription = store.subscribe("u", lambda event: None)
        await subscription.close()
        await store.close()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_feed(self):
        responses = [[], [{"id": "a"}], [{"id": "a"}, {"id": "b"}]]

        def handler(request):
            rows = responses.pop(0) if len(responses) > 1 else responses[0]
            return httpx.Response(200, json=rows)

        store = _store(handler)
        received: list[ChangeEvent] = []

        def on_change(event):
            received.append(event)
            if len(received) == 1:
                raise RuntimeError("handler failed")

        subscription = PollingSubscription(store, "u", on_change, interval=0.01)
        subscription.start()
        for _ in range(200):
            if len(received) >= 2:
                break
            await asyncio.sleep(0.01)

        assert [event.record_id for event in received] == ["a", "b"]
        await subscription.close()
        await store.close()

    @pytest.mark.asyncio
    async def test_malformed_rows_keep_feed_alive(self):
        bodies = [b"[]", b"<html>oops</html>", b'[{"id": "a"}]']

        def handler(request):
            body = bodies.pop(0) if len(bodies) > 1 else bodies[0]
            return httpx.Response(200, content=body)

        store = _store(handler)
        received: list[ChangeEvent] = []
        subscription = PollingSubscription(store, "u", received.append, interval=0.01)
        subscription.start()
        for _ in range(200):
            if received:
                break
            await asyncio.sleep(0.01)

        assert [event.record_id for event in received] == ["a"]
        await subscription.close()
        await store.close()


class TestNullRemoteStore:

    @pytest.mark.asyncio
    async def test_every_call_is_unreachable(self):
        remote = NullRemoteStore()
        with pytest.raises(RemoteError) as exc_info:
            await remote.select_all("u")
        assert exc_info.value.code == NETWORK_ERROR
