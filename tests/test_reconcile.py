"""Tests for the reconciliation engine."""

import asyncio

import pytest

from watchsync.actions import AddAction, AddMultipleAction, DeleteAction, DeleteMultipleAction, UpdateAction
from watchsync.collection import Collection
from watchsync.connectivity import Connectivity
from watchsync.notices import ERROR, Notifier
from watchsync.queue import MutationQueue
from watchsync.reconcile import Reconciler, SyncState
from watchsync.remote import NOT_FOUND, UNIQUE_VIOLATION
from watchsync.types import NewWatchlistItem, WatchlistItem


def _new(title: str) -> WatchlistItem:
    return WatchlistItem.create(NewWatchlistItem(title), "owner-1")


@pytest.fixture
def collection():
    return Collection()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def reconciler(mock_remote, local_store, collection, notifier):
    return Reconciler(mock_remote, local_store, collection, "owner-1", notifier=notifier)


@pytest.fixture
def offline_queue(collection, local_store, mock_remote):
    return MutationQueue(collection, local_store, mock_remote, Connectivity(online=False))


class TestDrain:

    @pytest.mark.asyncio
    async def test_empty_queue_just_refreshes(self, reconciler, mock_remote, collection, local_store):
        row = _new("Remote").to_dict()
        mock_remote.rows[row["id"]] = row

        result = await reconciler.run()

        assert result.ok and result.applied == 0
        assert [i.id for i in collection] == [row["id"]]
        assert [i.id for i in local_store.get_all()] == [row["id"]]
        assert reconciler.state is SyncState.IDLE

    @pytest.mark.asyncio
    async def test_applies_in_fifo_order(self, reconciler, local_store, mock_remote):
        item = _new("A")
        other = _new("B")
        mock_remote.rows[other.id] = other.to_dict()
        local_store.append(AddAction(item))
        local_store.append(UpdateAction(item.id, {"episode": 3}))
        local_store.append(DeleteAction(other.id))

        result = await reconciler.run()

        assert result.ok and result.applied == 3
        ops = [op for op, _ in mock_remote.calls if op != "select_all"]
        assert ops == ["insert", "update", "delete"]
        assert mock_remote.rows[item.id]["episode"] == 3
        assert other.id not in mock_remote.rows
        assert local_store.list() == []

    @pytest.mark.asyncio
    async def test_coalesced_add_then_update_sends_single_insert(self, reconciler, offline_queue, mock_remote):
        item = _new("A")
        await offline_queue.record_add(item)
        await offline_queue.record_update(item.id, {"title": "B"})

        await reconciler.run()

        assert len(mock_remote.calls_to("insert")) == 1
        assert mock_remote.calls_to("insert")[0]["title"] == "B"
        assert mock_remote.calls_to("update") == []

    @pytest.mark.asyncio
    async def test_net_effect_matches_direct_application(self, reconciler, offline_queue, mock_remote):
        kept, dropped = _new("Kept"), _new("Dropped")
        await offline_queue.record_add(kept)
        await offline_queue.record_add(dropped)
        await offline_queue.record_update(kept.id, {"episode": 4})
        await offline_queue.record_delete(dropped.id)

        await reconciler.run()

        assert set(mock_remote.rows) == {kept.id}
        assert mock_remote.rows[kept.id]["episode"] == 4


class TestIdempotentReplay:

    @pytest.mark.asyncio
    async def test_add_of_existing_row_counts_as_applied(self, reconciler, local_store, mock_remote):
        item = _new("A")
        mock_remote.rows[item.id] = item.to_dict()
        local_store.append(AddAction(item))

        result = await reconciler.run()
        assert result.ok and result.applied == 1
        assert local_store.list() == []

    @pytest.mark.asyncio
    async def test_update_of_missing_row_counts_as_applied(self, reconciler, local_store):
        local_store.append(UpdateAction("gone", {"episode": 1}))
        result = await reconciler.run()
        assert result.ok
        assert local_store.list() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", [DeleteAction("gone"), DeleteMultipleAction(["gone"])])
    async def test_delete_of_missing_row_counts_as_applied(self, reconciler, local_store, mock_remote, action):
        mock_remote.fail_next("delete", NOT_FOUND)
        local_store.append(action)
        result = await reconciler.run()
        assert result.ok
        assert local_store.list() == []

    @pytest.mark.asyncio
    async def test_replaying_a_drain_changes_nothing(self, reconciler, local_store, mock_remote):
        item = _new("A")
        actions = [AddAction(item), UpdateAction(item.id, {"episode": 2})]
        for action in actions:
            local_store.append(action)
        await reconciler.run()
        snapshot = {k: dict(v) for k, v in mock_remote.rows.items()}

        # Retry after an ambiguous failure: same actions again
        for action in actions:
            local_store.append(action)
        result = await reconciler.run()

        assert result.ok
        assert mock_remote.rows == snapshot

    @pytest.mark.asyncio
    async def test_add_multiple_partially_present_inserts_missing_rows(self, reconciler, local_store, mock_remote):
        present, missing = _new("Present"), _new("Missing")
        mock_remote.rows[present.id] = present.to_dict()
        local_store.append(AddMultipleAction([present, missing]))

        result = await reconciler.run()

        assert result.ok
        assert missing.id in mock_remote.rows

    @pytest.mark.asyncio
    async def test_unique_violation_on_update_is_not_absorbed(self, reconciler, local_store, mock_remote):
        item = _new("A")
        mock_remote.rows[item.id] = item.to_dict()
        mock_remote.fail_next("update", UNIQUE_VIOLATION)
        local_store.append(UpdateAction(item.id, {"title": "Clash"}))

        result = await reconciler.run()
        assert not result.ok
        assert len(local_store.list()) == 1


class TestHalt:

    @pytest.mark.asyncio
    async def test_failure_halts_and_keeps_remaining(self, reconciler, local_store, mock_remote, notifier):
        a, b = _new("A"), _new("B")
        local_store.append(AddAction(a))
        failing = local_store.append(UpdateAction(a.id, {"episode": 1}))
        local_store.append(AddAction(b))
        mock_remote.fail_next("update")

        result = await reconciler.run()

        assert not result.ok
        assert result.applied == 1
        assert result.halted_action == failing.id
        assert [x.id for x in local_store.list()] == [failing.id, failing.id + 1]
        assert b.id not in mock_remote.rows
        assert set(result.pending_ids) == {a.id, b.id}
        assert notifier.last.level == ERROR
        # Halt returns to IDLE, not FAILED
        assert reconciler.state is SyncState.IDLE

    @pytest.mark.asyncio
    async def test_retry_after_halt_finishes(self, reconciler, local_store, mock_remote):
        item = _new("A")
        local_store.append(AddAction(item))
        mock_remote.fail_next("insert")
        assert not (await reconciler.run()).ok

        result = await reconciler.run()
        assert result.ok
        assert item.id in mock_remote.rows


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_failure_reports_and_returns_idle(self, reconciler, local_store, mock_remote, notifier):
        local_store.append(AddAction(_new("A")))
        mock_remote.fail_next("select_all")

        result = await reconciler.run()

        assert not result.ok
        assert result.applied == 1
        assert notifier.last.message == "Sync complete, but failed to fetch latest data."
        assert reconciler.state is SyncState.IDLE

    @pytest.mark.asyncio
    async def test_refresh_replaces_local_state(self, reconciler, collection, mock_remote):
        collection.prepend(_new("Stale"))
        fresh = _new("Fresh")
        mock_remote.rows[fresh.id] = fresh.to_dict()

        await reconciler.run()
        assert [i.title for i in collection] == ["Fresh"]

    @pytest.mark.asyncio
    async def test_success_notice_after_drain(self, reconciler, local_store, notifier):
        local_store.append(AddAction(_new("A")))
        await reconciler.run()
        messages = [n.message for n in notifier.history]
        assert messages == ["Syncing offline changes...", "Offline changes synced successfully!"]


class TestReentrancy:

    @pytest.mark.asyncio
    async def test_second_trigger_is_noop(self, reconciler, local_store, mock_remote):
        local_store.append(AddAction(_new("A")))
        gate = asyncio.Event()
        original_insert = mock_remote.insert

        async def slow_insert(records):
            await gate.wait()
            return await original_insert(records)

        mock_remote.insert = slow_insert
        first = asyncio.create_task(reconciler.run())
        await asyncio.sleep(0)
        assert reconciler.state is SyncState.DRAINING

        second = await reconciler.run()
        assert second.skipped

        gate.set()
        result = await first
        assert result.ok and result.applied == 1
        assert len(mock_remote.calls_to("insert")) == 1

    @pytest.mark.asyncio
    async def test_trigger_during_last_round_gets_another_round(
        self, reconciler, local_store, mock_remote, monkeypatch
    ):
        monkeypatch.setattr("watchsync.reconcile.MAX_ROUNDS", 1)
        gate = asyncio.Event()
        original_select = mock_remote.select_all

        async def slow_select(owner_id):
            await gate.wait()
            return await original_select(owner_id)

        mock_remote.select_all = slow_select
        first = asyncio.create_task(reconciler.run())
        await asyncio.sleep(0)
        assert reconciler.state is SyncState.REFRESHING

        local_store.append(AddAction(_new("Late")))
        assert (await reconciler.run()).skipped

        gate.set()
        result = await first
        assert result.ok and result.applied == 1
        assert local_store.list() == []

    @pytest.mark.asyncio
    async def test_action_without_trigger_waits_past_round_limit(
        self, reconciler, local_store, mock_remote, monkeypatch
    ):
        monkeypatch.setattr("watchsync.reconcile.MAX_ROUNDS", 1)
        gate = asyncio.Event()
        original_select = mock_remote.select_all

        async def slow_select(owner_id):
            await gate.wait()
            return await original_select(owner_id)

        mock_remote.select_all = slow_select
        first = asyncio.create_task(reconciler.run())
        await asyncio.sleep(0)
        local_store.append(AddAction(_new("Late")))

        gate.set()
        result = await first
        assert result.ok and result.applied == 0
        assert len(local_store.list()) == 1
