"""
Tests for the sync reconciler

Runs full cycles against FakeRemoteAdapter (see conftest.py).
"""

import asyncio
from datetime import date
from unittest.mock import patch

import pytest

from conftest import FakeRemoteAdapter, make_expense
from finfree.models.audit import AuditEventType
from finfree.models.ledger import BankAccount
from finfree.models.sync import (
    EntityKind,
    RemoteSnapshot,
    SyncMode,
    SyncOutcome,
    SyncState,
    SyncTrigger,
)
from finfree.services.storage import (
    AuthorizationError,
    TransportError,
)
from finfree.sync import PUSH_ORDER, SyncReconciler


@pytest.fixture
def reconciler(store, fake_remote, audit_logger) -> SyncReconciler:
    return SyncReconciler(store, {SyncMode.RELAY: fake_remote}, audit_logger)


def event_types(audit_logger):
    return [event.event_type for event in audit_logger.events]


class TestSyncCycle:
    """Tests for one pull/merge/push cycle."""

    @pytest.mark.asyncio
    async def test_pushes_unsynced_and_marks_synced(self, reconciler, store, fake_remote, relay_credentials):
        expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))

        report = await reconciler.sync(relay_credentials)

        assert report.outcome == SyncOutcome.COMPLETED
        assert report.pushed == {"expenses": 1}
        assert fake_remote.appended == [(EntityKind.EXPENSES, [expense.id])]
        state = await store.load()
        assert state.expenses[0].synced is True
        assert reconciler.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_second_cycle_pushes_nothing(self, reconciler, store, fake_remote, relay_credentials):
        await store.add_entity(make_expense(500, date(2024, 1, 1)))
        await reconciler.sync(relay_credentials)
        fake_remote.appended.clear()

        report = await reconciler.sync(relay_credentials)

        assert report.outcome == SyncOutcome.COMPLETED
        assert fake_remote.appended == []
        assert report.total_pushed == 0

    @pytest.mark.asyncio
    async def test_pulls_remote_entities(self, reconciler, store, fake_remote, relay_credentials):
        remote_expense = make_expense(700, date(2024, 1, 2), synced=True)
        fake_remote.snapshot = RemoteSnapshot(expenses=[remote_expense])

        await reconciler.sync(relay_credentials)

        state = await store.load()
        assert [e.id for e in state.expenses] == [remote_expense.id]

    @pytest.mark.asyncio
    async def test_remote_delete_drops_synced_local(self, reconciler, store, fake_remote, relay_credentials):
        await store.add_entity(make_expense(500, date(2024, 1, 1)))
        await reconciler.sync(relay_credentials)
        fake_remote.snapshot = RemoteSnapshot()

        report = await reconciler.sync(relay_credentials)

        assert report.dropped == {"expenses": 1}
        assert (await store.load()).expenses == []

    @pytest.mark.asyncio
    async def test_accounts_pushed_first(self, reconciler, store, fake_remote, relay_credentials):
        await store.add_entity(make_expense(500, date(2024, 1, 1)))
        await store.add_entity(BankAccount(name="Checking"))

        await reconciler.sync(relay_credentials)

        kinds = [kind for kind, _ in fake_remote.appended]
        assert kinds == [k for k in PUSH_ORDER if k in kinds]
        assert kinds[0] == EntityKind.ACCOUNTS

    @pytest.mark.asyncio
    async def test_pull_failure_aborts_without_touching_local(
        self, reconciler, store, fake_remote, relay_credentials, audit_logger
    ):
        await store.add_entity(make_expense(500, date(2024, 1, 1)))
        before = await store.load()
        fake_remote.fetch_error = TransportError("offline")

        report = await reconciler.sync(relay_credentials)

        assert report.outcome == SyncOutcome.ABORTED
        assert fake_remote.appended == []
        assert await store.load() == before
        assert AuditEventType.PULL_FAILED in event_types(audit_logger)

    @pytest.mark.asyncio
    async def test_failures_are_logged_without_audit_logger(self, store, fake_remote, relay_credentials):
        reconciler = SyncReconciler(store, {SyncMode.RELAY: fake_remote})
        expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))
        await reconciler.sync(relay_credentials)
        tombstone = await store.delete_entity(EntityKind.EXPENSES, expense.id)
        fake_remote.fetch_error = TransportError("offline")
        fake_remote.delete_error = TransportError("offline")

        with patch("finfree.sync.reconciler.logger") as logger:
            await reconciler.sync(relay_credentials)
            await reconciler.push_tombstone(relay_credentials, tombstone)

        messages = [call.args[0] for call in logger.warning.call_args_list]
        assert messages == ["Pull failed, sync aborted", "Tombstone push failed"]

    @pytest.mark.asyncio
    async def test_push_failure_is_partial(self, reconciler, store, fake_remote, relay_credentials, audit_logger):
        """Merged state stays persisted; unpushed entries stay unsynced."""
        remote_expense = make_expense(700, date(2024, 1, 2), synced=True)
        fake_remote.snapshot = RemoteSnapshot(expenses=[remote_expense])
        await store.add_entity(BankAccount(name="Checking"))
        local_expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))
        fake_remote.append_errors[EntityKind.EXPENSES] = TransportError("timeout")

        report = await reconciler.sync(relay_credentials)

        assert report.outcome == SyncOutcome.PARTIAL
        assert report.pushed == {"accounts": 1}
        assert report.push_failed == {"expenses": 1}

        state = await store.load()
        assert state.accounts[0].synced is True
        by_id = {e.id: e for e in state.expenses}
        assert by_id[remote_expense.id].synced is True
        assert by_id[local_expense.id].synced is False
        assert AuditEventType.PUSH_FAILED in event_types(audit_logger)

    @pytest.mark.asyncio
    async def test_push_stops_at_first_failed_kind(self, reconciler, store, fake_remote, relay_credentials):
        await store.add_entity(BankAccount(name="Checking"))
        await store.add_entity(make_expense(500, date(2024, 1, 1)))
        fake_remote.append_errors[EntityKind.ACCOUNTS] = TransportError("timeout")

        report = await reconciler.sync(relay_credentials)

        assert report.outcome == SyncOutcome.PARTIAL
        assert fake_remote.appended == []

    @pytest.mark.asyncio
    async def test_unacknowledged_entities_stay_unsynced(
        self, reconciler, store, fake_remote, relay_credentials
    ):
        first = await store.add_entity(make_expense(500, date(2024, 1, 1)))
        second = await store.add_entity(make_expense(600, date(2024, 1, 1)))
        fake_remote.unacknowledged.add(second.id)

        report = await reconciler.sync(relay_credentials)

        assert report.outcome == SyncOutcome.PARTIAL
        by_id = {e.id: e for e in (await store.load()).expenses}
        assert by_id[first.id].synced is True
        assert by_id[second.id].synced is False

    @pytest.mark.asyncio
    async def test_authorization_error_is_raised(self, reconciler, fake_remote, relay_credentials, audit_logger):
        fake_remote.fetch_error = AuthorizationError("Unauthorized")

        with pytest.raises(AuthorizationError):
            await reconciler.sync(relay_credentials)

        assert reconciler.state == SyncState.IDLE
        assert AuditEventType.AUTHORIZATION_FAILED in event_types(audit_logger)

    @pytest.mark.asyncio
    async def test_local_only_without_credentials(self, reconciler, fake_remote):
        report = await reconciler.sync(None)

        assert report.outcome == SyncOutcome.LOCAL_ONLY
        assert fake_remote.fetch_calls == 0

    @pytest.mark.asyncio
    async def test_mode_without_adapter_is_local_only(self, reconciler, direct_credentials):
        report = await reconciler.sync(direct_credentials)
        assert report.outcome == SyncOutcome.LOCAL_ONLY

    @pytest.mark.asyncio
    async def test_edit_made_during_push_is_not_marked_synced(self, store, relay_credentials):
        """An entry edited while its push is in flight is re-pushed next cycle."""
        expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))

        class EditingRemote(FakeRemoteAdapter):
            async def append_entities(self, kind, credentials, rows):
                await store.update_entity(expense.model_copy(update={"amount": 650}))
                return await super().append_entities(kind, credentials, rows)

        reconciler = SyncReconciler(store, {SyncMode.RELAY: EditingRemote()})
        await reconciler.sync(relay_credentials)

        state = await store.load()
        assert state.expenses[0].amount == 650
        assert state.expenses[0].synced is False


class TestSingleFlight:
    """At most one cycle in flight; extra triggers are dropped."""

    @pytest.mark.asyncio
    async def test_concurrent_trigger_is_skipped(self, store, relay_credentials):
        release = asyncio.Event()

        class SlowRemote(FakeRemoteAdapter):
            async def fetch_snapshot(self, credentials):
                await release.wait()
                return await super().fetch_snapshot(credentials)

        remote = SlowRemote()
        reconciler = SyncReconciler(store, {SyncMode.RELAY: remote})

        first = asyncio.create_task(reconciler.sync(relay_credentials))
        await asyncio.sleep(0)
        assert reconciler.is_running

        second = await reconciler.sync(relay_credentials, SyncTrigger.NEW_ENTRY)
        assert second.outcome == SyncOutcome.SKIPPED
        assert reconciler.request_sync(relay_credentials, SyncTrigger.PERIODIC) is None

        release.set()
        report = await first
        assert report.outcome == SyncOutcome.COMPLETED
        assert remote.fetch_calls == 1

    @pytest.mark.asyncio
    async def test_request_sync_runs_in_background(self, reconciler, store, fake_remote, relay_credentials):
        await store.add_entity(make_expense(500, date(2024, 1, 1)))

        task = reconciler.request_sync(relay_credentials, SyncTrigger.NEW_ENTRY)
        assert task is not None
        await reconciler.wait_idle()

        assert reconciler.last_report.trigger == SyncTrigger.NEW_ENTRY
        assert reconciler.last_report.outcome == SyncOutcome.COMPLETED

    @pytest.mark.asyncio
    async def test_background_authorization_error_is_recorded(
        self, reconciler, fake_remote, relay_credentials
    ):
        fake_remote.fetch_error = AuthorizationError("Unauthorized")

        reconciler.request_sync(relay_credentials, SyncTrigger.APP_START)
        await reconciler.wait_idle()

        assert isinstance(reconciler.last_error, AuthorizationError)

    @pytest.mark.asyncio
    async def test_periodic_loop_stops(self, reconciler, fake_remote, relay_credentials):
        stop = asyncio.Event()

        async def credentials():
            if fake_remote.fetch_calls >= 2:
                stop.set()
            return relay_credentials

        await asyncio.wait_for(
            reconciler.run_periodic(credentials, stop, interval_seconds=0.01),
            timeout=5,
        )
        assert fake_remote.fetch_calls >= 2


class TestTombstones:
    """Deletes reach the remote copy exactly as tombstones."""

    @pytest.mark.asyncio
    async def test_immediate_delete_clears_tombstone(self, reconciler, store, fake_remote, relay_credentials):
        expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))
        await reconciler.sync(relay_credentials)

        tombstone = await store.delete_entity(EntityKind.EXPENSES, expense.id)
        confirmed = await reconciler.push_tombstone(relay_credentials, tombstone)

        assert confirmed is True
        assert fake_remote.deleted == [(EntityKind.EXPENSES, expense.id)]
        assert (await store.load()).pending_deletions == []

    @pytest.mark.asyncio
    async def test_failed_delete_is_retried_by_next_cycle(
        self, reconciler, store, fake_remote, relay_credentials
    ):
        expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))
        await reconciler.sync(relay_credentials)
        tombstone = await store.delete_entity(EntityKind.EXPENSES, expense.id)

        fake_remote.delete_error = TransportError("offline")
        assert await reconciler.push_tombstone(relay_credentials, tombstone) is False
        assert len((await store.load()).pending_deletions) == 1

        # The remote still has the row; the pull must not resurrect it
        fake_remote.delete_error = None
        report = await reconciler.sync(relay_credentials)

        state = await store.load()
        assert state.expenses == []
        assert state.pending_deletions == []
        assert report.tombstones_confirmed == 1
        assert fake_remote.snapshot.expenses == []

    @pytest.mark.asyncio
    async def test_tombstone_failure_in_cycle_is_partial(
        self, reconciler, store, fake_remote, relay_credentials
    ):
        expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))
        await reconciler.sync(relay_credentials)
        await store.delete_entity(EntityKind.EXPENSES, expense.id)
        fake_remote.delete_error = TransportError("offline")

        report = await reconciler.sync(relay_credentials)

        assert report.outcome == SyncOutcome.PARTIAL
        assert report.tombstones_failed == 1
        state = await store.load()
        assert state.expenses == []
        assert len(state.pending_deletions) == 1

    @pytest.mark.asyncio
    async def test_delete_during_append_is_not_resurrected(self, store, relay_credentials):
        """A delete sent while the entry's append is still in flight stays pending."""
        expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))
        appending = asyncio.Event()
        release = asyncio.Event()

        class GatedAppendRemote(FakeRemoteAdapter):
            async def append_entities(self, kind, credentials, rows):
                appending.set()
                await release.wait()
                return await super().append_entities(kind, credentials, rows)

        remote = GatedAppendRemote()
        reconciler = SyncReconciler(store, {SyncMode.RELAY: remote})

        cycle = asyncio.create_task(reconciler.sync(relay_credentials))
        await appending.wait()

        tombstone = await store.delete_entity(EntityKind.EXPENSES, expense.id)
        assert await reconciler.push_tombstone(relay_credentials, tombstone) is False
        assert (await store.load()).pending_deletions == [tombstone]

        release.set()
        report = await cycle
        assert report.tombstones_confirmed == 1

        await reconciler.sync(relay_credentials)

        state = await store.load()
        assert state.expenses == []
        assert state.pending_deletions == []
        assert remote.snapshot.expenses == []

    @pytest.mark.asyncio
    async def test_delete_after_append_is_confirmed_immediately(self, reconciler, store, relay_credentials):
        expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))
        await reconciler.sync(relay_credentials)

        tombstone = await store.delete_entity(EntityKind.EXPENSES, expense.id)

        assert await reconciler.push_tombstone(relay_credentials, tombstone) is True
        assert reconciler._in_flight == set()

    @pytest.mark.asyncio
    async def test_request_tombstone_without_remote(self, store):
        reconciler = SyncReconciler(store)
        expense = await store.add_entity(make_expense(500, date(2024, 1, 1)))
        tombstone = await store.delete_entity(EntityKind.EXPENSES, expense.id)

        assert reconciler.request_tombstone(None, tombstone) is None


class TestClose:

    @pytest.mark.asyncio
    async def test_close_closes_adapters(self, reconciler, fake_remote):
        await reconciler.close()
        assert fake_remote.closed is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
