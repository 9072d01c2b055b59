"""Tests for the merge rules."""

import pytest
from datetime import date, datetime, timezone

from conftest import make_expense
from finfree.models.ledger import (
    AppConfig,
    BankAccount,
    CategoryBudget,
    CategoryDefinition,
    MonthlyBudget,
    StartingBalance,
    Theme,
)
from finfree.models.sync import (
    EntityKind,
    LedgerState,
    RemoteConfig,
    RemoteSnapshot,
    Tombstone,
)
from finfree.sync import merge_collection, merge_config, merge_snapshot


def synced(entity):
    return entity.model_copy(update={"synced": True})


class TestMergeCollection:
    """Local-wins-when-unsynced, remote-wins-otherwise."""

    def test_unsynced_local_survives(self):
        """An unpushed local entry absent remotely is kept, still unsynced."""
        e1 = make_expense(500, date(2024, 1, 1))

        merged = merge_collection([e1], [])

        assert merged.items == [e1]
        assert merged.items[0].synced is False
        assert merged.dropped == 0

    def test_synced_local_absent_remotely_is_dropped(self):
        e2 = synced(make_expense(500, date(2024, 1, 1)))

        merged = merge_collection([e2], [])

        assert merged.items == []
        assert merged.dropped == 1

    def test_unsynced_local_overrides_remote(self):
        remote = synced(make_expense(500, date(2024, 1, 1)))
        edited = remote.model_copy(update={"amount": 650, "synced": False})

        merged = merge_collection([edited], [remote])

        assert len(merged.items) == 1
        assert merged.items[0].amount == 650
        assert merged.items[0].synced is False

    def test_remote_replaces_synced_local(self):
        local = synced(make_expense(500, date(2024, 1, 1)))
        remote = local.model_copy(update={"amount": 700})

        merged = merge_collection([local], [remote])

        assert merged.items[0].amount == 700
        assert merged.items[0].synced is True

    def test_remote_entities_are_marked_synced(self):
        remote = make_expense(500, date(2024, 1, 1))
        merged = merge_collection([], [remote])
        assert merged.items[0].synced is True

    def test_pending_tombstone_hides_remote_entity(self):
        remote = synced(make_expense(500, date(2024, 1, 1)))
        merged = merge_collection([], [remote], {remote.id})
        assert merged.items == []


class TestMergeConfig:

    def test_secrets_never_come_from_remote(self):
        local = AppConfig(sheets_url="https://relay", sheets_secret="mine", gemini_key="key")
        remote = RemoteSnapshot(config=RemoteConfig(theme=Theme.LIGHT))

        merged = merge_config(local, remote)

        assert merged.theme == Theme.LIGHT
        assert merged.secrets() == local.secrets()

    def test_missing_remote_sections_keep_local(self):
        local = AppConfig(
            theme=Theme.LIGHT,
            balances=StartingBalance(bank=100),
            budgets={"2024-01": MonthlyBudget(salary=1)},
        )
        merged = merge_config(local, RemoteSnapshot())
        assert merged == local

    def test_remote_budgets_replace_local(self):
        """The remote budgets record wins as a whole when present."""
        local = AppConfig(budgets={
            "2024-01": MonthlyBudget(salary=1),
            "2024-02": MonthlyBudget(salary=2),
        })
        remote = RemoteSnapshot(budgets={
            "2024-02": MonthlyBudget(salary=20, categories={"FOOD": CategoryBudget(amount=5)}),
            "2024-03": MonthlyBudget(salary=30),
        })

        merged = merge_config(local, remote)

        assert sorted(merged.budgets) == ["2024-02", "2024-03"]
        assert merged.budgets["2024-02"].salary == 20
        assert merged.budgets["2024-02"].categories["FOOD"].amount == 5
        assert merged.budgets["2024-03"].salary == 30

    def test_remote_categories_replace_local(self):
        remote = RemoteSnapshot(categories=[CategoryDefinition(id="PETS", name="Pets")])
        merged = merge_config(AppConfig(), remote)
        assert [c.id for c in merged.categories] == ["PETS"]


class TestMergeSnapshot:
    """Whole-ledger merge."""

    @pytest.fixture
    def remote(self, checking) -> RemoteSnapshot:
        return RemoteSnapshot(
            expenses=[
                synced(make_expense(100, date(2024, 1, 1), timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc))),
                synced(make_expense(200, date(2024, 1, 2), timestamp=datetime(2024, 1, 2, tzinfo=timezone.utc))),
            ],
            accounts=[synced(checking)],
            config=RemoteConfig(theme=Theme.LIGHT),
        )

    def test_merge_is_idempotent(self, remote):
        local = LedgerState(expenses=[make_expense(300, date(2024, 1, 3))])

        once = merge_snapshot(local, remote).state
        twice = merge_snapshot(once, remote).state

        assert twice == once

    def test_transactions_sorted_newest_first(self, remote):
        state = merge_snapshot(LedgerState(), remote).state
        assert [e.amount for e in state.expenses] == [200, 100]

    def test_counts_and_dropped(self, remote):
        gone = synced(make_expense(999, date(2023, 12, 1)))
        result = merge_snapshot(LedgerState(expenses=[gone]), remote)

        assert result.counts["expenses"] == 2
        assert result.counts["accounts"] == 1
        assert result.dropped == {"expenses": 1}

    def test_pending_tombstones_carried_over(self, remote):
        deleted_id = remote.expenses[0].id
        tombstone = Tombstone(kind=EntityKind.EXPENSES, id=deleted_id)
        local = LedgerState(pending_deletions=[tombstone])

        state = merge_snapshot(local, remote).state

        assert deleted_id not in {e.id for e in state.expenses}
        assert state.pending_deletions == [tombstone]

    def test_accounts_normalized_to_one_default(self):
        remote = RemoteSnapshot(accounts=[
            BankAccount(id="a1", name="One", is_default=True),
            BankAccount(id="a2", name="Two", is_default=True),
        ])

        state = merge_snapshot(LedgerState(), remote).state

        assert [a.is_default for a in state.accounts] == [True, False]
        assert state.accounts[1].synced is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
