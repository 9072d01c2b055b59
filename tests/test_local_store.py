"""Tests for the local ledger stores."""

import json
from datetime import date

import pytest

from conftest import make_expense
from finfree.models.ledger import AppConfig, BankAccount, Theme
from finfree.models.sync import EntityKind, LedgerState
from finfree.services.storage import (
    DuplicateError,
    InMemoryLedgerStore,
    JsonFileLedgerStore,
    NotFoundError,
    StorageError,
)


class TestInMemoryLedgerStore:
    """Tests for InMemoryLedgerStore."""

    @pytest.mark.asyncio
    async def test_add_prepends_transactions(self, store):
        older = await store.add_entity(make_expense(1, date(2024, 1, 1)))
        newer = await store.add_entity(make_expense(2, date(2024, 1, 2)))

        state = await store.load()
        assert [e.id for e in state.expenses] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_add_marks_unsynced(self, store):
        added = await store.add_entity(make_expense(1, date(2024, 1, 1), synced=True))
        assert added.synced is False

    @pytest.mark.asyncio
    async def test_add_duplicate_id(self, store):
        expense = make_expense(1, date(2024, 1, 1))
        await store.add_entity(expense)
        with pytest.raises(DuplicateError):
            await store.add_entity(expense)

    @pytest.mark.asyncio
    async def test_load_returns_copy(self, store):
        await store.add_entity(make_expense(1, date(2024, 1, 1)))
        state = await store.load()
        state.expenses.clear()
        assert len((await store.load()).expenses) == 1

    @pytest.mark.asyncio
    async def test_update_marks_unsynced(self, store):
        expense = await store.add_entity(make_expense(1, date(2024, 1, 1)))
        await store.mark_synced(EntityKind.EXPENSES, [expense])

        updated = await store.update_entity(expense.model_copy(update={"amount": 5}))

        assert updated.amount == 5
        assert updated.synced is False

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.update_entity(make_expense(1, date(2024, 1, 1)))

    @pytest.mark.asyncio
    async def test_new_default_account_takes_over(self, store):
        first = await store.add_entity(BankAccount(name="One"))
        assert first.is_default is True

        second = await store.add_entity(BankAccount(name="Two", is_default=True))

        state = await store.load()
        assert [a.is_default for a in state.accounts] == [False, True]
        assert second.is_default is True

    @pytest.mark.asyncio
    async def test_delete_records_tombstone(self, store):
        expense = await store.add_entity(make_expense(1, date(2024, 1, 1)))

        tombstone = await store.delete_entity(EntityKind.EXPENSES, expense.id)

        state = await store.load()
        assert state.expenses == []
        assert state.pending_deletions == [tombstone]

    @pytest.mark.asyncio
    async def test_delete_default_account_promotes_next(self, store):
        first = await store.add_entity(BankAccount(name="One"))
        await store.add_entity(BankAccount(name="Two"))

        await store.delete_entity(EntityKind.ACCOUNTS, first.id)

        state = await store.load()
        assert state.accounts[0].is_default is True

    @pytest.mark.asyncio
    async def test_delete_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.delete_entity(EntityKind.INCOME, "nope")

    @pytest.mark.asyncio
    async def test_mark_synced_requires_same_content(self, store):
        expense = await store.add_entity(make_expense(1, date(2024, 1, 1)))
        stale = expense.model_copy(update={"amount": 99})

        assert await store.mark_synced(EntityKind.EXPENSES, [stale]) == 0
        assert await store.mark_synced(EntityKind.EXPENSES, [expense]) == 1
        assert (await store.load()).expenses[0].synced is True

    @pytest.mark.asyncio
    async def test_clear_tombstones(self, store):
        expense = await store.add_entity(make_expense(1, date(2024, 1, 1)))
        tombstone = await store.delete_entity(EntityKind.EXPENSES, expense.id)

        await store.clear_tombstones([tombstone])

        assert (await store.load()).pending_deletions == []

    @pytest.mark.asyncio
    async def test_apply(self, store):
        await store.apply(lambda state: state.model_copy(update={"config": AppConfig(theme=Theme.LIGHT)}))
        assert (await store.load()).config.theme == Theme.LIGHT


class TestJsonFileLedgerStore:
    """Tests for the JSON file replica."""

    @pytest.mark.asyncio
    async def test_round_trip_through_file(self, tmp_path):
        path = tmp_path / "ledger.json"
        store = JsonFileLedgerStore(path)
        expense = await store.add_entity(make_expense(1_500, date(2024, 1, 5), "Card"))
        await store.save_config(AppConfig(sheets_secret="local-only"))

        reopened = JsonFileLedgerStore(path)
        state = await reopened.load()

        assert state.expenses[0].id == expense.id
        assert state.expenses[0].payment_method == "Card"
        assert state.config.sheets_secret == "local-only"

    @pytest.mark.asyncio
    async def test_file_uses_wire_names(self, tmp_path):
        path = tmp_path / "ledger.json"
        store = JsonFileLedgerStore(path)
        await store.add_entity(make_expense(1, date(2024, 1, 1)))

        data = json.loads(path.read_text(encoding="utf-8"))
        assert "paymentMethod" in data["expenses"][0]
        assert "pendingDeletions" in data

    def test_missing_file_is_empty_ledger(self, tmp_path):
        store = JsonFileLedgerStore(tmp_path / "none.json")
        assert store.path.name == "none.json"
        assert not store.path.exists()

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError):
            JsonFileLedgerStore(path)

    @pytest.mark.asyncio
    async def test_preloaded_state(self):
        state = LedgerState(expenses=[make_expense(1, date(2024, 1, 1))])
        store = InMemoryLedgerStore(state)
        assert len((await store.load()).expenses) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
