"""
Shared test fixtures for FinFree

No real remote is ever contacted: the reconciler runs against
FakeRemoteAdapter, the transports against mocked gspread / httpx.
"""

from contextlib import ExitStack
from datetime import date
from typing import Optional
from unittest.mock import patch

import pytest
from tenacity import wait_none

from finfree.audit import AuditLogger
from finfree.models.ledger import (
    AccountAnchor,
    BankAccount,
    Expense,
    Income,
    StartingBalance,
)
from finfree.models.sync import (
    EntityKind,
    RemoteConfig,
    RemoteCredentials,
    RemoteSnapshot,
    SyncMode,
)
from finfree.services.storage import (
    GoogleSheetsRemoteAdapter,
    InMemoryLedgerStore,
    RelayRemoteAdapter,
    RemoteAdapterInterface,
)


RETRYING_METHODS = [
    GoogleSheetsRemoteAdapter.fetch_snapshot,
    GoogleSheetsRemoteAdapter.append_entities,
    GoogleSheetsRemoteAdapter.mark_deleted,
    GoogleSheetsRemoteAdapter.save_config,
    GoogleSheetsRemoteAdapter.save_budgets,
    GoogleSheetsRemoteAdapter.save_categories,
    RelayRemoteAdapter.fetch_snapshot,
    RelayRemoteAdapter.append_entities,
    RelayRemoteAdapter.mark_deleted,
    RelayRemoteAdapter.save_config,
    RelayRemoteAdapter.save_budgets,
    RelayRemoteAdapter.save_categories,
]


@pytest.fixture(autouse=True)
def no_retry_wait():
    """Retries still happen, without the backoff sleeps."""
    with ExitStack() as stack:
        for method in RETRYING_METHODS:
            stack.enter_context(patch.object(method.retry, "wait", wait_none()))
        yield


class FakeRemoteAdapter(RemoteAdapterInterface):
    """
    Remote copy kept in a RemoteSnapshot.

    Appends upsert by id, deletes remove the entity. Failures are injected
    by setting `fetch_error`, `append_errors[kind]` or `delete_error`.
    """

    def __init__(self, snapshot: Optional[RemoteSnapshot] = None):
        self.snapshot = snapshot or RemoteSnapshot()
        self.fetch_error: Optional[Exception] = None
        self.append_errors: dict[EntityKind, Exception] = {}
        self.delete_error: Optional[Exception] = None
        self.unacknowledged: set[str] = set()

        self.fetch_calls = 0
        self.appended: list[tuple[EntityKind, list[str]]] = []
        self.deleted: list[tuple[EntityKind, str]] = []
        self.saved_config: list[RemoteConfig] = []
        self.saved_budgets: list[dict] = []
        self.saved_categories: list[list] = []
        self.closed = False

    async def fetch_snapshot(self, credentials):
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.snapshot.model_copy(deep=True)

    async def append_entities(self, kind, credentials, rows):
        if kind in self.append_errors:
            raise self.append_errors[kind]
        self.appended.append((kind, [e.id for e in rows]))

        stored = {e.id: e for e in self.snapshot.collection(kind)}
        acknowledged = []
        for entity in rows:
            if entity.id in self.unacknowledged:
                continue
            stored[entity.id] = entity.model_copy(update={"synced": True})
            acknowledged.append(entity.id)
        self.snapshot = self.snapshot.model_copy(update={kind.value: list(stored.values())})
        return acknowledged

    async def mark_deleted(self, kind, credentials, entity_id):
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append((kind, entity_id))
        items = self.snapshot.collection(kind)
        remaining = [e for e in items if e.id != entity_id]
        self.snapshot = self.snapshot.model_copy(update={kind.value: remaining})
        return len(remaining) != len(items)

    async def save_config(self, credentials, config):
        self.saved_config.append(config)

    async def save_budgets(self, credentials, budgets):
        self.saved_budgets.append(budgets)

    async def save_categories(self, credentials, categories):
        self.saved_categories.append(categories)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_remote() -> FakeRemoteAdapter:
    return FakeRemoteAdapter()


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def audit_logger() -> AuditLogger:
    logger = AuditLogger()
    logger.keep_history()
    return logger


@pytest.fixture
def relay_credentials() -> RemoteCredentials:
    return RemoteCredentials(
        mode=SyncMode.RELAY,
        relay_url="https://relay.example.com/exec",
        relay_secret="s3cret",
    )


@pytest.fixture
def direct_credentials() -> RemoteCredentials:
    return RemoteCredentials(
        mode=SyncMode.DIRECT,
        access_token="ya29.token",
        spreadsheet_id="sheet-123",
    )


@pytest.fixture
def checking() -> BankAccount:
    return BankAccount(id="acc-checking", name="Checking", is_default=True)


@pytest.fixture
def savings() -> BankAccount:
    return BankAccount(id="acc-savings", name="Savings")


@pytest.fixture
def cash_anchor_jan() -> StartingBalance:
    return StartingBalance(cash=AccountAnchor(balance=10_000, as_of_date=date(2024, 1, 1)))


def make_expense(amount: int, day: date, payment_method: str = "Cash", **kwargs) -> Expense:
    return Expense(
        date=day,
        amount=amount,
        category=kwargs.pop("category", "FOOD"),
        payment_method=payment_method,
        **kwargs,
    )


def make_income(amount: int, day: date, payment_method: str = "Cash", **kwargs) -> Income:
    return Income(date=day, amount=amount, payment_method=payment_method, **kwargs)
