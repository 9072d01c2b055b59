"""
Balance Calculator

Folds starting balances and the full, unordered transaction history into
per-account running balances.

Each account keeps its own anchor (balance + as-of date). A transaction only
touches an account if it is dated on or after that account's anchor date.
Transfers are gated per leg: the source leg against the source's anchor, the
destination leg against the destination's anchor. A transfer dated between
the two anchors therefore moves money out of one account without it arriving
in the other; each account's ledger is self-consistent from its own anchor
forward.

Negative balances are overdrafts and are reported as-is.
"""

from datetime import date, datetime
from typing import Iterable, NamedTuple, Optional

from pydantic import BaseModel, Field

from finfree.calculations.accounts import (
    ledger_account_ids,
    resolve_account_ref,
    transfer_endpoints,
)
from finfree.models.ledger import (
    CASH_ACCOUNT_ID,
    DEFAULT_BANK_BUCKET,
    EPOCH,
    BankAccount,
    Expense,
    Income,
    StartingBalance,
    Transfer,
    utc_now,
)


class Anchor(NamedTuple):
    balance: int
    as_of_date: date


def resolve_anchor(starting_balance: Optional[StartingBalance], account_id: str) -> Anchor:
    """
    Starting balance and date for one account.

    Fallback chain:
    1. per-account dated anchor (`cash` / `account_balances`)
    2. legacy shared-date anchor (`accounts`, or `bank` for bank_default)
    3. zero as of the epoch
    """
    if starting_balance is None:
        return Anchor(0, EPOCH)

    if account_id == CASH_ACCOUNT_ID:
        if starting_balance.cash is not None:
            return Anchor(
                starting_balance.cash.balance,
                starting_balance.cash.as_of_date or EPOCH,
            )
        return Anchor(0, EPOCH)

    dated = starting_balance.account_balances.get(account_id)
    if dated is not None:
        return Anchor(dated.balance, dated.as_of_date or EPOCH)

    shared_date = starting_balance.as_of_date or EPOCH
    if account_id in starting_balance.accounts:
        return Anchor(starting_balance.accounts[account_id], shared_date)
    if account_id == DEFAULT_BANK_BUCKET and starting_balance.bank is not None:
        return Anchor(starting_balance.bank, shared_date)

    return Anchor(0, EPOCH)


class RunningBalance(BaseModel):
    """Balances per account at the time of calculation."""

    cash: int
    accounts: dict[str, int] = Field(default_factory=dict)
    total: int
    calculated_at: datetime = Field(default_factory=utc_now)

    @property
    def bank(self) -> int:
        """Sum of every bank bucket (kept for older single-bank views)."""
        return sum(self.accounts.values())

    def balance_of(self, account_id: str) -> int:
        if account_id == CASH_ACCOUNT_ID:
            return self.cash
        return self.accounts.get(account_id, 0)


class AccountBook:
    """
    Mutable per-account totals with anchor gating.

    Every account id it is asked to post to must come from the resolver in
    `finfree.calculations.accounts`, which only returns ids the book holds.
    """

    def __init__(
        self,
        starting_balance: Optional[StartingBalance],
        accounts: Iterable[BankAccount] = (),
    ):
        self.accounts = list(accounts)
        self.balances: dict[str, int] = {}
        self.anchor_dates: dict[str, date] = {}

        for account_id in ledger_account_ids(self.accounts):
            anchor = resolve_anchor(starting_balance, account_id)
            self.balances[account_id] = anchor.balance
            self.anchor_dates[account_id] = anchor.as_of_date

    def post(self, account_id: str, delta: int, on: date, gated: bool = True) -> Optional[int]:
        """
        Apply `delta` to an account if `on` is not before its anchor date.

        With `gated=False` the anchor date is ignored (projection replay).
        Returns the new balance, or None when the leg was gated out.
        """
        if gated and on < self.anchor_dates[account_id]:
            return None
        self.balances[account_id] += delta
        return self.balances[account_id]

    def apply_income(self, income: Income, gated: bool = True) -> Optional[int]:
        account_id = resolve_account_ref(income.payment_method, self.accounts)
        return self.post(account_id, income.amount, income.date, gated)

    def apply_expense(self, expense: Expense, gated: bool = True) -> Optional[int]:
        account_id = resolve_account_ref(expense.payment_method, self.accounts)
        return self.post(account_id, -expense.amount, expense.date, gated)

    def apply_transfer(
        self,
        transfer: Transfer,
        gated: bool = True,
    ) -> tuple[Optional[int], Optional[int]]:
        """Post both legs independently; returns (source, destination) balances."""
        from_id, to_id = transfer_endpoints(transfer, self.accounts)
        source = self.post(from_id, -transfer.amount, transfer.date, gated)
        destination = self.post(to_id, transfer.amount, transfer.date, gated)
        return source, destination

    def snapshot(self) -> RunningBalance:
        cash = self.balances[CASH_ACCOUNT_ID]
        bank = {k: v for k, v in self.balances.items() if k != CASH_ACCOUNT_ID}
        return RunningBalance(
            cash=cash,
            accounts=bank,
            total=cash + sum(bank.values()),
        )


def calculate_running_balance(
    starting_balance: Optional[StartingBalance],
    income: Iterable[Income],
    expenses: Iterable[Expense],
    transfers: Iterable[Transfer] = (),
    accounts: Iterable[BankAccount] = (),
) -> RunningBalance:
    """
    Calculate running balances for cash and every bank account.

    Args:
        starting_balance: anchors (may be None or partial)
        income, expenses, transfers: full histories, any order
        accounts: known bank accounts; with none, a synthetic default
            bank bucket collects all bank activity

    Returns:
        RunningBalance with cash, per-account balances and the total
    """
    book = AccountBook(starting_balance, accounts)

    for item in income:
        book.apply_income(item)
    for item in expenses:
        book.apply_expense(item)
    for item in transfers:
        book.apply_transfer(item)

    return book.snapshot()
