"""
Future-Shortfall Detector

Replays scheduled (future-dated) transactions against today's balances and
flags every expense, and every transfer source leg, that would take its
account below zero.

This is a point-in-time projection. Nothing here is persisted; recompute
whenever the ledger or `today` changes.
"""

from datetime import date
from typing import Iterable, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel

from finfree.calculations.accounts import account_names, resolve_account_ref, transfer_endpoints
from finfree.calculations.balance import AccountBook
from finfree.models.ledger import (
    BankAccount,
    Expense,
    Income,
    StartingBalance,
    Transfer,
)


class FutureBalanceWarning(BaseModel):
    transaction_id: str
    transaction_type: Literal["expense", "income", "transfer"]
    account_id: str
    account_name: str
    projected_balance: int
    shortfall: int
    date: date


class _Scheduled(NamedTuple):
    date: date
    time: Optional[str]
    kind: str
    item: Union[Expense, Income, Transfer]


def _replay_order(entry: _Scheduled) -> tuple:
    # Same day: timed entries first (by time), untimed ones after
    return (entry.date, entry.time is None, entry.time or "")


def calculate_future_balance_warnings(
    starting_balance: Optional[StartingBalance],
    income: Iterable[Income],
    expenses: Iterable[Expense],
    transfers: Iterable[Transfer] = (),
    accounts: Iterable[BankAccount] = (),
    today: Optional[date] = None,
) -> dict[str, FutureBalanceWarning]:
    """
    Project future-dated transactions and report overdrafts.

    Args:
        starting_balance, income, expenses, transfers, accounts: as for
            calculate_running_balance
        today: cutoff; entries dated after it are scheduled. Defaults to
            date.today()

    Returns:
        Warnings keyed by transaction id. Income never produces one.
    """
    today = today or date.today()
    income, expenses, transfers = list(income), list(expenses), list(transfers)
    accounts = list(accounts)
    names = account_names(accounts)

    book = AccountBook(starting_balance, accounts)
    scheduled: list[_Scheduled] = []

    for item in income:
        if item.date <= today:
            book.apply_income(item)
        else:
            scheduled.append(_Scheduled(item.date, item.time, "income", item))
    for item in expenses:
        if item.date <= today:
            book.apply_expense(item)
        else:
            scheduled.append(_Scheduled(item.date, item.time, "expense", item))
    for item in transfers:
        if item.date <= today:
            book.apply_transfer(item)
        else:
            scheduled.append(_Scheduled(item.date, item.time, "transfer", item))

    scheduled.sort(key=_replay_order)

    warnings: dict[str, FutureBalanceWarning] = {}
    # Scheduled entries post against today's totals whatever their anchor date
    for entry in scheduled:
        if entry.kind == "income":
            book.apply_income(entry.item, gated=False)
            continue

        if entry.kind == "expense":
            account_id = resolve_account_ref(entry.item.payment_method, accounts)
            balance = book.apply_expense(entry.item, gated=False)
        else:
            account_id, _ = transfer_endpoints(entry.item, accounts)
            balance, _ = book.apply_transfer(entry.item, gated=False)

        if balance is not None and balance < 0:
            warnings[entry.item.id] = FutureBalanceWarning(
                transaction_id=entry.item.id,
                transaction_type=entry.kind,
                account_id=account_id,
                account_name=names.get(account_id, account_id),
                projected_balance=balance,
                shortfall=abs(balance),
                date=entry.date,
            )

    return warnings
