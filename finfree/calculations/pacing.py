"""
Budget Pacing

Turns a month's budget and the month's spending into a daily allowance,
overall and per category, plus the monthly summaries shown next to it.
"""

import calendar
from datetime import date
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from finfree.models.ledger import Expense, Income, MonthlyBudget, month_key


class DailyAllowance(BaseModel):
    overall: float = 0.0
    by_category: dict[str, float] = Field(default_factory=dict)
    days_remaining: int = 0
    budget_remaining: int = 0


def _parse_month_key(key: str) -> tuple[int, int]:
    year, month = key.split("-")
    return int(year), int(month)


def days_remaining_in_month(key: str, today: date) -> int:
    """
    Days left to spend in the month, today included.

    Current month: days from today to month end. Future month: all of it.
    Past month: 0.
    """
    year, month = _parse_month_key(key)
    days_in_month = calendar.monthrange(year, month)[1]

    if (today.year, today.month) == (year, month):
        return days_in_month - today.day + 1
    if (year, month) > (today.year, today.month):
        return days_in_month
    return 0


def _in_month(item_date: date, key: str) -> bool:
    return month_key(item_date) == key


def calculate_daily_allowance(
    budget: Optional[MonthlyBudget],
    expenses: Iterable[Expense],
    key: str,
    today: Optional[date] = None,
) -> DailyAllowance:
    """
    Calculate how much can be spent per remaining day of the month.

    Args:
        budget: the month's budget (None gives an all-zero allowance)
        expenses: expense history (other months are ignored)
        key: target month, YYYY-MM
        today: reference day, defaults to date.today()
    """
    if budget is None:
        return DailyAllowance()

    today = today or date.today()
    days_remaining = days_remaining_in_month(key, today)
    monthly = [e for e in expenses if _in_month(e.date, key)]

    total_spent = sum(e.amount for e in monthly)
    budget_remaining = budget.total_allocated - total_spent

    def per_day(remaining: int) -> float:
        return remaining / days_remaining if days_remaining > 0 else 0.0

    by_category = {}
    for category, allocation in budget.categories.items():
        spent = sum(e.amount for e in monthly if e.category == category)
        by_category[category] = per_day(allocation.amount - spent)

    return DailyAllowance(
        overall=per_day(budget_remaining),
        by_category=by_category,
        days_remaining=days_remaining,
        budget_remaining=budget_remaining,
    )


def get_monthly_income(income: Iterable[Income], key: str) -> int:
    return sum(i.amount for i in income if _in_month(i.date, key))


def get_monthly_expenses(expenses: Iterable[Expense], key: str) -> int:
    return sum(e.amount for e in expenses if _in_month(e.date, key))


def get_net_cash_flow(income: Iterable[Income], expenses: Iterable[Expense], key: str) -> int:
    """Income minus expenses for the month."""
    return get_monthly_income(income, key) - get_monthly_expenses(expenses, key)


def get_current_month_key(today: Optional[date] = None) -> str:
    return month_key(today or date.today())
