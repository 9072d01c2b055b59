"""Balance, pacing and shortfall calculations over the ledger."""

from finfree.calculations.accounts import (
    account_names,
    default_bank_account_id,
    legacy_direction,
    normalize_default_account,
    resolve_account_ref,
    transfer_endpoints,
)
from finfree.calculations.balance import (
    AccountBook,
    Anchor,
    RunningBalance,
    calculate_running_balance,
    resolve_anchor,
)
from finfree.calculations.pacing import (
    DailyAllowance,
    calculate_daily_allowance,
    days_remaining_in_month,
    get_current_month_key,
    get_monthly_expenses,
    get_monthly_income,
    get_net_cash_flow,
)
from finfree.calculations.shortfall import (
    FutureBalanceWarning,
    calculate_future_balance_warnings,
)

__all__ = [
    "AccountBook",
    "Anchor",
    "DailyAllowance",
    "FutureBalanceWarning",
    "RunningBalance",
    "account_names",
    "calculate_daily_allowance",
    "calculate_future_balance_warnings",
    "calculate_running_balance",
    "days_remaining_in_month",
    "default_bank_account_id",
    "get_current_month_key",
    "get_monthly_expenses",
    "get_monthly_income",
    "get_net_cash_flow",
    "legacy_direction",
    "normalize_default_account",
    "resolve_account_ref",
    "resolve_anchor",
    "transfer_endpoints",
]
