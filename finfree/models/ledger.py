"""
Core Ledger Models for FinFree

These models define the strict schemas for everything stored in the ledger:
accounts, the three transaction kinds, starting balances, budgets, categories
and the app config record.

DESIGN DECISION: Money is always an int in the smallest currency unit.
No floats ever reach a comparison, so balances are exact.

DESIGN DECISION: Field names are snake_case in Python and camelCase on the
wire (persisted JSON, relay payloads), matching the historical layout of the
spreadsheet copy.
"""

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


CASH_ACCOUNT_ID = "cash"
DEFAULT_BANK_BUCKET = "bank_default"
EPOCH = date(1970, 1, 1)
MONTH_KEY_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# Account reference strings stored on expenses/income
CASH_PAYMENT_METHOD = "Cash"
CARD_PAYMENT_METHOD = "Card"
BANK_PAYMENT_METHOD = "Bank"


def new_entity_id() -> str:
    """Globally unique, replica-stable entity id."""
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def month_key(day: date) -> str:
    """YYYY-MM key used for budgets and monthly summaries."""
    return f"{day.year:04d}-{day.month:02d}"


class LedgerModel(BaseModel):
    """Base for all ledger models: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# ENUMS
# =============================================================================

class ExpenseType(str, Enum):
    """Budget bucket an expense counts against."""
    NEED = "NEED"
    WANT = "WANT"
    SAVE = "SAVE"
    DEBT = "DEBT"


class ExpenseSource(str, Enum):
    """How an expense was entered."""
    MANUAL = "manual"
    RECEIPT = "receipt"


class IncomeCategory(str, Enum):
    SALARY = "SALARY"
    FREELANCE = "FREELANCE"
    BONUS = "BONUS"
    REFUND = "REFUND"
    GIFT = "GIFT"
    OTHER = "OTHER"


class TransferDirection(str, Enum):
    """
    Legacy two-value transfer direction.

    Only cash <-> default bank transfers can be expressed this way.
    Newer transfers carry explicit account ids.
    """
    BANK_TO_CASH = "BANK_TO_CASH"
    CASH_TO_BANK = "CASH_TO_BANK"


class Theme(str, Enum):
    DARK = "dark"
    LIGHT = "light"


# =============================================================================
# ACCOUNTS
# =============================================================================

class SyncedModel(LedgerModel):
    """
    Base for entities replicated to the remote copy.

    `synced` is local-only bookkeeping and is never part of an entity's
    content.
    """

    synced: bool = False

    def content(self) -> dict[str, Any]:
        """Wire form without the local-only synced flag."""
        return self.model_dump(mode="json", by_alias=True, exclude={"synced"})

    def same_content(self, other: "SyncedModel") -> bool:
        return type(self) is type(other) and self.content() == other.content()


class BankAccount(SyncedModel):
    """
    A user-defined bank account.

    The cash account is a fixed singleton and is never stored as a
    BankAccount.
    """

    id: str = Field(default_factory=new_entity_id, min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    is_default: bool = False

    @field_validator('id')
    @classmethod
    def validate_not_cash(cls, v: str) -> str:
        if v == CASH_ACCOUNT_ID:
            raise ValueError("'cash' is reserved for the cash account")
        return v


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(SyncedModel):
    """
    Fields common to Expense, Income and Transfer.

    `timestamp` is the creation instant. It orders lists for display and is
    never consulted by merge logic.
    """

    id: str = Field(default_factory=new_entity_id, min_length=1)
    date: date
    time: Optional[str] = Field(
        default=None,
        pattern=r"^\d{2}:\d{2}(:\d{2})?$",
        description="Optional HH:MM time of day"
    )
    amount: int = Field(
        ...,
        gt=0,
        description="Amount in the smallest currency unit"
    )
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator('time', mode='before')
    @classmethod
    def blank_time_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class Expense(Transaction):
    """Money leaving an account."""

    category: str = Field(..., min_length=1, max_length=50)
    expense_type: ExpenseType = Field(default=ExpenseType.NEED, alias="type")
    store: str = Field(default="", max_length=200)
    notes: str = Field(default="", max_length=1000)
    source: ExpenseSource = ExpenseSource.MANUAL
    payment_method: str = Field(
        default=CASH_PAYMENT_METHOD,
        min_length=1,
        description="'Cash', 'Card', 'Bank' or a bank account id"
    )


class Income(Transaction):
    """Money arriving in an account."""

    category: IncomeCategory = IncomeCategory.OTHER
    payment_method: str = Field(
        default=BANK_PAYMENT_METHOD,
        min_length=1,
        description="'Cash', 'Bank' or a bank account id"
    )
    description: str = Field(default="", max_length=200)
    notes: str = Field(default="", max_length=1000)


class Transfer(Transaction):
    """
    Money moving between two accounts.

    Carries explicit account ids, a legacy direction, or both.
    Explicit ids take precedence when present.
    """

    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    direction: Optional[TransferDirection] = None
    description: str = Field(default="", max_length=200)
    notes: str = Field(default="", max_length=1000)

    @field_validator('from_account_id', 'to_account_id', 'direction', mode='before')
    @classmethod
    def blank_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def validate_endpoints(self) -> 'Transfer':
        has_ids = bool(self.from_account_id and self.to_account_id)
        if not has_ids and self.direction is None:
            raise ValueError(
                "Transfer needs both fromAccountId and toAccountId, or a direction"
            )
        if has_ids and self.from_account_id == self.to_account_id:
            raise ValueError("Transfer source and destination must differ")
        return self


# =============================================================================
# STARTING BALANCES
# =============================================================================

class AccountAnchor(LedgerModel):
    """Balance of one account as of a calendar date."""

    balance: int = 0
    as_of_date: Optional[date] = None

    @field_validator('as_of_date', mode='before')
    @classmethod
    def blank_date_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class StartingBalance(LedgerModel):
    """
    Balance anchors for every account.

    Two shapes are accepted in one record:
    - dated: `cash` and `account_balances`, each anchor with its own date
    - legacy: `accounts` (and `bank` for the old single bank) sharing
      one `as_of_date`

    A legacy record whose `cash` is a bare number is read as a cash anchor
    dated with the shared date. `resolve_anchor` walks the fallback chain.
    """

    cash: Optional[AccountAnchor] = None
    account_balances: dict[str, AccountAnchor] = Field(default_factory=dict)

    # Legacy single-date form
    accounts: dict[str, int] = Field(default_factory=dict)
    bank: Optional[int] = None
    as_of_date: Optional[date] = None

    last_updated: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def upgrade_legacy_cash(cls, data: Any) -> Any:
        if isinstance(data, dict):
            cash = data.get("cash")
            if isinstance(cash, (int, float)) and not isinstance(cash, bool):
                shared = data.get("asOfDate", data.get("as_of_date"))
                data = {**data, "cash": {"balance": int(cash), "asOfDate": shared}}
            if data.get("asOfDate") == "":
                data = {**data, "asOfDate": None}
        return data


# =============================================================================
# BUDGETS & CATEGORIES
# =============================================================================

class CategoryBudget(LedgerModel):
    amount: int = Field(default=0, ge=0)
    type: ExpenseType = ExpenseType.NEED


class MonthlyBudget(LedgerModel):
    """Budget for one month: target income plus per-category allocations."""

    salary: int = Field(default=0, ge=0, description="Target income for the month")
    categories: dict[str, CategoryBudget] = Field(default_factory=dict)

    @property
    def total_allocated(self) -> int:
        return sum(c.amount for c in self.categories.values())


class CategoryDefinition(LedgerModel):
    id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    icon: str = Field(default="ShoppingBag")
    default_type: ExpenseType = ExpenseType.NEED


DEFAULT_CATEGORIES: list[CategoryDefinition] = [
    CategoryDefinition(id=cid, name=name, icon=icon, default_type=etype)
    for cid, name, icon, etype in [
        # Housing & Utilities
        ("RENT", "Rent", "Home", ExpenseType.NEED),
        ("ELECTRIC", "Electric", "Zap", ExpenseType.NEED),
        ("GAS", "Gas", "Flame", ExpenseType.NEED),
        ("WATER", "Water", "Droplets", ExpenseType.NEED),
        ("INTERNET", "Internet", "Wifi", ExpenseType.NEED),
        ("PHONE", "Phone", "Phone", ExpenseType.NEED),
        # Essential Living
        ("FOOD", "Food", "Utensils", ExpenseType.NEED),
        ("TRANSPORT", "Transport", "Bus", ExpenseType.NEED),
        ("CAR", "Car", "Car", ExpenseType.NEED),
        ("TOILETRIES", "Toiletries", "ShoppingBag", ExpenseType.NEED),
        ("MEDICAL", "Medical", "Stethoscope", ExpenseType.NEED),
        ("INSURANCE", "Insurance", "Shield", ExpenseType.NEED),
        ("HOUSEHOLD", "Household", "Wrench", ExpenseType.NEED),
        # Lifestyle
        ("EAT OUT", "Eat Out", "Coffee", ExpenseType.WANT),
        ("SUBSCRIPTIONS", "Subscriptions", "Repeat", ExpenseType.WANT),
        ("CLOTHING", "Clothing", "Shirt", ExpenseType.WANT),
        ("GIFTS", "Gifts", "Gift", ExpenseType.WANT),
        ("WANT", "Want", "Smile", ExpenseType.WANT),
        # Financial
        ("SAVE", "Save", "PiggyBank", ExpenseType.SAVE),
        ("DEBT", "Debt", "CreditCard", ExpenseType.DEBT),
        ("FEES", "Fees", "Briefcase", ExpenseType.NEED),
    ]
]

FEES_CATEGORY = "FEES"


# =============================================================================
# CONFIG
# =============================================================================

# Never written to nor read back from the remote copy
SECRET_FIELDS = ("gemini_key", "sheets_url", "sheets_secret", "spreadsheet_id")


class AppConfig(LedgerModel):
    """
    The single config record of the local ledger.

    CRITICAL: the secret fields stay on this device. Merge always keeps the
    local values and transports never send them.
    """

    theme: Theme = Theme.DARK
    budgets: dict[str, MonthlyBudget] = Field(default_factory=dict)
    balances: StartingBalance = Field(default_factory=StartingBalance)
    categories: list[CategoryDefinition] = Field(
        default_factory=lambda: [category.model_copy() for category in DEFAULT_CATEGORIES]
    )

    # Secrets
    gemini_key: str = ""
    sheets_url: str = ""
    sheets_secret: str = ""
    spreadsheet_id: str = ""

    @field_validator('budgets')
    @classmethod
    def validate_month_keys(cls, v: dict[str, MonthlyBudget]) -> dict[str, MonthlyBudget]:
        for key in v:
            if not MONTH_KEY_PATTERN.match(key):
                raise ValueError(f"Budget key must be YYYY-MM, got {key!r}")
        return v

    def secrets(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in SECRET_FIELDS}

    def shareable(self) -> dict[str, Any]:
        """Wire form safe to send to the remote copy."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude=set(SECRET_FIELDS) | {"budgets", "categories"},
        )
