"""
Data Models Package

This package contains all Pydantic models used in FinFree.
All data flowing through the system must conform to these schemas.
"""

from finfree.models.ledger import (
    CASH_ACCOUNT_ID,
    DEFAULT_BANK_BUCKET,
    DEFAULT_CATEGORIES,
    EPOCH,
    AccountAnchor,
    AppConfig,
    BankAccount,
    CategoryBudget,
    CategoryDefinition,
    Expense,
    ExpenseSource,
    ExpenseType,
    Income,
    IncomeCategory,
    MonthlyBudget,
    StartingBalance,
    Theme,
    Transaction,
    Transfer,
    TransferDirection,
    month_key,
)
from finfree.models.sync import (
    Entity,
    EntityKind,
    LedgerState,
    RemoteConfig,
    RemoteCredentials,
    RemoteSnapshot,
    SyncMode,
    SyncOutcome,
    SyncReport,
    SyncState,
    SyncTrigger,
    Tombstone,
    kind_of,
)
from finfree.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finfree.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Ledger models
    "CASH_ACCOUNT_ID",
    "DEFAULT_BANK_BUCKET",
    "DEFAULT_CATEGORIES",
    "EPOCH",
    "AccountAnchor",
    "AppConfig",
    "BankAccount",
    "CategoryBudget",
    "CategoryDefinition",
    "Expense",
    "ExpenseSource",
    "ExpenseType",
    "Income",
    "IncomeCategory",
    "MonthlyBudget",
    "StartingBalance",
    "Theme",
    "Transaction",
    "Transfer",
    "TransferDirection",
    "month_key",
    # Sync models
    "Entity",
    "EntityKind",
    "LedgerState",
    "RemoteConfig",
    "RemoteCredentials",
    "RemoteSnapshot",
    "SyncMode",
    "SyncOutcome",
    "SyncReport",
    "SyncState",
    "SyncTrigger",
    "Tombstone",
    "kind_of",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
]
