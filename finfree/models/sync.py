"""
Sync Models for FinFree

The local replica (LedgerState), the remote snapshot, the credentials that
are threaded into every remote call, and the report of one reconciliation
cycle.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, SecretStr, model_validator

from finfree.models.ledger import (
    AppConfig,
    BankAccount,
    CategoryDefinition,
    Expense,
    Income,
    LedgerModel,
    MonthlyBudget,
    StartingBalance,
    Theme,
    Transfer,
    utc_now,
)


Entity = Union[Expense, Income, Transfer, BankAccount]


class EntityKind(str, Enum):
    """Identity-keyed, append-only collections of the ledger."""
    EXPENSES = "expenses"
    INCOME = "income"
    TRANSFERS = "transfers"
    ACCOUNTS = "accounts"

    @property
    def model(self) -> type:
        return ENTITY_MODELS[self]


ENTITY_MODELS: dict[EntityKind, type] = {
    EntityKind.EXPENSES: Expense,
    EntityKind.INCOME: Income,
    EntityKind.TRANSFERS: Transfer,
    EntityKind.ACCOUNTS: BankAccount,
}


def kind_of(entity: Entity) -> EntityKind:
    for kind, model in ENTITY_MODELS.items():
        if type(entity) is model:
            return kind
    raise TypeError(f"Not a ledger entity: {type(entity).__name__}")


class Tombstone(LedgerModel):
    """A local delete the remote copy has not confirmed yet."""

    kind: EntityKind
    id: str
    requested_at: datetime = Field(default_factory=utc_now)


class LedgerState(LedgerModel):
    """The complete local replica."""

    expenses: list[Expense] = Field(default_factory=list)
    income: list[Income] = Field(default_factory=list)
    transfers: list[Transfer] = Field(default_factory=list)
    accounts: list[BankAccount] = Field(default_factory=list)
    config: AppConfig = Field(default_factory=AppConfig)
    pending_deletions: list[Tombstone] = Field(default_factory=list)

    def collection(self, kind: EntityKind) -> list:
        return getattr(self, kind.value)

    def with_collection(self, kind: EntityKind, items: list) -> "LedgerState":
        return self.model_copy(update={kind.value: list(items)})

    def unsynced(self, kind: EntityKind) -> list:
        return [e for e in self.collection(kind) if not e.synced]

    def find(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        for entity in self.collection(kind):
            if entity.id == entity_id:
                return entity
        return None

    def pending_ids(self, kind: EntityKind) -> set[str]:
        return {t.id for t in self.pending_deletions if t.kind == kind}


class RemoteConfig(LedgerModel):
    """
    Config values as read back from the remote copy.

    Has no secret fields at all; anything else the remote returns is ignored.
    """

    theme: Optional[Theme] = None
    balances: Optional[StartingBalance] = None


class RemoteSnapshot(LedgerModel):
    """Full remote state, tombstoned rows already filtered out."""

    expenses: list[Expense] = Field(default_factory=list)
    income: list[Income] = Field(default_factory=list)
    transfers: list[Transfer] = Field(default_factory=list)
    accounts: list[BankAccount] = Field(default_factory=list)
    config: Optional[RemoteConfig] = None
    budgets: dict[str, MonthlyBudget] = Field(default_factory=dict)
    categories: Optional[list[CategoryDefinition]] = None

    def collection(self, kind: EntityKind) -> list:
        return getattr(self, kind.value)


# =============================================================================
# CREDENTIALS
# =============================================================================

class SyncMode(str, Enum):
    LOCAL = "local"      # no remote copy configured
    DIRECT = "direct"    # tabular API with a user access token
    RELAY = "relay"      # relay script endpoint with a shared secret


class RemoteCredentials(BaseModel):
    """
    Everything a transport needs to reach the user's remote copy.

    Built from the local AppConfig (and the sign-in token for direct mode)
    and passed explicitly into each remote call.
    """

    mode: SyncMode
    access_token: Optional[SecretStr] = None
    spreadsheet_id: Optional[str] = None
    relay_url: Optional[str] = None
    relay_secret: Optional[SecretStr] = None

    @model_validator(mode='after')
    def validate_mode_fields(self) -> 'RemoteCredentials':
        if self.mode == SyncMode.DIRECT:
            if not self.access_token or not self.spreadsheet_id:
                raise ValueError("Direct mode needs an access token and a spreadsheet id")
        if self.mode == SyncMode.RELAY:
            if not self.relay_url or not self.relay_secret:
                raise ValueError("Relay mode needs a relay URL and secret")
        return self


# =============================================================================
# CYCLE STATE & REPORT
# =============================================================================

class SyncState(str, Enum):
    IDLE = "idle"
    PULLING = "pulling"
    MERGING = "merging"
    PUSHING = "pushing"


class SyncTrigger(str, Enum):
    APP_START = "app_start"
    RECONNECT = "reconnect"
    NEW_ENTRY = "new_entry"
    PERIODIC = "periodic"
    MANUAL = "manual"


class SyncOutcome(str, Enum):
    COMPLETED = "completed"    # pull, merge, persist and every push succeeded
    PARTIAL = "partial"        # merged and persisted, some pushes failed
    ABORTED = "aborted"        # pull failed, local state untouched
    SKIPPED = "skipped"        # another cycle was in flight
    LOCAL_ONLY = "local_only"  # no remote configured


class SyncReport(BaseModel):
    """What one reconciliation cycle did."""

    correlation_id: UUID = Field(default_factory=uuid4)
    trigger: SyncTrigger
    outcome: SyncOutcome
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    pushed: dict[str, int] = Field(default_factory=dict)
    push_failed: dict[str, int] = Field(default_factory=dict)
    dropped: dict[str, int] = Field(
        default_factory=dict,
        description="Synced local entities removed because the remote no longer has them"
    )
    tombstones_confirmed: int = 0
    tombstones_failed: int = 0
    error_message: Optional[str] = None

    @property
    def total_pushed(self) -> int:
        return sum(self.pushed.values())
