"""
Abstract Storage Interfaces

DESIGN DECISION: Two interfaces, one per replica.

LedgerStoreInterface is the local replica: the only shared mutable resource.
User CRUD, the merge's persist step and the push's synced-flag updates all go
through it, and implementations serialise those writers.

RemoteAdapterInterface is the remote replica as the reconciler sees it:
pull a snapshot, append rows, mark rows deleted, rewrite the config-like
sections. Both transports (direct spreadsheet API, relay endpoint) implement
it, and tests use an in-memory fake.
"""

from abc import ABC, abstractmethod
from typing import Callable

from finfree.models.ledger import AppConfig, CategoryDefinition, MonthlyBudget
from finfree.models.sync import (
    Entity,
    EntityKind,
    LedgerState,
    RemoteConfig,
    RemoteCredentials,
    RemoteSnapshot,
    Tombstone,
)


class LedgerStoreInterface(ABC):
    """
    Abstract interface for the local ledger replica.

    Every method returns or stores copies; callers never hold a reference
    into the store's live state.
    """

    @abstractmethod
    async def load(self) -> LedgerState:
        """Return a copy of the whole local state."""
        pass

    @abstractmethod
    async def add_entity(self, entity: Entity) -> Entity:
        """
        Insert a new entity.

        Raises:
            DuplicateError: If an entity of that kind already has this id
        """
        pass

    @abstractmethod
    async def update_entity(self, entity: Entity) -> Entity:
        """
        Replace an entity by id. The stored copy is marked unsynced.

        Raises:
            NotFoundError: If no entity of that kind has this id
        """
        pass

    @abstractmethod
    async def delete_entity(self, kind: EntityKind, entity_id: str) -> Tombstone:
        """
        Remove an entity and record a pending tombstone for it.

        Raises:
            NotFoundError: If no entity of that kind has this id
        """
        pass

    @abstractmethod
    async def apply(self, change: Callable[[LedgerState], LedgerState]) -> LedgerState:
        """
        Atomically replace the state with `change(current_state)`.

        Used by the merge's persist step. No other writer can interleave.
        """
        pass

    @abstractmethod
    async def mark_synced(self, kind: EntityKind, pushed: list[Entity]) -> int:
        """
        Flag pushed entities as synced.

        Only entities whose stored content still equals what was pushed are
        flagged; anything edited while the push was in flight stays unsynced.

        Returns:
            Number of entities flagged
        """
        pass

    @abstractmethod
    async def clear_tombstones(self, tombstones: list[Tombstone]) -> None:
        """Forget tombstones the remote has confirmed."""
        pass

    @abstractmethod
    async def save_config(self, config: AppConfig) -> AppConfig:
        """Replace the config record."""
        pass


class RemoteAdapterInterface(ABC):
    """
    Abstract interface for the remote replica.

    Credentials are passed into every call; adapters hold no session state
    that outlives a call except connection pools.

    Error contract:
        TransportError: network/timeout/server trouble. Retryable.
        AuthorizationError: credential rejected. Never retried here.
    """

    @abstractmethod
    async def fetch_snapshot(self, credentials: RemoteCredentials) -> RemoteSnapshot:
        """
        Read every collection plus config, budgets and categories.

        Rows carrying the deleted marker are excluded.
        """
        pass

    @abstractmethod
    async def append_entities(
        self,
        kind: EntityKind,
        credentials: RemoteCredentials,
        rows: list[Entity],
    ) -> list[str]:
        """
        Append rows to an append-only collection.

        A row whose id is already live with the same content is skipped.
        A row whose id is live with different content supersedes it: the old
        row is tombstoned and the new one appended.

        Returns:
            Ids the remote now holds in the pushed form
        """
        pass

    @abstractmethod
    async def mark_deleted(
        self,
        kind: EntityKind,
        credentials: RemoteCredentials,
        entity_id: str,
    ) -> bool:
        """
        Set the deleted marker on the row with this id. Never removes rows.

        Returns:
            True if a live row was marked, False if none was found
        """
        pass

    @abstractmethod
    async def save_config(self, credentials: RemoteCredentials, config: RemoteConfig) -> None:
        """Clear and rewrite the config section. Never carries secrets."""
        pass

    @abstractmethod
    async def save_budgets(
        self,
        credentials: RemoteCredentials,
        budgets: dict[str, MonthlyBudget],
    ) -> None:
        """Clear and rewrite the budgets section."""
        pass

    @abstractmethod
    async def save_categories(
        self,
        credentials: RemoteCredentials,
        categories: list[CategoryDefinition],
    ) -> None:
        """Clear and rewrite the categories section."""
        pass

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
        return None


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class TransportError(StorageError):
    """Remote unreachable or failed; safe to retry later."""
    pass


class AuthorizationError(StorageError):
    """Remote rejected the credentials; the user must re-authenticate."""
    pass
