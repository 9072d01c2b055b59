"""
Local Ledger Store

The device-side replica. All writers (user CRUD, merge persist, push
acknowledgements) take the same asyncio.Lock, so a merge can never
interleave with a user edit and lose it.

Two implementations:
- InMemoryLedgerStore: the replica itself, used directly in tests
- JsonFileLedgerStore: same replica, written to a JSON file after every
  change
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import ValidationError

from finfree.calculations.accounts import normalize_default_account
from finfree.models.ledger import AppConfig, BankAccount
from finfree.models.sync import (
    Entity,
    EntityKind,
    LedgerState,
    Tombstone,
    kind_of,
)
from finfree.services.storage.interface import (
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)


def _accounts_with_default(accounts: list[BankAccount], preferred: Optional[BankAccount]) -> list[BankAccount]:
    """
    Re-establish the single default account after a change.

    If `preferred` is flagged default it wins and every other account loses
    the flag.
    """
    if preferred is not None and preferred.is_default:
        accounts = [
            a if a.id == preferred.id or not a.is_default
            else a.model_copy(update={"is_default": False, "synced": False})
            for a in accounts
        ]
    return normalize_default_account(accounts)


class InMemoryLedgerStore(LedgerStoreInterface):
    """
    Local replica held in memory.

    New transactions are kept newest-first; accounts keep insertion order,
    since the first account is the default fallback.
    """

    def __init__(self, state: Optional[LedgerState] = None):
        self._state = (state or LedgerState()).model_copy(deep=True)
        self._lock = asyncio.Lock()

    def _persist(self, state: LedgerState) -> None:
        """Hook for durable subclasses; called with the lock held."""
        pass

    def _commit(self, state: LedgerState) -> None:
        self._persist(state)
        self._state = state

    async def load(self) -> LedgerState:
        async with self._lock:
            return self._state.model_copy(deep=True)

    async def add_entity(self, entity: Entity) -> Entity:
        kind = kind_of(entity)
        entity = entity.model_copy(update={"synced": False})

        async with self._lock:
            items = self._state.collection(kind)
            if any(existing.id == entity.id for existing in items):
                raise DuplicateError(f"{kind.value} entry already exists: {entity.id}")

            if kind == EntityKind.ACCOUNTS:
                items = _accounts_with_default([*items, entity], entity)
            else:
                items = [entity, *items]

            self._commit(self._state.with_collection(kind, items))
            return self._state.find(kind, entity.id).model_copy()

    async def update_entity(self, entity: Entity) -> Entity:
        kind = kind_of(entity)
        entity = entity.model_copy(update={"synced": False})

        async with self._lock:
            items = self._state.collection(kind)
            if not any(existing.id == entity.id for existing in items):
                raise NotFoundError(f"{kind.value} entry not found: {entity.id}")

            items = [entity if existing.id == entity.id else existing for existing in items]
            if kind == EntityKind.ACCOUNTS:
                items = _accounts_with_default(items, entity)

            self._commit(self._state.with_collection(kind, items))
            return self._state.find(kind, entity.id).model_copy()

    async def delete_entity(self, kind: EntityKind, entity_id: str) -> Tombstone:
        async with self._lock:
            items = self._state.collection(kind)
            remaining = [existing for existing in items if existing.id != entity_id]
            if len(remaining) == len(items):
                raise NotFoundError(f"{kind.value} entry not found: {entity_id}")

            if kind == EntityKind.ACCOUNTS:
                remaining = normalize_default_account(remaining)

            tombstone = Tombstone(kind=kind, id=entity_id)
            pending = [
                t for t in self._state.pending_deletions
                if not (t.kind == kind and t.id == entity_id)
            ]
            state = self._state.with_collection(kind, remaining).model_copy(
                update={"pending_deletions": [*pending, tombstone]}
            )
            self._commit(state)
            return tombstone

    async def apply(self, change: Callable[[LedgerState], LedgerState]) -> LedgerState:
        async with self._lock:
            state = change(self._state.model_copy(deep=True))
            self._commit(state)
            return state.model_copy(deep=True)

    async def mark_synced(self, kind: EntityKind, pushed: list[Entity]) -> int:
        by_id = {entity.id: entity for entity in pushed}
        marked = 0

        async with self._lock:
            items = []
            for existing in self._state.collection(kind):
                sent = by_id.get(existing.id)
                if sent is not None and not existing.synced and existing.same_content(sent):
                    existing = existing.model_copy(update={"synced": True})
                    marked += 1
                items.append(existing)

            if marked:
                self._commit(self._state.with_collection(kind, items))
        return marked

    async def clear_tombstones(self, tombstones: list[Tombstone]) -> None:
        confirmed = {(t.kind, t.id) for t in tombstones}
        async with self._lock:
            pending = [
                t for t in self._state.pending_deletions
                if (t.kind, t.id) not in confirmed
            ]
            if len(pending) != len(self._state.pending_deletions):
                self._commit(self._state.model_copy(update={"pending_deletions": pending}))

    async def save_config(self, config: AppConfig) -> AppConfig:
        async with self._lock:
            self._commit(self._state.model_copy(update={"config": config.model_copy(deep=True)}))
            return config


class JsonFileLedgerStore(InMemoryLedgerStore):
    """
    Local replica persisted as one JSON document (camelCase wire names).

    The file is replaced atomically on every commit; a crash mid-write
    leaves the previous version in place.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        super().__init__(self._read())

    def _read(self) -> LedgerState:
        if not self._path.exists():
            return LedgerState()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return LedgerState.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise StorageError(f"Ledger file is unreadable: {self._path}: {e}")

    def _persist(self, state: LedgerState) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(state.to_wire(), indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StorageError(f"Failed to write ledger file {self._path}: {e}")

    @property
    def path(self) -> Path:
        return self._path
