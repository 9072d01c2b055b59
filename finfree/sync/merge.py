"""
Merge Rules

Pure functions combining the local replica with a fresh remote snapshot.
No I/O; the reconciler runs them inside the store's lock.

Per collection, identity-keyed by id:
1. Seed from the remote snapshot, every entity synced.
2. Local unsynced entities overwrite (or add to) the result.
3. Local synced entities missing from the snapshot are dropped: the remote
   copy deleted them.

Remote entities that still have a pending local tombstone are left out so
an unconfirmed local delete is not undone by the next pull.
"""

from typing import NamedTuple

from finfree.calculations.accounts import normalize_default_account
from finfree.models.ledger import AppConfig
from finfree.models.sync import (
    EntityKind,
    LedgerState,
    RemoteSnapshot,
)


class CollectionMerge(NamedTuple):
    items: list
    dropped: int


class MergeResult(NamedTuple):
    state: LedgerState
    counts: dict[str, int]
    dropped: dict[str, int]


def _display_order(entity) -> tuple:
    # Newest first; id breaks ties so the order is deterministic
    return (-entity.timestamp.timestamp(), entity.id)


def merge_collection(
    local: list,
    remote: list,
    pending_deletions: set[str] = frozenset(),
) -> CollectionMerge:
    """
    Merge one identity-keyed collection.

    Result order: remote order, with local-only entities after it in
    local order. Callers sort for display where needed.
    """
    result = {}
    for entity in remote:
        if entity.id in pending_deletions:
            continue
        result[entity.id] = entity if entity.synced else entity.model_copy(update={"synced": True})

    dropped = 0
    for entity in local:
        if not entity.synced:
            result[entity.id] = entity
        elif entity.id not in result:
            dropped += 1

    return CollectionMerge(list(result.values()), dropped)


def merge_config(local: AppConfig, remote: RemoteSnapshot) -> AppConfig:
    """
    Merge the config record.

    Theme, balances, budgets and categories: the remote section wins when
    present, else the local one is kept. Secret fields are never read from
    the remote side; they always come from `local`.
    """
    update = {}

    if remote.config is not None:
        if remote.config.theme is not None:
            update["theme"] = remote.config.theme
        if remote.config.balances is not None:
            update["balances"] = remote.config.balances

    if remote.budgets:
        update["budgets"] = dict(remote.budgets)

    if remote.categories:
        update["categories"] = list(remote.categories)

    return local.model_copy(update=update, deep=True)


def merge_snapshot(local: LedgerState, remote: RemoteSnapshot) -> MergeResult:
    """
    Merge a whole remote snapshot into the local state.

    Merging the result with the same snapshot again returns the same state.
    Pending tombstones are carried over unchanged.
    """
    state = local
    counts: dict[str, int] = {}
    dropped: dict[str, int] = {}

    for kind in EntityKind:
        merged = merge_collection(
            local.collection(kind),
            remote.collection(kind),
            local.pending_ids(kind),
        )
        items = merged.items
        if kind == EntityKind.ACCOUNTS:
            items = normalize_default_account(items)
        else:
            items = sorted(items, key=_display_order)

        state = state.with_collection(kind, items)
        counts[kind.value] = len(items)
        if merged.dropped:
            dropped[kind.value] = merged.dropped

    state = state.model_copy(update={"config": merge_config(local.config, remote)})
    return MergeResult(state, counts, dropped)
