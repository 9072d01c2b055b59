"""Reconciliation between the local replica and the remote copy."""

from finfree.sync.merge import (
    CollectionMerge,
    MergeResult,
    merge_collection,
    merge_config,
    merge_snapshot,
)
from finfree.sync.reconciler import PUSH_ORDER, SyncReconciler

__all__ = [
    "CollectionMerge",
    "MergeResult",
    "PUSH_ORDER",
    "SyncReconciler",
    "merge_collection",
    "merge_config",
    "merge_snapshot",
]
