"""
Storage Services Package

Provides the local replica store and the two remote adapters (direct
spreadsheet access and the relay endpoint) behind abstract interfaces.
"""

from finfree.services.storage.interface import (
    AuthorizationError,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    RemoteAdapterInterface,
    StorageError,
    TransportError,
)
from finfree.services.storage.local import (
    InMemoryLedgerStore,
    JsonFileLedgerStore,
)
from finfree.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsRemoteAdapter,
)
from finfree.services.storage.relay import RelayRemoteAdapter

__all__ = [
    # Interfaces
    "LedgerStoreInterface",
    "RemoteAdapterInterface",
    # Exceptions
    "AuthorizationError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "TransportError",
    # Local replica
    "InMemoryLedgerStore",
    "JsonFileLedgerStore",
    # Remote adapters
    "GoogleSheetsClient",
    "GoogleSheetsRemoteAdapter",
    "RelayRemoteAdapter",
]
