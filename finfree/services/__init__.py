"""Services package."""

from finfree.services.storage import (
    AuthorizationError,
    DuplicateError,
    GoogleSheetsClient,
    GoogleSheetsRemoteAdapter,
    InMemoryLedgerStore,
    JsonFileLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
    RelayRemoteAdapter,
    RemoteAdapterInterface,
    StorageError,
    TransportError,
)

__all__ = [
    "AuthorizationError",
    "DuplicateError",
    "GoogleSheetsClient",
    "GoogleSheetsRemoteAdapter",
    "InMemoryLedgerStore",
    "JsonFileLedgerStore",
    "LedgerStoreInterface",
    "NotFoundError",
    "RelayRemoteAdapter",
    "RemoteAdapterInterface",
    "StorageError",
    "TransportError",
]
