"""Services package."""

from expense_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    LedgerTransaction,
    SqlAuditStorage,
    SqlLedgerStore,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerStoreInterface",
    "LedgerTransaction",
    "SqlAuditStorage",
    "SqlLedgerStore",
    "StorageConnectionError",
    "StorageError",
]
