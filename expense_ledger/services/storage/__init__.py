"""
Storage Services Package

Provides the abstract ledger store interface and its implementations.
The in-memory store backs the tests; the SQL store backs real deployments.
"""

from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    DuplicateResourceError,
    LedgerStoreInterface,
    LedgerTransaction,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from expense_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    InMemoryTransaction,
)
from expense_ledger.services.storage.sql import (
    SqlAuditStorage,
    SqlLedgerStore,
    SqlLedgerTransaction,
    create_engine_from_settings,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStoreInterface",
    "LedgerTransaction",
    # Exceptions
    "ConflictError",
    "DuplicateResourceError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "InMemoryTransaction",
    # SQL implementation
    "SqlAuditStorage",
    "SqlLedgerStore",
    "SqlLedgerTransaction",
    "create_engine_from_settings",
]
