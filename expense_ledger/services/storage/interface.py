"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the ledger on any SQLAlchemy-supported database
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

Everything goes through a transaction. A LedgerStoreInterface hands out
LedgerTransaction objects from an async context manager; leaving the block
normally commits, leaving it with an exception rolls back. Multi-step
operations (rename + relabel, sheet purge) pass ONE transaction through all
of their steps.

Concurrency is optimistic: update methods take the version the caller read
and the store compares-and-sets it. No locks are taken by the core.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from expense_ledger.errors import (
    ConflictError,
    DuplicateResourceError,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.ledger import (
    ColumnDescription,
    Expense,
    Sheet,
    SheetCategory,
    User,
)


class LedgerTransaction(ABC):
    """
    One unit of work against the ledger tables.

    Reads see the transaction's own writes. Methods that take an owner
    (user_id) only ever touch rows owned by that user, so ownership is
    re-verified inside the transaction that acts on it.
    """

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_user(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    async def find_user_by_subject(self, subject: str) -> Optional[User]:
        pass

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup by email."""
        pass

    @abstractmethod
    async def insert_user(self, user: User) -> User:
        """
        Raises:
            DuplicateResourceError: If email or subject is taken
        """
        pass

    @abstractmethod
    async def update_user(self, user: User) -> User:
        """
        Raises:
            NotFoundError: If the user doesn't exist
        """
        pass

    @abstractmethod
    async def count_users(self, exclude: Optional[UUID] = None) -> int:
        pass

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_sheet(self, sheet: Sheet) -> Sheet:
        pass

    @abstractmethod
    async def get_sheet(
        self,
        sheet_id: UUID,
        user_id: UUID,
        for_update: bool = False,
    ) -> Optional[Sheet]:
        """
        Get a sheet only if user_id owns it.

        With for_update, the sheet row stays write-locked until the
        transaction ends, so writers on the same sheet run one at a time.
        """
        pass

    @abstractmethod
    async def list_sheets(self, user_id: UUID) -> list[Sheet]:
        """All sheets owned by user_id, newest first."""
        pass

    @abstractmethod
    async def update_sheet(self, sheet: Sheet, expected_version: int) -> Sheet:
        """
        Compare-and-set update of a sheet's mutable fields.

        Returns:
            The stored sheet with its new version

        Raises:
            NotFoundError: If no sheet matches (id, user_id)
            ConflictError: If the stored version differs from expected_version
        """
        pass

    @abstractmethod
    async def delete_sheet(self, sheet_id: UUID, user_id: UUID) -> bool:
        pass

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_expense(self, expense: Expense) -> Expense:
        """
        Stores that cannot re-check the date and category rule at commit
        rely on the caller holding the sheet lock from get_sheet(for_update=True).

        Raises:
            DuplicateResourceError: If a non-zero expense already holds the
                same (user, sheet, date, category) at commit time
        """
        pass

    @abstractmethod
    async def get_expense(self, expense_id: UUID, user_id: UUID) -> Optional[Expense]:
        pass

    @abstractmethod
    async def find_expenses(
        self,
        user_id: UUID,
        sheet_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category: Optional[str] = None,
    ) -> list[Expense]:
        """
        List expenses with optional filters (inclusive date bounds).

        Returns:
            Matching expenses, newest date first
        """
        pass

    @abstractmethod
    async def expense_exists(
        self,
        user_id: UUID,
        sheet_id: UUID,
        day: date,
        category: str,
        exclude_id: Optional[UUID] = None,
    ) -> bool:
        """Is there an expense on this (user, sheet, date, category)?"""
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense, expected_version: int) -> Expense:
        """
        Compare-and-set update of an expense's mutable fields.

        Raises:
            NotFoundError: If no expense matches (id, user_id)
            ConflictError: If the stored version differs from expected_version
            DuplicateResourceError: If a changed (date, category) collides at
                commit time, where the store re-checks it
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: UUID, user_id: UUID) -> bool:
        pass

    @abstractmethod
    async def delete_sheet_expenses(self, sheet_id: UUID, user_id: UUID) -> int:
        """Delete every expense of (user, sheet). Returns the count."""
        pass

    @abstractmethod
    async def count_expenses(self, sheet_id: UUID, user_id: UUID) -> int:
        pass

    @abstractmethod
    async def relabel_expenses(
        self,
        sheet_id: UUID,
        user_id: UUID,
        old_category: str,
        new_category: str,
    ) -> int:
        """
        Move every expense of (user, sheet) tagged old_category to
        new_category, bumping each row's version. Returns the count.
        """
        pass

    @abstractmethod
    async def sum_expenses(
        self,
        sheet_id: UUID,
        user_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Decimal:
        """Exact total amount, optionally within an inclusive date range."""
        pass

    @abstractmethod
    async def sum_expenses_by_category(
        self,
        sheet_id: UUID,
        user_id: UUID,
    ) -> list[tuple[str, Decimal]]:
        """Per-category subtotals, largest first."""
        pass

    @abstractmethod
    async def distinct_expense_categories(self, sheet_id: UUID) -> list[str]:
        """Category values present on the sheet's expenses, sorted."""
        pass

    # ------------------------------------------------------------------
    # Sheet categories
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_sheet_categories(self, sheet_id: UUID) -> list[SheetCategory]:
        """Registry rows of a sheet in storage order (unsorted)."""
        pass

    @abstractmethod
    async def get_sheet_category(self, sheet_id: UUID, name: str) -> Optional[SheetCategory]:
        pass

    @abstractmethod
    async def max_display_order(self, sheet_id: UUID) -> Optional[int]:
        pass

    @abstractmethod
    async def insert_sheet_category(self, category: SheetCategory) -> SheetCategory:
        """
        Raises:
            DuplicateResourceError: If the name is already registered
        """
        pass

    @abstractmethod
    async def rename_sheet_category(self, category_id: UUID, new_name: str) -> SheetCategory:
        pass

    @abstractmethod
    async def delete_sheet_category(self, sheet_id: UUID, name: str) -> bool:
        pass

    @abstractmethod
    async def delete_sheet_categories(self, sheet_id: UUID) -> int:
        pass

    # ------------------------------------------------------------------
    # Column descriptions
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_description(self, description_id: UUID) -> Optional[ColumnDescription]:
        pass

    @abstractmethod
    async def find_description(
        self,
        expense_id: UUID,
        column_name: str,
    ) -> Optional[ColumnDescription]:
        pass

    @abstractmethod
    async def list_descriptions(
        self,
        user_id: UUID,
        expense_ids: Optional[list[UUID]] = None,
        column_name: Optional[str] = None,
    ) -> list[ColumnDescription]:
        pass

    @abstractmethod
    async def insert_description(self, description: ColumnDescription) -> ColumnDescription:
        pass

    @abstractmethod
    async def update_description_text(
        self,
        description_id: UUID,
        text: str,
    ) -> ColumnDescription:
        pass

    @abstractmethod
    async def delete_description(self, description_id: UUID) -> bool:
        pass

    @abstractmethod
    async def delete_expense_descriptions(
        self,
        expense_ids: list[UUID],
        column_name: Optional[str] = None,
    ) -> int:
        pass

    # ------------------------------------------------------------------
    # Ownership transfer (bootstrap only)
    # ------------------------------------------------------------------

    @abstractmethod
    async def reassign_owner(self, from_user_id: UUID, to_user_id: UUID) -> dict[str, int]:
        """
        Move sheets, expenses and descriptions from one owner to another.

        Returns:
            Row counts per table
        """
        pass


class LedgerStoreInterface(ABC):
    """
    Abstract interface for the ledger store.

    Any storage implementation (in-memory, SQLite, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[LedgerTransaction]:
        """
        Open a unit of work.

        Usage:
            async with store.transaction() as tx:
                await tx.insert_sheet(sheet)

        Raises:
            ConflictError: On commit, if a row changed under this transaction
            DuplicateResourceError: On commit, if a uniqueness rule now fails
            StorageError: On any unexpected backend failure
        """
        pass

    @abstractmethod
    async def open(self) -> None:
        """Prepare the backend (create schema, verify connectivity)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one request).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


__all__ = [
    "AuditStorageInterface",
    "ConflictError",
    "DuplicateResourceError",
    "LedgerStoreInterface",
    "LedgerTransaction",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
]
