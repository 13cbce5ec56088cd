"""
Expense Manager

Enforces the per-sheet rules on expenses:
1. OWNERSHIP: every read and write is scoped to (user, sheet), re-checked
   inside the transaction that acts on it
2. UNIQUENESS: at most one expense per (date, category) on a sheet, unless
   the amount is exactly zero (placeholder rows). There is no unique index
   behind this, so the check runs with the sheet row locked for update
   and concurrent writers on one sheet queue behind each other
3. VERSIONS: updates carry the version the caller read; the store's
   compare-and-set turns a lost update into ConflictError

IMPORTANT: This layer never retries a Conflict. The caller re-reads and
resubmits.

Lifecycle per expense: nonexistent -> active -> (updated)* -> deleted.
Deleting an expense does NOT delete its cell descriptions; whoever calls
delete() removes them in the same transaction.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from expense_ledger.errors import DuplicateResourceError, NotFoundError
from expense_ledger.ledger.base import LedgerComponent
from expense_ledger.models.ledger import (
    Expense,
    ExpenseInput,
    ExpenseUpdate,
    normalize_category,
)
from expense_ledger.models.window import DateWindow
from expense_ledger.services.storage.interface import LedgerTransaction


def _duplicate(day: date, category: str) -> DuplicateResourceError:
    return DuplicateResourceError(
        "Expense",
        f"{day.isoformat()}/{category}",
        f"An expense for '{category}' on {day.isoformat()} already exists on this sheet",
    )


class ExpenseManager(LedgerComponent):
    """Create, update, delete and query expenses."""

    async def create(
        self,
        user_id: UUID,
        data: ExpenseInput,
        tx: Optional[LedgerTransaction] = None,
    ) -> Expense:
        """
        Add an expense to a sheet.

        Raises:
            DuplicateResourceError: If amount != 0 and (date, category) is taken
            NotFoundError: If the sheet is not owned by user_id
        """
        category = normalize_category(data.category)

        async with self._unit_of_work(tx) as tx:
            await self._require_sheet(tx, user_id, data.sheet_id, for_update=True)
            if data.amount != 0 and await tx.expense_exists(
                user_id, data.sheet_id, data.date, category
            ):
                raise _duplicate(data.date, category)
            stored = await tx.insert_expense(Expense(
                date=data.date,
                amount=data.amount,
                category=category,
                description=data.description,
                user_id=user_id,
                sheet_id=data.sheet_id,
            ))

        self._logger.info(
            "expense_created",
            expense_id=str(stored.id),
            sheet_id=str(stored.sheet_id),
            category=category,
        )
        return stored

    async def update(
        self,
        user_id: UUID,
        expense_id: UUID,
        data: ExpenseUpdate,
        tx: Optional[LedgerTransaction] = None,
    ) -> Expense:
        """
        Replace an expense's date, amount, category and note.

        The duplicate check only re-runs when date or category changed, and
        never counts the row being updated.

        Raises:
            NotFoundError: If no expense matches (expense_id, user_id)
            DuplicateResourceError: If the new (date, category) is taken
            ConflictError: If the row moved past the expected version
        """
        category = normalize_category(data.category)

        async with self._unit_of_work(tx) as tx:
            current = await tx.get_expense(expense_id, user_id)
            if current is None:
                raise NotFoundError("Expense", expense_id)

            key_changed = data.date != current.date or category != current.category
            if key_changed and data.amount != 0:
                await self._require_sheet(tx, user_id, current.sheet_id, for_update=True)
                if await tx.expense_exists(
                    user_id,
                    current.sheet_id,
                    data.date,
                    category,
                    exclude_id=current.id,
                ):
                    raise _duplicate(data.date, category)

            expected = data.version if data.version is not None else current.version
            stored = await tx.update_expense(
                current.model_copy(update={
                    "date": data.date,
                    "amount": data.amount,
                    "category": category,
                    "description": data.description,
                }),
                expected_version=expected,
            )

        self._logger.info(
            "expense_updated",
            expense_id=str(expense_id),
            version=stored.version,
        )
        return stored

    async def delete(
        self,
        user_id: UUID,
        expense_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> Expense:
        """
        Delete an expense. Returns the row as it was.

        Raises:
            NotFoundError: If no expense matches (expense_id, user_id)
        """
        async with self._unit_of_work(tx) as tx:
            current = await tx.get_expense(expense_id, user_id)
            if current is None or not await tx.delete_expense(expense_id, user_id):
                raise NotFoundError("Expense", expense_id)

        self._logger.info("expense_deleted", expense_id=str(expense_id))
        return current

    async def get_by_id(
        self,
        user_id: UUID,
        expense_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> Expense:
        async with self._unit_of_work(tx) as tx:
            expense = await tx.get_expense(expense_id, user_id)
        if expense is None:
            raise NotFoundError("Expense", expense_id)
        return expense

    async def list_by_filters(
        self,
        user_id: UUID,
        sheet_id: Optional[UUID] = None,
        month: Optional[str] = None,
        year: Optional[str] = None,
        tx: Optional[LedgerTransaction] = None,
    ) -> list[Expense]:
        """
        List expenses, newest first.

        month ("YYYY-MM") wins over year ("YYYY"). With neither, nothing
        bounds the dates.

        Raises:
            InvalidArgumentError: If a token is malformed
        """
        window = DateWindow.from_tokens(month=month, year=year)
        async with self._unit_of_work(tx) as tx:
            return await tx.find_expenses(
                user_id,
                sheet_id=sheet_id,
                date_from=window.start if window else None,
                date_to=window.end if window else None,
            )

    async def total(
        self,
        user_id: UUID,
        sheet_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        tx: Optional[LedgerTransaction] = None,
    ) -> Decimal:
        """Exact sum of a sheet's amounts, optionally within a date range."""
        async with self._unit_of_work(tx) as tx:
            return await tx.sum_expenses(sheet_id, user_id, date_from, date_to)

    async def category_subtotals(
        self,
        user_id: UUID,
        sheet_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> list[tuple[str, Decimal]]:
        """Per-category sums for a sheet, largest first."""
        async with self._unit_of_work(tx) as tx:
            return await tx.sum_expenses_by_category(sheet_id, user_id)
