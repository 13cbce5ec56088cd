"""Tests for the Expense Manager."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from expense_ledger.errors import (
    ConflictError,
    DuplicateResourceError,
    InvalidArgumentError,
    NotFoundError,
)
from expense_ledger.models.ledger import ExpenseInput, ExpenseUpdate, SheetInput
from expense_ledger.services.storage.memory import InMemoryTransaction


def _update(expense, **changes):
    fields = {
        "date": expense.date,
        "amount": expense.amount,
        "category": expense.category,
        "description": expense.description,
    }
    fields.update(changes)
    return ExpenseUpdate(**fields)


class TestCreateExpense:
    """Tests for expense creation and its uniqueness rule."""

    async def test_create_lower_cases_category(self, make_expense, sheet):
        """Categories are stored lower-cased."""
        expense = await make_expense("2024-01-05", "12.50", "  Food ")
        assert expense.category == "food"
        assert expense.amount == Decimal("12.50")
        assert expense.sheet_id == sheet.id
        assert expense.version == 1

    async def test_duplicate_date_and_category(self, make_expense):
        """A second non-zero expense on the same date+category is refused."""
        await make_expense("2024-01-05", 10, "food")
        with pytest.raises(DuplicateResourceError):
            await make_expense("2024-01-05", 3, "FOOD")

    async def test_zero_amounts_coexist(self, make_expense, expenses, user_id, sheet):
        """Any number of zero-amount rows may share a date+category."""
        for _ in range(3):
            await make_expense("2024-01-05", 0, "food")
        rows = await expenses.list_by_filters(user_id, sheet_id=sheet.id)
        assert len(rows) == 3

    async def test_nonzero_after_placeholder_is_refused(self, make_expense):
        """A placeholder row still occupies its date+category."""
        await make_expense("2024-01-05", 0, "food")
        with pytest.raises(DuplicateResourceError):
            await make_expense("2024-01-05", 8, "food")

    async def test_same_key_on_other_dates_and_sheets(self, make_expense, expenses, sheets, user_id):
        """Uniqueness is per (sheet, date, category)."""
        await make_expense("2024-01-05", 10, "food")
        await make_expense("2024-01-06", 10, "food")
        other = await sheets.create(user_id, SheetInput(name="Other"))
        await expenses.create(user_id, ExpenseInput(
            sheet_id=other.id,
            date=date(2024, 1, 5),
            amount=Decimal("10"),
            category="food",
        ))

    async def test_foreign_sheet_not_found(self, expenses, sheet, other_user_id):
        """Expenses can only be added to the caller's own sheets."""
        with pytest.raises(NotFoundError):
            await expenses.create(other_user_id, ExpenseInput(
                sheet_id=sheet.id,
                date=date(2024, 1, 5),
                amount=Decimal("10"),
                category="food",
            ))


class TestUpdateExpense:
    """Tests for expense updates."""

    async def test_update_bumps_version(self, make_expense, expenses, user_id):
        """A successful update advances the version."""
        expense = await make_expense("2024-01-05", 10, "food")
        updated = await expenses.update(
            user_id, expense.id, _update(expense, amount=Decimal("11"), description="bread")
        )
        assert updated.amount == Decimal("11")
        assert updated.description == "bread"
        assert updated.version == 2

    async def test_update_onto_taken_key(self, make_expense, expenses, user_id):
        """Moving onto another row's date+category is a duplicate."""
        await make_expense("2024-01-05", 10, "food")
        other = await make_expense("2024-01-06", 5, "food")
        with pytest.raises(DuplicateResourceError):
            await expenses.update(user_id, other.id, _update(other, date=date(2024, 1, 5)))

    async def test_update_excludes_itself(self, make_expense, expenses, user_id):
        """Re-saving a row on its own key is not a duplicate."""
        expense = await make_expense("2024-01-05", 10, "food")
        updated = await expenses.update(
            user_id, expense.id, _update(expense, category="FOOD")
        )
        assert updated.category == "food"

    async def test_update_missing_or_foreign(self, make_expense, expenses, other_user_id, user_id):
        """Unknown ids and other users' rows are NotFound."""
        expense = await make_expense("2024-01-05", 10, "food")
        with pytest.raises(NotFoundError):
            await expenses.update(other_user_id, expense.id, _update(expense))
        with pytest.raises(NotFoundError):
            await expenses.update(user_id, uuid4(), _update(expense))

    async def test_stale_version_conflicts(self, make_expense, expenses, user_id):
        """Two updates from the same read: the second fails with Conflict."""
        expense = await make_expense("2024-01-05", 10, "food")
        await expenses.update(
            user_id, expense.id, _update(expense, amount=Decimal("20"), version=expense.version)
        )
        with pytest.raises(ConflictError):
            await expenses.update(
                user_id, expense.id, _update(expense, amount=Decimal("30"), version=expense.version)
            )
        stored = await expenses.get_by_id(user_id, expense.id)
        assert stored.amount == Decimal("20")


class TestDeleteExpense:
    """Tests for expense deletion."""

    async def test_delete_is_terminal(self, make_expense, expenses, user_id):
        """A deleted expense is gone for good."""
        expense = await make_expense("2024-01-05", 10, "food")
        deleted = await expenses.delete(user_id, expense.id)
        assert deleted.id == expense.id
        with pytest.raises(NotFoundError):
            await expenses.get_by_id(user_id, expense.id)
        with pytest.raises(NotFoundError):
            await expenses.delete(user_id, expense.id)

    async def test_delete_foreign(self, make_expense, expenses, other_user_id):
        """Only the owner can delete."""
        expense = await make_expense("2024-01-05", 10, "food")
        with pytest.raises(NotFoundError):
            await expenses.delete(other_user_id, expense.id)

    async def test_key_is_free_after_delete(self, make_expense, expenses, user_id):
        """Deleting frees the date+category for a new row."""
        expense = await make_expense("2024-01-05", 10, "food")
        await expenses.delete(user_id, expense.id)
        await make_expense("2024-01-05", 12, "food")


class TestListAndAggregates:
    """Tests for filtered listings and aggregate reads."""

    async def test_month_filter(self, make_expense, expenses, user_id, sheet):
        """A month token selects that calendar month, newest first."""
        await make_expense("2023-12-31", 1, "food")
        await make_expense("2024-01-01", 2, "food")
        await make_expense("2024-01-31", 3, "food")
        await make_expense("2024-02-01", 4, "food")
        rows = await expenses.list_by_filters(user_id, sheet_id=sheet.id, month="2024-01")
        assert [r.date for r in rows] == [date(2024, 1, 31), date(2024, 1, 1)]

    async def test_year_filter(self, make_expense, expenses, user_id, sheet):
        """A year token selects Jan 1 to Dec 31."""
        await make_expense("2023-12-31", 1, "food")
        await make_expense("2024-06-15", 2, "food")
        rows = await expenses.list_by_filters(user_id, sheet_id=sheet.id, year="2024")
        assert [r.date for r in rows] == [date(2024, 6, 15)]

    async def test_no_filter_is_unbounded(self, make_expense, expenses, user_id):
        await make_expense("1999-01-01", 1, "food")
        await make_expense("2030-01-01", 1, "food")
        assert len(await expenses.list_by_filters(user_id)) == 2

    async def test_malformed_month(self, expenses, user_id):
        """A malformed month token is an invalid argument."""
        with pytest.raises(InvalidArgumentError):
            await expenses.list_by_filters(user_id, month="January")

    async def test_total_is_exact_decimal(self, make_expense, expenses, user_id, sheet):
        """Sums never pass through float."""
        await make_expense("2024-01-01", "0.10", "food")
        await make_expense("2024-01-02", "0.20", "food")
        await make_expense("2024-01-03", "0.30", "food")
        total = await expenses.total(user_id, sheet.id)
        assert total == Decimal("0.60")
        windowed = await expenses.total(
            user_id, sheet.id, date(2024, 1, 2), date(2024, 1, 3)
        )
        assert windowed == Decimal("0.50")

    async def test_category_subtotals(self, make_expense, expenses, user_id, sheet):
        """Per-category sums, largest first."""
        await make_expense("2024-01-01", 5, "food")
        await make_expense("2024-01-02", 5, "food")
        await make_expense("2024-01-01", 30, "rent")
        await make_expense("2024-01-01", 2, "transport")
        assert await expenses.category_subtotals(user_id, sheet.id) == [
            ("rent", Decimal("30")),
            ("food", Decimal("10")),
            ("transport", Decimal("2")),
        ]


class TestSheetLock:
    """Tests for locking the sheet row around the duplicate check."""

    @pytest.fixture
    def lock_requests(self, monkeypatch):
        requests = []
        original = InMemoryTransaction.get_sheet

        async def recording(self, sheet_id, user_id, for_update=False):
            requests.append(for_update)
            return await original(self, sheet_id, user_id, for_update=for_update)

        monkeypatch.setattr(InMemoryTransaction, "get_sheet", recording)
        return requests

    async def test_create_locks_the_sheet(self, make_expense, lock_requests):
        await make_expense("2024-01-05", 10, "food")
        assert lock_requests == [True]

    async def test_key_change_locks_the_sheet(self, make_expense, expenses, user_id, lock_requests):
        expense = await make_expense("2024-01-05", 10, "food")
        lock_requests.clear()
        await expenses.update(user_id, expense.id, _update(expense, date=date(2024, 1, 6)))
        assert lock_requests == [True]

    async def test_amount_only_update_takes_no_lock(
        self, make_expense, expenses, user_id, lock_requests
    ):
        expense = await make_expense("2024-01-05", 10, "food")
        lock_requests.clear()
        await expenses.update(user_id, expense.id, _update(expense, amount=Decimal("12")))
        assert lock_requests == []
