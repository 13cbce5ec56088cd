"""Tests for the Description Manager."""

import pytest
from uuid import uuid4

from expense_ledger.errors import InvalidArgumentError, NotFoundError
from expense_ledger.models.ledger import DescriptionInput, ExpenseInput, SheetInput


def _note(expense_id, text, column_name=None):
    return DescriptionInput(expense_id=expense_id, column_name=column_name, description=text)


class TestUpsert:
    """Tests for saving descriptions."""

    async def test_default_column(self, descriptions, make_expense, user_id):
        """Without a column name the note lands on "notes"."""
        expense = await make_expense("2024-01-05", 10, "food")
        saved = await descriptions.upsert(user_id, _note(expense.id, "lunch"))
        assert saved.column_name == "notes"
        assert saved.user_id == user_id

    async def test_upsert_is_idempotent(self, descriptions, make_expense, user_id):
        """Saving twice leaves one row carrying the latest text."""
        expense = await make_expense("2024-01-05", 10, "food")
        first = await descriptions.upsert(user_id, _note(expense.id, "lunch", "amount"))
        second = await descriptions.upsert(user_id, _note(expense.id, "dinner", "amount"))

        assert second.id == first.id
        rows = await descriptions.list_descriptions(user_id, expense_ids=[expense.id])
        assert [(r.column_name, r.description) for r in rows] == [("amount", "dinner")]

    async def test_columns_are_independent(self, descriptions, make_expense, user_id):
        expense = await make_expense("2024-01-05", 10, "food")
        await descriptions.upsert(user_id, _note(expense.id, "a", "amount"))
        await descriptions.upsert(user_id, _note(expense.id, "b", "category"))
        rows = await descriptions.list_descriptions(user_id, expense_ids=[expense.id])
        assert len(rows) == 2

    async def test_foreign_expense(self, descriptions, make_expense, other_user_id):
        """Only the expense owner may annotate it."""
        expense = await make_expense("2024-01-05", 10, "food")
        with pytest.raises(NotFoundError):
            await descriptions.upsert(other_user_id, _note(expense.id, "mine"))

    async def test_unknown_expense(self, descriptions, user_id):
        with pytest.raises(NotFoundError):
            await descriptions.upsert(user_id, _note(uuid4(), "ghost"))

    async def test_blank_text(self, descriptions, make_expense, user_id):
        """Whitespace-only text is refused."""
        expense = await make_expense("2024-01-05", 10, "food")
        with pytest.raises(InvalidArgumentError):
            await descriptions.upsert(user_id, _note(expense.id, "   "))
        with pytest.raises(InvalidArgumentError):
            await descriptions.upsert(user_id, _note(expense.id, ""))


class TestQueries:
    """Tests for description lookups."""

    async def test_get_is_owner_scoped(self, descriptions, make_expense, user_id, other_user_id):
        expense = await make_expense("2024-01-05", 10, "food")
        saved = await descriptions.upsert(user_id, _note(expense.id, "lunch"))
        assert (await descriptions.get(user_id, saved.id)).description == "lunch"
        with pytest.raises(NotFoundError):
            await descriptions.get(other_user_id, saved.id)

    async def test_list_by_sheet_and_column(
        self, descriptions, sheets, expenses, make_expense, user_id
    ):
        """Sheet and column filters narrow the listing."""
        here = await make_expense("2024-01-05", 10, "food")
        other_sheet = await sheets.create(user_id, SheetInput(name="Other"))
        elsewhere = await expenses.create(user_id, ExpenseInput(
            sheet_id=other_sheet.id, date=here.date, amount=here.amount, category="food",
        ))
        await descriptions.upsert(user_id, _note(here.id, "here"))
        await descriptions.upsert(user_id, _note(here.id, "amount note", "amount"))
        await descriptions.upsert(user_id, _note(elsewhere.id, "elsewhere"))

        on_sheet = await descriptions.list_descriptions(user_id, sheet_id=here.sheet_id)
        assert {d.description for d in on_sheet} == {"here", "amount note"}

        notes_only = await descriptions.list_descriptions(user_id, column_name="notes")
        assert {d.description for d in notes_only} == {"here", "elsewhere"}

    async def test_list_is_per_user(self, descriptions, make_expense, user_id, other_user_id):
        expense = await make_expense("2024-01-05", 10, "food")
        await descriptions.upsert(user_id, _note(expense.id, "lunch"))
        assert await descriptions.list_descriptions(other_user_id) == []


class TestDelete:
    """Tests for the delete paths."""

    async def test_delete_by_id(self, descriptions, make_expense, user_id):
        expense = await make_expense("2024-01-05", 10, "food")
        saved = await descriptions.upsert(user_id, _note(expense.id, "lunch"))
        await descriptions.delete_by_id(user_id, saved.id)
        with pytest.raises(NotFoundError):
            await descriptions.delete_by_id(user_id, saved.id)

    async def test_delete_by_id_foreign(self, descriptions, make_expense, user_id, other_user_id):
        """Another user's description is NotFound and stays put."""
        expense = await make_expense("2024-01-05", 10, "food")
        saved = await descriptions.upsert(user_id, _note(expense.id, "lunch"))
        with pytest.raises(NotFoundError):
            await descriptions.delete_by_id(other_user_id, saved.id)
        assert (await descriptions.get(user_id, saved.id)).id == saved.id

    async def test_delete_by_expense(self, descriptions, make_expense, user_id):
        """Every column of the expense goes, and the count is returned."""
        expense = await make_expense("2024-01-05", 10, "food")
        keep = await make_expense("2024-01-06", 10, "food")
        await descriptions.upsert(user_id, _note(expense.id, "a", "amount"))
        await descriptions.upsert(user_id, _note(expense.id, "b"))
        await descriptions.upsert(user_id, _note(keep.id, "c"))

        assert await descriptions.delete_by_expense_id(user_id, expense.id) == 2
        remaining = await descriptions.list_descriptions(user_id)
        assert [d.expense_id for d in remaining] == [keep.id]

    async def test_delete_by_expense_and_column(self, descriptions, make_expense, user_id):
        expense = await make_expense("2024-01-05", 10, "food")
        await descriptions.upsert(user_id, _note(expense.id, "a", "amount"))
        await descriptions.upsert(user_id, _note(expense.id, "b"))

        assert await descriptions.delete_by_expense_id_and_column(
            user_id, expense.id, "amount"
        ) == 1
        remaining = await descriptions.list_descriptions(user_id)
        assert [d.column_name for d in remaining] == ["notes"]

    async def test_delete_with_nothing_to_delete(self, descriptions, user_id):
        assert await descriptions.delete_by_expense_id(user_id, uuid4()) == 0
