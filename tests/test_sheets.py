"""Tests for the Sheet Manager."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from expense_ledger.config import LedgerSettings
from expense_ledger.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
)
from expense_ledger.ledger import CategoryRegistry, SheetManager
from expense_ledger.models.ledger import DescriptionInput, ExpenseInput, SheetInput
from expense_ledger.services.storage.memory import InMemoryTransaction


class TestCreateSheet:
    """Tests for sheet creation."""

    async def test_create_trims_name(self, sheets, user_id):
        """Names are trimmed and the version starts at 1."""
        sheet = await sheets.create(user_id, SheetInput(name="  Groceries  "))
        assert sheet.name == "Groceries"
        assert sheet.version == 1
        assert sheet.has_pin is False

    async def test_create_with_pin(self, sheets, user_id):
        """A non-empty PIN sets has_pin."""
        sheet = await sheets.create(user_id, SheetInput(name="Private", pin="4321"))
        assert sheet.has_pin is True

    async def test_empty_pin_is_no_pin(self, sheets, user_id):
        """An empty PIN is the same as none."""
        sheet = await sheets.create(user_id, SheetInput(name="Open", pin=""))
        assert sheet.has_pin is False
        assert sheet.pin is None

    async def test_blank_name_rejected(self, sheets, user_id):
        """Empty after trim is an invalid argument."""
        with pytest.raises(InvalidArgumentError):
            await sheets.create(user_id, SheetInput(name="   "))

    async def test_long_name_rejected(self, sheets, user_id):
        """More than 100 characters is an invalid argument."""
        with pytest.raises(InvalidArgumentError):
            await sheets.create(user_id, SheetInput(name="x" * 101))

    async def test_seeds_default_categories_when_enabled(self, store, user_id):
        """Default categories are registered in order when configured."""
        settings = LedgerSettings(
            seed_default_categories=True,
            default_categories="food, Transport ,food,rent",
        )
        sheet = await SheetManager(store, settings).create(user_id, SheetInput(name="Home"))
        names = await CategoryRegistry(store, settings).list_categories(sheet.id)
        assert names == ["food", "transport", "rent"]


class TestUpdateSheet:
    """Tests for renaming a sheet and replacing its PIN."""

    async def test_rename_keeps_pin_when_absent(self, sheets, user_id):
        """An absent PIN leaves the stored one untouched."""
        sheet = await sheets.create(user_id, SheetInput(name="Old", pin="1111"))
        updated = await sheets.update(user_id, sheet.id, SheetInput(name="New"))
        assert updated.name == "New"
        assert updated.has_pin is True
        assert updated.pin == "1111"
        assert updated.version == sheet.version + 1

    async def test_empty_pin_clears_it(self, sheets, user_id):
        """An empty PIN removes protection."""
        sheet = await sheets.create(user_id, SheetInput(name="Old", pin="1111"))
        updated = await sheets.update(user_id, sheet.id, SheetInput(name="Old", pin=""))
        assert updated.has_pin is False

    async def test_update_foreign_sheet_not_found(self, sheets, sheet, other_user_id):
        """Another user's sheet is invisible."""
        with pytest.raises(NotFoundError):
            await sheets.update(other_user_id, sheet.id, SheetInput(name="Mine now"))

    async def test_stale_version_conflicts(self, sheets, sheet, user_id):
        """An update carrying an old version fails with Conflict."""
        await sheets.update(user_id, sheet.id, SheetInput(name="First", version=sheet.version))
        with pytest.raises(ConflictError):
            await sheets.update(
                user_id, sheet.id, SheetInput(name="Second", version=sheet.version)
            )


class TestDeleteSheet:
    """Tests for cascading sheet deletion."""

    async def test_cascade_leaves_nothing_behind(
        self, store, sheets, categories, descriptions, make_expense, sheet, user_id
    ):
        """Deleting a sheet removes its expenses, categories and descriptions."""
        first = await make_expense("2024-01-05", 10, "food")
        await make_expense("2024-01-06", 4, "transport")
        await make_expense("2024-01-06", 0, "food")
        await categories.create(user_id, sheet.id, "food")
        await categories.create(user_id, sheet.id, "transport")
        await descriptions.upsert(
            user_id, DescriptionInput(expense_id=first.id, description="lunch")
        )

        purged = await sheets.delete(user_id, sheet.id)

        assert purged == {"descriptions": 1, "expenses": 3, "categories": 2}
        async with store.transaction() as tx:
            assert await tx.find_expenses(user_id, sheet_id=sheet.id) == []
            assert await tx.list_sheet_categories(sheet.id) == []
            assert await tx.list_descriptions(user_id) == []
            assert await tx.get_sheet(sheet.id, user_id) is None

    async def test_failed_purge_keeps_everything(
        self, store, sheets, categories, descriptions, make_expense, sheet, user_id, monkeypatch
    ):
        """A storage failure midway through the cascade rolls all of it back."""
        expense = await make_expense("2024-01-05", 10, "food")
        await categories.create(user_id, sheet.id, "food")
        await descriptions.upsert(
            user_id, DescriptionInput(expense_id=expense.id, description="lunch")
        )

        async def broken(self, sheet_id):
            raise StorageError("disk full")

        monkeypatch.setattr(InMemoryTransaction, "delete_sheet_categories", broken)
        with pytest.raises(StorageError):
            await sheets.delete(user_id, sheet.id)
        monkeypatch.undo()

        async with store.transaction() as tx:
            assert await tx.get_sheet(sheet.id, user_id) is not None
            assert [e.id for e in await tx.find_expenses(user_id, sheet_id=sheet.id)] == [
                expense.id
            ]
            assert [c.name for c in await tx.list_sheet_categories(sheet.id)] == ["food"]
            assert len(await tx.list_descriptions(user_id)) == 1

    async def test_delete_foreign_sheet_not_found(self, sheets, sheet, other_user_id, user_id):
        """Only the owner can delete a sheet."""
        with pytest.raises(NotFoundError):
            await sheets.delete(other_user_id, sheet.id)
        assert (await sheets.get(user_id, sheet.id)).id == sheet.id

    async def test_other_sheets_untouched(self, sheets, expenses, make_expense, user_id, sheet):
        """The cascade is scoped to the deleted sheet."""
        other = await sheets.create(user_id, SheetInput(name="Other"))
        await make_expense("2024-01-05", 10, "food")
        await expenses.create(user_id, ExpenseInput(
            sheet_id=other.id,
            date=date(2024, 1, 5),
            amount=Decimal("3"),
            category="food",
        ))
        await sheets.delete(user_id, sheet.id)
        remaining = await expenses.list_by_filters(user_id)
        assert [e.sheet_id for e in remaining] == [other.id]


class TestListSheets:
    """Tests for sheet lookups."""

    async def test_list_attaches_expense_counts(self, sheets, make_expense, user_id, sheet):
        """Each listed sheet carries its expense count."""
        empty = await sheets.create(user_id, SheetInput(name="Empty"))
        await make_expense("2024-01-05", 10, "food")
        await make_expense("2024-01-06", 10, "food")

        listed = {s.id: s.expense_count for s in await sheets.list_sheets(user_id)}
        assert listed == {sheet.id: 2, empty.id: 0}

    async def test_listings_never_carry_the_pin(self, sheets, user_id):
        """Listed and fetched sheets say has_pin but not the PIN."""
        vault = await sheets.create(user_id, SheetInput(name="Vault", pin="4321"))

        listed = await sheets.list_sheets(user_id)
        fetched = await sheets.get(user_id, vault.id)

        for summary in listed + [fetched]:
            assert summary.has_pin is True
            assert not hasattr(summary, "pin")
            assert "4321" not in summary.model_dump_json()

    async def test_list_is_per_user(self, sheets, sheet, other_user_id):
        """Users never see each other's sheets."""
        assert await sheets.list_sheets(other_user_id) == []

    async def test_get_missing_sheet(self, sheets, user_id):
        """Unknown ids are NotFound."""
        with pytest.raises(NotFoundError):
            await sheets.get(user_id, uuid4())


class TestVerifyPin:
    """Tests for PIN verification."""

    async def test_unprotected_sheet_always_passes(self, sheets, sheet, user_id):
        assert await sheets.verify_pin(user_id, sheet.id, None) is True

    async def test_protected_sheet(self, sheets, user_id):
        """Only the exact PIN unlocks a protected sheet."""
        sheet = await sheets.create(user_id, SheetInput(name="Vault", pin="2468"))
        assert await sheets.verify_pin(user_id, sheet.id, "2468") is True
        assert await sheets.verify_pin(user_id, sheet.id, "1357") is False
        assert await sheets.verify_pin(user_id, sheet.id, "") is False
