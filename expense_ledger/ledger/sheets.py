"""
Sheet Manager

Owns the sheet lifecycle. A sheet is a namespace: deleting one deletes every
expense, category and cell description below it, in one transaction.
"""

from typing import Optional
from uuid import UUID

from expense_ledger.errors import InvalidArgumentError, NotFoundError
from expense_ledger.ledger.base import LedgerComponent
from expense_ledger.models.ledger import (
    Sheet,
    SheetCategory,
    SheetInput,
    SheetSummary,
)
from expense_ledger.services.storage.interface import LedgerTransaction


class SheetManager(LedgerComponent):
    """Create, update, delete and list a user's sheets."""

    def _clean_name(self, name: Optional[str]) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise InvalidArgumentError("Sheet name cannot be empty")
        if len(cleaned) > self._settings.sheet_name_max_length:
            raise InvalidArgumentError(
                f"Sheet name must be at most "
                f"{self._settings.sheet_name_max_length} characters"
            )
        return cleaned

    async def create(
        self,
        user_id: UUID,
        data: SheetInput,
        tx: Optional[LedgerTransaction] = None,
    ) -> Sheet:
        """
        Create a sheet. When configured, seeds the default category list.

        Raises:
            InvalidArgumentError: If the trimmed name is empty or too long
        """
        name = self._clean_name(data.name)
        pin = data.pin or None
        sheet = Sheet(name=name, pin=pin, has_pin=bool(pin), user_id=user_id)

        async with self._unit_of_work(tx) as tx:
            stored = await tx.insert_sheet(sheet)
            if self._settings.seed_default_categories:
                for order, category in enumerate(
                    self._settings.default_categories_list, start=1
                ):
                    await tx.insert_sheet_category(SheetCategory(
                        sheet_id=stored.id,
                        name=category,
                        display_order=order,
                    ))

        self._logger.info("sheet_created", sheet_id=str(stored.id), user_id=str(user_id))
        return stored

    async def update(
        self,
        user_id: UUID,
        sheet_id: UUID,
        data: SheetInput,
        tx: Optional[LedgerTransaction] = None,
    ) -> Sheet:
        """
        Rename a sheet and optionally replace its PIN.

        An absent PIN leaves the stored one untouched; an empty one clears it.

        Raises:
            NotFoundError: If no sheet matches (sheet_id, user_id)
            ConflictError: If data.version is stale
        """
        name = self._clean_name(data.name)

        async with self._unit_of_work(tx) as tx:
            current = await self._require_sheet(tx, user_id, sheet_id)
            pin = current.pin if data.pin is None else (data.pin or None)
            expected = data.version if data.version is not None else current.version
            stored = await tx.update_sheet(
                current.model_copy(update={
                    "name": name,
                    "pin": pin,
                    "has_pin": bool(pin),
                }),
                expected_version=expected,
            )

        self._logger.info("sheet_updated", sheet_id=str(sheet_id), version=stored.version)
        return stored

    async def delete(
        self,
        user_id: UUID,
        sheet_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> dict[str, int]:
        """
        Delete a sheet and everything on it.

        Returns:
            Counts of purged expenses, categories and descriptions

        Raises:
            NotFoundError: If the sheet is not owned by user_id
        """
        async with self._unit_of_work(tx) as tx:
            await self._require_sheet(tx, user_id, sheet_id)
            expenses = await tx.find_expenses(user_id, sheet_id=sheet_id)
            purged = {
                "descriptions": await tx.delete_expense_descriptions(
                    [e.id for e in expenses]
                ),
                "expenses": await tx.delete_sheet_expenses(sheet_id, user_id),
                "categories": await tx.delete_sheet_categories(sheet_id),
            }
            if not await tx.delete_sheet(sheet_id, user_id):
                raise NotFoundError("Sheet", sheet_id)

        self._logger.info("sheet_deleted", sheet_id=str(sheet_id), **purged)
        return purged

    async def get(
        self,
        user_id: UUID,
        sheet_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> SheetSummary:
        async with self._unit_of_work(tx) as tx:
            sheet = await self._require_sheet(tx, user_id, sheet_id)
            count = await tx.count_expenses(sheet_id, user_id)
        return SheetSummary.from_sheet(sheet, count)

    async def list_sheets(
        self,
        user_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> list[SheetSummary]:
        """The user's sheets, newest first, each with its expense count."""
        async with self._unit_of_work(tx) as tx:
            summaries = []
            for sheet in await tx.list_sheets(user_id):
                count = await tx.count_expenses(sheet.id, user_id)
                summaries.append(SheetSummary.from_sheet(sheet, count))
        return summaries

    async def verify_pin(
        self,
        user_id: UUID,
        sheet_id: UUID,
        pin: Optional[str],
        tx: Optional[LedgerTransaction] = None,
    ) -> bool:
        """True for an unprotected sheet, else only for the exact PIN."""
        async with self._unit_of_work(tx) as tx:
            sheet = await self._require_sheet(tx, user_id, sheet_id)
        if not sheet.has_pin:
            return True
        if not pin or not pin.strip():
            return False
        return pin.strip() == sheet.pin
