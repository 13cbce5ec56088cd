"""
Category Registry

Keeps the ordered set of category names a sheet recognizes.

Two sources exist for that list:
1. CURATED: SheetCategory rows, ordered by display_order (nulls last)
2. FALLBACK: the distinct categories already used by the sheet's expenses

The fallback only applies while a sheet has no curated rows at all. It lets
a sheet created before the registry existed keep working.

Renaming and deleting a category touch two tables (registry row + every
expense tagged with it). Both steps always run in ONE transaction.
"""

from typing import NamedTuple, Optional
from uuid import UUID

from expense_ledger.errors import (
    DuplicateResourceError,
    InvalidArgumentError,
    NotFoundError,
)
from expense_ledger.ledger.base import LedgerComponent
from expense_ledger.models.ledger import SheetCategory, normalize_category
from expense_ledger.services.storage.interface import LedgerTransaction


class CategoryChange(NamedTuple):
    """Outcome of a rename or delete: resulting name and expenses relabelled."""
    name: str
    relabelled: int


def ordered_category_names(
    curated: list[SheetCategory],
    expense_categories: list[str],
) -> list[str]:
    """
    Pick the category list for a sheet.

    With curated rows: by display_order ascending, nulls last, ties by name,
    de-duplicated. Without: distinct expense categories, sorted.
    """
    if curated:
        ordered = sorted(
            curated,
            key=lambda c: (c.display_order is None, c.display_order or 0, c.name),
        )
        names = []
        seen = set()
        for category in ordered:
            if category.name not in seen:
                seen.add(category.name)
                names.append(category.name)
        return names

    return sorted({name for name in expense_categories if name})


class CategoryRegistry(LedgerComponent):
    """Curated, ordered category names per sheet."""

    def _clean(self, name: Optional[str]) -> str:
        normalized = normalize_category(name or "")
        if not normalized:
            raise InvalidArgumentError("Category name cannot be empty")
        if len(normalized) > self._settings.category_name_max_length:
            raise InvalidArgumentError(
                f"Category name must be at most "
                f"{self._settings.category_name_max_length} characters"
            )
        return normalized

    async def list_categories(
        self,
        sheet_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> list[str]:
        async with self._unit_of_work(tx) as tx:
            curated = await tx.list_sheet_categories(sheet_id)
            fallback = [] if curated else await tx.distinct_expense_categories(sheet_id)
        return ordered_category_names(curated, fallback)

    async def create(
        self,
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        tx: Optional[LedgerTransaction] = None,
    ) -> str:
        """
        Register a category at the end of the sheet's list.

        Raises:
            NotFoundError: If the sheet is not owned by user_id
            DuplicateResourceError: If the normalized name is already registered
        """
        name = self._clean(name)
        async with self._unit_of_work(tx) as tx:
            await self._require_sheet(tx, user_id, sheet_id)
            if await tx.get_sheet_category(sheet_id, name) is not None:
                raise DuplicateResourceError(
                    "Category",
                    name,
                    f"Category '{name}' already exists on this sheet",
                )
            highest = await tx.max_display_order(sheet_id)
            await tx.insert_sheet_category(SheetCategory(
                sheet_id=sheet_id,
                name=name,
                display_order=(highest or 0) + 1,
            ))

        self._logger.info("category_created", sheet_id=str(sheet_id), name=name)
        return name

    async def rename(
        self,
        user_id: UUID,
        sheet_id: UUID,
        old_name: str,
        new_name: str,
        tx: Optional[LedgerTransaction] = None,
    ) -> CategoryChange:
        """
        Rename a category and relabel every expense tagged with it.

        When both names normalize to the same value the registry is left
        alone, but the relabel pass still runs.

        Raises:
            NotFoundError: If the sheet is not owned, or old_name isn't registered
            DuplicateResourceError: If new_name is already registered
        """
        old_name = self._clean(old_name)
        new_name = self._clean(new_name)

        async with self._unit_of_work(tx) as tx:
            await self._require_sheet(tx, user_id, sheet_id)
            if old_name != new_name:
                if await tx.get_sheet_category(sheet_id, new_name) is not None:
                    raise DuplicateResourceError(
                        "Category",
                        new_name,
                        f"Category '{new_name}' already exists on this sheet",
                    )
                row = await tx.get_sheet_category(sheet_id, old_name)
                if row is None:
                    raise NotFoundError("Category", old_name)
                await tx.rename_sheet_category(row.id, new_name)
            relabelled = await tx.relabel_expenses(sheet_id, user_id, old_name, new_name)

        self._logger.info(
            "category_renamed",
            sheet_id=str(sheet_id),
            old_name=old_name,
            new_name=new_name,
            relabelled=relabelled,
        )
        return CategoryChange(new_name, relabelled)

    async def delete(
        self,
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        tx: Optional[LedgerTransaction] = None,
    ) -> CategoryChange:
        """
        Remove a category. Its expenses move to "uncategorized", never deleted.

        Deleting a name that isn't registered only runs the relabel pass.
        """
        name = self._clean(name)
        sentinel = self._settings.uncategorized_category

        async with self._unit_of_work(tx) as tx:
            await self._require_sheet(tx, user_id, sheet_id)
            relabelled = await tx.relabel_expenses(sheet_id, user_id, name, sentinel)
            await tx.delete_sheet_category(sheet_id, name)

        self._logger.info(
            "category_deleted",
            sheet_id=str(sheet_id),
            name=name,
            relabelled=relabelled,
        )
        return CategoryChange(sentinel, relabelled)
