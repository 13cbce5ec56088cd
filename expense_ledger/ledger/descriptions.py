"""
Description Manager (cell annotations)

Free-text notes keyed by (expense, column name). At most one row per key:
saving again overwrites the text and keeps the owner.

Descriptions reference expenses by id only. Nothing cascades on its own,
so the expense delete path calls delete_by_expense_id in the same
transaction.
"""

from typing import Optional
from uuid import UUID

from expense_ledger.errors import InvalidArgumentError, NotFoundError
from expense_ledger.ledger.base import LedgerComponent
from expense_ledger.models.ledger import ColumnDescription, DescriptionInput
from expense_ledger.services.storage.interface import LedgerTransaction


class DescriptionManager(LedgerComponent):
    """Upsert, query and delete cell descriptions."""

    def _column(self, column_name: Optional[str]) -> str:
        column = (column_name or "").strip() or self._settings.default_column_name
        if len(column) > self._settings.column_name_max_length:
            raise InvalidArgumentError(
                f"Column name must be at most "
                f"{self._settings.column_name_max_length} characters"
            )
        return column

    async def upsert(
        self,
        user_id: UUID,
        data: DescriptionInput,
        tx: Optional[LedgerTransaction] = None,
    ) -> ColumnDescription:
        """
        Save the description for (expense, column).

        Raises:
            NotFoundError: If the expense is not owned by user_id
        """
        column = self._column(data.column_name)
        if not data.description.strip():
            raise InvalidArgumentError("Description cannot be empty")

        async with self._unit_of_work(tx) as tx:
            if await tx.get_expense(data.expense_id, user_id) is None:
                raise NotFoundError("Expense", data.expense_id)
            existing = await tx.find_description(data.expense_id, column)
            if existing is not None:
                stored = await tx.update_description_text(existing.id, data.description)
            else:
                stored = await tx.insert_description(ColumnDescription(
                    expense_id=data.expense_id,
                    column_name=column,
                    description=data.description,
                    user_id=user_id,
                ))

        self._logger.debug(
            "description_saved",
            expense_id=str(data.expense_id),
            column_name=column,
            created=existing is None,
        )
        return stored

    async def get(
        self,
        user_id: UUID,
        description_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> ColumnDescription:
        async with self._unit_of_work(tx) as tx:
            description = await tx.get_description(description_id)
        if description is None or description.user_id != user_id:
            raise NotFoundError("Description", description_id)
        return description

    async def list_descriptions(
        self,
        user_id: UUID,
        expense_ids: Optional[list[UUID]] = None,
        sheet_id: Optional[UUID] = None,
        column_name: Optional[str] = None,
        tx: Optional[LedgerTransaction] = None,
    ) -> list[ColumnDescription]:
        """The caller's descriptions, narrowed by expense ids, sheet and column."""
        async with self._unit_of_work(tx) as tx:
            if sheet_id is not None:
                on_sheet = [
                    e.id for e in await tx.find_expenses(user_id, sheet_id=sheet_id)
                ]
                if expense_ids is not None:
                    wanted = set(expense_ids)
                    on_sheet = [i for i in on_sheet if i in wanted]
                expense_ids = on_sheet
            return await tx.list_descriptions(
                user_id,
                expense_ids=expense_ids,
                column_name=column_name.strip() if column_name else None,
            )

    async def delete_by_id(
        self,
        user_id: UUID,
        description_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> None:
        """
        Raises:
            NotFoundError: If no description with this id is owned by user_id
        """
        async with self._unit_of_work(tx) as tx:
            description = await tx.get_description(description_id)
            if description is None or description.user_id != user_id:
                raise NotFoundError("Description", description_id)
            await tx.delete_description(description_id)

    async def delete_by_expense_id(
        self,
        user_id: UUID,
        expense_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> int:
        """Delete every description of an expense. Returns the count."""
        return await self._delete_matching(user_id, expense_id, None, tx)

    async def delete_by_expense_id_and_column(
        self,
        user_id: UUID,
        expense_id: UUID,
        column_name: str,
        tx: Optional[LedgerTransaction] = None,
    ) -> int:
        return await self._delete_matching(
            user_id, expense_id, self._column(column_name), tx
        )

    async def _delete_matching(
        self,
        user_id: UUID,
        expense_id: UUID,
        column_name: Optional[str],
        tx: Optional[LedgerTransaction],
    ) -> int:
        async with self._unit_of_work(tx) as tx:
            doomed = await tx.list_descriptions(
                user_id,
                expense_ids=[expense_id],
                column_name=column_name,
            )
            for description in doomed:
                await tx.delete_description(description.id)
        return len(doomed)
