"""
Main Orchestrator for the Expense Ledger

This module ties together all the components and is the boundary the
transport layer (HTTP handlers, CLI, tests) talks to.

DESIGN DECISION: The orchestrator enforces the boundaries:
- No operation runs without a verified caller identity
- Raw input that fails shape validation becomes InvalidArgumentError
- Deleting an expense deletes its cell descriptions in the SAME transaction
- Every mutation is audited, and so is every refusal

Business errors from the managers pass through unmodified. The orchestrator
only records them; turning them into a response is the caller's job.
"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Optional, Type, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel, ValidationError

from expense_ledger.analytics import AnalyticsEngine
from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.bootstrap import claim_placeholder_data
from expense_ledger.config import LedgerSettings, Settings, get_settings
from expense_ledger.errors import (
    InvalidArgumentError,
    LedgerError,
    StorageError,
    UnauthenticatedError,
)
from expense_ledger.ledger import (
    CategoryRegistry,
    DescriptionManager,
    ExpenseManager,
    SheetManager,
    UserDirectory,
)
from expense_ledger.models.analytics import AnalyticsReport
from expense_ledger.models.ledger import (
    ColumnDescription,
    DescriptionInput,
    Expense,
    ExpenseInput,
    ExpenseUpdate,
    Sheet,
    SheetInput,
    SheetSummary,
    User,
    VerifiedIdentity,
)
from expense_ledger.services.storage import (
    AuditStorageInterface,
    LedgerStoreInterface,
    SqlAuditStorage,
    SqlLedgerStore,
)


InputModel = TypeVar("InputModel", bound=BaseModel)


def _parse(model: Type[InputModel], data: Union[InputModel, dict[str, Any]]) -> InputModel:
    if isinstance(data, model):
        return data
    return model.model_validate(data)


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item["loc"]) or "input"
        parts.append(f"{field}: {item['msg']}")
    return "; ".join(parts)


class LedgerService:
    """
    Entry point for every ledger operation.

    Components are injected for testing; anything not supplied is built
    from the store.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        sheets: Optional[SheetManager] = None,
        expenses: Optional[ExpenseManager] = None,
        categories: Optional[CategoryRegistry] = None,
        descriptions: Optional[DescriptionManager] = None,
        users: Optional[UserDirectory] = None,
        analytics: Optional[AnalyticsEngine] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger or AuditLogger()
        self.sheets = sheets or SheetManager(store, self._settings)
        self.expenses = expenses or ExpenseManager(store, self._settings)
        self.categories = categories or CategoryRegistry(store, self._settings)
        self.descriptions = descriptions or DescriptionManager(store, self._settings)
        self.users = users or UserDirectory(store, self._settings)
        self.analytics_engine = analytics or AnalyticsEngine(
            store, self.categories, self._settings
        )

    @property
    def store(self) -> LedgerStoreInterface:
        return self._store

    async def start(self) -> None:
        await self._store.open()

    async def close(self) -> None:
        await self._store.close()

    @staticmethod
    def _require_identity(user_id: Optional[UUID]) -> UUID:
        if user_id is None:
            raise UnauthenticatedError()
        return user_id

    @asynccontextmanager
    async def _guard(
        self,
        operation: str,
        user_id: Optional[UUID],
        correlation_id: UUID,
    ) -> AsyncIterator[None]:
        """Audit refusals and convert shape errors; never swallow anything."""
        try:
            yield
        except ValidationError as e:
            error = InvalidArgumentError(_validation_message(e))
            await self._audit_logger.log_operation_rejected(
                operation=operation,
                error_code=error.code,
                error_message=error.message,
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise error from e
        except LedgerError as e:
            await self._audit_logger.log_operation_rejected(
                operation=operation,
                error_code=e.code,
                error_message=e.message,
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise
        except StorageError as e:
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation},
                correlation_id=correlation_id,
            )
            raise

    # =========================================================================
    # USERS
    # =========================================================================

    async def sign_in(
        self,
        identity: Union[VerifiedIdentity, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> User:
        """
        Resolve a verified identity to a user.

        A brand-new user who is the only real user inherits any data still
        owned by the placeholder user.
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("sign_in", None, correlation_id):
            identity = _parse(VerifiedIdentity, identity)
            user, created = await self.users.sign_in(identity)
            await self._audit_logger.log_user_signed_in(
                user_id=user.id,
                email=user.email,
                created=created,
                correlation_id=correlation_id,
            )
            if created:
                counts = await claim_placeholder_data(self._store, user.id, self._settings)
                if any(counts.values()):
                    await self._audit_logger.log_placeholder_claimed(
                        user_id=user.id,
                        counts=counts,
                        correlation_id=correlation_id,
                    )
        return user

    # =========================================================================
    # SHEETS
    # =========================================================================

    async def create_sheet(
        self,
        user_id: Optional[UUID],
        data: Union[SheetInput, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Sheet:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("create_sheet", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            sheet = await self.sheets.create(user_id, _parse(SheetInput, data))
            await self._audit_logger.log_sheet_created(
                user_id=user_id,
                sheet_id=sheet.id,
                name=sheet.name,
                correlation_id=correlation_id,
            )
        return sheet

    async def update_sheet(
        self,
        user_id: Optional[UUID],
        sheet_id: UUID,
        data: Union[SheetInput, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Sheet:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("update_sheet", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            sheet = await self.sheets.update(user_id, sheet_id, _parse(SheetInput, data))
            await self._audit_logger.log_sheet_updated(
                user_id=user_id,
                sheet_id=sheet.id,
                name=sheet.name,
                version=sheet.version,
                correlation_id=correlation_id,
            )
        return sheet

    async def delete_sheet(
        self,
        user_id: Optional[UUID],
        sheet_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, int]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("delete_sheet", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            purged = await self.sheets.delete(user_id, sheet_id)
            await self._audit_logger.log_sheet_deleted(
                user_id=user_id,
                sheet_id=sheet_id,
                purged=purged,
                correlation_id=correlation_id,
            )
        return purged

    async def get_sheet(
        self,
        user_id: Optional[UUID],
        sheet_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> SheetSummary:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("get_sheet", user_id, correlation_id):
            return await self.sheets.get(self._require_identity(user_id), sheet_id)

    async def list_sheets(
        self,
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> list[SheetSummary]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("list_sheets", user_id, correlation_id):
            return await self.sheets.list_sheets(self._require_identity(user_id))

    async def verify_pin(
        self,
        user_id: Optional[UUID],
        sheet_id: UUID,
        pin: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("verify_pin", user_id, correlation_id):
            return await self.sheets.verify_pin(
                self._require_identity(user_id), sheet_id, pin
            )

    # =========================================================================
    # EXPENSES
    # =========================================================================

    async def create_expense(
        self,
        user_id: Optional[UUID],
        data: Union[ExpenseInput, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("create_expense", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            expense = await self.expenses.create(user_id, _parse(ExpenseInput, data))
            await self._audit_logger.log_expense_created(
                user_id=user_id,
                expense_id=expense.id,
                sheet_id=expense.sheet_id,
                category=expense.category,
                amount=str(expense.amount),
                correlation_id=correlation_id,
            )
        return expense

    async def update_expense(
        self,
        user_id: Optional[UUID],
        expense_id: UUID,
        data: Union[ExpenseUpdate, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("update_expense", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            expense = await self.expenses.update(
                user_id, expense_id, _parse(ExpenseUpdate, data)
            )
            await self._audit_logger.log_expense_updated(
                user_id=user_id,
                expense_id=expense.id,
                version=expense.version,
                correlation_id=correlation_id,
            )
        return expense

    async def delete_expense(
        self,
        user_id: Optional[UUID],
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """Delete an expense and its cell descriptions in one transaction."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("delete_expense", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            async with self._store.transaction() as tx:
                expense = await self.expenses.delete(user_id, expense_id, tx=tx)
                removed = await self.descriptions.delete_by_expense_id(
                    user_id, expense_id, tx=tx
                )
            await self._audit_logger.log_expense_deleted(
                user_id=user_id,
                expense_id=expense_id,
                descriptions_deleted=removed,
                correlation_id=correlation_id,
            )
        return expense

    async def get_expense(
        self,
        user_id: Optional[UUID],
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("get_expense", user_id, correlation_id):
            return await self.expenses.get_by_id(self._require_identity(user_id), expense_id)

    async def list_expenses(
        self,
        user_id: Optional[UUID],
        sheet_id: Optional[UUID] = None,
        month: Optional[str] = None,
        year: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[Expense]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("list_expenses", user_id, correlation_id):
            return await self.expenses.list_by_filters(
                self._require_identity(user_id),
                sheet_id=sheet_id,
                month=month,
                year=year,
            )

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def list_categories(
        self,
        user_id: Optional[UUID],
        sheet_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> list[str]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("list_categories", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            async with self._store.transaction() as tx:
                await self.sheets.get(user_id, sheet_id, tx=tx)
                return await self.categories.list_categories(sheet_id, tx=tx)

    async def create_category(
        self,
        user_id: Optional[UUID],
        sheet_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("create_category", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            created = await self.categories.create(user_id, sheet_id, name)
            await self._audit_logger.log_category_created(
                user_id=user_id,
                sheet_id=sheet_id,
                name=created,
                correlation_id=correlation_id,
            )
        return created

    async def rename_category(
        self,
        user_id: Optional[UUID],
        sheet_id: UUID,
        old_name: str,
        new_name: str,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("rename_category", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            change = await self.categories.rename(user_id, sheet_id, old_name, new_name)
            await self._audit_logger.log_category_renamed(
                user_id=user_id,
                sheet_id=sheet_id,
                old_name=old_name,
                new_name=change.name,
                relabelled=change.relabelled,
                correlation_id=correlation_id,
            )
        return change.name

    async def delete_category(
        self,
        user_id: Optional[UUID],
        sheet_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """Returns how many expenses moved to "uncategorized"."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("delete_category", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            change = await self.categories.delete(user_id, sheet_id, name)
            await self._audit_logger.log_category_deleted(
                user_id=user_id,
                sheet_id=sheet_id,
                name=name,
                relabelled=change.relabelled,
                correlation_id=correlation_id,
            )
        return change.relabelled

    # =========================================================================
    # DESCRIPTIONS
    # =========================================================================

    async def save_description(
        self,
        user_id: Optional[UUID],
        data: Union[DescriptionInput, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> ColumnDescription:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("save_description", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            saved = await self.descriptions.upsert(user_id, _parse(DescriptionInput, data))
            await self._audit_logger.log_description_saved(
                user_id=user_id,
                description_id=saved.id,
                expense_id=saved.expense_id,
                column_name=saved.column_name,
                correlation_id=correlation_id,
            )
        return saved

    async def get_description(
        self,
        user_id: Optional[UUID],
        description_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> ColumnDescription:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("get_description", user_id, correlation_id):
            return await self.descriptions.get(self._require_identity(user_id), description_id)

    async def list_descriptions(
        self,
        user_id: Optional[UUID],
        expense_ids: Optional[list[UUID]] = None,
        sheet_id: Optional[UUID] = None,
        column_name: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[ColumnDescription]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("list_descriptions", user_id, correlation_id):
            return await self.descriptions.list_descriptions(
                self._require_identity(user_id),
                expense_ids=expense_ids,
                sheet_id=sheet_id,
                column_name=column_name,
            )

    async def delete_description(
        self,
        user_id: Optional[UUID],
        description_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("delete_description", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            await self.descriptions.delete_by_id(user_id, description_id)
            await self._audit_logger.log_description_deleted(
                user_id=user_id,
                entity_id=description_id,
                deleted=1,
                correlation_id=correlation_id,
            )

    async def delete_expense_descriptions(
        self,
        user_id: Optional[UUID],
        expense_id: UUID,
        column_name: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """Remove one column's description, or every description, of an expense."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("delete_expense_descriptions", user_id, correlation_id):
            user_id = self._require_identity(user_id)
            if column_name is None:
                deleted = await self.descriptions.delete_by_expense_id(user_id, expense_id)
            else:
                deleted = await self.descriptions.delete_by_expense_id_and_column(
                    user_id, expense_id, column_name
                )
            await self._audit_logger.log_description_deleted(
                user_id=user_id,
                entity_id=expense_id,
                deleted=deleted,
                correlation_id=correlation_id,
            )
        return deleted

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    async def analytics(
        self,
        user_id: Optional[UUID],
        sheet_id: UUID,
        month: Optional[str] = None,
        year: Optional[str] = None,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AnalyticsReport:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("analytics", user_id, correlation_id):
            return await self.analytics_engine.report(
                self._require_identity(user_id),
                sheet_id,
                month=month,
                year=year,
                today=today,
            )


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[LedgerStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> LedgerService:
    """
    Factory function to create the ledger service.

    Args:
        settings: Application settings (defaults to get_settings())
        store: Ledger store. Defaults to a SQL store on DATABASE_URL, whose
               engine is shared with a SQL audit storage.
        audit_storage: Where audit events persist. None keeps them local.

    Call `await service.start()` before the first operation.
    """
    settings = settings or get_settings()

    if store is None:
        sql_store = SqlLedgerStore(settings=settings.database)
        audit_storage = audit_storage or SqlAuditStorage(sql_store.engine)
        store = sql_store

    return LedgerService(
        store=store,
        audit_logger=AuditLogger(audit_storage),
        settings=settings.ledger,
    )
