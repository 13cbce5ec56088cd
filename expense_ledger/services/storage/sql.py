"""
SQL Storage Implementation

DESIGN DECISION: SQLAlchemy Core on an async engine.
1. Any SQLAlchemy async URL works (aiosqlite by default, asyncpg in production)
2. One database transaction per LedgerTransaction (engine.begin())
3. Optimistic concurrency is a plain compare-and-set UPDATE:
   UPDATE ... SET version = :expected + 1 WHERE id = :id AND version = :expected
   Zero rows touched means somebody else won the race.

TRADEOFFS:
- SQLite has no native DECIMAL. Amounts come back through SQLAlchemy's
  Numeric(14, 2) processor, quantized to cents. PostgreSQL keeps them exact.
- The one-expense-per-date-and-category rule is enforced by the Expense
  Manager inside the transaction, not by an index: a category delete may
  legitimately fold several rows into "uncategorized" on the same day.
"""

from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    delete,
    desc,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_ledger.config import DatabaseSettings, get_settings
from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.ledger import (
    ColumnDescription,
    Expense,
    Sheet,
    SheetCategory,
    User,
)
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


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")

metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(200)),
    Column("picture", String(1024)),
    Column("provider_subject", String(255), unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

sheets_table = Table(
    "expense_sheets",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(100), nullable=False),
    Column("pin", String(20)),
    Column("has_pin", Boolean, nullable=False, default=False),
    Column("user_id", Uuid, nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("version", Integer, nullable=False),
)

expenses_table = Table(
    "expenses",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("date", Date, nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("category", String(100), nullable=False),
    Column("description", Text),
    Column("user_id", Uuid, nullable=False),
    Column("sheet_id", Uuid, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("version", Integer, nullable=False),
    Index("ix_expenses_owner_sheet_date", "user_id", "sheet_id", "date"),
    Index("ix_expenses_sheet_category", "sheet_id", "category"),
)

sheet_categories_table = Table(
    "sheet_categories",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("sheet_id", Uuid, nullable=False),
    Column("name", String(100), nullable=False),
    Column("display_order", Integer),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("sheet_id", "name", name="uq_sheet_categories_sheet_name"),
)

descriptions_table = Table(
    "column_descriptions",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("expense_id", Uuid, nullable=False),
    Column("column_name", String(50), nullable=False),
    Column("description", Text, nullable=False),
    Column("user_id", Uuid, nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("expense_id", "column_name", name="uq_descriptions_expense_column"),
)

audit_events_table = Table(
    "audit_events",
    metadata,
    Column("event_id", Uuid, primary_key=True),
    Column("timestamp", DateTime(timezone=True), nullable=False, index=True),
    Column("event_type", String(50), nullable=False),
    Column("severity", String(20), nullable=False),
    Column("user_id", Uuid),
    Column("entity_type", String(50)),
    Column("entity_id", Uuid),
    Column("correlation_id", Uuid, index=True),
    Column("description", String(500), nullable=False),
    Column("details", JSON, nullable=False),
    Column("error_code", String(50)),
    Column("error_message", Text),
)


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (url.endswith("://") or ":memory:" in url)


def create_engine_from_settings(settings: DatabaseSettings) -> AsyncEngine:
    """Build the async engine. In-memory SQLite shares one connection."""
    if _is_memory_sqlite(settings.url):
        return create_async_engine(
            settings.url,
            echo=settings.echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(settings.url, echo=settings.echo)


class SqlLedgerTransaction(LedgerTransaction):
    """LedgerTransaction over one open database transaction."""

    def __init__(self, conn: AsyncConnection):
        self._conn = conn

    async def _execute(self, stmt, entity: str = "Row", key: Any = None):
        try:
            return await self._conn.execute(stmt)
        except IntegrityError as e:
            raise DuplicateResourceError(
                entity,
                key,
                f"{entity} violates a uniqueness rule: {key}",
            ) from e

    async def _first(self, stmt):
        result = await self._execute(stmt)
        return result.first()

    async def _scalar(self, stmt):
        result = await self._execute(stmt)
        return result.scalar()

    # Users

    async def get_user(self, user_id: UUID) -> Optional[User]:
        row = await self._first(select(users_table).where(users_table.c.id == user_id))
        return User.model_validate(dict(row._mapping)) if row else None

    async def find_user_by_subject(self, subject: str) -> Optional[User]:
        row = await self._first(
            select(users_table).where(users_table.c.provider_subject == subject)
        )
        return User.model_validate(dict(row._mapping)) if row else None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        row = await self._first(
            select(users_table).where(users_table.c.email == email.strip().lower())
        )
        return User.model_validate(dict(row._mapping)) if row else None

    async def insert_user(self, user: User) -> User:
        await self._execute(
            insert(users_table).values(**user.model_dump()),
            entity="User",
            key=user.email,
        )
        return user.model_copy()

    async def update_user(self, user: User) -> User:
        result = await self._execute(
            update(users_table)
            .where(users_table.c.id == user.id)
            .values(
                email=user.email,
                name=user.name,
                picture=user.picture,
                provider_subject=user.provider_subject,
            ),
            entity="User",
            key=user.email,
        )
        if result.rowcount == 0:
            raise NotFoundError("User", user.id)
        return user.model_copy()

    async def count_users(self, exclude: Optional[UUID] = None) -> int:
        stmt = select(func.count()).select_from(users_table)
        if exclude is not None:
            stmt = stmt.where(users_table.c.id != exclude)
        return int(await self._scalar(stmt) or 0)

    # Sheets

    async def insert_sheet(self, sheet: Sheet) -> Sheet:
        await self._execute(
            insert(sheets_table).values(**sheet.model_dump()),
            entity="Sheet",
            key=sheet.id,
        )
        return sheet.model_copy()

    async def get_sheet(
        self,
        sheet_id: UUID,
        user_id: UUID,
        for_update: bool = False,
    ) -> Optional[Sheet]:
        stmt = select(sheets_table).where(
            sheets_table.c.id == sheet_id,
            sheets_table.c.user_id == user_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        row = await self._first(stmt)
        return Sheet.model_validate(dict(row._mapping)) if row else None

    async def list_sheets(self, user_id: UUID) -> list[Sheet]:
        result = await self._execute(
            select(sheets_table)
            .where(sheets_table.c.user_id == user_id)
            .order_by(sheets_table.c.created_at.desc())
        )
        return [Sheet.model_validate(dict(row._mapping)) for row in result]

    async def update_sheet(self, sheet: Sheet, expected_version: int) -> Sheet:
        result = await self._execute(
            update(sheets_table)
            .where(
                sheets_table.c.id == sheet.id,
                sheets_table.c.user_id == sheet.user_id,
                sheets_table.c.version == expected_version,
            )
            .values(
                name=sheet.name,
                pin=sheet.pin,
                has_pin=sheet.has_pin,
                version=expected_version + 1,
            )
        )
        if result.rowcount == 0:
            current = await self._scalar(
                select(sheets_table.c.version).where(
                    sheets_table.c.id == sheet.id,
                    sheets_table.c.user_id == sheet.user_id,
                )
            )
            if current is None:
                raise NotFoundError("Sheet", sheet.id)
            raise ConflictError("Sheet", sheet.id, expected_version, current)
        return await self.get_sheet(sheet.id, sheet.user_id)

    async def delete_sheet(self, sheet_id: UUID, user_id: UUID) -> bool:
        result = await self._execute(
            delete(sheets_table).where(
                sheets_table.c.id == sheet_id,
                sheets_table.c.user_id == user_id,
            )
        )
        return result.rowcount > 0

    # Expenses

    async def insert_expense(self, expense: Expense) -> Expense:
        await self._execute(
            insert(expenses_table).values(**expense.model_dump()),
            entity="Expense",
            key=expense.id,
        )
        return expense.model_copy()

    async def get_expense(self, expense_id: UUID, user_id: UUID) -> Optional[Expense]:
        row = await self._first(
            select(expenses_table).where(
                expenses_table.c.id == expense_id,
                expenses_table.c.user_id == user_id,
            )
        )
        return Expense.model_validate(dict(row._mapping)) if row else None

    async def find_expenses(
        self,
        user_id: UUID,
        sheet_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category: Optional[str] = None,
    ) -> list[Expense]:
        stmt = select(expenses_table).where(expenses_table.c.user_id == user_id)
        if sheet_id:
            stmt = stmt.where(expenses_table.c.sheet_id == sheet_id)
        if date_from:
            stmt = stmt.where(expenses_table.c.date >= date_from)
        if date_to:
            stmt = stmt.where(expenses_table.c.date <= date_to)
        if category:
            stmt = stmt.where(expenses_table.c.category == category)
        stmt = stmt.order_by(
            expenses_table.c.date.desc(),
            expenses_table.c.created_at.desc(),
        )
        result = await self._execute(stmt)
        return [Expense.model_validate(dict(row._mapping)) for row in result]

    async def expense_exists(
        self,
        user_id: UUID,
        sheet_id: UUID,
        day: date,
        category: str,
        exclude_id: Optional[UUID] = None,
    ) -> bool:
        stmt = select(expenses_table.c.id).where(
            expenses_table.c.user_id == user_id,
            expenses_table.c.sheet_id == sheet_id,
            expenses_table.c.date == day,
            expenses_table.c.category == category,
        )
        if exclude_id is not None:
            stmt = stmt.where(expenses_table.c.id != exclude_id)
        return await self._first(stmt.limit(1)) is not None

    async def update_expense(self, expense: Expense, expected_version: int) -> Expense:
        result = await self._execute(
            update(expenses_table)
            .where(
                expenses_table.c.id == expense.id,
                expenses_table.c.user_id == expense.user_id,
                expenses_table.c.version == expected_version,
            )
            .values(
                date=expense.date,
                amount=expense.amount,
                category=expense.category,
                description=expense.description,
                version=expected_version + 1,
            )
        )
        if result.rowcount == 0:
            current = await self._scalar(
                select(expenses_table.c.version).where(
                    expenses_table.c.id == expense.id,
                    expenses_table.c.user_id == expense.user_id,
                )
            )
            if current is None:
                raise NotFoundError("Expense", expense.id)
            raise ConflictError("Expense", expense.id, expected_version, current)
        return await self.get_expense(expense.id, expense.user_id)

    async def delete_expense(self, expense_id: UUID, user_id: UUID) -> bool:
        result = await self._execute(
            delete(expenses_table).where(
                expenses_table.c.id == expense_id,
                expenses_table.c.user_id == user_id,
            )
        )
        return result.rowcount > 0

    async def delete_sheet_expenses(self, sheet_id: UUID, user_id: UUID) -> int:
        result = await self._execute(
            delete(expenses_table).where(
                expenses_table.c.sheet_id == sheet_id,
                expenses_table.c.user_id == user_id,
            )
        )
        return result.rowcount

    async def count_expenses(self, sheet_id: UUID, user_id: UUID) -> int:
        count = await self._scalar(
            select(func.count()).select_from(expenses_table).where(
                expenses_table.c.sheet_id == sheet_id,
                expenses_table.c.user_id == user_id,
            )
        )
        return int(count or 0)

    async def relabel_expenses(
        self,
        sheet_id: UUID,
        user_id: UUID,
        old_category: str,
        new_category: str,
    ) -> int:
        scope = (
            expenses_table.c.sheet_id == sheet_id,
            expenses_table.c.user_id == user_id,
            expenses_table.c.category == old_category,
        )
        if old_category == new_category:
            count = await self._scalar(
                select(func.count()).select_from(expenses_table).where(*scope)
            )
            return int(count or 0)
        result = await self._execute(
            update(expenses_table)
            .where(*scope)
            .values(category=new_category, version=expenses_table.c.version + 1)
        )
        return result.rowcount

    async def sum_expenses(
        self,
        sheet_id: UUID,
        user_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Decimal:
        stmt = select(func.sum(expenses_table.c.amount)).where(
            expenses_table.c.sheet_id == sheet_id,
            expenses_table.c.user_id == user_id,
        )
        if date_from:
            stmt = stmt.where(expenses_table.c.date >= date_from)
        if date_to:
            stmt = stmt.where(expenses_table.c.date <= date_to)
        return _to_decimal(await self._scalar(stmt))

    async def sum_expenses_by_category(
        self,
        sheet_id: UUID,
        user_id: UUID,
    ) -> list[tuple[str, Decimal]]:
        total = func.sum(expenses_table.c.amount).label("total")
        result = await self._execute(
            select(expenses_table.c.category, total)
            .where(
                expenses_table.c.sheet_id == sheet_id,
                expenses_table.c.user_id == user_id,
            )
            .group_by(expenses_table.c.category)
            .order_by(desc("total"), expenses_table.c.category)
        )
        return [(row.category, _to_decimal(row.total)) for row in result]

    async def distinct_expense_categories(self, sheet_id: UUID) -> list[str]:
        result = await self._execute(
            select(expenses_table.c.category)
            .where(expenses_table.c.sheet_id == sheet_id)
            .distinct()
            .order_by(expenses_table.c.category)
        )
        return list(result.scalars())

    # Sheet categories

    async def list_sheet_categories(self, sheet_id: UUID) -> list[SheetCategory]:
        result = await self._execute(
            select(sheet_categories_table).where(
                sheet_categories_table.c.sheet_id == sheet_id
            )
        )
        return [SheetCategory.model_validate(dict(row._mapping)) for row in result]

    async def get_sheet_category(self, sheet_id: UUID, name: str) -> Optional[SheetCategory]:
        row = await self._first(
            select(sheet_categories_table).where(
                sheet_categories_table.c.sheet_id == sheet_id,
                sheet_categories_table.c.name == name,
            )
        )
        return SheetCategory.model_validate(dict(row._mapping)) if row else None

    async def max_display_order(self, sheet_id: UUID) -> Optional[int]:
        return await self._scalar(
            select(func.max(sheet_categories_table.c.display_order)).where(
                sheet_categories_table.c.sheet_id == sheet_id
            )
        )

    async def insert_sheet_category(self, category: SheetCategory) -> SheetCategory:
        await self._execute(
            insert(sheet_categories_table).values(**category.model_dump()),
            entity="Category",
            key=category.name,
        )
        return category.model_copy()

    async def rename_sheet_category(self, category_id: UUID, new_name: str) -> SheetCategory:
        result = await self._execute(
            update(sheet_categories_table)
            .where(sheet_categories_table.c.id == category_id)
            .values(name=new_name),
            entity="Category",
            key=new_name,
        )
        if result.rowcount == 0:
            raise NotFoundError("Category", category_id)
        row = await self._first(
            select(sheet_categories_table).where(sheet_categories_table.c.id == category_id)
        )
        return SheetCategory.model_validate(dict(row._mapping))

    async def delete_sheet_category(self, sheet_id: UUID, name: str) -> bool:
        result = await self._execute(
            delete(sheet_categories_table).where(
                sheet_categories_table.c.sheet_id == sheet_id,
                sheet_categories_table.c.name == name,
            )
        )
        return result.rowcount > 0

    async def delete_sheet_categories(self, sheet_id: UUID) -> int:
        result = await self._execute(
            delete(sheet_categories_table).where(
                sheet_categories_table.c.sheet_id == sheet_id
            )
        )
        return result.rowcount

    # Column descriptions

    async def get_description(self, description_id: UUID) -> Optional[ColumnDescription]:
        row = await self._first(
            select(descriptions_table).where(descriptions_table.c.id == description_id)
        )
        return ColumnDescription.model_validate(dict(row._mapping)) if row else None

    async def find_description(
        self,
        expense_id: UUID,
        column_name: str,
    ) -> Optional[ColumnDescription]:
        row = await self._first(
            select(descriptions_table).where(
                descriptions_table.c.expense_id == expense_id,
                descriptions_table.c.column_name == column_name,
            )
        )
        return ColumnDescription.model_validate(dict(row._mapping)) if row else None

    async def list_descriptions(
        self,
        user_id: UUID,
        expense_ids: Optional[list[UUID]] = None,
        column_name: Optional[str] = None,
    ) -> list[ColumnDescription]:
        stmt = select(descriptions_table).where(descriptions_table.c.user_id == user_id)
        if expense_ids is not None:
            stmt = stmt.where(descriptions_table.c.expense_id.in_(expense_ids))
        if column_name is not None:
            stmt = stmt.where(descriptions_table.c.column_name == column_name)
        result = await self._execute(stmt.order_by(descriptions_table.c.created_at))
        return [ColumnDescription.model_validate(dict(row._mapping)) for row in result]

    async def insert_description(self, description: ColumnDescription) -> ColumnDescription:
        await self._execute(
            insert(descriptions_table).values(**description.model_dump()),
            entity="Description",
            key=f"{description.expense_id}/{description.column_name}",
        )
        return description.model_copy()

    async def update_description_text(
        self,
        description_id: UUID,
        text: str,
    ) -> ColumnDescription:
        result = await self._execute(
            update(descriptions_table)
            .where(descriptions_table.c.id == description_id)
            .values(description=text)
        )
        if result.rowcount == 0:
            raise NotFoundError("Description", description_id)
        return await self.get_description(description_id)

    async def delete_description(self, description_id: UUID) -> bool:
        result = await self._execute(
            delete(descriptions_table).where(descriptions_table.c.id == description_id)
        )
        return result.rowcount > 0

    async def delete_expense_descriptions(
        self,
        expense_ids: list[UUID],
        column_name: Optional[str] = None,
    ) -> int:
        if not expense_ids:
            return 0
        stmt = delete(descriptions_table).where(
            descriptions_table.c.expense_id.in_(list(expense_ids))
        )
        if column_name is not None:
            stmt = stmt.where(descriptions_table.c.column_name == column_name)
        result = await self._execute(stmt)
        return result.rowcount

    # Ownership transfer

    async def reassign_owner(self, from_user_id: UUID, to_user_id: UUID) -> dict[str, int]:
        counts = {}
        for key, table in (
            ("sheets", sheets_table),
            ("expenses", expenses_table),
            ("descriptions", descriptions_table),
        ):
            result = await self._execute(
                update(table)
                .where(table.c.user_id == from_user_id)
                .values(user_id=to_user_id)
            )
            counts[key] = result.rowcount
        return counts


class SqlLedgerStore(LedgerStoreInterface):
    """
    Ledger store backed by a SQLAlchemy async engine.

    Call open() once at startup to create the schema.
    """

    def __init__(
        self,
        engine: Optional[AsyncEngine] = None,
        settings: Optional[DatabaseSettings] = None,
    ):
        self._settings = settings or get_settings().database
        self._engine = engine or create_engine_from_settings(self._settings)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlLedgerTransaction]:
        try:
            async with self._engine.begin() as conn:
                yield SqlLedgerTransaction(conn)
        except SQLAlchemyError as e:
            raise StorageError(f"Ledger store failure: {e}") from e

    async def open(self) -> None:
        """
        Create the schema, retrying transient connection failures.

        Raises:
            StorageConnectionError: If the database stays unreachable
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.connect_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                retry=retry_if_exception_type(OperationalError),
                reraise=True,
            ):
                with attempt:
                    async with self._engine.begin() as conn:
                        await conn.run_sync(metadata.create_all)
        except (OperationalError, RetryError) as e:
            raise StorageConnectionError(
                f"Could not open ledger database {self._engine.url!r}: {e}"
            ) from e
        logger.info("ledger_store_opened", url=str(self._engine.url))

    async def close(self) -> None:
        await self._engine.dispose()


class SqlAuditStorage(AuditStorageInterface):
    """
    SQL implementation of audit log storage.

    Audit events are append-only. Shares the ledger store's engine.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    def _row_to_event(self, row) -> AuditEvent:
        return AuditEvent.model_validate(dict(row._mapping))

    async def append_event(self, event: AuditEvent) -> bool:
        values = event.model_dump()
        values["event_type"] = event.event_type.value
        values["severity"] = event.severity.value
        try:
            async with self._engine.begin() as conn:
                await conn.execute(insert(audit_events_table).values(**values))
            return True
        except SQLAlchemyError as e:
            # Audit persistence never breaks the ledger operation
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    select(audit_events_table)
                    .where(audit_events_table.c.correlation_id == correlation_id)
                    .order_by(audit_events_table.c.timestamp)
                )
                return [self._row_to_event(row) for row in result]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    select(audit_events_table)
                    .order_by(audit_events_table.c.timestamp.desc())
                    .limit(limit)
                )
                return [self._row_to_event(row) for row in result]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e
