"""
In-Memory Storage Implementation

Used by the test-suite and by anyone embedding the ledger without a
database. It is a real transactional store, not a dict with methods:

- Committed state is a set of row snapshots. Rows are never mutated in
  place, a write always stores a fresh copy.
- A transaction works on a private copy of the committed state and keeps
  a journal of the writes it made.
- On commit the journal is replayed against the LATEST committed state.
  Version checks and uniqueness checks run again during the replay, so a
  transaction that raced another one fails with ConflictError (or
  DuplicateResourceError) instead of overwriting it.
- Replay and swap contain no await, so a commit is atomic on the event loop.

TRADEOFFS:
- Each transaction copies the table dictionaries (not the rows). Fine for
  tests and personal-sized ledgers.
- Not thread-safe. One event loop per store.
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Optional
from uuid import UUID

import structlog

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
)


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


class _LedgerState:
    """The five tables, keyed by id."""

    def __init__(
        self,
        users: Optional[dict[UUID, User]] = None,
        sheets: Optional[dict[UUID, Sheet]] = None,
        expenses: Optional[dict[UUID, Expense]] = None,
        categories: Optional[dict[UUID, SheetCategory]] = None,
        descriptions: Optional[dict[UUID, ColumnDescription]] = None,
    ):
        self.users = users if users is not None else {}
        self.sheets = sheets if sheets is not None else {}
        self.expenses = expenses if expenses is not None else {}
        self.categories = categories if categories is not None else {}
        self.descriptions = descriptions if descriptions is not None else {}

    def clone(self) -> "_LedgerState":
        return _LedgerState(
            users=dict(self.users),
            sheets=dict(self.sheets),
            expenses=dict(self.expenses),
            categories=dict(self.categories),
            descriptions=dict(self.descriptions),
        )


# =============================================================================
# WRITE OPERATIONS
#
# Each takes the state as first argument. They run once against the
# transaction's working copy and once more, at commit, against the latest
# committed state.
# =============================================================================

def _check_user_unique(state: _LedgerState, user: User) -> None:
    for other in state.users.values():
        if other.id == user.id:
            continue
        if other.email == user.email:
            raise DuplicateResourceError("User", user.email)
        if user.provider_subject and other.provider_subject == user.provider_subject:
            raise DuplicateResourceError("User", user.provider_subject)


def _insert_user(state: _LedgerState, user: User) -> User:
    if user.id in state.users:
        raise DuplicateResourceError("User", user.id)
    _check_user_unique(state, user)
    state.users[user.id] = user.model_copy()
    return user.model_copy()


def _update_user(state: _LedgerState, user: User) -> User:
    if user.id not in state.users:
        raise NotFoundError("User", user.id)
    _check_user_unique(state, user)
    state.users[user.id] = user.model_copy()
    return user.model_copy()


def _insert_sheet(state: _LedgerState, sheet: Sheet) -> Sheet:
    if sheet.id in state.sheets:
        raise DuplicateResourceError("Sheet", sheet.id)
    state.sheets[sheet.id] = sheet.model_copy()
    return sheet.model_copy()


def _update_sheet(state: _LedgerState, sheet: Sheet, expected_version: int) -> Sheet:
    current = state.sheets.get(sheet.id)
    if current is None or current.user_id != sheet.user_id:
        raise NotFoundError("Sheet", sheet.id)
    if current.version != expected_version:
        raise ConflictError("Sheet", sheet.id, expected_version, current.version)
    stored = current.model_copy(update={
        "name": sheet.name,
        "pin": sheet.pin,
        "has_pin": sheet.has_pin,
        "version": current.version + 1,
    })
    state.sheets[sheet.id] = stored
    return stored.model_copy()


def _delete_sheet(state: _LedgerState, sheet_id: UUID, user_id: UUID) -> bool:
    current = state.sheets.get(sheet_id)
    if current is None or current.user_id != user_id:
        return False
    del state.sheets[sheet_id]
    return True


def _find_duplicate(
    state: _LedgerState,
    user_id: UUID,
    sheet_id: UUID,
    day: date,
    category: str,
    exclude_id: Optional[UUID] = None,
) -> Optional[Expense]:
    for expense in state.expenses.values():
        if (
            expense.id != exclude_id
            and expense.user_id == user_id
            and expense.sheet_id == sheet_id
            and expense.date == day
            and expense.category == category
        ):
            return expense
    return None


def _insert_expense(state: _LedgerState, expense: Expense) -> Expense:
    if expense.id in state.expenses:
        raise DuplicateResourceError("Expense", expense.id)
    if expense.amount != 0 and _find_duplicate(
        state, expense.user_id, expense.sheet_id, expense.date, expense.category
    ):
        raise DuplicateResourceError(
            "Expense",
            f"{expense.date.isoformat()}/{expense.category}",
            "An expense already exists for this date and category",
        )
    state.expenses[expense.id] = expense.model_copy()
    return expense.model_copy()


def _update_expense(state: _LedgerState, expense: Expense, expected_version: int) -> Expense:
    current = state.expenses.get(expense.id)
    if current is None or current.user_id != expense.user_id:
        raise NotFoundError("Expense", expense.id)
    if current.version != expected_version:
        raise ConflictError("Expense", expense.id, expected_version, current.version)
    key_changed = expense.date != current.date or expense.category != current.category
    if key_changed and expense.amount != 0 and _find_duplicate(
        state,
        expense.user_id,
        current.sheet_id,
        expense.date,
        expense.category,
        exclude_id=expense.id,
    ):
        raise DuplicateResourceError(
            "Expense",
            f"{expense.date.isoformat()}/{expense.category}",
            "An expense already exists for this date and category",
        )
    stored = current.model_copy(update={
        "date": expense.date,
        "amount": expense.amount,
        "category": expense.category,
        "description": expense.description,
        "version": current.version + 1,
    })
    state.expenses[expense.id] = stored
    return stored.model_copy()


def _delete_expense(state: _LedgerState, expense_id: UUID, user_id: UUID) -> bool:
    current = state.expenses.get(expense_id)
    if current is None or current.user_id != user_id:
        return False
    del state.expenses[expense_id]
    return True


def _delete_sheet_expenses(state: _LedgerState, sheet_id: UUID, user_id: UUID) -> int:
    doomed = [
        e.id for e in state.expenses.values()
        if e.sheet_id == sheet_id and e.user_id == user_id
    ]
    for expense_id in doomed:
        del state.expenses[expense_id]
    return len(doomed)


def _relabel_expenses(
    state: _LedgerState,
    sheet_id: UUID,
    user_id: UUID,
    old_category: str,
    new_category: str,
) -> int:
    count = 0
    for expense in list(state.expenses.values()):
        if (
            expense.sheet_id == sheet_id
            and expense.user_id == user_id
            and expense.category == old_category
        ):
            count += 1
            if old_category != new_category:
                state.expenses[expense.id] = expense.model_copy(update={
                    "category": new_category,
                    "version": expense.version + 1,
                })
    return count


def _insert_category(state: _LedgerState, category: SheetCategory) -> SheetCategory:
    for other in state.categories.values():
        if other.sheet_id == category.sheet_id and other.name == category.name:
            raise DuplicateResourceError("Category", category.name)
    state.categories[category.id] = category.model_copy()
    return category.model_copy()


def _rename_category(state: _LedgerState, category_id: UUID, new_name: str) -> SheetCategory:
    current = state.categories.get(category_id)
    if current is None:
        raise NotFoundError("Category", category_id)
    for other in state.categories.values():
        if (
            other.id != category_id
            and other.sheet_id == current.sheet_id
            and other.name == new_name
        ):
            raise DuplicateResourceError("Category", new_name)
    stored = current.model_copy(update={"name": new_name})
    state.categories[category_id] = stored
    return stored.model_copy()


def _delete_category(state: _LedgerState, sheet_id: UUID, name: str) -> bool:
    doomed = [
        c.id for c in state.categories.values()
        if c.sheet_id == sheet_id and c.name == name
    ]
    for category_id in doomed:
        del state.categories[category_id]
    return bool(doomed)


def _delete_categories(state: _LedgerState, sheet_id: UUID) -> int:
    doomed = [c.id for c in state.categories.values() if c.sheet_id == sheet_id]
    for category_id in doomed:
        del state.categories[category_id]
    return len(doomed)


def _insert_description(state: _LedgerState, description: ColumnDescription) -> ColumnDescription:
    for other in state.descriptions.values():
        if (
            other.expense_id == description.expense_id
            and other.column_name == description.column_name
        ):
            raise DuplicateResourceError(
                "Description",
                f"{description.expense_id}/{description.column_name}",
            )
    state.descriptions[description.id] = description.model_copy()
    return description.model_copy()


def _update_description_text(
    state: _LedgerState,
    description_id: UUID,
    text: str,
) -> ColumnDescription:
    current = state.descriptions.get(description_id)
    if current is None:
        raise NotFoundError("Description", description_id)
    stored = current.model_copy(update={"description": text})
    state.descriptions[description_id] = stored
    return stored.model_copy()


def _delete_description(state: _LedgerState, description_id: UUID) -> bool:
    return state.descriptions.pop(description_id, None) is not None


def _delete_expense_descriptions(
    state: _LedgerState,
    expense_ids: list[UUID],
    column_name: Optional[str] = None,
) -> int:
    wanted = set(expense_ids)
    doomed = [
        d.id for d in state.descriptions.values()
        if d.expense_id in wanted
        and (column_name is None or d.column_name == column_name)
    ]
    for description_id in doomed:
        del state.descriptions[description_id]
    return len(doomed)


def _reassign_owner(state: _LedgerState, from_user_id: UUID, to_user_id: UUID) -> dict[str, int]:
    counts = {"sheets": 0, "expenses": 0, "descriptions": 0}
    for table, key in (
        (state.sheets, "sheets"),
        (state.expenses, "expenses"),
        (state.descriptions, "descriptions"),
    ):
        for row_id, row in list(table.items()):
            if row.user_id == from_user_id:
                table[row_id] = row.model_copy(update={"user_id": to_user_id})
                counts[key] += 1
    return counts


# =============================================================================
# TRANSACTION
# =============================================================================

class InMemoryTransaction(LedgerTransaction):
    """A private working copy of the ledger plus a journal of writes."""

    def __init__(self, state: _LedgerState):
        self._state = state
        self.journal: list[tuple[Callable[..., Any], tuple]] = []

    def _write(self, op: Callable[..., Any], *args: Any) -> Any:
        result = op(self._state, *args)
        self.journal.append((op, args))
        return result

    # Users

    async def get_user(self, user_id: UUID) -> Optional[User]:
        user = self._state.users.get(user_id)
        return user.model_copy() if user else None

    async def find_user_by_subject(self, subject: str) -> Optional[User]:
        for user in self._state.users.values():
            if user.provider_subject == subject:
                return user.model_copy()
        return None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        for user in self._state.users.values():
            if user.email == email:
                return user.model_copy()
        return None

    async def insert_user(self, user: User) -> User:
        return self._write(_insert_user, user)

    async def update_user(self, user: User) -> User:
        return self._write(_update_user, user)

    async def count_users(self, exclude: Optional[UUID] = None) -> int:
        return sum(1 for user_id in self._state.users if user_id != exclude)

    # Sheets

    async def insert_sheet(self, sheet: Sheet) -> Sheet:
        return self._write(_insert_sheet, sheet)

    async def get_sheet(
        self,
        sheet_id: UUID,
        user_id: UUID,
        for_update: bool = False,
    ) -> Optional[Sheet]:
        # Commit replays the whole journal without awaiting; no row lock needed
        sheet = self._state.sheets.get(sheet_id)
        if sheet is None or sheet.user_id != user_id:
            return None
        return sheet.model_copy()

    async def list_sheets(self, user_id: UUID) -> list[Sheet]:
        sheets = [s for s in self._state.sheets.values() if s.user_id == user_id]
        sheets.sort(key=lambda s: s.created_at, reverse=True)
        return [s.model_copy() for s in sheets]

    async def update_sheet(self, sheet: Sheet, expected_version: int) -> Sheet:
        return self._write(_update_sheet, sheet, expected_version)

    async def delete_sheet(self, sheet_id: UUID, user_id: UUID) -> bool:
        return self._write(_delete_sheet, sheet_id, user_id)

    # Expenses

    async def insert_expense(self, expense: Expense) -> Expense:
        return self._write(_insert_expense, expense)

    async def get_expense(self, expense_id: UUID, user_id: UUID) -> Optional[Expense]:
        expense = self._state.expenses.get(expense_id)
        if expense is None or expense.user_id != user_id:
            return None
        return expense.model_copy()

    async def find_expenses(
        self,
        user_id: UUID,
        sheet_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category: Optional[str] = None,
    ) -> list[Expense]:
        expenses = []
        for expense in self._state.expenses.values():
            if expense.user_id != user_id:
                continue
            if sheet_id and expense.sheet_id != sheet_id:
                continue
            if date_from and expense.date < date_from:
                continue
            if date_to and expense.date > date_to:
                continue
            if category and expense.category != category:
                continue
            expenses.append(expense.model_copy())

        # Newest first
        expenses.sort(key=lambda e: (e.date, e.created_at), reverse=True)
        return expenses

    async def expense_exists(
        self,
        user_id: UUID,
        sheet_id: UUID,
        day: date,
        category: str,
        exclude_id: Optional[UUID] = None,
    ) -> bool:
        return _find_duplicate(
            self._state, user_id, sheet_id, day, category, exclude_id
        ) is not None

    async def update_expense(self, expense: Expense, expected_version: int) -> Expense:
        return self._write(_update_expense, expense, expected_version)

    async def delete_expense(self, expense_id: UUID, user_id: UUID) -> bool:
        return self._write(_delete_expense, expense_id, user_id)

    async def delete_sheet_expenses(self, sheet_id: UUID, user_id: UUID) -> int:
        return self._write(_delete_sheet_expenses, sheet_id, user_id)

    async def count_expenses(self, sheet_id: UUID, user_id: UUID) -> int:
        return sum(
            1 for e in self._state.expenses.values()
            if e.sheet_id == sheet_id and e.user_id == user_id
        )

    async def relabel_expenses(
        self,
        sheet_id: UUID,
        user_id: UUID,
        old_category: str,
        new_category: str,
    ) -> int:
        return self._write(
            _relabel_expenses, sheet_id, user_id, old_category, new_category
        )

    async def sum_expenses(
        self,
        sheet_id: UUID,
        user_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Decimal:
        expenses = await self.find_expenses(
            user_id, sheet_id=sheet_id, date_from=date_from, date_to=date_to
        )
        return sum((e.amount for e in expenses), ZERO)

    async def sum_expenses_by_category(
        self,
        sheet_id: UUID,
        user_id: UUID,
    ) -> list[tuple[str, Decimal]]:
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for expense in await self.find_expenses(user_id, sheet_id=sheet_id):
            totals[expense.category] += expense.amount
        return sorted(totals.items(), key=lambda item: (-item[1], item[0]))

    async def distinct_expense_categories(self, sheet_id: UUID) -> list[str]:
        return sorted({
            e.category for e in self._state.expenses.values()
            if e.sheet_id == sheet_id
        })

    # Sheet categories

    async def list_sheet_categories(self, sheet_id: UUID) -> list[SheetCategory]:
        return [
            c.model_copy() for c in self._state.categories.values()
            if c.sheet_id == sheet_id
        ]

    async def get_sheet_category(self, sheet_id: UUID, name: str) -> Optional[SheetCategory]:
        for category in self._state.categories.values():
            if category.sheet_id == sheet_id and category.name == name:
                return category.model_copy()
        return None

    async def max_display_order(self, sheet_id: UUID) -> Optional[int]:
        orders = [
            c.display_order for c in self._state.categories.values()
            if c.sheet_id == sheet_id and c.display_order is not None
        ]
        return max(orders) if orders else None

    async def insert_sheet_category(self, category: SheetCategory) -> SheetCategory:
        return self._write(_insert_category, category)

    async def rename_sheet_category(self, category_id: UUID, new_name: str) -> SheetCategory:
        return self._write(_rename_category, category_id, new_name)

    async def delete_sheet_category(self, sheet_id: UUID, name: str) -> bool:
        return self._write(_delete_category, sheet_id, name)

    async def delete_sheet_categories(self, sheet_id: UUID) -> int:
        return self._write(_delete_categories, sheet_id)

    # Column descriptions

    async def get_description(self, description_id: UUID) -> Optional[ColumnDescription]:
        description = self._state.descriptions.get(description_id)
        return description.model_copy() if description else None

    async def find_description(
        self,
        expense_id: UUID,
        column_name: str,
    ) -> Optional[ColumnDescription]:
        for description in self._state.descriptions.values():
            if description.expense_id == expense_id and description.column_name == column_name:
                return description.model_copy()
        return None

    async def list_descriptions(
        self,
        user_id: UUID,
        expense_ids: Optional[list[UUID]] = None,
        column_name: Optional[str] = None,
    ) -> list[ColumnDescription]:
        wanted = set(expense_ids) if expense_ids is not None else None
        descriptions = [
            d.model_copy() for d in self._state.descriptions.values()
            if d.user_id == user_id
            and (wanted is None or d.expense_id in wanted)
            and (column_name is None or d.column_name == column_name)
        ]
        descriptions.sort(key=lambda d: d.created_at)
        return descriptions

    async def insert_description(self, description: ColumnDescription) -> ColumnDescription:
        return self._write(_insert_description, description)

    async def update_description_text(
        self,
        description_id: UUID,
        text: str,
    ) -> ColumnDescription:
        return self._write(_update_description_text, description_id, text)

    async def delete_description(self, description_id: UUID) -> bool:
        return self._write(_delete_description, description_id)

    async def delete_expense_descriptions(
        self,
        expense_ids: list[UUID],
        column_name: Optional[str] = None,
    ) -> int:
        return self._write(_delete_expense_descriptions, list(expense_ids), column_name)

    # Ownership transfer

    async def reassign_owner(self, from_user_id: UUID, to_user_id: UUID) -> dict[str, int]:
        return self._write(_reassign_owner, from_user_id, to_user_id)


# =============================================================================
# STORES
# =============================================================================

class InMemoryLedgerStore(LedgerStoreInterface):
    """Transactional ledger store held in process memory."""

    def __init__(self):
        self._state = _LedgerState()
        self._commits = 0

    @property
    def commit_count(self) -> int:
        return self._commits

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        tx = InMemoryTransaction(self._state.clone())
        yield tx
        self._commit(tx)

    def _commit(self, tx: InMemoryTransaction) -> None:
        if not tx.journal:
            return
        state = self._state.clone()
        for op, args in tx.journal:
            op(state, *args)
        self._state = state
        self._commits += 1
        logger.debug("memory_store_committed", writes=len(tx.journal))

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in process memory."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy())
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        # Appended in order, so newest is last
        return list(reversed(self._events))[:limit]
