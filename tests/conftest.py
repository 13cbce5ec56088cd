"""
Shared fixtures.

Everything runs against the in-memory store unless a test asks for the
SQL one explicitly.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_ledger.analytics import AnalyticsEngine
from expense_ledger.audit import AuditLogger
from expense_ledger.config import LedgerSettings
from expense_ledger.ledger import (
    CategoryRegistry,
    DescriptionManager,
    ExpenseManager,
    SheetManager,
    UserDirectory,
)
from expense_ledger.models.ledger import ExpenseInput, SheetInput
from expense_ledger.orchestrator import LedgerService
from expense_ledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


@pytest.fixture
def ledger_settings():
    return LedgerSettings(seed_default_categories=False)


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def other_user_id():
    return uuid4()


@pytest.fixture
def sheets(store, ledger_settings):
    return SheetManager(store, ledger_settings)


@pytest.fixture
def expenses(store, ledger_settings):
    return ExpenseManager(store, ledger_settings)


@pytest.fixture
def categories(store, ledger_settings):
    return CategoryRegistry(store, ledger_settings)


@pytest.fixture
def descriptions(store, ledger_settings):
    return DescriptionManager(store, ledger_settings)


@pytest.fixture
def users(store, ledger_settings):
    return UserDirectory(store, ledger_settings)


@pytest.fixture
def analytics(store, categories, ledger_settings):
    return AnalyticsEngine(store, categories, ledger_settings)


@pytest.fixture
async def sheet(sheets, user_id):
    return await sheets.create(user_id, SheetInput(name="Household"))


@pytest.fixture
def make_expense(expenses, user_id, sheet):
    """Create an expense on the default sheet with terse arguments."""

    async def _make(day, amount, category, description=None, owner=None):
        return await expenses.create(
            owner or user_id,
            ExpenseInput(
                sheet_id=sheet.id,
                date=date.fromisoformat(day) if isinstance(day, str) else day,
                amount=Decimal(str(amount)),
                category=category,
                description=description,
            ),
        )

    return _make


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def service(store, audit_storage, ledger_settings):
    return LedgerService(
        store=store,
        audit_logger=AuditLogger(audit_storage),
        settings=ledger_settings,
    )
