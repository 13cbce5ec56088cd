"""
Data Models Package

This package contains all Pydantic models used in the Expense Ledger.
All data flowing through the ledger must conform to these schemas.
"""

from expense_ledger.models.ledger import (
    INITIAL_VERSION,
    ColumnDescription,
    DescriptionInput,
    Expense,
    ExpenseInput,
    ExpenseUpdate,
    Sheet,
    SheetCategory,
    SheetInput,
    SheetSummary,
    User,
    VerifiedIdentity,
    normalize_category,
    utcnow,
)
from expense_ledger.models.window import DateWindow, WindowGranularity
from expense_ledger.models.analytics import AnalyticsReport
from expense_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "INITIAL_VERSION",
    "ColumnDescription",
    "DescriptionInput",
    "Expense",
    "ExpenseInput",
    "ExpenseUpdate",
    "Sheet",
    "SheetCategory",
    "SheetInput",
    "SheetSummary",
    "User",
    "VerifiedIdentity",
    "normalize_category",
    "utcnow",
    # Windows and analytics
    "AnalyticsReport",
    "DateWindow",
    "WindowGranularity",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
