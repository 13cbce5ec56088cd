"""
Audit Models for Expense Ledger

Every mutating ledger operation is logged for audit purposes.
This provides:
1. Traceability of who changed which sheet, expense or category
2. Debugging information when an operation is refused
3. Ability to reconstruct the history of a sheet

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from expense_ledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    One event type per successful mutation, plus failure events.
    """
    # Identity
    USER_SIGNED_IN = "user_signed_in"
    PLACEHOLDER_DATA_CLAIMED = "placeholder_data_claimed"

    # Sheets
    SHEET_CREATED = "sheet_created"
    SHEET_UPDATED = "sheet_updated"
    SHEET_DELETED = "sheet_deleted"

    # Expenses
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_RENAMED = "category_renamed"
    CATEGORY_DELETED = "category_deleted"

    # Descriptions
    DESCRIPTION_SAVED = "description_saved"
    DESCRIPTION_DELETED = "description_deleted"

    # Failures
    OPERATION_REJECTED = "operation_rejected"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who did it
    user_id: Optional[UUID] = Field(
        default=None,
        description="Caller the operation ran for"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'sheet', 'expense', 'category')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one request)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": str(self.user_id) if self.user_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.sheet_created(user_id, sheet_id, name, correlation_id)
        event = AuditEventBuilder.category_renamed(user_id, sheet_id, "food", "dining", 3, correlation_id)
    """

    @staticmethod
    def user_signed_in(
        user_id: UUID,
        email: str,
        created: bool,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_SIGNED_IN,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"{'New' if created else 'Returning'} user signed in: {email}",
            details={"created": created},
        )

    @staticmethod
    def placeholder_data_claimed(
        user_id: UUID,
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLACEHOLDER_DATA_CLAIMED,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Placeholder data reassigned to first user",
            details=counts,
        )

    @staticmethod
    def sheet_created(
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SHEET_CREATED,
            user_id=user_id,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description=f"Sheet created: {name}",
            details={"name": name},
        )

    @staticmethod
    def sheet_updated(
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        version: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SHEET_UPDATED,
            user_id=user_id,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description=f"Sheet updated: {name}",
            details={"name": name, "version": version},
        )

    @staticmethod
    def sheet_deleted(
        user_id: UUID,
        sheet_id: UUID,
        purged: dict[str, int],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SHEET_DELETED,
            user_id=user_id,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description="Sheet deleted with everything on it",
            details=purged,
        )

    @staticmethod
    def expense_created(
        user_id: UUID,
        expense_id: UUID,
        sheet_id: UUID,
        category: str,
        amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense created: {category} {amount}",
            details={
                "sheet_id": str(sheet_id),
                "category": category,
                "amount": amount,
            },
        )

    @staticmethod
    def expense_updated(
        user_id: UUID,
        expense_id: UUID,
        version: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense updated to version {version}",
            details={"version": version},
        )

    @staticmethod
    def expense_deleted(
        user_id: UUID,
        expense_id: UUID,
        descriptions_deleted: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Expense deleted",
            details={"descriptions_deleted": descriptions_deleted},
        )

    @staticmethod
    def category_created(
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            user_id=user_id,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description=f"Category created: {name}",
            details={"name": name},
        )

    @staticmethod
    def category_renamed(
        user_id: UUID,
        sheet_id: UUID,
        old_name: str,
        new_name: str,
        relabelled: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_RENAMED,
            user_id=user_id,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description=f"Category renamed: {old_name} -> {new_name}",
            details={
                "old_name": old_name,
                "new_name": new_name,
                "expenses_relabelled": relabelled,
            },
        )

    @staticmethod
    def category_deleted(
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        relabelled: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_DELETED,
            user_id=user_id,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description=f"Category deleted: {name}",
            details={"name": name, "expenses_relabelled": relabelled},
        )

    @staticmethod
    def description_saved(
        user_id: UUID,
        description_id: UUID,
        expense_id: UUID,
        column_name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DESCRIPTION_SAVED,
            user_id=user_id,
            entity_type="description",
            entity_id=description_id,
            correlation_id=correlation_id,
            description=f"Description saved on column {column_name}",
            details={
                "expense_id": str(expense_id),
                "column_name": column_name,
            },
        )

    @staticmethod
    def description_deleted(
        user_id: UUID,
        entity_id: UUID,
        deleted: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DESCRIPTION_DELETED,
            user_id=user_id,
            entity_type="description",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Deleted {deleted} description(s)",
            details={"deleted": deleted},
        )

    @staticmethod
    def operation_rejected(
        operation: str,
        error_code: str,
        error_message: str,
        user_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected: {error_code}",
            details={"operation": operation},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
