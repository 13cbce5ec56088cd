"""
Audit Logger

DESIGN DECISION: Every mutating ledger operation is logged.
This provides:
1. Complete traceability of who changed which sheet
2. Debugging capability when an operation is refused
3. A history the owner of a sheet can be shown

The audit logger:
- Is async so it sits naturally at the orchestration boundary
- Gracefully handles failures (a broken audit sink never fails a ledger write)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from expense_ledger.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An AuditStorageInterface, when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_user_signed_in(
        self,
        user_id: UUID,
        email: str,
        created: bool,
        correlation_id: UUID,
    ) -> None:
        """Log a sign in (new or returning user)."""
        await self.log(AuditEventBuilder.user_signed_in(
            user_id=user_id,
            email=email,
            created=created,
            correlation_id=correlation_id,
        ))

    async def log_placeholder_claimed(
        self,
        user_id: UUID,
        counts: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.placeholder_data_claimed(
            user_id=user_id,
            counts=counts,
            correlation_id=correlation_id,
        ))

    async def log_sheet_created(
        self,
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sheet_created(
            user_id=user_id,
            sheet_id=sheet_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_sheet_updated(
        self,
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        version: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sheet_updated(
            user_id=user_id,
            sheet_id=sheet_id,
            name=name,
            version=version,
            correlation_id=correlation_id,
        ))

    async def log_sheet_deleted(
        self,
        user_id: UUID,
        sheet_id: UUID,
        purged: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sheet_deleted(
            user_id=user_id,
            sheet_id=sheet_id,
            purged=purged,
            correlation_id=correlation_id,
        ))

    async def log_expense_created(
        self,
        user_id: UUID,
        expense_id: UUID,
        sheet_id: UUID,
        category: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_created(
            user_id=user_id,
            expense_id=expense_id,
            sheet_id=sheet_id,
            category=category,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_expense_updated(
        self,
        user_id: UUID,
        expense_id: UUID,
        version: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_updated(
            user_id=user_id,
            expense_id=expense_id,
            version=version,
            correlation_id=correlation_id,
        ))

    async def log_expense_deleted(
        self,
        user_id: UUID,
        expense_id: UUID,
        descriptions_deleted: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_deleted(
            user_id=user_id,
            expense_id=expense_id,
            descriptions_deleted=descriptions_deleted,
            correlation_id=correlation_id,
        ))

    async def log_category_created(
        self,
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.category_created(
            user_id=user_id,
            sheet_id=sheet_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_category_renamed(
        self,
        user_id: UUID,
        sheet_id: UUID,
        old_name: str,
        new_name: str,
        relabelled: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.category_renamed(
            user_id=user_id,
            sheet_id=sheet_id,
            old_name=old_name,
            new_name=new_name,
            relabelled=relabelled,
            correlation_id=correlation_id,
        ))

    async def log_category_deleted(
        self,
        user_id: UUID,
        sheet_id: UUID,
        name: str,
        relabelled: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.category_deleted(
            user_id=user_id,
            sheet_id=sheet_id,
            name=name,
            relabelled=relabelled,
            correlation_id=correlation_id,
        ))

    async def log_description_saved(
        self,
        user_id: UUID,
        description_id: UUID,
        expense_id: UUID,
        column_name: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.description_saved(
            user_id=user_id,
            description_id=description_id,
            expense_id=expense_id,
            column_name=column_name,
            correlation_id=correlation_id,
        ))

    async def log_description_deleted(
        self,
        user_id: UUID,
        entity_id: UUID,
        deleted: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.description_deleted(
            user_id=user_id,
            entity_id=entity_id,
            deleted=deleted,
            correlation_id=correlation_id,
        ))

    async def log_operation_rejected(
        self,
        operation: str,
        error_code: str,
        error_message: str,
        user_id: Optional[UUID],
        correlation_id: UUID,
    ) -> None:
        """Log a business-rule failure (not found, duplicate, conflict...)."""
        await self.log(AuditEventBuilder.operation_rejected(
            operation=operation,
            error_code=error_code,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new caller action (e.g., one request).
    Pass it through all subsequent operations.
    """
    return uuid4()
