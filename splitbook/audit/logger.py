"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Traceability of receipts and splits (who saved what, when)
2. Debugging capability for extraction failures
3. A history group members can inspect

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from splitbook.models.audit import AuditEvent, AuditEventBuilder
from splitbook.services.storage import AuditStorageInterface


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
    2. Audit storage (for persistence and member visibility)
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
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
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

    async def log_group_created(
        self,
        group_id: UUID,
        name: str,
        member_count: int,
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.group_created(
            group_id=group_id,
            name=name,
            member_count=member_count,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_receipt_extracted(
        self,
        item_count: int,
        mime_type: str,
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_extracted(
            item_count=item_count,
            mime_type=mime_type,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_extraction_failed(
        self,
        error_message: str,
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_failed(
            error_message=error_message,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_parse_rejected(
        self,
        field: str,
        reason: str,
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.parse_rejected(
            field=field,
            reason=reason,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_receipt_created(
        self,
        receipt_id: UUID,
        group_id: UUID,
        title: str,
        total: str,
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_created(
            receipt_id=receipt_id,
            group_id=group_id,
            title=title,
            total=total,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_receipt_rejected(
        self,
        issues: list[dict],
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_rejected(
            issues=issues,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_expenses_replaced(
        self,
        receipt_id: UUID,
        expense_count: int,
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expenses_replaced(
            receipt_id=receipt_id,
            expense_count=expense_count,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_allocation_rejected(
        self,
        receipt_id: UUID,
        issue: dict,
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.allocation_rejected(
            receipt_id=receipt_id,
            issue=issue,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_access_denied(
        self,
        group_id: UUID,
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.access_denied(
            group_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
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

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., receipt upload).
    Pass it through all subsequent operations.
    """
    return uuid4()
