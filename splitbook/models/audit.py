"""
Audit Models for Splitbook

Every significant action in the system is logged for audit purposes.
This provides:
1. Traceability of who changed a split and when
2. Debugging information when an extraction goes wrong
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Groups
    GROUP_CREATED = "group_created"

    # Extraction
    RECEIPT_EXTRACTED = "receipt_extracted"
    EXTRACTION_FAILED = "extraction_failed"
    PARSE_REJECTED = "parse_rejected"

    # Receipts
    RECEIPT_CREATED = "receipt_created"
    RECEIPT_REJECTED = "receipt_rejected"

    # Allocation
    EXPENSES_REPLACED = "expenses_replaced"
    ALLOCATION_REJECTED = "allocation_rejected"

    # Access
    ACCESS_DENIED = "access_denied"

    # System events
    STORAGE_ERROR = "storage_error"
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


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

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'receipt', 'group', 'extraction')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one upload)"
    )

    # Who did it
    actor_id: Optional[str] = Field(
        default=None,
        description="User id of the member who triggered the event"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "actor_id": self.actor_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, actor_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.actor_id or "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.receipt_created(receipt_id, title, ...)
        event = AuditEventBuilder.expenses_replaced(receipt_id, 3, ...)
    """

    @staticmethod
    def group_created(
        group_id: UUID,
        name: str,
        member_count: int,
        actor_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            actor_id=actor_id,
            description=f"Group created: {name}",
            details={"member_count": member_count},
        )

    @staticmethod
    def receipt_extracted(
        item_count: int,
        mime_type: str,
        actor_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_EXTRACTED,
            entity_type="extraction",
            correlation_id=correlation_id,
            actor_id=actor_id,
            description=f"Receipt image extracted with {item_count} items",
            details={"item_count": item_count, "mime_type": mime_type},
        )

    @staticmethod
    def extraction_failed(
        error_message: str,
        actor_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="extraction",
            correlation_id=correlation_id,
            actor_id=actor_id,
            description="Receipt extraction failed",
            error_message=error_message,
        )

    @staticmethod
    def parse_rejected(
        field: str,
        reason: str,
        actor_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARSE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="extraction",
            correlation_id=correlation_id,
            actor_id=actor_id,
            description=f"Candidate parse rejected: {field} is {reason}",
            details={"field": field, "reason": reason},
        )

    @staticmethod
    def receipt_created(
        receipt_id: UUID,
        group_id: UUID,
        title: str,
        total: str,
        actor_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_CREATED,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            actor_id=actor_id,
            description=f"Receipt saved: {title} - {total}",
            details={"group_id": str(group_id), "total": total},
        )

    @staticmethod
    def receipt_rejected(
        issues: list[dict],
        actor_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            correlation_id=correlation_id,
            actor_id=actor_id,
            description=f"Receipt rejected with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def expenses_replaced(
        receipt_id: UUID,
        expense_count: int,
        actor_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSES_REPLACED,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            actor_id=actor_id,
            description=f"Split saved with {expense_count} expenses",
            details={"expense_count": expense_count},
        )

    @staticmethod
    def allocation_rejected(
        receipt_id: UUID,
        issue: dict,
        actor_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            actor_id=actor_id,
            description=f"Split rejected: {issue.get('message', 'invalid allocation')}",
            details={"issue": issue},
        )

    @staticmethod
    def access_denied(
        group_id: UUID,
        actor_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            actor_id=actor_id,
            description="User is not a member of the group",
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
