"""
Audit Models for the Split Ledger

Every committed or rejected ledger mutation is logged for audit purposes.
This provides:
1. Complete traceability of who changed which expense
2. Debugging information when a mutation is rejected
3. Ability to reconstruct how a balance came to be

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Deleting an expense removes its splits, never its audit trail.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from splitledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Identity
    USER_REGISTERED = "user_registered"

    # Groups
    GROUP_CREATED = "group_created"
    GROUP_DELETED = "group_deleted"
    MEMBER_ADDED = "member_added"

    # Expenses
    EXPENSE_RECORDED = "expense_recorded"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"

    # Failures
    MUTATION_REJECTED = "mutation_rejected"
    CONCURRENCY_RETRY = "concurrency_retry"
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
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
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

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'group', 'expense', 'user')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Who did it
    actor_id: Optional[UUID] = Field(
        default=None,
        description="Authenticated user that issued the call"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., retries of one call)"
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
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def details_json(self) -> str:
        """Details serialized for a single text column."""
        return json.dumps(self.details, default=str) if self.details else ""


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.group_created(group_id, name, actor_id, correlation_id)
        event = AuditEventBuilder.expense_deleted(expense_id, actor_id, correlation_id)
    """

    @staticmethod
    def user_registered(
        user_id: UUID,
        email: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            entity_type="user",
            entity_id=user_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"User registered: {email}",
            details={"email": email},
        )

    @staticmethod
    def group_created(
        group_id: UUID,
        name: str,
        actor_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Group created: {name}",
            details={"name": name},
        )

    @staticmethod
    def group_deleted(
        group_id: UUID,
        expense_count: int,
        actor_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Group deleted with {expense_count} expenses",
            details={"expense_count": expense_count},
        )

    @staticmethod
    def member_added(
        group_id: UUID,
        user_id: UUID,
        actor_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_ADDED,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Member added to group",
            details={"user_id": str(user_id)},
        )

    @staticmethod
    def expense_recorded(
        expense_id: UUID,
        group_id: UUID,
        amount: str,
        split_count: int,
        actor_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_RECORDED,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Expense recorded: {amount} split {split_count} ways",
            details={
                "group_id": str(group_id),
                "amount": amount,
                "split_count": split_count,
            },
        )

    @staticmethod
    def expense_updated(
        expense_id: UUID,
        changes: dict[str, Any],
        actor_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Expense updated: {', '.join(sorted(changes)) or 'no changes'}",
            details={"changes": changes},
        )

    @staticmethod
    def expense_deleted(
        expense_id: UUID,
        actor_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Expense deleted",
        )

    @staticmethod
    def mutation_rejected(
        operation: str,
        error: Exception,
        actor_id: Optional[UUID],
        correlation_id: UUID,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected: {type(error).__name__}",
            error_code=type(error).__name__,
            error_message=str(error),
            details={"operation": operation},
        )

    @staticmethod
    def concurrency_retry(
        operation: str,
        attempt: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONCURRENCY_RETRY,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"{operation} lost a concurrent update, retrying (attempt {attempt})",
            details={"operation": operation, "attempt": attempt},
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
