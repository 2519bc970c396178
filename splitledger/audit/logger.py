"""
Audit Logger

DESIGN DECISION: Every ledger mutation, accepted or rejected, is logged.
This provides:
1. Complete traceability of who changed which expense
2. Debugging capability when balances look wrong
3. A record of rejected and retried mutations

The audit logger:
- Gracefully handles storage failures (a failed audit write never undoes
  a committed mutation)
- Supports correlation IDs to tie every event of one service call together
"""

import logging
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from splitledger.errors import StorageError
from splitledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from splitledger.services.storage.interface import AuditStorageInterface


def configure_logging(level: str = "INFO") -> None:
    """
    Configure structlog for local logging.

    Events are rendered as JSON through the standard library logging
    module, so the level filter and handlers are the host application's.
    """
    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger("splitledger").setLevel(level)

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
    2. Audit storage (for persistence and history queries)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
        enabled: bool = True,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            enabled: When False every log call is a no-op.
        """
        self._storage = storage
        self._enabled = enabled
        self._logger = structlog.get_logger("splitledger.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        if not self._enabled:
            return True

        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return self._storage.append_event(event)
            except StorageError as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_user_registered(self, user_id: UUID, email: str, correlation_id: UUID) -> None:
        self.log(AuditEventBuilder.user_registered(
            user_id=user_id,
            email=email,
            correlation_id=correlation_id,
        ))

    def log_group_created(
        self,
        group_id: UUID,
        name: str,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        """Log group creation."""
        self.log(AuditEventBuilder.group_created(
            group_id=group_id,
            name=name,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    def log_group_deleted(
        self,
        group_id: UUID,
        expense_count: int,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        """Log group deletion."""
        self.log(AuditEventBuilder.group_deleted(
            group_id=group_id,
            expense_count=expense_count,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    def log_member_added(
        self,
        group_id: UUID,
        user_id: UUID,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.member_added(
            group_id=group_id,
            user_id=user_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    def log_expense_recorded(
        self,
        expense_id: UUID,
        group_id: UUID,
        amount: str,
        split_count: int,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        """Log a new expense."""
        self.log(AuditEventBuilder.expense_recorded(
            expense_id=expense_id,
            group_id=group_id,
            amount=amount,
            split_count=split_count,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    def log_expense_updated(
        self,
        expense_id: UUID,
        changes: dict[str, Any],
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        """Log an expense edit."""
        self.log(AuditEventBuilder.expense_updated(
            expense_id=expense_id,
            changes=changes,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    def log_expense_deleted(
        self,
        expense_id: UUID,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.expense_deleted(
            expense_id=expense_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    def log_mutation_rejected(
        self,
        operation: str,
        error: Exception,
        actor_id: Optional[UUID],
        correlation_id: UUID,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
    ) -> None:
        """Log a mutation that failed before committing."""
        self.log(AuditEventBuilder.mutation_rejected(
            operation=operation,
            error=error,
            actor_id=actor_id,
            correlation_id=correlation_id,
            entity_type=entity_type,
            entity_id=entity_id,
        ))

    def log_concurrency_retry(
        self,
        operation: str,
        attempt: int,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.concurrency_retry(
            operation=operation,
            attempt=attempt,
            correlation_id=correlation_id,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a service call and pass it through every
    event that call produces, including retries.
    """
    return uuid4()
