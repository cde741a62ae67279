"""
Audit Logger

DESIGN DECISION: Every write to the ledger is logged.
This provides:
1. Traceability of every balance change
2. Debugging capability
3. Managers can see who changed which record and when

The audit logger:
- Gracefully handles failures (a failed audit write never breaks a save)
- Supports correlation IDs to trace related events (one batch meal save)
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from messledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from messledger.models.records import Collection
from messledger.store.interface import RecordStore


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
    2. The record store's audit_log collection (for persistence)
    """

    def __init__(self, store: Optional[RecordStore] = None):
        """
        Initialize audit logger.

        Args:
            store: Record store for persistence.
                   If None, only logs locally.
        """
        self._store = store
        self._logger = structlog.get_logger(__name__)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to the store if available.

        Returns True if the store write succeeded (or no store configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._store is not None:
            try:
                self._store.add(Collection.AUDIT_LOG.value, event.to_record())
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a system error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a multi-record action (e.g. saving the meal
    sheet of a whole day) and pass it to every event it produces.
    """
    return uuid4()
