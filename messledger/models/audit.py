"""
Audit Models for Mess Ledger

Every write to the ledger (meals, costs, deposits, participants, settings)
is recorded as an audit event. Balances are derived data, so the audit
trail is the only way to explain why a balance moved.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Participants
    PARTICIPANT_REGISTERED = "participant_registered"
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_UPDATED = "participant_updated"
    PARTICIPANT_DELETED = "participant_deleted"

    # Meals
    MEAL_SAVED = "meal_saved"

    # Costs
    COST_ADDED = "cost_added"
    COST_UPDATED = "cost_updated"
    COST_DELETED = "cost_deleted"

    # Deposits
    DEPOSIT_ADDED = "deposit_added"
    DEPOSIT_UPDATED = "deposit_updated"
    DEPOSIT_DELETED = "deposit_deleted"

    # Settings
    SETTINGS_UPDATED = "settings_updated"

    # System events
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
    Every ledger write creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
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

    # Context - what record is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Collection of the record (e.g., 'meals', 'costs')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the record this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one batch meal save)"
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
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_record(self) -> dict:
        """
        Convert to a flat record for the audit_log collection.

        Details are JSON-encoded so every backend can store them as one cell.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type or "",
            "entity_id": self.entity_id or "",
            "correlation_id": str(self.correlation_id) if self.correlation_id else "",
            "description": self.description,
            "details_json": json.dumps(self.details, default=str) if self.details else "",
            "error_message": self.error_message or "",
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.meal_saved(meal_id, participant_id, date, total)
        event = AuditEventBuilder.record_deleted(AuditEventType.COST_DELETED, "costs", cost_id)
    """

    @staticmethod
    def participant_registered(
        participant_id: str,
        name: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTICIPANT_REGISTERED,
            entity_type="participants",
            entity_id=participant_id,
            description=f"Participant signed up and awaits approval: {name}",
            details={"name": name},
        )

    @staticmethod
    def participant_added(
        participant_id: str,
        name: str,
        role: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTICIPANT_ADDED,
            entity_type="participants",
            entity_id=participant_id,
            description=f"Participant added by manager: {name} ({role})",
            details={"name": name, "role": role},
        )

    @staticmethod
    def participant_updated(
        participant_id: str,
        changes: dict,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTICIPANT_UPDATED,
            entity_type="participants",
            entity_id=participant_id,
            description=f"Participant updated: {', '.join(sorted(changes))}",
            details={"changes": changes},
        )

    @staticmethod
    def meal_saved(
        meal_id: str,
        participant_id: str,
        meal_date: str,
        total_meals: str,
        created: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        action = "created" if created else "updated"
        return AuditEvent(
            event_type=AuditEventType.MEAL_SAVED,
            entity_type="meals",
            entity_id=meal_id,
            correlation_id=correlation_id,
            description=f"Meals {action} for {meal_date}: {total_meals}",
            details={
                "participant_id": participant_id,
                "date": meal_date,
                "total_meals": total_meals,
                "created": created,
            },
        )

    @staticmethod
    def cost_added(
        cost_id: str,
        cost_type: str,
        amount: str,
        cost_date: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COST_ADDED,
            entity_type="costs",
            entity_id=cost_id,
            description=f"{cost_type.capitalize()} cost added: {amount} on {cost_date}",
            details={"type": cost_type, "amount": amount, "date": cost_date},
        )

    @staticmethod
    def deposit_added(
        deposit_id: str,
        participant_id: str,
        amount: str,
        deposit_date: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEPOSIT_ADDED,
            entity_type="deposits",
            entity_id=deposit_id,
            description=f"Deposit added: {amount} on {deposit_date}",
            details={
                "participant_id": participant_id,
                "amount": amount,
                "date": deposit_date,
            },
        )

    @staticmethod
    def record_updated(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        changes: dict,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"Updated {entity_type} record: {', '.join(sorted(changes))}",
            details={"changes": changes},
        )

    @staticmethod
    def record_deleted(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"Deleted {entity_type} record {entity_id}",
        )

    @staticmethod
    def settings_updated(changes: dict) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_UPDATED,
            entity_type="settings",
            description=f"Mess settings updated: {', '.join(sorted(changes))}",
            details={"changes": changes},
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
