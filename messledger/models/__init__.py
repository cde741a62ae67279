"""
Data Models Package

This package contains all Pydantic models used in Mess Ledger.
All records flowing through the system must conform to these schemas.
"""

from messledger.models.records import (
    Collection,
    CostRecord,
    CostType,
    DepositRecord,
    MealRecord,
    MealWeights,
    MessSettings,
    Participant,
    ParticipantRole,
    ParticipantStatus,
    current_period,
    period_of,
)
from messledger.models.summary import (
    SettlementSummary,
    UserSummary,
)
from messledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "Collection",
    "CostRecord",
    "CostType",
    "DepositRecord",
    "MealRecord",
    "MealWeights",
    "MessSettings",
    "Participant",
    "ParticipantRole",
    "ParticipantStatus",
    "current_period",
    "period_of",
    # Summary models
    "SettlementSummary",
    "UserSummary",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
