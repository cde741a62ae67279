"""
Core Record Models for Mess Ledger

These models define the schemas of the four record streams the settlement
is derived from (participants, meals, costs, deposits) plus the mess
settings singleton.

DESIGN DECISION: Records are stored as JSON-compatible dicts produced by
model_dump(mode="json"). Every snapshot read from the store is parsed back
through these models, so a malformed row is caught at the boundary instead
of inside the aggregation.

Money and meal weights are Decimal. Meal weights are fractional
(0.5 is a half portion), costs are never negative, deposits may be.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    model_validator,
)


PERIOD_PATTERN = r"^\d{4}-\d{2}$"


def period_of(value: Union[date, str]) -> str:
    """
    Billing period (YYYY-MM) a calendar date belongs to.

    Accepts a date or an ISO date string.
    """
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    return value.strftime("%Y-%m")


def current_period(today: Optional[date] = None) -> str:
    """Billing period of today (or of the supplied date)."""
    return period_of(today or date.today())


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ParticipantRole(str, Enum):
    """Roles that take part in the settlement."""
    BORDER = "border"
    MANAGER = "manager"


class ParticipantStatus(str, Enum):
    """
    Account status.

    Self-signups start PENDING and are invisible to the settlement
    until a manager approves them.
    """
    PENDING = "pending"
    APPROVED = "approved"


class CostType(str, Enum):
    """
    How a cost is apportioned.

    MARKET funds the meal-rate pool, SHARED splits equally across all
    approved participants, INDIVIDUAL is charged to one participant.
    """
    MARKET = "market"
    SHARED = "shared"
    INDIVIDUAL = "individual"


class Collection(str, Enum):
    """Record store collections."""
    PARTICIPANTS = "participants"
    MEALS = "meals"
    COSTS = "costs"
    DEPOSITS = "deposits"
    SETTINGS = "settings"
    AUDIT_LOG = "audit_log"


# =============================================================================
# RECORDS
# =============================================================================

class MealWeights(BaseModel):
    """Breakfast/lunch/dinner weights for one day."""

    breakfast: Decimal = Field(default=Decimal("0"), ge=0)
    lunch: Decimal = Field(default=Decimal("0"), ge=0)
    dinner: Decimal = Field(default=Decimal("0"), ge=0)

    @property
    def total(self) -> Decimal:
        return self.breakfast + self.lunch + self.dinner


class Participant(BaseModel):
    """
    A member of the mess.

    Role and status are kept as plain strings so that a record with an
    unexpected value still loads; it is simply not eligible.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    name: str = Field(default="", max_length=200)
    email: Optional[str] = None
    role: str = ParticipantRole.BORDER.value
    status: str = ParticipantStatus.PENDING.value
    default_meals: Optional[MealWeights] = None
    created_at: Optional[datetime] = None

    @property
    def is_eligible(self) -> bool:
        """Only approved borders and managers are part of the settlement."""
        return (
            self.role in (ParticipantRole.BORDER.value, ParticipantRole.MANAGER.value)
            and self.status == ParticipantStatus.APPROVED.value
        )


class _DatedRecord(BaseModel):
    """Base for records scoped to a billing period through their date."""

    id: Optional[str] = None
    date: date
    period: str = Field(default="", pattern=PERIOD_PATTERN)

    @model_validator(mode="before")
    @classmethod
    def derive_period(cls, data: Any) -> Any:
        """The period always follows the date."""
        if isinstance(data, dict) and data.get("date"):
            data = dict(data)
            data["period"] = period_of(data["date"])
        return data


class MealRecord(_DatedRecord):
    """
    One participant's meals on one calendar date.

    There is at most one MealRecord per (participant_id, date).
    """

    participant_id: str = Field(..., min_length=1)
    breakfast: Decimal = Field(default=Decimal("0"), ge=0)
    lunch: Decimal = Field(default=Decimal("0"), ge=0)
    dinner: Decimal = Field(default=Decimal("0"), ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def total_meals(self) -> Decimal:
        return self.breakfast + self.lunch + self.dinner

    @property
    def weights(self) -> MealWeights:
        return MealWeights(
            breakfast=self.breakfast,
            lunch=self.lunch,
            dinner=self.dinner,
        )


class CostRecord(_DatedRecord):
    """A market, shared or individual cost."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: CostType
    amount: Decimal = Field(..., ge=0)
    description: str = Field(default="N/A", max_length=500)
    participant_id: Optional[str] = None
    participant_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DepositRecord(_DatedRecord):
    """
    Money paid into the mess by a participant.

    Amount is signed: negative deposits are adjustments or fines.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    participant_id: str = Field(..., min_length=1)
    amount: Decimal
    description: str = Field(default="N/A", max_length=500)
    participant_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MessSettings(BaseModel):
    """The mess-wide settings singleton."""

    default_meals: MealWeights
    current_month: str = Field(..., pattern=PERIOD_PATTERN)
    last_reset_date: Optional[date] = None
