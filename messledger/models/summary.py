"""
Settlement Summary Models

The summary is DERIVED data: it is never persisted and is recomputed from
scratch whenever any of the four record streams changes.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class UserSummary(BaseModel):
    """One eligible participant's row of the settlement."""

    participant_id: str
    participant_name: str
    total_meals: Decimal
    total_deposit: Decimal
    meal_cost: Decimal
    shared_cost: Decimal
    individual_cost: Decimal
    total_cost: Decimal
    balance: Decimal = Field(
        ...,
        description="Deposits minus total cost (negative = owes the mess)"
    )


class SettlementSummary(BaseModel):
    """
    Settlement of one billing period.

    NOTE: total_meals, total_market_cost, total_shared_cost and
    total_all_deposits cover every record of the period, while the
    per-user rows (and therefore total_all_costs and mess_balance) only
    cover eligible participants.
    """

    period: str
    total_meals: Decimal
    total_market_cost: Decimal
    total_shared_cost: Decimal
    total_other_costs: Decimal
    total_all_deposits: Decimal
    total_all_costs: Decimal
    mess_balance: Decimal
    meal_rate: Decimal
    shared_cost_per_user: Decimal
    participant_count: int = Field(ge=0)
    user_summaries: list[UserSummary] = Field(default_factory=list)

    def for_participant(self, participant_id: str) -> Optional[UserSummary]:
        """Row of one participant, None if they are not part of the settlement."""
        for row in self.user_summaries:
            if row.participant_id == participant_id:
                return row
        return None
