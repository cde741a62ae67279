"""
Settlement Aggregator

Turns the four record snapshots of a billing period into a
SettlementSummary. Pure and deterministic: no I/O, no clock, no hidden
state. The summary is always rebuilt from scratch, never patched.

How the money is split:
- market costs fund the meal rate (market total / meal total)
- shared costs are split equally across eligible participants
- individual costs are charged to the participant they're attributed to

NOTE: the mess-wide totals (meals, market, shared, deposits) are summed
over every record of the period, eligible participant or not. Only the
per-user rows, and the totals built from them, are restricted to the
eligible set. So a pending participant's meals still dilute the meal rate
without appearing in any row.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from messledger.models.records import (
    CostRecord,
    CostType,
    DepositRecord,
    MealRecord,
    Participant,
)
from messledger.models.summary import SettlementSummary, UserSummary


ZERO = Decimal("0")


class AggregationError(Exception):
    """A settlement could not be computed from the current snapshots."""
    pass


def eligible_participants(participants: Iterable[Participant]) -> list[Participant]:
    """Approved borders and managers, in input order."""
    return [p for p in participants if p.is_eligible]


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def _plain(value: Decimal) -> Decimal:
    """Drop the exponent a division leaves behind (200, not 2.0E+2)."""
    value = value.normalize()
    return value.quantize(ZERO) if value == value.to_integral_value() else value


def compute_summary(
    period: str,
    participants: list[Participant],
    meals: list[MealRecord],
    costs: list[CostRecord],
    deposits: list[DepositRecord],
) -> SettlementSummary:
    """
    Compute the settlement of one period.

    Args:
        period: Billing period (YYYY-MM) the snapshots belong to
        participants: All participants; ineligible ones are ignored
        meals: Meal records of the period
        costs: Cost records of the period
        deposits: Deposit records of the period

    Returns:
        SettlementSummary with one row per eligible participant,
        in the order the participants were given
    """
    eligible = eligible_participants(participants)

    total_meals = _sum(m.total_meals for m in meals)
    total_market_cost = _sum(c.amount for c in costs if c.type == CostType.MARKET)
    total_shared_cost = _sum(c.amount for c in costs if c.type == CostType.SHARED)
    total_all_deposits = _sum(d.amount for d in deposits)

    # Safe division: both rates are 0 when there is nothing to divide by
    meal_rate = _plain(total_market_cost / total_meals) if total_meals > 0 else ZERO
    shared_cost_per_user = (
        _plain(total_shared_cost / len(eligible)) if eligible else ZERO
    )

    meals_by_participant: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for meal in meals:
        meals_by_participant[meal.participant_id] += meal.total_meals

    deposits_by_participant: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for deposit in deposits:
        deposits_by_participant[deposit.participant_id] += deposit.amount

    individual_by_participant: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for cost in costs:
        if cost.type == CostType.INDIVIDUAL and cost.participant_id:
            individual_by_participant[cost.participant_id] += cost.amount

    user_summaries = []
    for participant in eligible:
        user_meals = meals_by_participant[participant.id]
        user_deposits = deposits_by_participant[participant.id]
        individual_cost = individual_by_participant[participant.id]

        meal_cost = user_meals * meal_rate
        total_cost = meal_cost + shared_cost_per_user + individual_cost

        user_summaries.append(
            UserSummary(
                participant_id=participant.id,
                participant_name=participant.name,
                total_meals=user_meals,
                total_deposit=user_deposits,
                meal_cost=meal_cost,
                shared_cost=shared_cost_per_user,
                individual_cost=individual_cost,
                total_cost=total_cost,
                balance=user_deposits - total_cost,
            )
        )

    total_all_costs = _sum(u.total_cost for u in user_summaries)
    total_other_costs = total_shared_cost + _sum(
        u.individual_cost for u in user_summaries
    )

    return SettlementSummary(
        period=period,
        total_meals=total_meals,
        total_market_cost=total_market_cost,
        total_shared_cost=total_shared_cost,
        total_other_costs=total_other_costs,
        total_all_deposits=total_all_deposits,
        total_all_costs=total_all_costs,
        mess_balance=total_all_deposits - total_all_costs,
        meal_rate=meal_rate,
        shared_cost_per_user=shared_cost_per_user,
        participant_count=len(eligible),
        user_summaries=user_summaries,
    )
