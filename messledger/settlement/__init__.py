"""Settlement computation and its live controller."""

from messledger.settlement.aggregator import (
    AggregationError,
    compute_summary,
    eligible_participants,
)
from messledger.settlement.controller import (
    ControllerState,
    SettlementController,
    SettlementSlots,
    subscribe_settlement,
)

__all__ = [
    "AggregationError",
    "compute_summary",
    "eligible_participants",
    "ControllerState",
    "SettlementController",
    "SettlementSlots",
    "subscribe_settlement",
]
