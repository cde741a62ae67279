"""
Settlement Controller

Keeps the settlement of one billing period live.

The controller opens four independent streams (participants, meals,
costs, deposits) and keeps the latest snapshot of each in its own slots.
Stream callbacks never touch the slots directly: they post a message to
the controller's queue, and a drain loop applies messages in arrival
order, recomputing after each one.

Guarantees:
- No summary is delivered until all four streams have produced a snapshot
- A failing stream freezes at its last snapshot; the others keep updating
- A failing aggregation is logged and the last good summary stays current
- close() cancels all four subscriptions, may be called any number of
  times, and no callback fires after it

Every controller owns its slots and queue, so controllers for different
periods can be open side by side without seeing each other's data.
"""

from collections import deque
from enum import Enum
from typing import Callable, Optional

import structlog
from pydantic import BaseModel

from messledger.audit import AuditLogger
from messledger.models.records import (
    CostRecord,
    DepositRecord,
    MealRecord,
    Participant,
)
from messledger.models.summary import SettlementSummary
from messledger.settlement.aggregator import AggregationError, compute_summary
from messledger.store.interface import RecordStore, Unsubscribe
from messledger.streams import (
    on_all_meals_update,
    on_costs_update,
    on_deposits_update,
    on_participants_update,
)

logger = structlog.get_logger(__name__)

SettlementCallback = Callable[[SettlementSummary], None]


class ControllerState(str, Enum):
    """Lifecycle of a controller. There is no way back to INITIALIZING."""
    INITIALIZING = "initializing"
    LIVE = "live"
    TORN_DOWN = "torn_down"


class SettlementSlots(BaseModel):
    """Latest snapshot of each stream; None until its first delivery."""

    participants: Optional[list[Participant]] = None
    meals: Optional[list[MealRecord]] = None
    costs: Optional[list[CostRecord]] = None
    deposits: Optional[list[DepositRecord]] = None

    @property
    def ready(self) -> bool:
        return all(
            snapshot is not None
            for snapshot in (self.participants, self.meals, self.costs, self.deposits)
        )


class SettlementController:
    """
    Live settlement of one period.

    Usage:
        controller = SettlementController(store, "2024-03", render).start()
        ...
        controller.close()
    """

    def __init__(
        self,
        store: RecordStore,
        period: str,
        callback: SettlementCallback,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._period = period
        self._callback = callback
        self._audit_logger = audit_logger

        self._slots = SettlementSlots()
        self._messages: deque = deque()
        self._draining = False
        self._unsubscribes: list[Unsubscribe] = []
        self._failed_streams: set[str] = set()
        self._state = ControllerState.INITIALIZING
        self._started = False
        self._last_summary: Optional[SettlementSummary] = None

    @property
    def period(self) -> str:
        return self._period

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def last_summary(self) -> Optional[SettlementSummary]:
        """The most recently delivered summary."""
        return self._last_summary

    @property
    def failed_streams(self) -> set[str]:
        """Streams frozen at their last snapshot after an error."""
        return set(self._failed_streams)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> "SettlementController":
        """
        Open the four streams.

        Raises:
            RuntimeError: If the controller was already closed
        """
        if self._state == ControllerState.TORN_DOWN:
            raise RuntimeError("A closed settlement controller cannot be restarted")
        if self._started:
            return self
        self._started = True

        logger.debug("settlement_starting", period=self._period)

        openers = [
            lambda: on_participants_update(
                self._store,
                self._post("participants"),
                self._stream_failed("participants"),
            ),
            lambda: on_all_meals_update(
                self._store,
                self._period,
                self._post("meals"),
                self._stream_failed("meals"),
            ),
            lambda: on_deposits_update(
                self._store,
                self._period,
                self._post("deposits"),
                self._stream_failed("deposits"),
            ),
            lambda: on_costs_update(
                self._store,
                self._period,
                self._post("costs"),
                self._stream_failed("costs"),
            ),
        ]

        for open_stream in openers:
            unsubscribe = open_stream()
            if self._state == ControllerState.TORN_DOWN:
                # Closed from inside a callback while still starting
                unsubscribe()
                break
            self._unsubscribes.append(unsubscribe)

        return self

    def close(self) -> None:
        """Cancel all four subscriptions. Safe to call more than once."""
        if self._state == ControllerState.TORN_DOWN:
            return
        self._state = ControllerState.TORN_DOWN

        unsubscribes, self._unsubscribes = self._unsubscribes, []
        for unsubscribe in unsubscribes:
            unsubscribe()
        self._messages.clear()

        logger.debug("settlement_closed", period=self._period)

    # -------------------------------------------------------------------------
    # Message handling
    # -------------------------------------------------------------------------

    def _post(self, slot: str) -> Callable[[list], None]:
        def handle(snapshot: list) -> None:
            if self._state == ControllerState.TORN_DOWN:
                return
            self._messages.append((slot, snapshot))
            self._drain()
        return handle

    def _drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._messages and self._state != ControllerState.TORN_DOWN:
                slot, snapshot = self._messages.popleft()
                setattr(self._slots, slot, snapshot)
                self._recompute()
        finally:
            self._draining = False

    def _stream_failed(self, stream: str) -> Callable[[Exception], None]:
        def handle(error: Exception) -> None:
            self._failed_streams.add(stream)
            logger.error(
                "stream_error",
                stream=stream,
                period=self._period,
                error=str(error),
            )
            if self._audit_logger:
                self._audit_logger.log_error(
                    error_type="stream_error",
                    error_message=str(error),
                    details={"stream": stream, "period": self._period},
                )
        return handle

    # -------------------------------------------------------------------------
    # Recomputation
    # -------------------------------------------------------------------------

    def _aggregate(self) -> SettlementSummary:
        try:
            return compute_summary(
                self._period,
                self._slots.participants,
                self._slots.meals,
                self._slots.costs,
                self._slots.deposits,
            )
        except Exception as e:
            raise AggregationError(
                f"Settlement of {self._period} failed: {e}"
            ) from e

    def _recompute(self) -> None:
        if self._state == ControllerState.TORN_DOWN or not self._slots.ready:
            return

        try:
            summary = self._aggregate()
        except AggregationError as e:
            logger.error("aggregation_failed", period=self._period, error=str(e))
            if self._audit_logger:
                self._audit_logger.log_error(
                    error_type="aggregation_failed",
                    error_message=str(e),
                    details={"period": self._period},
                )
            return

        self._last_summary = summary
        self._state = ControllerState.LIVE

        try:
            self._callback(summary.model_copy(deep=True))
        except Exception:
            logger.exception("settlement_callback_failed", period=self._period)


def subscribe_settlement(
    store: RecordStore,
    period: str,
    callback: SettlementCallback,
    audit_logger: Optional[AuditLogger] = None,
) -> Callable[[], None]:
    """
    Keep callback fed with the live settlement of a period.

    Returns:
        An idempotent dispose function
    """
    controller = SettlementController(store, period, callback, audit_logger)
    controller.start()
    return controller.close
