"""
Live query bookkeeping shared by the record store adapters.

A subscription is a Query plus its callbacks. Delivering a subscription
means re-running its query against the backend and handing the full
result set to on_change. A query failure is terminal for that
subscription only: it is cancelled and its on_error is told why.

Deliveries go through a FIFO queue drained on the caller's thread, so a
listener that writes to the store is notified of its own write after the
current round, never re-entrantly.
"""

import copy
import itertools
from collections import deque
from typing import Callable, Optional

import structlog

from messledger.store.interface import (
    OnError,
    Query,
    StoreError,
    Unsubscribe,
)

logger = structlog.get_logger(__name__)

_UNSET = object()


class Subscription:
    """One registered live query."""

    def __init__(
        self,
        subscription_id: int,
        query: Query,
        on_change: Callable,
        on_error: Optional[OnError],
    ):
        self.id = subscription_id
        self.query = query
        self.on_change = on_change
        self.on_error = on_error
        self.active = True
        self.last_snapshot = _UNSET

    @property
    def delivered(self) -> bool:
        return self.last_snapshot is not _UNSET


class SubscriptionRegistry:
    """
    Registry of live queries with queued delivery.

    Args:
        run_query: Backend function executing a Query. Returns a list of
            records, or a record/None for document queries.
    """

    def __init__(self, run_query: Callable[[Query], object]):
        self._run_query = run_query
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._pending: deque = deque()
        self._dispatching = False

    def __len__(self) -> int:
        return len(self._subscriptions)

    def open(
        self,
        query: Query,
        on_change: Callable,
        on_error: Optional[OnError] = None,
    ) -> Unsubscribe:
        """Register a live query and deliver its first snapshot."""
        subscription = Subscription(next(self._ids), query, on_change, on_error)
        self._subscriptions[subscription.id] = subscription
        logger.debug(
            "subscription_opened",
            collection=query.collection,
            subscription_id=subscription.id,
        )

        def unsubscribe() -> None:
            self.cancel(subscription)

        self._pending.append((subscription, False))
        self._drain()
        return unsubscribe

    def cancel(self, subscription: Subscription) -> None:
        if subscription.active:
            logger.debug(
                "subscription_closed",
                collection=subscription.query.collection,
                subscription_id=subscription.id,
            )
        subscription.active = False
        self._subscriptions.pop(subscription.id, None)

    def active(self, collection: Optional[str] = None) -> list[Subscription]:
        """Active subscriptions, optionally only those on one collection."""
        return [
            s for s in list(self._subscriptions.values())
            if s.active and (collection is None or s.query.collection == collection)
        ]

    def notify(self, collection: Optional[str] = None) -> None:
        """
        Re-run live queries (of one collection, or all) and push changed results.
        """
        for subscription in self.active(collection):
            self._pending.append((subscription, True))
        self._drain()

    def _drain(self) -> None:
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending:
                subscription, only_if_changed = self._pending.popleft()
                self._deliver(subscription, only_if_changed)
        finally:
            self._dispatching = False

    def _deliver(self, subscription: Subscription, only_if_changed: bool) -> None:
        if not subscription.active:
            return

        try:
            snapshot = self._run_query(subscription.query)
        except Exception as e:
            error = e if isinstance(e, StoreError) else StoreError(
                f"Query on '{subscription.query.collection}' failed: {e}"
            )
            logger.error(
                "subscription_failed",
                collection=subscription.query.collection,
                subscription_id=subscription.id,
                error=str(error),
            )
            self.cancel(subscription)
            if subscription.on_error is not None:
                self._invoke(subscription, subscription.on_error, error)
            return

        if (
            only_if_changed
            and subscription.delivered
            and snapshot == subscription.last_snapshot
        ):
            return

        subscription.last_snapshot = copy.deepcopy(snapshot)
        self._invoke(subscription, subscription.on_change, copy.deepcopy(snapshot))

    def _invoke(self, subscription: Subscription, callback: Callable, payload) -> None:
        # A broken listener must not stop delivery to its siblings
        try:
            callback(payload)
        except Exception:
            logger.exception(
                "subscription_callback_failed",
                collection=subscription.query.collection,
                subscription_id=subscription.id,
            )
