"""
Live Record Streams

Each function opens one live query on the record store and hands every
snapshot to on_change as parsed models. A snapshot is always the ENTIRE
current result set of the query, never a delta.

Stored rows that fail validation are skipped with a warning so that one
bad row cannot take down a whole stream.

Costs and deposits are joined with participant display names. The join
re-reads the participants collection once per delivered batch; when that
read fails every name in the batch degrades to the placeholder name.
"""

from datetime import date
from typing import Callable, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from messledger.config import get_settings
from messledger.models.records import (
    Collection,
    CostRecord,
    DepositRecord,
    MealRecord,
    MealWeights,
    MessSettings,
    Participant,
    current_period,
)
from messledger.store.interface import (
    OnError,
    OrderBy,
    Record,
    RecordStore,
    Unsubscribe,
    where,
)

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


class JoinLookupError(Exception):
    """Participant names could not be fetched for a cost/deposit batch."""
    pass


# =============================================================================
# HELPERS
# =============================================================================

def parse_records(model: Type[M], records: list[Record], stream: str) -> list[M]:
    """Parse raw records, skipping (and logging) the ones that don't validate."""
    parsed = []
    for record in records:
        try:
            parsed.append(model.model_validate(record))
        except ValidationError as e:
            logger.warning(
                "malformed_record_skipped",
                stream=stream,
                record_id=record.get("id"),
                errors=e.error_count(),
            )
    return parsed


def default_settings(today: Optional[date] = None) -> MessSettings:
    """Hard-coded mess settings used when no settings document exists."""
    app = get_settings().app
    return MessSettings(
        default_meals=MealWeights(
            breakfast=str(app.default_breakfast),
            lunch=str(app.default_lunch),
            dinner=str(app.default_dinner),
        ),
        current_month=current_period(today),
    )


def _log_stream_error(stream: str) -> OnError:
    def handle(error: Exception) -> None:
        logger.error("stream_error", stream=stream, error=str(error))
    return handle


def fetch_participant_names(store: RecordStore) -> dict[str, str]:
    """
    Map of participant id to display name.

    Raises:
        JoinLookupError: If the participants collection can't be read
    """
    try:
        records = store.get_all(Collection.PARTICIPANTS.value)
    except Exception as e:
        raise JoinLookupError(f"Failed to fetch participant names: {e}") from e
    return {r["id"]: r.get("name") for r in records if r.get("id")}


def join_participant_names(store: RecordStore, items: list[M]) -> list[M]:
    """Attach participant_name to each cost/deposit of a batch."""
    unknown = get_settings().app.unknown_participant_name
    try:
        names = fetch_participant_names(store)
    except JoinLookupError as e:
        logger.error("participant_join_failed", error=str(e))
        names = {}

    return [
        item.model_copy(
            update={"participant_name": names.get(item.participant_id) or unknown}
        )
        for item in items
    ]


# =============================================================================
# STREAMS
# =============================================================================

def on_participants_update(
    store: RecordStore,
    on_change: Callable[[list[Participant]], None],
    on_error: Optional[OnError] = None,
) -> Unsubscribe:
    """All participants, ordered by name."""

    def handle(records: list[Record]) -> None:
        on_change(parse_records(Participant, records, "participants"))

    return store.subscribe(
        Collection.PARTICIPANTS.value,
        handle,
        on_error or _log_stream_error("participants"),
        order_by=OrderBy(field="name"),
    )


def on_all_meals_update(
    store: RecordStore,
    period: str,
    on_change: Callable[[list[MealRecord]], None],
    on_error: Optional[OnError] = None,
) -> Unsubscribe:
    """Every meal record of a period."""

    def handle(records: list[Record]) -> None:
        on_change(parse_records(MealRecord, records, "meals"))

    return store.subscribe(
        Collection.MEALS.value,
        handle,
        on_error or _log_stream_error("meals"),
        filters=[where("period", period)],
    )


def on_participant_meals_update(
    store: RecordStore,
    participant_id: str,
    period: str,
    on_change: Callable[[list[MealRecord]], None],
    on_error: Optional[OnError] = None,
) -> Unsubscribe:
    """One participant's meal records of a period, oldest first."""

    def handle(records: list[Record]) -> None:
        on_change(parse_records(MealRecord, records, "participant_meals"))

    return store.subscribe(
        Collection.MEALS.value,
        handle,
        on_error or _log_stream_error("participant_meals"),
        filters=[where("participant_id", participant_id), where("period", period)],
        order_by=OrderBy(field="date"),
    )


def on_costs_update(
    store: RecordStore,
    period: str,
    on_change: Callable[[list[CostRecord]], None],
    on_error: Optional[OnError] = None,
) -> Unsubscribe:
    """Costs of a period, newest first, with participant names."""

    def handle(records: list[Record]) -> None:
        costs = parse_records(CostRecord, records, "costs")
        on_change(join_participant_names(store, costs))

    return store.subscribe(
        Collection.COSTS.value,
        handle,
        on_error or _log_stream_error("costs"),
        filters=[where("period", period)],
        order_by=OrderBy(field="date", descending=True),
    )


def on_deposits_update(
    store: RecordStore,
    period: str,
    on_change: Callable[[list[DepositRecord]], None],
    on_error: Optional[OnError] = None,
    participant_id: Optional[str] = None,
) -> Unsubscribe:
    """
    Deposits of a period, newest first, with participant names.

    With participant_id only that participant's deposits are streamed.
    """
    filters = [where("period", period)]
    if participant_id is not None:
        filters.append(where("participant_id", participant_id))

    def handle(records: list[Record]) -> None:
        deposits = parse_records(DepositRecord, records, "deposits")
        on_change(join_participant_names(store, deposits))

    return store.subscribe(
        Collection.DEPOSITS.value,
        handle,
        on_error or _log_stream_error("deposits"),
        filters=filters,
        order_by=OrderBy(field="date", descending=True),
    )


def on_settings_update(
    store: RecordStore,
    on_change: Callable[[MessSettings], None],
    on_error: Optional[OnError] = None,
) -> Unsubscribe:
    """
    The mess settings document.

    While the document is absent the hard-coded default is delivered, and
    written back to the store so every reader sees the same settings.
    """
    doc_id = get_settings().app.settings_document_id

    def handle(record: Optional[Record]) -> None:
        if record is None:
            settings = default_settings()
            try:
                store.set(
                    Collection.SETTINGS.value,
                    doc_id,
                    settings.model_dump(mode="json"),
                )
            except Exception as e:
                logger.error("settings_default_write_failed", error=str(e))
            on_change(settings)
            return

        try:
            settings = MessSettings.model_validate(record)
        except ValidationError as e:
            logger.warning(
                "malformed_record_skipped",
                stream="settings",
                record_id=doc_id,
                errors=e.error_count(),
            )
            settings = default_settings()
        on_change(settings)

    return store.subscribe_document(
        Collection.SETTINGS.value,
        doc_id,
        handle,
        on_error or _log_stream_error("settings"),
    )
