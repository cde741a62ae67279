"""
Main Orchestrator for Mess Ledger

This module ties the record store, the streams, the settlement and the
audit trail together and defines the ledger's workflows:
1. Reads (participants, meals, settings with their fallback chains)
2. Writes (participants, meal upserts, deposits, costs, settings)
3. Settlement (one-shot for a period, or live through a controller)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every write goes through the record models, so invalid input never
  reaches the store (negative costs, negative meal weights, bad dates)
- A record's period is always re-derived from its date
- At most one meal record exists per (participant, date)
- Every write is audited
"""

from datetime import date, datetime
from typing import Callable, Optional, Union
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from messledger.audit import AuditLogger, create_correlation_id
from messledger.config import get_settings
from messledger.models.audit import AuditEventBuilder, AuditEventType
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
)
from messledger.models.summary import SettlementSummary
from messledger.settlement import compute_summary, subscribe_settlement
from messledger.store import (
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    NotFoundError,
    OrderBy,
    RecordStore,
    StoreError,
    where,
)
from messledger.streams import default_settings, parse_records

logger = structlog.get_logger(__name__)

DateLike = Union[date, str]

# Joined display fields are never written back
_JOINED_FIELDS = {"id", "participant_name"}


class MessLedger:
    """
    The ledger service.

    Wraps a record store with the mess's read and write workflows.
    All methods are synchronous and run on the caller's thread.
    """

    def __init__(
        self,
        store: RecordStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger or AuditLogger(store)
        self._app_settings = get_settings().app

    @property
    def store(self) -> RecordStore:
        return self._store

    # =========================================================================
    # READS
    # =========================================================================

    def get_all_participants(self) -> list[Participant]:
        """All participants (any status), ordered by name."""
        records = self._store.get_all(
            Collection.PARTICIPANTS.value,
            order_by=OrderBy(field="name"),
        )
        return parse_records(Participant, records, "participants")

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        record = self._store.get(Collection.PARTICIPANTS.value, participant_id)
        return Participant.model_validate(record) if record else None

    def get_all_meals_by_period(self, period: str) -> list[MealRecord]:
        records = self._store.get_all(
            Collection.MEALS.value,
            filters=[where("period", period)],
        )
        return parse_records(MealRecord, records, "meals")

    def get_settings(self) -> MessSettings:
        """The settings document, or the hard-coded default while absent."""
        record = self._store.get(
            Collection.SETTINGS.value,
            self._app_settings.settings_document_id,
        )
        if record is None:
            return default_settings()
        return MessSettings.model_validate(record)

    def hardcoded_default_meals(self) -> MealWeights:
        return MealWeights(
            breakfast=str(self._app_settings.default_breakfast),
            lunch=str(self._app_settings.default_lunch),
            dinner=str(self._app_settings.default_dinner),
        )

    def get_participant_default_meals(self, participant_id: str) -> MealWeights:
        """
        Default meal weights of a participant.

        Falls back to the mess-wide defaults when the participant has none,
        and to the hard-coded defaults when the store can't be read.
        """
        try:
            participant = self.get_participant(participant_id)
            if participant is not None and participant.default_meals is not None:
                return participant.default_meals
            return self.get_settings().default_meals
        except StoreError as e:
            logger.error(
                "default_meals_lookup_failed",
                participant_id=participant_id,
                error=str(e),
            )
            return self.hardcoded_default_meals()

    def find_meal(self, participant_id: str, meal_date: DateLike) -> Optional[MealRecord]:
        """
        The stored meal record of a participant on a date, None if absent.

        Store errors propagate.
        """
        iso_date = _iso(meal_date)
        records = self._store.get_all(
            Collection.MEALS.value,
            filters=[
                where("participant_id", participant_id),
                where("date", iso_date),
            ],
        )
        if not records:
            return None
        return MealRecord.model_validate(records[0])

    def get_meal_by_date(self, participant_id: str, meal_date: DateLike) -> MealRecord:
        """
        Meals of a participant on a date, pre-filled for editing.

        Returns the stored record, else an unsaved record carrying the
        participant's default meals. If the store fails, the unsaved
        record carries the hard-coded defaults. A stored record that no
        longer parses is treated the same way.
        """
        try:
            meal = self.find_meal(participant_id, meal_date)
            if meal is not None:
                return meal
            weights = self.get_participant_default_meals(participant_id)
        except (StoreError, ValidationError) as e:
            logger.error(
                "meal_lookup_failed",
                participant_id=participant_id,
                date=_iso(meal_date),
                error=str(e),
            )
            weights = self.hardcoded_default_meals()

        return MealRecord(
            participant_id=participant_id,
            date=meal_date,
            breakfast=weights.breakfast,
            lunch=weights.lunch,
            dinner=weights.dinner,
        )

    def meal_sheet_for_date(self, meal_date: DateLike) -> list[tuple[Participant, MealWeights]]:
        """
        Meals of every approved participant on one date.

        Participants without a record for that date get zero weights.
        """
        records = self._store.get_all(
            Collection.MEALS.value,
            filters=[where("date", _iso(meal_date))],
        )
        by_participant = {
            m.participant_id: m.weights
            for m in parse_records(MealRecord, records, "meals")
        }
        return [
            (participant, by_participant.get(participant.id, MealWeights()))
            for participant in self.get_all_participants()
            if participant.status == ParticipantStatus.APPROVED.value
        ]

    # =========================================================================
    # PARTICIPANTS
    # =========================================================================

    def register_participant(
        self,
        name: str,
        email: Optional[str] = None,
        participant_id: Optional[str] = None,
    ) -> Participant:
        """
        Self-signup: a border account awaiting manager approval.

        Args:
            participant_id: Identity from the auth provider, if any
        """
        participant = Participant(
            id=participant_id or uuid4().hex,
            name=name,
            email=email,
            role=ParticipantRole.BORDER.value,
            status=ParticipantStatus.PENDING.value,
            created_at=datetime.utcnow(),
        )
        self._store.set(
            Collection.PARTICIPANTS.value,
            participant.id,
            participant.model_dump(mode="json", exclude={"id"}),
        )
        self._audit_logger.log(
            AuditEventBuilder.participant_registered(participant.id, participant.name)
        )
        return participant

    def add_participant(
        self,
        name: str,
        email: Optional[str] = None,
        role: ParticipantRole = ParticipantRole.BORDER,
        participant_id: Optional[str] = None,
    ) -> Participant:
        """
        Manager-added participant: approved right away, with the mess-wide
        default meals copied in.
        """
        participant = Participant(
            id=participant_id or uuid4().hex,
            name=name,
            email=email,
            role=ParticipantRole(role).value,
            status=ParticipantStatus.APPROVED.value,
            default_meals=self.get_settings().default_meals,
            created_at=datetime.utcnow(),
        )
        self._store.set(
            Collection.PARTICIPANTS.value,
            participant.id,
            participant.model_dump(mode="json", exclude={"id"}),
        )
        self._audit_logger.log(
            AuditEventBuilder.participant_added(
                participant.id, participant.name, participant.role
            )
        )
        return participant

    def _update_participant(self, participant_id: str, changes: dict) -> None:
        """
        Raises:
            NotFoundError: If the participant doesn't exist
        """
        self._store.update(Collection.PARTICIPANTS.value, participant_id, changes)
        self._audit_logger.log(
            AuditEventBuilder.participant_updated(participant_id, changes)
        )

    def update_participant_status(
        self,
        participant_id: str,
        status: ParticipantStatus,
    ) -> None:
        self._update_participant(
            participant_id, {"status": ParticipantStatus(status).value}
        )

    def update_participant_role(
        self,
        participant_id: str,
        role: ParticipantRole,
    ) -> None:
        self._update_participant(
            participant_id, {"role": ParticipantRole(role).value}
        )

    def update_participant_default_meals(
        self,
        participant_id: str,
        default_meals: MealWeights,
    ) -> None:
        weights = MealWeights.model_validate(default_meals)
        self._update_participant(
            participant_id, {"default_meals": weights.model_dump(mode="json")}
        )

    def delete_participant(self, participant_id: str) -> bool:
        """
        Remove a participant.

        Their meals, costs and deposits are kept; those records show the
        placeholder name from then on.
        """
        deleted = self._store.delete(Collection.PARTICIPANTS.value, participant_id)
        if deleted:
            self._audit_logger.log(
                AuditEventBuilder.record_deleted(
                    AuditEventType.PARTICIPANT_DELETED,
                    Collection.PARTICIPANTS.value,
                    participant_id,
                )
            )
        return deleted

    # =========================================================================
    # MEALS
    # =========================================================================

    def save_meal(
        self,
        participant_id: str,
        meal_date: DateLike,
        weights: MealWeights,
        correlation_id: Optional[UUID] = None,
    ) -> MealRecord:
        """
        Create or overwrite the meal record of a participant on a date.

        Saving twice for the same (participant, date) leaves exactly one
        record, holding the latest weights.
        """
        weights = MealWeights.model_validate(weights)
        now = datetime.utcnow()

        existing = self.find_meal(participant_id, meal_date)
        meal = MealRecord(
            id=existing.id if existing else f"{participant_id}_{_iso(meal_date)}",
            participant_id=participant_id,
            date=meal_date,
            breakfast=weights.breakfast,
            lunch=weights.lunch,
            dinner=weights.dinner,
            created_at=(existing.created_at if existing else None) or now,
            updated_at=now,
        )
        self._store.set(
            Collection.MEALS.value,
            meal.id,
            meal.model_dump(mode="json", exclude={"id"}),
        )
        self._audit_logger.log(
            AuditEventBuilder.meal_saved(
                meal_id=meal.id,
                participant_id=participant_id,
                meal_date=meal.date.isoformat(),
                total_meals=str(meal.total_meals),
                created=existing is None,
                correlation_id=correlation_id,
            )
        )
        return meal

    def save_meals_for_date(
        self,
        meal_date: DateLike,
        entries: dict[str, MealWeights],
    ) -> list[MealRecord]:
        """
        Save the meal sheet of one day (participant id -> weights).

        All resulting audit events share one correlation id.
        """
        correlation_id = create_correlation_id()
        return [
            self.save_meal(participant_id, meal_date, weights, correlation_id)
            for participant_id, weights in entries.items()
        ]

    # =========================================================================
    # DEPOSITS
    # =========================================================================

    def add_deposit(
        self,
        participant_id: str,
        amount,
        deposit_date: DateLike,
        description: Optional[str] = None,
    ) -> DepositRecord:
        """Record a deposit. Negative amounts are adjustments or fines."""
        now = datetime.utcnow()
        deposit = DepositRecord(
            participant_id=participant_id,
            amount=amount,
            date=deposit_date,
            description=description or "N/A",
            created_at=now,
            updated_at=now,
        )
        deposit_id = self._store.add(
            Collection.DEPOSITS.value,
            deposit.model_dump(mode="json", exclude=_JOINED_FIELDS),
        )
        deposit = deposit.model_copy(update={"id": deposit_id})
        self._audit_logger.log(
            AuditEventBuilder.deposit_added(
                deposit_id,
                participant_id,
                str(deposit.amount),
                deposit.date.isoformat(),
            )
        )
        return deposit

    def update_deposit(
        self,
        deposit_id: str,
        amount=None,
        deposit_date: Optional[DateLike] = None,
        description: Optional[str] = None,
    ) -> DepositRecord:
        """
        Change a deposit; its period follows the new date.

        Raises:
            NotFoundError: If the deposit doesn't exist
        """
        changes = _present(amount=amount, date=deposit_date, description=description)
        return self._update_dated(
            Collection.DEPOSITS,
            DepositRecord,
            deposit_id,
            changes,
            AuditEventType.DEPOSIT_UPDATED,
        )

    def delete_deposit(self, deposit_id: str) -> bool:
        return self._delete_record(
            Collection.DEPOSITS, deposit_id, AuditEventType.DEPOSIT_DELETED
        )

    # =========================================================================
    # COSTS
    # =========================================================================

    def add_cost(
        self,
        cost_type: CostType,
        amount,
        cost_date: DateLike,
        description: Optional[str] = None,
        participant_id: Optional[str] = None,
    ) -> CostRecord:
        """
        Record a cost.

        Raises:
            ValueError: If an individual cost names no participant
            pydantic.ValidationError: If the amount is negative
        """
        now = datetime.utcnow()
        cost = CostRecord(
            type=CostType(cost_type),
            amount=amount,
            date=cost_date,
            description=description or "N/A",
            participant_id=participant_id,
            created_at=now,
            updated_at=now,
        )
        _check_attribution(cost)
        cost_id = self._store.add(
            Collection.COSTS.value,
            cost.model_dump(mode="json", exclude=_JOINED_FIELDS),
        )
        cost = cost.model_copy(update={"id": cost_id})
        self._audit_logger.log(
            AuditEventBuilder.cost_added(
                cost_id,
                cost.type.value,
                str(cost.amount),
                cost.date.isoformat(),
            )
        )
        return cost

    def update_cost(
        self,
        cost_id: str,
        cost_type: Optional[CostType] = None,
        amount=None,
        cost_date: Optional[DateLike] = None,
        description: Optional[str] = None,
        participant_id: Optional[str] = None,
    ) -> CostRecord:
        """
        Change a cost; its period follows the new date.

        Raises:
            NotFoundError: If the cost doesn't exist
            ValueError: If the change leaves an individual cost without a participant
        """
        changes = _present(
            type=cost_type,
            amount=amount,
            date=cost_date,
            description=description,
            participant_id=participant_id,
        )
        return self._update_dated(
            Collection.COSTS,
            CostRecord,
            cost_id,
            changes,
            AuditEventType.COST_UPDATED,
            check=_check_attribution,
        )

    def delete_cost(self, cost_id: str) -> bool:
        return self._delete_record(
            Collection.COSTS, cost_id, AuditEventType.COST_DELETED
        )

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def update_settings(
        self,
        default_meals: Optional[MealWeights] = None,
        current_month: Optional[str] = None,
        last_reset_date: Optional[DateLike] = None,
    ) -> MessSettings:
        """Merge the given fields into the settings document."""
        changes = _present(
            default_meals=default_meals,
            current_month=current_month,
            last_reset_date=last_reset_date,
        )
        current = self.get_settings()
        settings = MessSettings.model_validate(
            {**current.model_dump(), **changes}
        )
        changed = {
            key: value
            for key, value in settings.model_dump(mode="json").items()
            if key in changes
        }
        self._store.set(
            Collection.SETTINGS.value,
            self._app_settings.settings_document_id,
            settings.model_dump(mode="json"),
            merge=True,
        )
        self._audit_logger.log(AuditEventBuilder.settings_updated(changed))
        return settings

    # =========================================================================
    # SETTLEMENT
    # =========================================================================

    def compute_period_summary(self, period: str) -> SettlementSummary:
        """One-shot settlement of a period from the current records."""
        participants = self.get_all_participants()
        meals = self.get_all_meals_by_period(period)
        costs = parse_records(
            CostRecord,
            self._store.get_all(Collection.COSTS.value, filters=[where("period", period)]),
            "costs",
        )
        deposits = parse_records(
            DepositRecord,
            self._store.get_all(Collection.DEPOSITS.value, filters=[where("period", period)]),
            "deposits",
        )
        return compute_summary(period, participants, meals, costs, deposits)

    def subscribe_settlement(
        self,
        period: str,
        callback: Callable[[SettlementSummary], None],
    ) -> Callable[[], None]:
        """
        Keep callback fed with the live settlement of a period.

        To follow another period, dispose the returned handle and
        subscribe again.
        """
        return subscribe_settlement(
            self._store, period, callback, self._audit_logger
        )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _update_dated(
        self,
        collection: Collection,
        model,
        record_id: str,
        changes: dict,
        event_type: AuditEventType,
        check: Optional[Callable] = None,
    ):
        existing = self._store.get(collection.value, record_id)
        if existing is None:
            raise NotFoundError(f"{collection.value}/{record_id} not found")

        record = model.model_validate(
            {**existing, **changes, "updated_at": datetime.utcnow()}
        )
        if check is not None:
            check(record)
        self._store.update(
            collection.value,
            record_id,
            record.model_dump(mode="json", exclude=_JOINED_FIELDS),
        )

        dumped = record.model_dump(mode="json")
        self._audit_logger.log(
            AuditEventBuilder.record_updated(
                event_type,
                collection.value,
                record_id,
                {key: dumped[key] for key in changes},
            )
        )
        return record

    def _delete_record(
        self,
        collection: Collection,
        record_id: str,
        event_type: AuditEventType,
    ) -> bool:
        deleted = self._store.delete(collection.value, record_id)
        if deleted:
            self._audit_logger.log(
                AuditEventBuilder.record_deleted(event_type, collection.value, record_id)
            )
        return deleted


def _iso(value: DateLike) -> str:
    """ISO form of a date, as stored in records."""
    if isinstance(value, str):
        return date.fromisoformat(value[:10]).isoformat()
    return value.isoformat()


def _present(**fields) -> dict:
    """Keyword arguments that were actually given."""
    return {key: value for key, value in fields.items() if value is not None}


def _check_attribution(cost: CostRecord) -> None:
    if cost.type == CostType.INDIVIDUAL and not cost.participant_id:
        raise ValueError("An individual cost must be attributed to a participant")


def create_ledger(store: Optional[RecordStore] = None) -> MessLedger:
    """
    Factory function to create the ledger.

    Args:
        store: Record store to use. When omitted the backend is picked
               from configuration (MESS_STORE_BACKEND).

    Returns:
        A MessLedger whose audit trail is persisted to the same store
    """
    if store is None:
        backend = get_settings().store.backend
        if backend == "google_sheets":
            store = GoogleSheetsRecordStore(GoogleSheetsClient())
        else:
            store = InMemoryRecordStore()
        logger.info("ledger_created", backend=backend)

    return MessLedger(store, AuditLogger(store))
