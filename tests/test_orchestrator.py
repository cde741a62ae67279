"""Tests for the ledger workflows."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from messledger.models.records import MealWeights
from messledger.orchestrator import MessLedger, create_ledger
from messledger.store import InMemoryRecordStore, NotFoundError, StoreError

from conftest import PERIOD, make_participant, put


class TestParticipants:

    def test_register_creates_pending_border(self, ledger):
        participant = ledger.register_participant("Rahim", "rahim@example.com")
        stored = ledger.get_participant(participant.id)
        assert stored.status == "pending"
        assert stored.role == "border"
        assert stored.default_meals is None

    def test_add_participant_is_approved_with_default_meals(self, ledger):
        ledger.update_settings(default_meals=MealWeights(breakfast="0", lunch="1", dinner="1"))
        participant = ledger.add_participant("Karim", role="manager")

        stored = ledger.get_participant(participant.id)
        assert stored.status == "approved"
        assert stored.role == "manager"
        assert stored.default_meals == MealWeights(breakfast="0", lunch="1", dinner="1")

    def test_get_all_participants_ordered_by_name(self, ledger):
        ledger.add_participant("Zahid")
        ledger.register_participant("Anik")
        assert [p.name for p in ledger.get_all_participants()] == ["Anik", "Zahid"]

    def test_updates(self, ledger):
        participant = ledger.register_participant("Rahim")
        ledger.update_participant_status(participant.id, "approved")
        ledger.update_participant_role(participant.id, "manager")
        ledger.update_participant_default_meals(participant.id, {"lunch": "1"})

        stored = ledger.get_participant(participant.id)
        assert stored.is_eligible
        assert stored.role == "manager"
        assert stored.default_meals.total == Decimal("1")

    def test_update_unknown_participant_raises(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.update_participant_status("ghost", "approved")

    def test_invalid_status_is_rejected(self, ledger):
        participant = ledger.register_participant("Rahim")
        with pytest.raises(ValueError):
            ledger.update_participant_status(participant.id, "banned")

    def test_delete_keeps_history(self, ledger):
        participant = ledger.add_participant("Rahim")
        ledger.add_deposit(participant.id, "100", "2024-03-01")

        assert ledger.delete_participant(participant.id) is True
        assert ledger.delete_participant(participant.id) is False
        assert ledger.get_participant(participant.id) is None
        assert len(ledger.store.get_all("deposits")) == 1


class TestMeals:

    def test_save_meal_twice_keeps_one_record(self, ledger, store):
        ledger.save_meal("a", "2024-03-05", MealWeights(lunch="1"))
        ledger.save_meal("a", date(2024, 3, 5), MealWeights(breakfast="0.5", dinner="1"))

        records = store.get_all("meals")
        assert len(records) == 1
        meal = ledger.find_meal("a", "2024-03-05")
        assert meal.lunch == Decimal("0")
        assert meal.total_meals == Decimal("1.5")
        assert meal.period == "2024-03"

    def test_upsert_keeps_created_at(self, ledger):
        first = ledger.save_meal("a", "2024-03-05", MealWeights(lunch="1"))
        second = ledger.save_meal("a", "2024-03-05", MealWeights(lunch="2"))
        assert second.id == first.id
        assert second.created_at == first.created_at

    def test_negative_weight_is_rejected(self, ledger, store):
        with pytest.raises(ValidationError):
            ledger.save_meal("a", "2024-03-05", {"lunch": "-1"})
        assert store.get_all("meals") == []

    def test_save_meals_for_date_shares_correlation_id(self, ledger, store):
        ledger.save_meals_for_date("2024-03-05", {
            "a": MealWeights(lunch="1"),
            "b": MealWeights(dinner="1"),
        })
        events = [e for e in store.get_all("audit_log") if e["event_type"] == "meal_saved"]
        assert len(events) == 2
        assert events[0]["correlation_id"] == events[1]["correlation_id"] != ""

    def test_find_meal_missing_is_none(self, ledger):
        assert ledger.find_meal("a", "2024-03-05") is None

    def test_meals_by_period(self, ledger):
        ledger.save_meal("a", "2024-03-05", MealWeights(lunch="1"))
        ledger.save_meal("a", "2024-04-01", MealWeights(lunch="1"))
        assert [m.date for m in ledger.get_all_meals_by_period(PERIOD)] == [date(2024, 3, 5)]

    def test_meal_sheet_for_date(self, ledger):
        a = ledger.add_participant("Anik")
        b = ledger.add_participant("Bashir")
        ledger.register_participant("Pending")
        ledger.save_meal(a.id, "2024-03-05", MealWeights(lunch="1"))

        sheet = ledger.meal_sheet_for_date("2024-03-05")
        assert [(p.name, w.total) for p, w in sheet] == [
            ("Anik", Decimal("1")),
            ("Bashir", Decimal("0")),
        ]
        assert sheet[1][0].id == b.id


class TestDefaultMeals:

    def test_participant_defaults_win(self, ledger, store):
        put(store, "participants", make_participant(
            "a", default_meals=MealWeights(breakfast="1", lunch="1", dinner="0"),
        ))
        assert ledger.get_participant_default_meals("a").total == Decimal("2")

    def test_falls_back_to_mess_settings(self, ledger, store):
        put(store, "participants", make_participant("a"))
        ledger.update_settings(default_meals=MealWeights(lunch="1"))
        assert ledger.get_participant_default_meals("a") == MealWeights(lunch="1")

    def test_falls_back_to_hardcoded_default(self, ledger):
        weights = ledger.get_participant_default_meals("nobody")
        assert weights == MealWeights(breakfast="0.5", lunch="1", dinner="1")

    def test_store_failure_gives_hardcoded_default(self, ledger, store, monkeypatch):
        def failing(*args, **kwargs):
            raise StoreError("offline")

        monkeypatch.setattr(store, "get", failing)
        monkeypatch.setattr(store, "get_all", failing)

        assert ledger.get_participant_default_meals("a").total == Decimal("2.5")
        meal = ledger.get_meal_by_date("a", "2024-03-05")
        assert meal.id is None
        assert meal.total_meals == Decimal("2.5")

    def test_get_meal_by_date_prefills_defaults(self, ledger, store):
        put(store, "participants", make_participant(
            "a", default_meals=MealWeights(lunch="1", dinner="1"),
        ))
        meal = ledger.get_meal_by_date("a", "2024-03-05")
        assert meal.id is None
        assert meal.total_meals == Decimal("2")
        assert meal.period == "2024-03"

    def test_get_meal_by_date_returns_stored_record(self, ledger):
        saved = ledger.save_meal("a", "2024-03-05", MealWeights(dinner="1"))
        assert ledger.get_meal_by_date("a", "2024-03-05") == saved

    def test_find_meal_propagates_store_errors(self, ledger, store, monkeypatch):
        def failing(*args, **kwargs):
            raise StoreError("offline")

        monkeypatch.setattr(store, "get_all", failing)
        with pytest.raises(StoreError):
            ledger.find_meal("a", "2024-03-05")

    def test_unreadable_stored_meal_gives_hardcoded_default(self, ledger, store):
        store.set("meals", "a_2024-03-05", {
            "participant_id": "a",
            "date": "2024-03-05",
            "period": "2024-03",
            "lunch": "-1",
        })
        meal = ledger.get_meal_by_date("a", "2024-03-05")
        assert meal.id is None
        assert meal.total_meals == Decimal("2.5")


class TestDepositsAndCosts:

    def test_add_deposit(self, ledger, store):
        deposit = ledger.add_deposit("a", "-50", "2024-03-09", "Fine")
        stored = store.get("deposits", deposit.id)
        assert stored["amount"] == "-50"
        assert stored["period"] == "2024-03"
        assert "participant_name" not in stored

    def test_update_deposit_rederives_period(self, ledger, store):
        deposit = ledger.add_deposit("a", "100", "2024-03-31")
        updated = ledger.update_deposit(deposit.id, deposit_date="2024-04-01")
        assert updated.period == "2024-04"
        assert store.get("deposits", deposit.id)["period"] == "2024-04"
        assert store.get("deposits", deposit.id)["amount"] == "100"

    def test_update_missing_deposit_raises(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.update_deposit("ghost", amount="1")

    def test_add_cost_rejects_negative_amount(self, ledger, store):
        with pytest.raises(ValidationError):
            ledger.add_cost("market", "-1", "2024-03-01")
        assert store.get_all("costs") == []

    def test_individual_cost_needs_participant(self, ledger):
        with pytest.raises(ValueError):
            ledger.add_cost("individual", "10", "2024-03-01")

    def test_update_cannot_make_unattributed_individual_cost(self, ledger, store):
        cost = ledger.add_cost("shared", "100", "2024-03-01")
        with pytest.raises(ValueError):
            ledger.update_cost(cost.id, cost_type="individual")

        assert store.get("costs", cost.id)["type"] == "shared"
        assert ledger.compute_period_summary(PERIOD).total_shared_cost == Decimal("100")
        events = [e["event_type"] for e in store.get_all("audit_log")]
        assert events == ["cost_added"]

    def test_update_to_individual_with_participant(self, ledger, store):
        cost = ledger.add_cost("shared", "100", "2024-03-01")
        ledger.update_cost(cost.id, cost_type="individual", participant_id="a")
        stored = store.get("costs", cost.id)
        assert stored["type"] == "individual"
        assert stored["participant_id"] == "a"

    def test_update_cost(self, ledger, store):
        cost = ledger.add_cost("market", "100", "2024-03-01", "Rice")
        ledger.update_cost(cost.id, amount="120", cost_date="2024-02-28")
        stored = store.get("costs", cost.id)
        assert stored["amount"] == "120"
        assert stored["period"] == "2024-02"
        assert stored["description"] == "Rice"

    def test_delete_cost(self, ledger, store):
        cost = ledger.add_cost("shared", "100", "2024-03-01")
        assert ledger.delete_cost(cost.id) is True
        assert store.get_all("costs") == []
        events = [e["event_type"] for e in store.get_all("audit_log")]
        assert events == ["cost_added", "cost_deleted"]

    def test_delete_deposit(self, ledger):
        deposit = ledger.add_deposit("a", "100", "2024-03-01")
        assert ledger.delete_deposit(deposit.id) is True
        assert ledger.delete_deposit(deposit.id) is False


class TestSettings:

    def test_absent_settings_give_default(self, ledger, store):
        settings = ledger.get_settings()
        assert settings.default_meals.total == Decimal("2.5")
        assert store.get("settings", "mess-settings") is None

    def test_update_settings_merges(self, ledger, store):
        ledger.update_settings(current_month="2024-02")
        ledger.update_settings(last_reset_date="2024-03-01")

        settings = ledger.get_settings()
        assert settings.current_month == "2024-02"
        assert settings.last_reset_date == date(2024, 3, 1)

    def test_invalid_month_is_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ledger.update_settings(current_month="03/2024")


class TestPeriodSummary:

    def test_compute_period_summary(self, ledger):
        a = ledger.add_participant("Anik")
        ledger.register_participant("Pending")
        ledger.save_meal(a.id, "2024-03-01", MealWeights(lunch="1", dinner="1"))
        ledger.add_cost("market", "100", "2024-03-01")
        ledger.add_cost("market", "999", "2024-04-01")
        ledger.add_deposit(a.id, "150", "2024-03-01")

        summary = ledger.compute_period_summary(PERIOD)
        assert summary.participant_count == 1
        assert summary.meal_rate == Decimal("50")
        assert summary.for_participant(a.id).balance == Decimal("50")


class TestAudit:

    def test_every_write_is_audited(self, ledger, store):
        a = ledger.add_participant("Anik")
        ledger.save_meal(a.id, "2024-03-01", MealWeights(lunch="1"))
        ledger.add_deposit(a.id, "100", "2024-03-01")
        ledger.update_settings(current_month="2024-03")

        events = [e["event_type"] for e in store.get_all("audit_log")]
        assert events == [
            "participant_added",
            "meal_saved",
            "deposit_added",
            "settings_updated",
        ]

    def test_audit_failure_does_not_break_the_write(self, store, monkeypatch):
        ledger = MessLedger(store)
        original_add = store.add

        def add(collection, data):
            if collection == "audit_log":
                raise StoreError("audit sheet full")
            return original_add(collection, data)

        monkeypatch.setattr(store, "add", add)
        deposit = ledger.add_deposit("a", "100", "2024-03-01")
        assert store.get("deposits", deposit.id) is not None


class TestCreateLedger:

    def test_memory_backend_by_default(self):
        ledger = create_ledger()
        assert isinstance(ledger.store, InMemoryRecordStore)

    def test_uses_given_store(self, store):
        assert create_ledger(store).store is store
