"""Tests for the live record streams."""

from decimal import Decimal

from messledger.models.records import MessSettings
from messledger.streams import (
    on_all_meals_update,
    on_costs_update,
    on_deposits_update,
    on_participant_meals_update,
    on_participants_update,
    on_settings_update,
)

from conftest import PERIOD, make_cost, make_deposit, make_meal, make_participant, put


class TestParticipantsStream:

    def test_ordered_by_name_and_parsed(self, store):
        put(store, "participants", make_participant("p2", name="Karim"))
        put(store, "participants", make_participant("p1", name="Anik", status="pending"))

        received = []
        on_participants_update(store, received.append)

        assert [p.name for p in received[-1]] == ["Anik", "Karim"]
        assert received[-1][0].status == "pending"

    def test_malformed_record_is_skipped(self, store):
        put(store, "participants", make_participant("p1", name="Anik"))
        store.set("participants", "bad", {"name": "x" * 500})

        received = []
        on_participants_update(store, received.append)
        assert [p.id for p in received[-1]] == ["p1"]


class TestMealStreams:

    def test_all_meals_of_period(self, store):
        put(store, "meals", make_meal("a", "2024-03-01", lunch="1"))
        put(store, "meals", make_meal("b", "2024-03-02", lunch="1"))
        put(store, "meals", make_meal("a", "2024-04-01", lunch="1"))

        received = []
        on_all_meals_update(store, PERIOD, received.append)
        assert sorted(m.id for m in received[-1]) == ["a_2024-03-01", "b_2024-03-02"]

    def test_participant_meals_oldest_first(self, store):
        put(store, "meals", make_meal("a", "2024-03-09", lunch="1"))
        put(store, "meals", make_meal("a", "2024-03-01", dinner="1"))
        put(store, "meals", make_meal("b", "2024-03-05", lunch="1"))

        received = []
        on_participant_meals_update(store, "a", PERIOD, received.append)
        assert [m.date.isoformat() for m in received[-1]] == ["2024-03-01", "2024-03-09"]
        assert received[-1][0].total_meals == Decimal("1")


class TestJoinedStreams:

    def test_costs_newest_first_with_names(self, store):
        put(store, "participants", make_participant("a", name="Anik"))
        put(store, "costs", make_cost("market", "100", day="2024-03-01"))
        put(store, "costs", make_cost("individual", "20", day="2024-03-07", participant_id="a"))

        received = []
        on_costs_update(store, PERIOD, received.append)

        costs = received[-1]
        assert [c.amount for c in costs] == [Decimal("20"), Decimal("100")]
        assert costs[0].participant_name == "Anik"
        assert costs[1].participant_name == "Unknown User"

    def test_deleted_participant_resolves_to_placeholder(self, store):
        put(store, "participants", make_participant("a", name="Anik"))
        put(store, "deposits", make_deposit("a", "300"))

        received = []
        on_deposits_update(store, PERIOD, received.append)
        assert received[-1][0].participant_name == "Anik"

        store.delete("participants", "a")
        store.add("deposits", {"participant_id": "a", "amount": "5", "date": "2024-03-03", "period": "2024-03"})
        assert {d.participant_name for d in received[-1]} == {"Unknown User"}

    def test_deposits_for_one_participant(self, store):
        put(store, "deposits", make_deposit("a", "300"))
        put(store, "deposits", make_deposit("b", "200"))

        received = []
        on_deposits_update(store, PERIOD, received.append, participant_id="b")
        assert [d.participant_id for d in received[-1]] == ["b"]

    def test_join_failure_degrades_names_but_delivers(self, store, monkeypatch):
        put(store, "participants", make_participant("a", name="Anik"))
        put(store, "costs", make_cost("individual", "20", participant_id="a"))

        original = store.get_all

        def failing(collection, *args, **kwargs):
            if collection == "participants":
                raise RuntimeError("participants unavailable")
            return original(collection, *args, **kwargs)

        monkeypatch.setattr(store, "get_all", failing)

        received = []
        on_costs_update(store, PERIOD, received.append)
        assert len(received[-1]) == 1
        assert received[-1][0].participant_name == "Unknown User"


class TestSettingsStream:

    def test_default_is_delivered_and_persisted(self, store):
        received = []
        on_settings_update(store, received.append)

        assert isinstance(received[0], MessSettings)
        assert received[0].default_meals.breakfast == Decimal("0.5")
        assert received[0].default_meals.lunch == Decimal("1.0")
        assert store.get("settings", "mess-settings") is not None

    def test_stored_settings_are_delivered(self, store):
        store.set("settings", "mess-settings", {
            "default_meals": {"breakfast": "0", "lunch": "1", "dinner": "0"},
            "current_month": "2024-03",
        })
        received = []
        on_settings_update(store, received.append)
        assert received == [
            MessSettings(
                default_meals={"breakfast": "0", "lunch": "1", "dinner": "0"},
                current_month="2024-03",
            )
        ]

    def test_stream_error_is_reported(self, store, monkeypatch):
        errors = []

        def failing(query):
            raise RuntimeError("down")

        monkeypatch.setattr(store._registry, "_run_query", failing)
        on_costs_update(store, PERIOD, lambda costs: None, on_error=errors.append)
        assert len(errors) == 1
