"""Shared fixtures."""

from decimal import Decimal

import pytest

from messledger.config import get_settings
from messledger.models.records import (
    CostRecord,
    DepositRecord,
    MealRecord,
    Participant,
)
from messledger.orchestrator import MessLedger
from messledger.store import InMemoryRecordStore


PERIOD = "2024-03"


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Keep tests independent of the developer's environment."""
    for name in (
        "MESS_STORE_BACKEND",
        "UNKNOWN_PARTICIPANT_NAME",
        "DEFAULT_BREAKFAST",
        "DEFAULT_LUNCH",
        "DEFAULT_DINNER",
        "SETTINGS_DOCUMENT_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def ledger(store):
    return MessLedger(store)


def make_participant(pid, name=None, role="border", status="approved", **extra):
    return Participant(id=pid, name=name or pid, role=role, status=status, **extra)


def make_meal(pid, day, breakfast="0", lunch="0", dinner="0"):
    return MealRecord(
        id=f"{pid}_{day}",
        participant_id=pid,
        date=day,
        breakfast=Decimal(breakfast),
        lunch=Decimal(lunch),
        dinner=Decimal(dinner),
    )


def make_cost(cost_type, amount, day="2024-03-01", participant_id=None):
    return CostRecord(
        type=cost_type,
        amount=Decimal(amount),
        date=day,
        participant_id=participant_id,
    )


def make_deposit(pid, amount, day="2024-03-01"):
    return DepositRecord(participant_id=pid, amount=Decimal(amount), date=day)


def put(store, collection, record):
    """Write a record model straight to the store, as the ledger would."""
    data = record.model_dump(mode="json", exclude={"id", "participant_name"})
    if getattr(record, "id", None):
        store.set(collection, record.id, data)
        return record.id
    return store.add(collection, data)
