"""
Record Store Package

Provides the abstract record store interface and its adapters.
The in-memory adapter is the default; Google Sheets is the shared backend.
"""

from messledger.store.interface import (
    ConnectionError,
    FieldFilter,
    NotFoundError,
    OrderBy,
    Query,
    Record,
    RecordStore,
    StoreError,
    Unsubscribe,
    where,
)
from messledger.store.memory import InMemoryRecordStore
from messledger.store.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
)

__all__ = [
    # Interface
    "FieldFilter",
    "OrderBy",
    "Query",
    "Record",
    "RecordStore",
    "Unsubscribe",
    "where",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StoreError",
    # Implementations
    "InMemoryRecordStore",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
]
