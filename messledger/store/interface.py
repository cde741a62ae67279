"""
Abstract Record Store Interface

DESIGN DECISION: The settlement engine only ever talks to this interface.
This allows us to:
1. Run entirely in memory for tests and local use
2. Use Google Sheets as a zero-setup shared backend
3. Swap in a real document database later
4. Keep the aggregation logic free of storage concerns

The interface mirrors a document store: collections of dict records keyed
by id, equality filters, one sort key, and live queries that push the FULL
current result set on every change (never deltas).
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field


Record = dict[str, Any]
OnChange = Callable[[list[Record]], None]
OnDocumentChange = Callable[[Optional[Record]], None]
OnError = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class FieldFilter(BaseModel):
    """Equality filter on one record field."""

    field: str = Field(..., min_length=1)
    value: Any

    def matches(self, record: Record) -> bool:
        return record.get(self.field) == self.value


def where(field: str, value: Any) -> FieldFilter:
    """Shorthand for FieldFilter(field=..., value=...)."""
    return FieldFilter(field=field, value=value)


class OrderBy(BaseModel):
    """Sort spec for a query."""

    field: str = Field(..., min_length=1)
    descending: bool = False


class Query(BaseModel):
    """
    A snapshot query against one collection.

    When document_id is set the query targets a single document and its
    result is that document or None.
    """

    collection: str
    filters: list[FieldFilter] = Field(default_factory=list)
    order_by: Optional[OrderBy] = None
    document_id: Optional[str] = None

    def matches(self, record: Record) -> bool:
        return all(f.matches(record) for f in self.filters)

    def apply(self, records: list[Record]) -> list[Record]:
        """Filter and sort records; ties keep their stored order."""
        matched = [r for r in records if self.matches(r)]
        if self.order_by is not None:
            field = self.order_by.field
            matched.sort(
                key=lambda r: (r.get(field) is None, r.get(field) or ""),
                reverse=self.order_by.descending,
            )
        return matched


class RecordStore(ABC):
    """
    Abstract interface for record storage.

    Any storage implementation (in-memory, Google Sheets, Firestore, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # One-shot reads
    # -------------------------------------------------------------------------

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Record]:
        """
        Retrieve one record by id.

        Returns:
            A copy of the record (with its "id" key), None if absent

        Raises:
            StoreError: If the read fails
        """
        pass

    @abstractmethod
    def get_all(
        self,
        collection: str,
        filters: Optional[list[FieldFilter]] = None,
        order_by: Optional[OrderBy] = None,
    ) -> list[Record]:
        """
        Snapshot of all records matching the filters, sorted per order_by.

        Raises:
            StoreError: If the read fails
        """
        pass

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @abstractmethod
    def add(self, collection: str, data: Record) -> str:
        """
        Insert a record under a freshly generated id.

        Returns:
            The new record id
        """
        pass

    @abstractmethod
    def set(
        self,
        collection: str,
        doc_id: str,
        data: Record,
        merge: bool = False,
    ) -> None:
        """
        Create or overwrite a record under a known id.

        With merge=True existing fields not present in data are kept.
        """
        pass

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: Record) -> None:
        """
        Update fields of an existing record.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        """
        Delete a record by id.

        Returns:
            True if a record was deleted
        """
        pass

    # -------------------------------------------------------------------------
    # Live queries
    # -------------------------------------------------------------------------

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
        filters: Optional[list[FieldFilter]] = None,
        order_by: Optional[OrderBy] = None,
    ) -> Unsubscribe:
        """
        Subscribe to the full result set of a query.

        on_change receives the current snapshot right away and again after
        every mutation of the collection. on_error receives a terminal
        StoreError for this subscription only.

        Returns:
            An idempotent unsubscribe function
        """
        pass

    @abstractmethod
    def subscribe_document(
        self,
        collection: str,
        doc_id: str,
        on_change: OnDocumentChange,
        on_error: Optional[OnError] = None,
    ) -> Unsubscribe:
        """
        Subscribe to a single document; on_change receives None while absent.

        Returns:
            An idempotent unsubscribe function
        """
        pass


class StoreError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StoreError):
    """Record not found in storage."""
    pass


class ConnectionError(StoreError):
    """Could not connect to storage backend."""
    pass
