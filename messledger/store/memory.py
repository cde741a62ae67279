"""
In-Memory Record Store

The default backend for local runs and tests. Behaves like a document
store with snapshot listeners:

- every subscription gets its current snapshot as soon as it is opened
- after each write, every live query on the written collection whose
  result changed receives the full new result set
"""

import copy
from collections import defaultdict
from typing import Optional
from uuid import uuid4

from messledger.store.interface import (
    FieldFilter,
    NotFoundError,
    OnChange,
    OnDocumentChange,
    OnError,
    OrderBy,
    Query,
    Record,
    RecordStore,
    Unsubscribe,
)
from messledger.store.subscriptions import SubscriptionRegistry


class InMemoryRecordStore(RecordStore):
    """Dict-backed record store with synchronous change notification."""

    def __init__(self):
        self._collections: dict[str, dict[str, Record]] = defaultdict(dict)
        self._registry = SubscriptionRegistry(self._run_query)

    @property
    def subscription_count(self) -> int:
        """Number of live subscriptions (leak checks)."""
        return len(self._registry)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Optional[Record]:
        record = self._collections[collection].get(doc_id)
        return copy.deepcopy(record) if record is not None else None

    def get_all(
        self,
        collection: str,
        filters: Optional[list[FieldFilter]] = None,
        order_by: Optional[OrderBy] = None,
    ) -> list[Record]:
        query = Query(
            collection=collection,
            filters=filters or [],
            order_by=order_by,
        )
        return self._run_query(query)

    def _run_query(self, query: Query):
        docs = self._collections[query.collection]
        if query.document_id is not None:
            record = docs.get(query.document_id)
            return copy.deepcopy(record) if record is not None else None
        return query.apply([copy.deepcopy(r) for r in docs.values()])

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def add(self, collection: str, data: Record) -> str:
        doc_id = uuid4().hex
        self._collections[collection][doc_id] = {**copy.deepcopy(data), "id": doc_id}
        self._registry.notify(collection)
        return doc_id

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Record,
        merge: bool = False,
    ) -> None:
        docs = self._collections[collection]
        if merge and doc_id in docs:
            record = {**docs[doc_id], **copy.deepcopy(data)}
        else:
            record = copy.deepcopy(data)
        record["id"] = doc_id
        docs[doc_id] = record
        self._registry.notify(collection)

    def update(self, collection: str, doc_id: str, changes: Record) -> None:
        docs = self._collections[collection]
        if doc_id not in docs:
            raise NotFoundError(f"{collection}/{doc_id} not found")
        docs[doc_id] = {**docs[doc_id], **copy.deepcopy(changes), "id": doc_id}
        self._registry.notify(collection)

    def delete(self, collection: str, doc_id: str) -> bool:
        removed = self._collections[collection].pop(doc_id, None)
        if removed is None:
            return False
        self._registry.notify(collection)
        return True

    # -------------------------------------------------------------------------
    # Live queries
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
        filters: Optional[list[FieldFilter]] = None,
        order_by: Optional[OrderBy] = None,
    ) -> Unsubscribe:
        query = Query(
            collection=collection,
            filters=filters or [],
            order_by=order_by,
        )
        return self._registry.open(query, on_change, on_error)

    def subscribe_document(
        self,
        collection: str,
        doc_id: str,
        on_change: OnDocumentChange,
        on_error: Optional[OnError] = None,
    ) -> Unsubscribe:
        query = Query(collection=collection, document_id=doc_id)
        return self._registry.open(query, on_change, on_error)
