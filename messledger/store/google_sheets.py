"""
Google Sheets Record Store

DESIGN DECISION: Google Sheets is offered as a shared backend because:
1. The mess manager can view and fix records directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (a mess has a few dozen members)
- No transactions (we handle this with careful ordering)
- Limited query capabilities (we filter in Python)
- No push notifications: live queries are served by refresh(), which
  re-reads the subscribed sheets and emits only results that changed

The implementation follows the abstract interface, so the settlement
engine cannot tell it apart from any other store.
"""

import json
from typing import Optional
from uuid import uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from messledger.config import GoogleSheetsSettings, get_settings
from messledger.store.interface import (
    ConnectionError,
    FieldFilter,
    NotFoundError,
    OnChange,
    OnDocumentChange,
    OnError,
    OrderBy,
    Query,
    Record,
    RecordStore,
    StoreError,
    Unsubscribe,
)
from messledger.store.subscriptions import SubscriptionRegistry


# Column layout per collection; "id" is always the first column
COLUMNS = {
    "participants": [
        "id", "name", "email", "role", "status", "default_meals", "created_at",
    ],
    "meals": [
        "id", "participant_id", "date", "period",
        "breakfast", "lunch", "dinner", "total_meals",
        "created_at", "updated_at",
    ],
    "costs": [
        "id", "date", "period", "type", "amount", "description",
        "participant_id", "created_at", "updated_at",
    ],
    "deposits": [
        "id", "participant_id", "date", "period", "amount", "description",
        "created_at", "updated_at",
    ],
    "settings": [
        "id", "default_meals", "current_month", "last_reset_date",
    ],
    "audit_log": [
        "id", "event_id", "timestamp", "event_type", "severity",
        "entity_type", "entity_id", "correlation_id", "description",
        "details_json", "error_message",
    ],
}

# Columns holding nested values, stored as JSON text
JSON_COLUMNS = {"default_meals"}


def record_to_row(collection: str, record: Record) -> list[str]:
    """Convert a record to a spreadsheet row following COLUMNS."""
    row = []
    for column in columns_for(collection):
        value = record.get(column)
        if value is None:
            row.append("")
        elif column in JSON_COLUMNS:
            row.append(json.dumps(value))
        else:
            row.append(str(value))
    return row


def row_to_record(collection: str, row: list) -> Record:
    """
    Convert a spreadsheet row to a record.

    Empty cells are left out so model defaults apply on parsing.
    """
    record = {}
    for index, column in enumerate(columns_for(collection)):
        value = row[index] if index < len(row) else ""
        if value == "":
            continue
        record[column] = json.loads(value) if column in JSON_COLUMNS else value
    return record


def columns_for(collection: str) -> list[str]:
    try:
        return COLUMNS[collection]
    except KeyError:
        raise StoreError(f"No sheet layout for collection '{collection}'")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet backing a collection."""
        spreadsheet = self.get_spreadsheet()
        title = self._settings.sheet_name_for(collection)
        columns = columns_for(collection)
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class GoogleSheetsRecordStore(RecordStore):
    """
    Google Sheets implementation of the record store.

    Records are stored as rows, one worksheet per collection.
    Call refresh() periodically to pick up edits made by other writers.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._registry = SubscriptionRegistry(self._run_query)

    # -------------------------------------------------------------------------
    # Sheet access
    # -------------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _read_rows(self, collection: str) -> list[list]:
        """All data rows of a collection (header excluded)."""
        try:
            sheet = self._client.get_worksheet(collection)
            return sheet.get_all_values()[1:]
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to read {collection}: {e}")

    def _read_records(self, collection: str) -> list[Record]:
        return [
            row_to_record(collection, row)
            for row in self._read_rows(collection)
            if row and row[0]  # Skip empty rows
        ]

    def _find_row(self, collection: str, doc_id: str) -> tuple[Optional[int], Optional[Record]]:
        """Sheet row number (1-based, header is row 1) and record of a document."""
        for idx, row in enumerate(self._read_rows(collection), start=2):
            if row and row[0] == doc_id:
                return idx, row_to_record(collection, row)
        return None, None

    def _run_query(self, query: Query):
        if query.document_id is not None:
            _, record = self._find_row(query.collection, query.document_id)
            return record
        return query.apply(self._read_records(query.collection))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Optional[Record]:
        _, record = self._find_row(collection, doc_id)
        return record

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

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _append(self, collection: str, record: Record) -> None:
        try:
            sheet = self._client.get_worksheet(collection)
            sheet.append_row(record_to_row(collection, record), value_input_option="RAW")
        except Exception as e:
            raise StoreError(f"Failed to append to {collection}: {e}")

    def _write_row(self, collection: str, idx: int, record: Record) -> None:
        try:
            sheet = self._client.get_worksheet(collection)
            sheet.update(
                range_name=f"A{idx}",
                values=[record_to_row(collection, record)],
            )
        except Exception as e:
            raise StoreError(f"Failed to update {collection}: {e}")

    def add(self, collection: str, data: Record) -> str:
        doc_id = uuid4().hex
        self._append(collection, {**data, "id": doc_id})
        self._registry.notify(collection)
        return doc_id

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Record,
        merge: bool = False,
    ) -> None:
        idx, existing = self._find_row(collection, doc_id)
        record = {**existing, **data} if (merge and existing) else dict(data)
        record["id"] = doc_id
        if idx is None:
            self._append(collection, record)
        else:
            self._write_row(collection, idx, record)
        self._registry.notify(collection)

    def update(self, collection: str, doc_id: str, changes: Record) -> None:
        idx, existing = self._find_row(collection, doc_id)
        if idx is None:
            raise NotFoundError(f"{collection}/{doc_id} not found")
        self._write_row(collection, idx, {**existing, **changes, "id": doc_id})
        self._registry.notify(collection)

    def delete(self, collection: str, doc_id: str) -> bool:
        idx, _ = self._find_row(collection, doc_id)
        if idx is None:
            return False
        try:
            self._client.get_worksheet(collection).delete_rows(idx)
        except Exception as e:
            raise StoreError(f"Failed to delete from {collection}: {e}")
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

    def refresh(self) -> None:
        """
        Re-read every subscribed query and push results that changed.

        Picks up rows edited directly in the spreadsheet or by other
        processes since the last delivery.
        """
        self._registry.notify()
