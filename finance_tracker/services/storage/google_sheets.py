"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted storage backend because:
1. Non-technical family members can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the ledger handles this with careful ordering)
- Limited query capabilities (we filter in Python)

Each record type lives in its own worksheet. Columns follow the field
order of the record's Pydantic model, so the sheet layout can never drift
from the schema. Only the initial connection is retried; record
operations fail on the first error and the caller decides what to do.
"""

import json
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from finance_tracker.config import get_settings
from finance_tracker.config.settings import GoogleSheetsSettings
from finance_tracker.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finance_tracker.models.finance import ENTITY_MODELS, EntityType
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    RecordNotFoundError,
    RecordStoreInterface,
    RecordT,
    StorageError,
    is_visible_to,
)


logger = structlog.get_logger(__name__)


# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def columns_for(entity_type: EntityType) -> list[str]:
    """Sheet header for a record type: the model's field names, in order."""
    return list(ENTITY_MODELS[entity_type].model_fields)


def record_to_row(entity_type: EntityType, record: BaseModel) -> list[str]:
    """Convert a record to a spreadsheet row."""
    data = record.model_dump(mode="json")
    return [
        "" if data.get(column) is None else str(data[column])
        for column in columns_for(entity_type)
    ]


def row_to_record(entity_type: EntityType, row: list) -> BaseModel:
    """
    Convert a spreadsheet row back into a record.

    Empty cells are left out so the model's defaults apply.
    """
    data = {
        column: value
        for column, value in zip(columns_for(entity_type), row)
        if value != ""
    }
    return ENTITY_MODELS[entity_type].model_validate(data)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet lookup.
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
    def connect(self) -> gspread.Spreadsheet:
        """
        Open the configured spreadsheet, retrying the handshake.

        Call once at startup, before any record operation. Record
        operations never retry: if the spreadsheet is not open yet they
        make a single attempt.
        """
        return self.get_spreadsheet()

    def _authorize(self) -> gspread.Client:
        """Authenticate with the service account credentials."""
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
        """Get the configured spreadsheet (single attempt)."""
        if self._spreadsheet is None:
            client = self._authorize()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_records_sheet(self, entity_type: EntityType) -> gspread.Worksheet:
        """Get or create the worksheet for a record type."""
        return self._get_or_create(
            self._settings.sheet_name_for(entity_type.value),
            columns_for(entity_type),
            rows=1000,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsRecordStore(RecordStoreInterface):
    """
    Google Sheets implementation of the record store.

    Records are stored as rows, one worksheet per record type.
    The first column is always the record id.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        user_id: Optional[str] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._user_id = user_id
        self._household = False

    def set_user(self, user_id: Optional[str], household: bool = False) -> None:
        self._user_id = user_id
        self._household = household

    def _find_row(self, sheet: gspread.Worksheet, record_id: str) -> Optional[int]:
        """1-based sheet row index of a record, or None."""
        all_rows = sheet.get_all_values()
        for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if row and row[0] == record_id:
                return idx
        return None

    async def list_records(self, entity_type: EntityType) -> list[BaseModel]:
        try:
            sheet = self._client.get_records_sheet(entity_type)
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list {entity_type.value}: {e}") from e

        records = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                record = row_to_record(entity_type, row)
            except ValueError as e:
                logger.warning(
                    "malformed_row_skipped",
                    entity_type=entity_type.value,
                    record_id=row[0],
                    error=str(e),
                )
                continue
            if is_visible_to(entity_type, record, self._user_id, self._household):
                records.append(record)
        return records

    async def create(self, entity_type: EntityType, record: RecordT) -> RecordT:
        saved = record.model_copy(update={"id": str(uuid4())})
        try:
            sheet = self._client.get_records_sheet(entity_type)
            sheet.append_row(record_to_row(entity_type, saved), value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save {entity_type.value}: {e}") from e
        return saved

    async def update(self, entity_type: EntityType, record_id: str, record: BaseModel) -> None:
        try:
            sheet = self._client.get_records_sheet(entity_type)
            idx = self._find_row(sheet, record_id)
            if idx is None:
                raise RecordNotFoundError(f"{entity_type.value} not found: {record_id}")
            row = record_to_row(entity_type, record.model_copy(update={"id": record_id}))
            sheet.update(
                range_name=f"A{idx}",
                values=[row],
                value_input_option="RAW",
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {entity_type.value}: {e}") from e

    async def delete(self, entity_type: EntityType, record_id: str) -> None:
        try:
            sheet = self._client.get_records_sheet(entity_type)
            idx = self._find_row(sheet, record_id)
            if idx is None:
                raise RecordNotFoundError(f"{entity_type.value} not found: {record_id}")
            sheet.delete_rows(idx)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete {entity_type.value}: {e}") from e


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""

        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging should not break the main flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    def _all_events(self) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.warning("malformed_audit_row_skipped", event_id=row[0], error=str(e))
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = self._all_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
