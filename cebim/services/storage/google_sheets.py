"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the storage backend because:
1. Users can view and back up their data directly in Sheets
2. No database setup required
3. Easy to export/migrate later

Records are stored one per row as JSON documents:

    user_id | kind | record_id | updated_at | payload_json

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal portfolio)
- No transactions: a put is a full-row overwrite, last write wins
- Limited query capabilities (we filter in Python)
"""

import json
from datetime import datetime
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from cebim.config import GoogleSheetsSettings, get_settings
from cebim.models.audit import AuditEvent, AuditEventType, AuditSeverity
from cebim.models.portfolio import utc_now
from cebim.services.storage.interface import (
    AuditStorageInterface,
    PersistenceError,
    Record,
    RecordStorageInterface,
    StorageConnectionError,
    StorageError,
)


logger = structlog.get_logger(__name__)

RECORD_COLUMNS = [
    "user_id",
    "kind",
    "record_id",
    "updated_at",
    "payload_json",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and retries the connection handshake.
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
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

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
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
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

    def get_records_sheet(self) -> gspread.Worksheet:
        """Get or create the Records worksheet."""
        return self._get_or_create_sheet(
            self._settings.records_sheet_name, RECORD_COLUMNS, rows=1000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsRecordStorage(RecordStorageInterface):
    """
    Google Sheets implementation of the per-user record store.

    Each record is JSON-serialized into a single cell.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        super().__init__()
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _record_to_row(user_id: str, kind: str, record: Record) -> list:
        return [
            user_id,
            kind,
            str(record["id"]),
            utc_now().isoformat(),
            json.dumps(record, ensure_ascii=False),
        ]

    @staticmethod
    def _find_row(all_rows: list[list], user_id: str, kind: str, record_id: str) -> Optional[int]:
        """1-based sheet row index of a record, skipping the header row."""
        for idx, row in enumerate(all_rows[1:], start=2):
            if len(row) >= 3 and row[0] == user_id and row[1] == kind and row[2] == record_id:
                return idx
        return None

    async def list_records(self, user_id: str, kind: str) -> list[Record]:
        try:
            sheet = self._client.get_records_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list {kind} records: {e}")

        records = []
        for row in all_rows:
            if len(row) < 5 or row[0] != user_id or row[1] != kind:
                continue
            try:
                records.append(json.loads(row[4]))
            except json.JSONDecodeError as e:
                logger.warning(
                    "malformed_record_skipped",
                    user_id=user_id,
                    kind=kind,
                    record_id=row[2],
                    error=str(e),
                )
        return records

    async def put_record(self, user_id: str, kind: str, record: Record) -> bool:
        if record.get("id") is None:
            raise PersistenceError(kind, "", "Record has no id")
        record_id = str(record["id"])
        try:
            sheet = self._client.get_records_sheet()
            new_row = self._record_to_row(user_id, kind, record)
            row_index = self._find_row(sheet.get_all_values(), user_id, kind, record_id)
            if row_index is None:
                sheet.append_row(new_row, value_input_option="RAW")
            else:
                sheet.update(
                    range_name=f"A{row_index}:E{row_index}",
                    values=[new_row],
                    value_input_option="RAW",
                )
        except Exception as e:
            raise PersistenceError(kind, record_id, f"Failed to save {kind} record {record_id}: {e}")

        self._notify(user_id, kind)
        return True

    async def delete_record(self, user_id: str, kind: str, record_id: str) -> bool:
        record_id = str(record_id)
        try:
            sheet = self._client.get_records_sheet()
            row_index = self._find_row(sheet.get_all_values(), user_id, kind, record_id)
            if row_index is None:
                return False
            sheet.delete_rows(row_index)
        except Exception as e:
            raise PersistenceError(kind, record_id, f"Failed to delete {kind} record {record_id}: {e}")

        self._notify(user_id, kind)
        return True


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
            user_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, json.JSONDecodeError):
                continue  # Skip malformed rows
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_append_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                e for e in self._read_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
        user_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = [
                e for e in self._read_events()
                if user_id is None or e.user_id == user_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
