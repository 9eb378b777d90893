"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the remote backend because:
1. Users can view and fix their readings directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No push notifications: subscriptions poll and diff snapshots
- No transactions: upserts find-then-write one row at a time
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so the sync engine
does not change when the backend does.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from billing_tracker.config import get_settings
from billing_tracker.models.billing import BillingSettings, MonthRecord
from billing_tracker.models.rows import (
    MONTH_COLUMNS,
    MONTH_TABLE,
    SETTINGS_COLUMNS,
    SETTINGS_TABLE,
    month_records_from_rows,
    month_record_to_row,
    settings_from_row,
    settings_to_row,
)
from billing_tracker.services.storage.interface import (
    BillingStorageInterface,
    ChangeEvent,
    ChangeHandler,
    ChangeType,
    ConnectionError,
    StorageError,
    Subscription,
)


# Columns holding nested objects, stored as JSON text in one cell
JSON_COLUMNS = {
    "rates",
    "electricity_rates",
    "quotas",
    "starting_meter_readings",
    "overrides",
    "meter_readings",
}

BOOLEAN_COLUMNS = {"is_complete"}


def row_to_cells(row: dict, columns: list[str]) -> list[str]:
    """Convert a table row to a spreadsheet row in column order."""
    cells = []
    for column in columns:
        value = row.get(column)
        if value is None:
            cells.append("")
        elif column in JSON_COLUMNS:
            cells.append(json.dumps(value))
        else:
            cells.append(str(value))
    return cells


def cells_to_row(cells: list, columns: list[str]) -> dict:
    """Convert a spreadsheet row back to a table row."""
    # Handle missing columns gracefully
    def safe_get(index: int) -> str:
        try:
            return cells[index] or ""
        except IndexError:
            return ""

    row: dict[str, Any] = {}
    for index, column in enumerate(columns):
        value = safe_get(index)
        if column in JSON_COLUMNS:
            row[column] = json.loads(value) if value else None
        elif column in BOOLEAN_COLUMNS:
            row[column] = value.lower() == "true"
        else:
            row[column] = value or None
    return row


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @property
    def poll_interval_seconds(self) -> float:
        return self._settings.poll_interval_seconds

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

    def get_settings_sheet(self) -> gspread.Worksheet:
        """Get or create the Settings worksheet."""
        return self._get_or_create_sheet(
            self._settings.settings_sheet_name, SETTINGS_COLUMNS, rows=100
        )

    def get_month_sheet(self) -> gspread.Worksheet:
        """Get or create the MonthData worksheet."""
        return self._get_or_create_sheet(
            self._settings.month_sheet_name, MONTH_COLUMNS, rows=2000
        )


class PollingSubscription(Subscription):
    """
    Emulates push notifications by polling a snapshot and diffing it.

    The first snapshot is taken when the subscription starts, so rows
    that already exist are not reported as inserts.
    """

    def __init__(
        self,
        table: str,
        user_id: str,
        load_snapshot: Callable[[], Awaitable[dict[str, Any]]],
        on_change: ChangeHandler,
        interval: float,
    ):
        self._table = table
        self._user_id = user_id
        self._load_snapshot = load_snapshot
        self._on_change = on_change
        self._interval = interval
        self._snapshot: dict[str, Any] = {}
        self._task: Optional[asyncio.Task] = None
        self._logger = structlog.get_logger("billing_tracker.storage")

    async def start(self) -> None:
        self._snapshot = await self._load_snapshot()
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def unsubscribe(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                snapshot = await self._load_snapshot()
            except StorageError as e:
                self._logger.warning(
                    "subscription_poll_failed",
                    table=self._table,
                    user_id=self._user_id,
                    error=str(e),
                )
                continue
            for change_type, key, value in self._diff(snapshot):
                try:
                    self._on_change(self._event(change_type, key, value))
                except Exception as e:
                    self._logger.error(
                        "subscription_handler_failed",
                        table=self._table,
                        user_id=self._user_id,
                        key=key,
                        change_type=change_type.value,
                        error=str(e),
                    )
            self._snapshot = snapshot

    def _diff(self, snapshot: dict[str, Any]) -> list[tuple[ChangeType, str, Any]]:
        changes = []
        for key, value in snapshot.items():
            previous = self._snapshot.get(key)
            if previous == value:
                continue
            changes.append((ChangeType.INSERT if previous is None else ChangeType.UPDATE, key, value))
        for key in self._snapshot:
            if key not in snapshot:
                changes.append((ChangeType.DELETE, key, None))
        return changes

    def _event(self, change_type: ChangeType, key: str, value: Any) -> ChangeEvent:
        if self._table == SETTINGS_TABLE:
            return ChangeEvent(
                table=self._table,
                change_type=change_type,
                user_id=self._user_id,
                settings=value,
            )
        return ChangeEvent(
            table=self._table,
            change_type=change_type,
            user_id=self._user_id,
            month_key=key,
            record=value,
        )


class GoogleSheetsBillingStorage(BillingStorageInterface):
    """
    Google Sheets implementation of the billing store.

    One worksheet per table, one table row per sheet row.
    Nested objects are JSON-serialized into single cells.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._poll_interval = poll_interval or self._client.poll_interval_seconds

    def _read_rows(self, sheet: gspread.Worksheet, columns: list[str]) -> list[tuple[int, dict]]:
        """All table rows with their 1-based sheet row numbers (header excluded)."""
        rows = []
        for index, cells in enumerate(sheet.get_all_values()[1:], start=2):
            if not cells or not cells[0]:  # Skip empty rows
                continue
            rows.append((index, cells_to_row(cells, columns)))
        return rows

    def _write_row(
        self,
        sheet: gspread.Worksheet,
        sheet_row: Optional[int],
        row: dict,
        columns: list[str],
    ) -> None:
        cells = row_to_cells(row, columns)
        if sheet_row is None:
            sheet.append_row(cells, value_input_option="RAW")
        else:
            sheet.update(range_name=f"A{sheet_row}", values=[cells], raw=True)

    async def load_settings(self, user_id: str) -> Optional[BillingSettings]:
        try:
            sheet = self._client.get_settings_sheet()
            for _, row in self._read_rows(sheet, SETTINGS_COLUMNS):
                if row["user_id"] == user_id:
                    return settings_from_row(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to load settings: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upsert_settings(self, user_id: str, settings: BillingSettings) -> bool:
        try:
            sheet = self._client.get_settings_sheet()
            row = settings_to_row(user_id, settings)
            existing = [
                (index, stored)
                for index, stored in self._read_rows(sheet, SETTINGS_COLUMNS)
                if stored["user_id"] == user_id
            ]
            if existing:
                index, stored = existing[0]
                row["created_at"] = stored.get("created_at") or row["updated_at"]
                self._write_row(sheet, index, row, SETTINGS_COLUMNS)
            else:
                row["created_at"] = row["updated_at"]
                self._write_row(sheet, None, row, SETTINGS_COLUMNS)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save settings: {e}")

    async def load_all_months(self, user_id: str) -> dict[str, MonthRecord]:
        try:
            sheet = self._client.get_month_sheet()
            values = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to load months: {e}")

        rows = []
        unreadable: dict[str, str] = {}
        for index, cells in enumerate(values, start=2):
            if not cells or cells[0] != user_id:
                continue
            try:
                rows.append(cells_to_row(cells, MONTH_COLUMNS))
            except ValueError as e:
                unreadable[f"row {index}"] = str(e)

        months, skipped = month_records_from_rows(rows)
        self._skipped_rows = {**unreadable, **skipped}
        return months

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upsert_month(self, user_id: str, month_key: str, record: MonthRecord) -> bool:
        try:
            sheet = self._client.get_month_sheet()
            row = month_record_to_row(user_id, month_key, record)
            for index, stored in self._read_rows(sheet, MONTH_COLUMNS):
                if stored["user_id"] == user_id and stored.get("month") == month_key:
                    row["created_at"] = stored.get("created_at") or row["updated_at"]
                    self._write_row(sheet, index, row, MONTH_COLUMNS)
                    return True

            row["created_at"] = row["updated_at"]
            self._write_row(sheet, None, row, MONTH_COLUMNS)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save month {month_key}: {e}")

    async def delete_month(self, user_id: str, month_key: str) -> bool:
        try:
            sheet = self._client.get_month_sheet()
            for index, stored in self._read_rows(sheet, MONTH_COLUMNS):
                if stored["user_id"] == user_id and stored.get("month") == month_key:
                    sheet.delete_rows(index)
                    return True
            return False
        except Exception as e:
            raise StorageError(f"Failed to delete month {month_key}: {e}")

    async def subscribe(
        self,
        table: str,
        user_id: str,
        on_change: ChangeHandler,
    ) -> Subscription:
        if table == SETTINGS_TABLE:
            async def load_snapshot() -> dict[str, Any]:
                settings = await self.load_settings(user_id)
                return {user_id: settings} if settings is not None else {}
        elif table == MONTH_TABLE:
            async def load_snapshot() -> dict[str, Any]:
                return await self.load_all_months(user_id)
        else:
            raise StorageError(f"Unknown table: {table}")

        subscription = PollingSubscription(
            table=table,
            user_id=user_id,
            load_snapshot=load_snapshot,
            on_change=on_change,
            interval=self._poll_interval,
        )
        await subscription.start()
        return subscription
