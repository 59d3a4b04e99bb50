#!/usr/bin/env python3
"""
Google Sheets Reader Module for Flow Automation

Reads job rows from a Google Sheet and writes per-row status back to the
status column (column A). Row 1 holds headers; every other row is one job.
"""

import asyncio
import logging
import os
import re
from typing import Any, List, Optional

import gspread
import requests
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.service_account import Credentials

from app_errors import AuthFailure, StoreUnreachable

logger = logging.getLogger('flow.sheets')

SHEET_ID_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
PLAIN_TAB_RE = re.compile(r"^[A-Za-z0-9_]+$")

STATUS_PROCESSING = "Processing..."
STATUS_DONE = "Done"
ERROR_PREFIX = "Error - "


def is_done(status: Optional[str]) -> bool:
    """A row is finished iff its status reads "done" ignoring case and whitespace."""
    return (status or "").strip().lower() == "done"


def row_status(values: List[str]) -> str:
    return values[0] if values else ""


def count_unprocessed(rows: List[List[str]]) -> int:
    """Count data rows (after the header) whose status is not done."""
    return sum(1 for values in rows[1:] if not is_done(row_status(values)))


def extract_sheet_id(value: str) -> Optional[str]:
    """Accept either a full sheet URL or a bare id."""
    value = (value or "").strip()
    if not value:
        return None
    match = SHEET_ID_RE.search(value)
    if match:
        return match.group(1)
    if re.fullmatch(r"[a-zA-Z0-9-_]+", value):
        return value
    return None


def _tab(tab_name: str) -> str:
    if PLAIN_TAB_RE.match(tab_name):
        return tab_name
    return "'" + tab_name.replace("'", "''") + "'"


def data_range(tab_name: str) -> str:
    return f"{_tab(tab_name)}!A:Z"


def status_column_range(tab_name: str) -> str:
    return f"{_tab(tab_name)}!A:A"


def status_cell(tab_name: str, row_index: int) -> str:
    return f"{_tab(tab_name)}!A{row_index}"


class SheetsReader:
    """
    Read/write access to the job sheet through a gspread service-account client.

    Public methods are coroutines; the blocking gspread calls run in a worker
    thread so the automation loop keeps running.
    """

    SCOPES = ['https://www.googleapis.com/auth/spreadsheets']

    def __init__(self, credentials_path: Optional[str] = None, client: Optional[Any] = None):
        """
        Args:
            credentials_path: Service account JSON file
            client: Pre-built gspread client (tests)
        """
        self.credentials_path = credentials_path
        self.gspread_client = client
        self._spreadsheets = {}

    def _init_google_sheets(self):
        """Authorize the gspread client on first use."""
        if self.gspread_client is not None:
            return self.gspread_client
        if not self.credentials_path:
            raise AuthFailure("GOOGLE_CREDENTIALS_JSON_PATH is not configured")
        if not os.path.exists(self.credentials_path):
            raise AuthFailure(f"Google credentials file not found at {self.credentials_path}")
        try:
            credentials = Credentials.from_service_account_file(self.credentials_path, scopes=self.SCOPES)
        except (ValueError, OSError) as e:
            raise AuthFailure(f"Invalid service account credentials: {e}") from e
        self.gspread_client = gspread.authorize(credentials)
        return self.gspread_client

    def _open(self, sheet_id: str):
        spreadsheet = self._spreadsheets.get(sheet_id)
        if spreadsheet is None:
            spreadsheet = self._init_google_sheets().open_by_key(sheet_id)
            self._spreadsheets[sheet_id] = spreadsheet
        return spreadsheet

    def _call(self, what: str, func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except gspread.exceptions.APIError as e:
            code = getattr(e, 'code', None) or getattr(getattr(e, 'response', None), 'status_code', None)
            if code in (401, 403):
                raise AuthFailure(f"{what} denied ({code}): {e}") from e
            raise StoreUnreachable(f"{what} failed ({code}): {e}") from e
        except RefreshError as e:
            raise AuthFailure(f"{what} failed, token refresh rejected: {e}") from e
        except gspread.exceptions.SpreadsheetNotFound as e:
            raise StoreUnreachable(f"{what} failed, spreadsheet not found") from e
        except (requests.exceptions.RequestException, TransportError) as e:
            raise StoreUnreachable(f"{what} failed: {e}") from e

    def _read_rows_sync(self, sheet_id: str, range_spec: str) -> List[List[str]]:
        spreadsheet = self._call("Open spreadsheet", self._open, sheet_id)
        result = self._call("Read range", spreadsheet.values_get, range_spec)
        rows = result.get('values', []) if result else []
        return [[str(cell) for cell in row] for row in rows]

    def _write_cell_sync(self, sheet_id: str, range_spec: str, value: str) -> None:
        spreadsheet = self._call("Open spreadsheet", self._open, sheet_id)
        self._call(
            "Write cell",
            spreadsheet.values_update,
            range_spec,
            params={'valueInputOption': 'RAW'},
            body={'values': [[value]]},
        )

    async def read_rows(self, sheet_id: str, range_spec: str) -> List[List[str]]:
        """
        Read an A1 range as rows of strings.

        Returns:
            Rows in sheet order; row 0 is the header row. Trailing empty
            cells are omitted by the API, so rows may be ragged.

        Raises:
            AuthFailure, StoreUnreachable
        """
        return await asyncio.to_thread(self._read_rows_sync, sheet_id, range_spec)

    async def write_cell(self, sheet_id: str, range_spec: str, value: str) -> None:
        """Write one value into a single-cell range (RAW input)."""
        await asyncio.to_thread(self._write_cell_sync, sheet_id, range_spec, value)
        logger.debug(f"Wrote {value!r} to {range_spec}")

    async def test_connection(self, sheet_id: str, tab_name: str) -> bool:
        """
        Read the sheet once and log a summary.

        Returns:
            True if the sheet could be read
        """
        logger.info("=" * 60)
        logger.info("Flow Automation - Sheets Reader Test")
        logger.info("=" * 60)
        logger.info(f"Google Sheets ID: {sheet_id}")
        logger.info(f"Tab: {tab_name}")
        try:
            rows = await self.read_rows(sheet_id, data_range(tab_name))
        except AuthFailure as e:
            logger.error(f"❌ Authentication failed: {e}")
            logger.error("   - Check GOOGLE_CREDENTIALS_JSON_PATH in .env")
            logger.error("   - Verify the service account has access to the sheet")
            return False
        except StoreUnreachable as e:
            logger.error(f"❌ Google Sheets unreachable: {e}")
            return False

        if not rows:
            logger.warning("⚠️ Sheet is empty (no header row)")
            return True
        logger.info(f"✅ Connected. Headers: {rows[0]}")
        logger.info(f"   {len(rows) - 1} data rows, {count_unprocessed(rows)} not done")
        return True
