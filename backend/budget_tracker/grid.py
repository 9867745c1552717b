"""Outbound grid backends for the spreadsheet row store.

A grid is a set of named sheets holding rows of text cells. Row numbers are
1-based and row 1 is the header, matching the spreadsheet's own addressing.
"""

from __future__ import annotations

import copy
import threading
from typing import Any

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import Settings
from .errors import BackendUnavailable
from .logging_setup import get_logger

logger = get_logger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
LAST_COLUMN = "Z"


def _trim(values: list[str]) -> list[str]:
    trimmed = list(values)
    while trimmed and trimmed[-1] == "":
        trimmed.pop()
    return trimmed


class Grid:
    def read_rows(self, sheet: str) -> list[list[str]]:
        raise NotImplementedError

    def read_header(self, sheet: str) -> list[str]:
        raise NotImplementedError

    def append_row(self, sheet: str, values: list[str]) -> None:
        raise NotImplementedError

    def write_row(self, sheet: str, row_number: int, values: list[str]) -> None:
        raise NotImplementedError

    def delete_row(self, sheet: str, row_number: int) -> None:
        raise NotImplementedError


class InMemoryGrid(Grid):
    def __init__(self, sheets: dict[str, list[list[str]]] | None = None) -> None:
        self._sheets: dict[str, list[list[str]]] = {name: [_trim(r) for r in rows] for name, rows in (sheets or {}).items()}
        self._lock = threading.Lock()

    def read_rows(self, sheet: str) -> list[list[str]]:
        with self._lock:
            return copy.deepcopy(self._sheets.get(sheet, []))

    def read_header(self, sheet: str) -> list[str]:
        with self._lock:
            rows = self._sheets.get(sheet, [])
            return list(rows[0]) if rows else []

    def append_row(self, sheet: str, values: list[str]) -> None:
        with self._lock:
            self._sheets.setdefault(sheet, []).append(_trim(values))

    def write_row(self, sheet: str, row_number: int, values: list[str]) -> None:
        with self._lock:
            rows = self._sheets.setdefault(sheet, [])
            while len(rows) < row_number:
                rows.append([])
            rows[row_number - 1] = _trim(values)

    def delete_row(self, sheet: str, row_number: int) -> None:
        with self._lock:
            rows = self._sheets.get(sheet, [])
            if 0 < row_number <= len(rows):
                del rows[row_number - 1]


class GoogleSheetsGrid(Grid):
    """Grid over one Google spreadsheet, one worksheet per entity kind.

    ``service`` is an authenticated ``sheets`` v4 resource built once by the
    caller (see :func:`build_sheets_service`) and reused for every request.
    Values are written ``RAW`` so dates and ids come back exactly as stored.
    """

    def __init__(self, service: Any, spreadsheet_id: str) -> None:
        if not spreadsheet_id:
            raise BackendUnavailable("GOOGLE_SHEETS_SPREADSHEET_ID not configured")
        self.service = service
        self.spreadsheet_id = spreadsheet_id

    def _execute(self, request: Any, action: str) -> dict[str, Any]:
        try:
            return request.execute() or {}
        except (HttpError, GoogleAuthError, OSError) as exc:
            logger.error("sheets %s failed: %s", action, exc)
            raise BackendUnavailable(f"spreadsheet backend error during {action}") from exc

    def _values(self) -> Any:
        return self.service.spreadsheets().values()

    def read_rows(self, sheet: str) -> list[list[str]]:
        response = self._execute(
            self._values().get(spreadsheetId=self.spreadsheet_id, range=f"{sheet}!A:{LAST_COLUMN}"),
            f"read {sheet}",
        )
        return [[str(cell) for cell in row] for row in response.get("values", [])]

    def read_header(self, sheet: str) -> list[str]:
        response = self._execute(
            self._values().get(spreadsheetId=self.spreadsheet_id, range=f"{sheet}!1:1"),
            f"read header {sheet}",
        )
        rows = response.get("values", [])
        return [str(cell) for cell in rows[0]] if rows else []

    def append_row(self, sheet: str, values: list[str]) -> None:
        self._execute(
            self._values().append(
                spreadsheetId=self.spreadsheet_id,
                range=f"{sheet}!A:{LAST_COLUMN}",
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [values]},
            ),
            f"append {sheet}",
        )

    def write_row(self, sheet: str, row_number: int, values: list[str]) -> None:
        self._execute(
            self._values().update(
                spreadsheetId=self.spreadsheet_id,
                range=f"{sheet}!A{row_number}:{LAST_COLUMN}{row_number}",
                valueInputOption="RAW",
                body={"values": [values]},
            ),
            f"update {sheet}",
        )

    def _sheet_id(self, sheet: str) -> int:
        response = self._execute(
            self.service.spreadsheets().get(spreadsheetId=self.spreadsheet_id, fields="sheets.properties"),
            "read spreadsheet metadata",
        )
        for entry in response.get("sheets", []):
            properties = entry.get("properties", {})
            if properties.get("title") == sheet and properties.get("sheetId") is not None:
                return int(properties["sheetId"])
        raise BackendUnavailable(f"sheet not found: {sheet}")

    def delete_row(self, sheet: str, row_number: int) -> None:
        sheet_id = self._sheet_id(sheet)
        self._execute(
            self.service.spreadsheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={
                    "requests": [
                        {
                            "deleteDimension": {
                                "range": {
                                    "sheetId": sheet_id,
                                    "dimension": "ROWS",
                                    "startIndex": row_number - 1,
                                    "endIndex": row_number,
                                }
                            }
                        }
                    ]
                },
            ),
            f"delete row in {sheet}",
        )


def build_sheets_service(config: Settings) -> Any:
    """Authenticate once with the service account and build the Sheets client."""
    try:
        if config.sheets_credentials_file:
            credentials = service_account.Credentials.from_service_account_file(
                config.sheets_credentials_file, scopes=SHEETS_SCOPES
            )
        else:
            if not config.sheets_client_email or not config.sheets_private_key:
                raise BackendUnavailable(
                    "Google Sheets credentials not configured. Set GOOGLE_SHEETS_CLIENT_EMAIL and "
                    "GOOGLE_SHEETS_PRIVATE_KEY or GOOGLE_APPLICATION_CREDENTIALS."
                )
            credentials = service_account.Credentials.from_service_account_info(
                {
                    "type": "service_account",
                    "client_email": config.sheets_client_email,
                    "private_key": config.sheets_private_key.replace("\\n", "\n"),
                    "token_uri": TOKEN_URI,
                },
                scopes=SHEETS_SCOPES,
            )
    except (GoogleAuthError, ValueError, OSError) as exc:
        logger.error("could not load spreadsheet credentials: %s", exc)
        raise BackendUnavailable("invalid spreadsheet credentials") from exc
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)
