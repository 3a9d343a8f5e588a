"""
Google Sheets backing table.

The spreadsheet holds two tabs: ``menu`` with modifiers in column A and
verbs in column B, and ``log`` with a header row followed by one set per
row in columns A:H.
"""
import itertools
import logging
from typing import List, Sequence, Tuple

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from entry import Menu, ROW_WIDTH
from errors import RemoteRejectedError, RemoteUnavailableError

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

logger = logging.getLogger(__name__)


def get_service(credentials_file: str):
    """Build a Sheets API client from a service account key file."""
    creds = service_account.Credentials.from_service_account_file(
        credentials_file, scopes=SCOPES
    )
    return build("sheets", "v4", credentials=creds, cache_discovery=False)


class SheetsLogRepository:
    """Positional access to the ``log`` tab, same interface as ``LogRepository``."""

    def __init__(
        self,
        service,
        spreadsheet_id: str,
        log_sheet: str = "log",
        menu_sheet: str = "menu",
    ) -> None:
        self.service = service
        self.spreadsheet_id = spreadsheet_id
        self.log_sheet = log_sheet
        self.menu_sheet = menu_sheet
        self._sheet_id: int | None = None

    @classmethod
    def from_service_account(
        cls, credentials_file: str, spreadsheet_id: str, **kwargs
    ) -> "SheetsLogRepository":
        return cls(get_service(credentials_file), spreadsheet_id, **kwargs)

    def _values(self):
        return self.service.spreadsheets().values()

    @staticmethod
    def _call(request) -> dict:
        try:
            return request.execute()
        except HttpError as e:
            status = int(getattr(e.resp, "status", 0) or 0)
            logger.warning("Sheets API call failed with status %s", status)
            if status == 429 or status >= 500:
                raise RemoteUnavailableError(f"Sheets API error {status}") from e
            raise RemoteRejectedError(f"Sheets API error {status}") from e
        except OSError as e:
            raise RemoteUnavailableError(f"Sheets API unreachable: {e}") from e

    def _range(self, sheet: str, cells: str) -> str:
        return f"'{sheet}'!{cells}"

    def fetch_rows(self) -> List[Tuple[str, ...]]:
        result = self._call(
            self._values().get(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(self.log_sheet, "A2:H"),
                valueRenderOption="FORMATTED_VALUE",
            )
        )
        return [tuple(r) for r in result.get("values", [])]

    def fetch_menu(self) -> Menu:
        result = self._call(
            self._values().get(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(self.menu_sheet, "A:B"),
            )
        )
        rows = result.get("values", [])
        return Menu(
            tuple(r[0] for r in rows if len(r) > 0 and r[0]),
            tuple(r[1] for r in rows if len(r) > 1 and r[1]),
        )

    def set_menu(self, menu: Menu) -> None:
        self._call(
            self._values().clear(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(self.menu_sheet, "A:B"),
                body={},
            )
        )
        values = [
            [m, v]
            for m, v in itertools.zip_longest(menu.modifiers, menu.verbs, fillvalue="")
        ]
        self._call(
            self._values().update(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(self.menu_sheet, "A1"),
                valueInputOption="RAW",
                body={"values": values},
            )
        )

    @staticmethod
    def _cells(row: Sequence) -> list:
        if len(row) > ROW_WIDTH:
            raise ValueError(f"row has {len(row)} columns, expected {ROW_WIDTH}")
        cells = ["" if c is None else c for c in row]
        return cells + [""] * (ROW_WIDTH - len(cells))

    def _check_row(self, row_id: int) -> None:
        if row_id < 1 or row_id > len(self.fetch_rows()):
            raise ValueError("row not found")

    def append_row(self, row: Sequence) -> None:
        self._call(
            self._values().append(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(self.log_sheet, "A:H"),
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                body={"values": [self._cells(row)]},
            )
        )

    def update_row(self, row_id: int, row: Sequence) -> None:
        self._check_row(row_id)
        # sheet row 1 is the header
        sheet_row = row_id + 1
        self._call(
            self._values().update(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(self.log_sheet, f"A{sheet_row}:H{sheet_row}"),
                valueInputOption="USER_ENTERED",
                body={"values": [self._cells(row)]},
            )
        )

    def _log_sheet_id(self) -> int:
        if self._sheet_id is None:
            meta = self._call(
                self.service.spreadsheets().get(
                    spreadsheetId=self.spreadsheet_id, fields="sheets.properties"
                )
            )
            for sheet in meta.get("sheets", []):
                props = sheet.get("properties", {})
                if props.get("title") == self.log_sheet:
                    self._sheet_id = int(props["sheetId"])
                    break
            else:
                raise RemoteRejectedError(f"sheet {self.log_sheet!r} not found")
        return self._sheet_id

    def delete_row(self, row_id: int) -> None:
        self._check_row(row_id)
        sheet_id = self._log_sheet_id()
        self._call(
            self.service.spreadsheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={
                    "requests": [
                        {
                            "deleteDimension": {
                                "range": {
                                    "sheetId": sheet_id,
                                    "dimension": "ROWS",
                                    "startIndex": row_id,
                                    "endIndex": row_id + 1,
                                }
                            }
                        }
                    ]
                },
            )
        )
