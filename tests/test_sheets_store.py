import os
import sys
import unittest
from unittest import mock

from googleapiclient.errors import HttpError

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from entry import Menu
from errors import RemoteRejectedError, RemoteUnavailableError
from sheets_store import SheetsLogRepository

ROWS = [
    ["1714564800", "bench press", "1", "60kg", "8", "2", "90"],
    ["1714564900", "bench press", "2", "60kg", "8", "2"],
]


def http_error(status: int) -> HttpError:
    resp = mock.Mock(status=status, reason="error")
    return HttpError(resp, b"")


class SheetsLogRepositoryTest(unittest.TestCase):
    def setUp(self) -> None:
        self.service = mock.MagicMock()
        self.sheets = self.service.spreadsheets.return_value
        self.values = self.sheets.values.return_value
        self.values.get.return_value.execute.return_value = {"values": ROWS}
        self.repo = SheetsLogRepository(self.service, "sheet-id")

    def test_fetch_rows_skips_header(self) -> None:
        self.assertEqual(self.repo.fetch_rows(), [tuple(r) for r in ROWS])
        kwargs = self.values.get.call_args.kwargs
        self.assertEqual(kwargs["range"], "'log'!A2:H")
        self.assertEqual(kwargs["spreadsheetId"], "sheet-id")

    def test_fetch_menu_columns(self) -> None:
        self.values.get.return_value.execute.return_value = {
            "values": [["incline", "bench"], ["", "press"], ["paused"]]
        }
        menu = self.repo.fetch_menu()
        self.assertEqual(menu, Menu(("incline", "paused"), ("bench", "press")))

    def test_append_row(self) -> None:
        self.repo.append_row(["1714565000", "squat", "1", "100kg", "5", "2"])
        kwargs = self.values.append.call_args.kwargs
        self.assertEqual(kwargs["range"], "'log'!A:H")
        self.assertEqual(kwargs["valueInputOption"], "USER_ENTERED")
        self.assertEqual(
            kwargs["body"],
            {"values": [["1714565000", "squat", "1", "100kg", "5", "2", "", ""]]},
        )

    def test_update_row_targets_sheet_row(self) -> None:
        self.repo.update_row(2, ROWS[1])
        kwargs = self.values.update.call_args.kwargs
        self.assertEqual(kwargs["range"], "'log'!A3:H3")

    def test_update_missing_row(self) -> None:
        with self.assertRaises(ValueError):
            self.repo.update_row(3, ROWS[0])
        self.values.update.assert_not_called()

    def test_delete_row_uses_sheet_id(self) -> None:
        self.sheets.get.return_value.execute.return_value = {
            "sheets": [
                {"properties": {"title": "menu", "sheetId": 1}},
                {"properties": {"title": "log", "sheetId": 42}},
            ]
        }
        self.repo.delete_row(1)
        body = self.sheets.batchUpdate.call_args.kwargs["body"]
        rng = body["requests"][0]["deleteDimension"]["range"]
        self.assertEqual(
            rng, {"sheetId": 42, "dimension": "ROWS", "startIndex": 1, "endIndex": 2}
        )

    def test_delete_without_log_sheet(self) -> None:
        self.sheets.get.return_value.execute.return_value = {"sheets": []}
        with self.assertRaises(RemoteRejectedError):
            self.repo.delete_row(1)

    def test_set_menu(self) -> None:
        self.repo.set_menu(Menu(("incline",), ("bench", "press")))
        self.values.clear.assert_called_once()
        body = self.values.update.call_args.kwargs["body"]
        self.assertEqual(body, {"values": [["incline", "bench"], ["", "press"]]})

    def test_http_errors(self) -> None:
        self.values.get.return_value.execute.side_effect = http_error(503)
        with self.assertRaises(RemoteUnavailableError):
            self.repo.fetch_rows()
        self.values.get.return_value.execute.side_effect = http_error(403)
        with self.assertRaises(RemoteRejectedError):
            self.repo.fetch_rows()


if __name__ == "__main__":
    unittest.main()
