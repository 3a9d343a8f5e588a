import datetime
import os
import sys
import sqlite3
import unittest
from unittest import mock

import yaml
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from clock import FixedClock
from entry import Menu
from errors import RemoteUnavailableError
from rest_api import LogAPI

NOON = int(datetime.datetime(2024, 5, 1, 12, tzinfo=datetime.timezone.utc).timestamp())


def row(offset: int = 0, name: str = "bench press", set_number: int = 1) -> list:
    return [NOON + offset, name, set_number, "60kg", 8, 2, 90, ""]


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_api_log.db"
        self.yaml_path = "test_api_settings.yaml"
        for p in [self.db_path, self.yaml_path]:
            if os.path.exists(p):
                os.remove(p)
        with open(self.yaml_path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"timezone": "UTC"}, f)
        self.api = LogAPI(
            self.yaml_path, db_path=self.db_path, clock=FixedClock(NOON + 3600)
        )
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        for p in [self.db_path, self.yaml_path]:
            if os.path.exists(p):
                os.remove(p)

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_full_workflow(self) -> None:
        response = self.client.put(
            "/api/menu", json={"modifiers": ["incline"], "verbs": ["bench", "press"]}
        )
        self.assertEqual(response.status_code, 200)

        for offset in (0, 60, 120):
            response = self.client.post("/api/rows", json={"row": row(offset)})
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json(), {"status": "appended"})

        data = self.client.get("/api/data").json()
        self.assertEqual(data["menu"], {"modifiers": ["incline"], "verbs": ["bench", "press"]})
        self.assertEqual(len(data["rows"]), 3)
        self.assertEqual(
            data["rows"][0],
            [str(NOON), "bench press", "1", "60kg", "8", "2", "90", ""],
        )

        response = self.client.put("/api/rows/2", json={"row": row(60, set_number=5)})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/data").json()["rows"][1][2], "5")

        response = self.client.delete("/api/rows/1")
        self.assertEqual(response.status_code, 200)
        rows = self.client.get("/api/data").json()["rows"]
        self.assertEqual([r[0] for r in rows], [str(NOON + 60), str(NOON + 120)])

    def test_missing_row(self) -> None:
        self.client.post("/api/rows", json={"row": row()})
        self.assertEqual(self.client.put("/api/rows/4", json={"row": row()}).status_code, 404)
        self.assertEqual(self.client.delete("/api/rows/2").status_code, 404)

    def test_row_width_is_validated(self) -> None:
        response = self.client.post("/api/rows", json={"row": row() + ["extra"]})
        self.assertEqual(response.status_code, 422)
        response = self.client.post("/api/rows", json={"row": []})
        self.assertEqual(response.status_code, 422)

    def test_days_and_today(self) -> None:
        self.client.post("/api/rows", json={"row": row(0)})
        self.client.post("/api/rows", json={"row": row(-86400, "squat")})
        self.client.post("/api/rows", json={"row": row(300, set_number=2)})

        days = self.client.get("/api/days").json()
        self.assertEqual([d["day"] for d in days], ["2024-05-01", "2024-04-30"])
        self.assertEqual([e["id"] for e in days[0]["entries"]], [3, 1])
        self.assertEqual(days[1]["entries"][0]["exercise"], "squat")

        text = self.client.get("/api/today").json()["text"]
        self.assertEqual(
            text.splitlines(),
            [
                "12:00 bench press Set1 60kg x 8 (RIR 2) Rest: 90",
                "12:05 bench press Set2 60kg x 8 (RIR 2) Rest: 90",
            ],
        )
        self.assertEqual(self.client.get("/api/days", params={"load_more": -1}).status_code, 400)

    def test_history(self) -> None:
        self.client.post("/api/rows", json={"row": row(0)})
        self.client.post("/api/rows", json={"row": row(60)})
        hist = self.client.get("/api/history").json()
        self.assertEqual(len(hist), 90)
        self.assertEqual(hist[-1], {"day": "2024-05-01", "count": 2, "tier": 1})
        hist = self.client.get("/api/history", params={"days": 7}).json()
        self.assertEqual(len(hist), 7)
        self.assertEqual(self.client.get("/api/history", params={"days": 0}).status_code, 400)

    def test_undecodable_row_is_reported(self) -> None:
        self.client.post("/api/rows", json={"row": [NOON, "squat", 1, "heavy", 5, 2]})
        self.assertEqual(self.client.get("/api/days").status_code, 500)
        self.assertEqual(self.client.get("/api/data").status_code, 200)


class APIKeyTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_api_key.db"
        self.yaml_path = "test_api_key.yaml"
        with open(self.yaml_path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"api_token": "s3cret"}, f)
        self.client = TestClient(LogAPI(self.yaml_path, db_path=self.db_path).app)

    def tearDown(self) -> None:
        for p in [self.db_path, self.yaml_path]:
            if os.path.exists(p):
                os.remove(p)

    def test_key_required(self) -> None:
        self.assertEqual(self.client.get("/api/data").status_code, 401)
        response = self.client.get("/api/data", headers={"X-API-Key": "s3cret"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/health").status_code, 200)


class FailingBackend:
    def fetch_menu(self) -> Menu:
        return Menu()

    def fetch_rows(self):
        raise RemoteUnavailableError("quota exceeded")

    def append_row(self, row) -> None:
        raise RemoteUnavailableError("quota exceeded")


class BackendFailureTest(unittest.TestCase):
    def test_transient_failures_map_to_503(self) -> None:
        api = LogAPI("missing_settings.yaml", backend=FailingBackend())
        client = TestClient(api.app)
        self.assertEqual(client.get("/api/data").status_code, 503)
        self.assertEqual(client.post("/api/rows", json={"row": row()}).status_code, 503)
        self.assertEqual(client.get("/api/history").status_code, 503)


class LockedDatabaseTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_api_locked.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.client = TestClient(
            LogAPI("missing_settings.yaml", db_path=self.db_path).app
        )

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def test_locked_database_maps_to_503(self) -> None:
        conn = mock.MagicMock()
        conn.cursor.return_value.execute.side_effect = sqlite3.OperationalError(
            "database is locked"
        )
        with mock.patch("db.sqlite3.connect", return_value=conn):
            self.assertEqual(self.client.get("/api/data").status_code, 503)
            response = self.client.post("/api/rows", json={"row": row()})
            self.assertEqual(response.status_code, 503)
            self.assertEqual(self.client.get("/api/today").status_code, 503)
        conn.close.assert_called()

    def test_unopenable_database_maps_to_503(self) -> None:
        error = sqlite3.OperationalError("unable to open database file")
        with mock.patch("db.sqlite3.connect", side_effect=error):
            self.assertEqual(self.client.get("/api/days").status_code, 503)
            response = self.client.put("/api/rows/1", json={"row": row()})
            self.assertEqual(response.status_code, 503)


if __name__ == "__main__":
    unittest.main()
