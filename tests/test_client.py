import datetime
import os
import sys
import unittest
from unittest import mock

import pytest
import requests
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from client import LogStoreClient
from clock import FixedClock
from entry import Draft, LoadUnit, Menu, RemoteId
from errors import RemoteRejectedError, RemoteUnavailableError, RowFormatError
from rest_api import LogAPI
from sync_engine import SyncEngine

UTC = datetime.timezone.utc
NOON = int(datetime.datetime(2024, 5, 1, 12, tzinfo=UTC).timestamp())


def fake_response(status: int, payload=None) -> mock.Mock:
    resp = mock.Mock()
    resp.status_code = status
    resp.json.return_value = payload
    return resp


class ClientErrorTest(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.MagicMock()
        self.client = LogStoreClient("http://example.test/", timeout=3, session=self.session)

    def test_request_uses_base_url_and_timeout(self) -> None:
        self.session.request.return_value = fake_response(200, {"status": "deleted"})
        self.client.delete_row(4)
        self.session.request.assert_called_once_with(
            "DELETE", "http://example.test/api/rows/4", timeout=3
        )

    def test_timeout_is_transient(self) -> None:
        self.session.request.side_effect = requests.Timeout("slow")
        with self.assertRaises(RemoteUnavailableError) as ctx:
            self.client.append_row(["1"])
        self.assertTrue(ctx.exception.transient)

    def test_server_errors_are_transient(self) -> None:
        for status in (500, 503, 429):
            self.session.request.return_value = fake_response(status)
            with self.assertRaises(RemoteUnavailableError):
                self.client.update_row(1, ["1"])

    def test_client_errors_are_permanent(self) -> None:
        self.session.request.return_value = fake_response(404)
        with self.assertRaises(RemoteRejectedError) as ctx:
            self.client.update_row(9, ["1"])
        self.assertFalse(ctx.exception.transient)

    def test_bad_payload(self) -> None:
        self.session.request.return_value = fake_response(200, ["not", "a", "dict"])
        with self.assertRaises(RowFormatError):
            self.client.fetch_snapshot()

    def test_snapshot(self) -> None:
        self.session.request.return_value = fake_response(
            200,
            {
                "menu": {"modifiers": ["incline"], "verbs": ["press"]},
                "rows": [["1", "press", "1", "10kg", "5", "2", None]],
            },
        )
        snapshot = self.client.fetch_snapshot()
        self.assertEqual(snapshot.menu, Menu(("incline",), ("press",)))
        self.assertEqual(snapshot.rows, (("1", "press", "1", "10kg", "5", "2", ""),))

    def test_api_token_header(self) -> None:
        session = mock.MagicMock()
        session.headers = {}
        LogStoreClient(session=session, api_token="abc")
        self.assertEqual(session.headers, {"X-API-Key": "abc"})


@pytest.mark.asyncio
async def test_engine_through_http_api(tmp_path):
    api = LogAPI(str(tmp_path / "settings.yaml"), db_path=str(tmp_path / "log.db"))
    store = LogStoreClient("http://testserver", session=TestClient(api.app))
    await store.list_all()
    store.set_menu(Menu(("incline",), ("bench", "press")))
    async with SyncEngine(store, FixedClock(NOON), tz=UTC, reload_delay=60) as engine:
        await engine.load()
        draft = Draft(["incline"], ["bench", "press"], 60, LoadUnit.WEIGHT, 8, 2)
        first = await engine.append(draft)
        second = await engine.append(draft)
        assert (first.id, first.set_number) == (RemoteId(1), 1)
        assert (second.id, second.set_number) == (RemoteId(2), 2)

        await engine.delete(RemoteId(1))
        await engine.flush()
        assert [e.id for e in engine.log] == [RemoteId(1)]
        assert engine.log[0].set_number == 2

        updated = await engine.update(RemoteId(1), {"reps": 10})
        rows = (await store.list_all()).rows
        assert rows == (updated.to_row(),)
