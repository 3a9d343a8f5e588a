import asyncio
import logging
import requests
from typing import Optional, Sequence

from entry import Menu
from errors import RemoteRejectedError, RemoteUnavailableError, RowFormatError
from remote_store import Snapshot, rows_from_cells

logger = logging.getLogger(__name__)


class LogStoreClient:
    """REST client for the log API; implements ``RemoteLogStore``."""

    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        timeout: float = 10.0,
        api_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_token:
            self.session.headers["X-API-Key"] = api_token

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise RemoteUnavailableError(f"{method} {path} failed: {e}") from e
        except requests.RequestException as e:
            raise RemoteRejectedError(f"{method} {path} failed: {e}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            logger.warning("%s %s returned %s", method, path, resp.status_code)
            raise RemoteUnavailableError(
                f"{method} {path} returned {resp.status_code}"
            )
        if resp.status_code >= 400:
            raise RemoteRejectedError(f"{method} {path} returned {resp.status_code}")
        return resp

    def fetch_snapshot(self) -> Snapshot:
        resp = self._request("GET", "/api/data")
        try:
            data = resp.json()
            menu = Menu.from_dict(data.get("menu") or {})
            rows = rows_from_cells(data.get("rows") or [])
        except (ValueError, AttributeError, TypeError) as e:
            raise RowFormatError(f"unexpected /api/data payload: {e}") from e
        return Snapshot(menu, rows)

    def append_row(self, row: Sequence) -> None:
        self._request("POST", "/api/rows", json={"row": list(row)})

    def update_row(self, row_id: int, row: Sequence) -> None:
        self._request("PUT", f"/api/rows/{row_id}", json={"row": list(row)})

    def delete_row(self, row_id: int) -> None:
        self._request("DELETE", f"/api/rows/{row_id}")

    def set_menu(self, menu: Menu) -> None:
        self._request("PUT", "/api/menu", json=menu.to_dict())

    # RemoteLogStore

    async def list_all(self) -> Snapshot:
        return await asyncio.to_thread(self.fetch_snapshot)

    async def append(self, row: Sequence) -> None:
        await asyncio.to_thread(self.append_row, row)

    async def update(self, row_id: int, row: Sequence) -> None:
        await asyncio.to_thread(self.update_row, row_id, row)

    async def delete(self, row_id: int) -> None:
        await asyncio.to_thread(self.delete_row, row_id)
