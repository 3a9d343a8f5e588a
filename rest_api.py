import logging
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from aggregator import bucket_by_day, day_summary, rolling_histogram, visible_days
from clock import Clock, SystemClock
from config import load_settings
from db import LogRepository
from entry import Entry, Menu, RemoteId
from errors import RemoteError, RowFormatError

logger = logging.getLogger(__name__)

Cell = Optional[Union[str, int, float]]


class RowBody(BaseModel):
    row: List[Cell] = Field(..., min_length=1, max_length=8)


class MenuBody(BaseModel):
    modifiers: List[str] = []
    verbs: List[str] = []


def entry_to_dict(entry: Entry) -> dict:
    return {
        "id": entry.id.row if isinstance(entry.id, RemoteId) else str(entry.id),
        "timestamp": entry.timestamp,
        "exercise": entry.exercise_name,
        "set": entry.set_number,
        "load": entry.encoded_load,
        "reps": entry.reps,
        "effort": entry.effort,
        "rest": entry.rest_seconds,
        "note": entry.note,
    }


class LogAPI:
    """Serves a positional workout log table over HTTP."""

    def __init__(
        self,
        yaml_path: str = "settings.yaml",
        *,
        db_path: str | None = None,
        backend=None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = load_settings(yaml_path)
        if db_path is not None:
            self.settings.db_path = db_path
        self.backend = backend or self._make_backend()
        self.clock = clock or SystemClock()
        self.tz = self.settings.tzinfo()
        self.app = FastAPI(
            title="Lift Log API",
            description="Positional row store for workout sets",
        )
        self._setup_routes()

    def _make_backend(self):
        if self.settings.backend == "sheets":
            from sheets_store import SheetsLogRepository

            return SheetsLogRepository.from_service_account(
                self.settings.credentials_file, self.settings.spreadsheet_id
            )
        return LogRepository(self.settings.db_path)

    def _check_key(self, x_api_key: str | None = Header(default=None)) -> None:
        token = self.settings.api_token
        if token and x_api_key != token:
            raise HTTPException(status_code=401, detail="invalid api key")

    def _entries(self) -> list[Entry]:
        rows = self.backend.fetch_rows()
        try:
            entries = [
                Entry.from_row(row, RemoteId(n)) for n, row in enumerate(rows, start=1)
            ]
        except RowFormatError as e:
            raise HTTPException(status_code=500, detail=str(e))
        entries.reverse()
        return entries

    @staticmethod
    def _remote_failure(e: RemoteError) -> HTTPException:
        logger.warning("backend call failed: %s", e)
        return HTTPException(status_code=503 if e.transient else 502, detail=str(e))

    def _setup_routes(self) -> None:
        router = APIRouter(prefix="/api", dependencies=[Depends(self._check_key)])

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and backend connectivity.",
        )
        def health():
            """Return API and backend connection status."""
            try:
                self.backend.fetch_menu()
                return {"status": "ok"}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @router.get("/data")
        def get_data():
            try:
                menu = self.backend.fetch_menu()
                rows = self.backend.fetch_rows()
            except RemoteError as e:
                raise self._remote_failure(e)
            return {"menu": menu.to_dict(), "rows": [list(r) for r in rows]}

        @router.post("/rows")
        def append_row(body: RowBody):
            try:
                self.backend.append_row(body.row)
            except RemoteError as e:
                raise self._remote_failure(e)
            return {"status": "appended"}

        @router.put("/rows/{row_id}")
        def update_row(row_id: int, body: RowBody):
            try:
                self.backend.update_row(row_id, body.row)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))
            except RemoteError as e:
                raise self._remote_failure(e)
            return {"status": "updated"}

        @router.delete("/rows/{row_id}")
        def delete_row(row_id: int):
            try:
                self.backend.delete_row(row_id)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))
            except RemoteError as e:
                raise self._remote_failure(e)
            return {"status": "deleted"}

        @router.put("/menu")
        def set_menu(body: MenuBody):
            try:
                self.backend.set_menu(Menu(tuple(body.modifiers), tuple(body.verbs)))
            except RemoteError as e:
                raise self._remote_failure(e)
            return {"status": "updated"}

        @router.get("/days")
        def list_days(load_more: int = 0):
            if load_more < 0:
                raise HTTPException(status_code=400, detail="load_more must be non-negative")
            try:
                buckets = bucket_by_day(self._entries(), self.tz)
            except RemoteError as e:
                raise self._remote_failure(e)
            return [
                {"day": day.isoformat(), "entries": [entry_to_dict(e) for e in entries]}
                for day, entries in visible_days(buckets, load_more).items()
            ]

        @router.get("/history")
        def history(days: int | None = None):
            if days is None:
                days = self.settings.history_days
            if days < 1:
                raise HTTPException(status_code=400, detail="days must be positive")
            try:
                entries = self._entries()
            except RemoteError as e:
                raise self._remote_failure(e)
            hist = rolling_histogram(
                entries,
                days,
                self.settings.histogram_thresholds,
                today=self.clock.today(self.tz),
                tz=self.tz,
            )
            return [
                {"day": h.day.isoformat(), "count": h.count, "tier": h.tier}
                for h in hist
            ]

        @router.get("/today")
        def today_text():
            try:
                entries = self._entries()
            except RemoteError as e:
                raise self._remote_failure(e)
            return {"text": day_summary(entries, self.clock.today(self.tz), self.tz)}

        self.app.include_router(router)


def create_app(yaml_path: str = "settings.yaml") -> FastAPI:
    return LogAPI(yaml_path).app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), port=3001)
