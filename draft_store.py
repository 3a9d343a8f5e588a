import datetime
import json
import os
from typing import Optional

from clock import Clock, SystemClock
from entry import Draft


class DraftStore:
    """Keeps the unsubmitted form for the current day in a JSON file."""

    def __init__(
        self,
        path: str = "draft.json",
        clock: Clock | None = None,
        tz: Optional[datetime.tzinfo] = None,
    ) -> None:
        self.path = path
        self.clock = clock or SystemClock()
        self.tz = tz

    def _today(self) -> str:
        return self.clock.today(self.tz).isoformat()

    def load(self) -> Optional[Draft]:
        """Return today's draft; a draft saved on another day is discarded."""
        if not os.path.exists(self.path):
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError:
                data = {}
        if data.get("day") != self._today() or "draft" not in data:
            self.clear()
            return None
        return Draft.from_dict(data["draft"])

    def save(self, draft: Draft) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"day": self._today(), "draft": draft.to_dict()}, f)

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
