import datetime
import time
from typing import Optional


class Clock:
    """Source of the current time, passed explicitly so tests can pin it."""

    def now(self) -> int:
        raise NotImplementedError

    def today(self, tz: Optional[datetime.tzinfo] = None) -> datetime.date:
        return datetime.datetime.fromtimestamp(self.now(), tz).date()


class SystemClock(Clock):
    def now(self) -> int:
        return int(time.time())


class FixedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, timestamp: int) -> None:
        self.timestamp = int(timestamp)

    def now(self) -> int:
        return self.timestamp

    def advance(self, seconds: int) -> None:
        self.timestamp += int(seconds)
