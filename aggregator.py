"""Pure views over the in-memory log.

Nothing here mutates its input; callers pass whatever snapshot of the log
they hold. The log is usually newest-first, but functions that depend on
chronology sort by ``timestamp`` themselves.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from entry import Entry, format_number

DEFAULT_THRESHOLDS = (0, 3, 6, 10)
DEFAULT_HISTORY_DAYS = 90
INITIAL_PAST_DAYS = 3
LOAD_MORE_STEP = 5


@dataclass(frozen=True)
class HistogramDay:
    day: datetime.date
    count: int
    tier: int


def local_day(timestamp: int, tz: Optional[datetime.tzinfo] = None) -> datetime.date:
    """Return the calendar date of ``timestamp`` in ``tz`` (process zone if None)."""
    return datetime.datetime.fromtimestamp(timestamp, tz).date()


def _newest_first(entries: Iterable[Entry]) -> list[Entry]:
    return sorted(entries, key=lambda e: e.timestamp, reverse=True)


def bucket_by_day(
    log: Iterable[Entry], tz: Optional[datetime.tzinfo] = None
) -> dict[datetime.date, list[Entry]]:
    """Group entries by local date, most recent day first."""
    groups: dict[datetime.date, list[Entry]] = {}
    for entry in log:
        groups.setdefault(local_day(entry.timestamp, tz), []).append(entry)
    return {
        day: _newest_first(groups[day]) for day in sorted(groups, reverse=True)
    }


def compute_set_number(
    log: Iterable[Entry],
    exercise_name: str,
    day: datetime.date,
    tz: Optional[datetime.tzinfo] = None,
) -> int:
    """Return 1 + the number of ``exercise_name`` entries logged on ``day``.

    Names are compared exactly, so ``"bench press"`` and
    ``"incline bench press"`` count separately. Stored set numbers of the
    existing entries are ignored.
    """
    count = sum(
        1
        for e in log
        if e.exercise_name == exercise_name and local_day(e.timestamp, tz) == day
    )
    return count + 1


def find_autofill_source(
    log: Sequence[Entry], selected_verbs: Sequence[str]
) -> Optional[Entry]:
    """Return the first entry in log order whose name contains the verbs.

    The verbs are joined with spaces and matched as a substring of the full
    exercise name.
    """
    needle = " ".join(v for v in selected_verbs if v)
    if not needle:
        return None
    for entry in log:
        if needle in entry.exercise_name:
            return entry
    return None


def density_tier(count: int, thresholds: Sequence[int] = DEFAULT_THRESHOLDS) -> int:
    """Index (1-based) of the last threshold ``count`` exceeds, 0 for none."""
    tier = 0
    for i, threshold in enumerate(thresholds, start=1):
        if count > threshold:
            tier = i
    return tier


def rolling_histogram(
    log: Iterable[Entry],
    days: int = DEFAULT_HISTORY_DAYS,
    thresholds: Sequence[int] = DEFAULT_THRESHOLDS,
    today: Optional[datetime.date] = None,
    tz: Optional[datetime.tzinfo] = None,
) -> list[HistogramDay]:
    """Per-day counts for the ``days`` days ending ``today``, oldest first."""
    if days < 1:
        raise ValueError("days must be positive")
    if list(thresholds) != sorted(thresholds):
        raise ValueError("thresholds must be ascending")
    if today is None:
        today = datetime.datetime.now(tz).date()
    start = today - datetime.timedelta(days=days - 1)
    counts: dict[datetime.date, int] = {}
    for entry in log:
        day = local_day(entry.timestamp, tz)
        if start <= day <= today:
            counts[day] = counts.get(day, 0) + 1
    result = []
    for offset in range(days):
        day = start + datetime.timedelta(days=offset)
        count = counts.get(day, 0)
        result.append(HistogramDay(day, count, density_tier(count, thresholds)))
    return result


def format_entry_line(entry: Entry, tz: Optional[datetime.tzinfo] = None) -> str:
    clock = datetime.datetime.fromtimestamp(entry.timestamp, tz).strftime("%H:%M")
    rest = "" if entry.rest_seconds is None else str(entry.rest_seconds)
    line = (
        f"{clock} {entry.exercise_name} Set{entry.set_number} {entry.encoded_load}"
        f" x {entry.reps} (RIR {format_number(entry.effort)}) Rest: {rest}"
    )
    return line.rstrip()


def day_summary(
    log: Iterable[Entry],
    day: datetime.date,
    tz: Optional[datetime.tzinfo] = None,
) -> str:
    """Plain text of one day's sets in the order they were done."""
    entries = sorted(
        (e for e in log if local_day(e.timestamp, tz) == day),
        key=lambda e: e.timestamp,
    )
    return "\n".join(format_entry_line(e, tz) for e in entries)


def visible_days(
    buckets: dict[datetime.date, list[Entry]], load_more: int = 0
) -> dict[datetime.date, list[Entry]]:
    """Trim day buckets to the window shown: today, 3 earlier days, 5 per step."""
    if load_more < 0:
        raise ValueError("load_more must be non-negative")
    limit = 1 + INITIAL_PAST_DAYS + LOAD_MORE_STEP * load_more
    return dict(list(buckets.items())[:limit])
