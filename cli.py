import argparse
import asyncio
import datetime
import logging
from dataclasses import replace
from typing import Optional, Sequence

from aggregator import (
    bucket_by_day,
    day_summary,
    format_entry_line,
    rolling_histogram,
    visible_days,
)
from client import LogStoreClient
from config import load_settings
from draft_store import DraftStore
from entry import Draft, Entry, LoadUnit, Menu, RemoteId
from errors import LogSyncError
from settings_schema import Settings
from sync_engine import SyncEngine

logger = logging.getLogger(__name__)

TIER_MARKS = " .:*#"


def make_engine(settings: Settings) -> SyncEngine:
    store = LogStoreClient(
        settings.api_url, settings.request_timeout, settings.api_token
    )
    return SyncEngine(
        store,
        timeout=settings.request_timeout,
        reload_delay=settings.reload_delay,
        tz=settings.tzinfo(),
    )


def render_days(
    log: Sequence[Entry], load_more: int = 0, tz: Optional[datetime.tzinfo] = None
) -> str:
    lines: list[str] = []
    for day, entries in visible_days(bucket_by_day(log, tz), load_more).items():
        lines.append(f"{day.isoformat()} ({len(entries)})")
        for entry in entries:
            lines.append(f"  [{entry.id}] {format_entry_line(entry, tz)}")
    return "\n".join(lines)


def render_history(
    log: Sequence[Entry],
    days: int,
    thresholds: Sequence[int],
    today: datetime.date,
    tz: Optional[datetime.tzinfo] = None,
    width: int = 30,
) -> str:
    """Render the rolling histogram as rows of tier marks, oldest first."""
    hist = rolling_histogram(log, days, thresholds, today=today, tz=tz)
    marks = "".join(TIER_MARKS[min(h.tier, len(TIER_MARKS) - 1)] for h in hist)
    rows = [marks[i : i + width] for i in range(0, len(marks), width)]
    active = sum(1 for h in hist if h.count)
    rows.append(f"{active} active days in the last {days}")
    return "\n".join(rows)


def build_draft(
    engine: SyncEngine,
    saved: Optional[Draft],
    modifiers: Optional[list[str]] = None,
    verbs: Optional[list[str]] = None,
    load: Optional[float] = None,
    seconds: Optional[bool] = None,
    reps: Optional[int] = None,
    rir: Optional[float] = None,
    rest: Optional[int] = None,
    note: Optional[str] = None,
) -> Draft:
    """Merge command line values over today's draft, autofilling the rest."""
    draft = saved or Draft()
    if modifiers is not None:
        draft = replace(draft, modifiers=list(modifiers))
    if verbs is not None and list(verbs) != list(draft.verbs):
        draft = engine.autofill(replace(draft, verbs=list(verbs)))
    elif draft.missing_fields():
        filled = engine.autofill(draft)
        draft = replace(
            draft,
            load_value=draft.load_value if draft.load_value is not None else filled.load_value,
            load_unit=draft.load_unit if draft.load_value is not None else filled.load_unit,
            reps=draft.reps if draft.reps is not None else filled.reps,
            effort=draft.effort if draft.effort is not None else filled.effort,
            rest_seconds=draft.rest_seconds if draft.rest_seconds is not None else filled.rest_seconds,
        )
    overrides = {}
    if load is not None:
        overrides["load_value"] = load
    if seconds is not None:
        overrides["load_unit"] = LoadUnit.DURATION if seconds else LoadUnit.WEIGHT
    if reps is not None:
        overrides["reps"] = reps
    if rir is not None:
        overrides["effort"] = rir
    if rest is not None:
        overrides["rest_seconds"] = rest
    if note is not None:
        overrides["note"] = note
    return replace(draft, **overrides)


async def log_set(engine: SyncEngine, drafts: DraftStore, **values) -> Entry:
    """Append one set and keep the form for the next one."""
    await engine.load()
    draft = build_draft(engine, drafts.load(), **values)
    drafts.save(draft)
    entry = await engine.append(draft)
    return entry


def _patch_from_args(args: argparse.Namespace) -> dict:
    patch: dict = {}
    if args.exercise is not None:
        patch["exercise_name"] = args.exercise
    if args.load is not None:
        patch["load_value"] = args.load
    if args.seconds:
        patch["load_unit"] = LoadUnit.DURATION
    if args.kg:
        patch["load_unit"] = LoadUnit.WEIGHT
    if args.reps is not None:
        patch["reps"] = args.reps
    if args.rir is not None:
        patch["effort"] = args.rir
    if args.rest is not None:
        patch["rest_seconds"] = args.rest
    if args.note is not None:
        patch["note"] = args.note
    return patch


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    tz = settings.tzinfo()
    async with make_engine(settings) as engine:
        if args.cmd == "show":
            await engine.load()
            print(render_days(engine.log, args.more, tz))
        elif args.cmd == "today":
            await engine.load()
            print(day_summary(engine.log, engine.clock.today(tz), tz))
        elif args.cmd == "history":
            await engine.load()
            print(
                render_history(
                    engine.log,
                    args.days or settings.history_days,
                    settings.histogram_thresholds,
                    engine.clock.today(tz),
                    tz,
                )
            )
        elif args.cmd == "log":
            drafts = DraftStore(settings.draft_path, engine.clock, tz)
            entry = await log_set(
                engine,
                drafts,
                modifiers=args.mod,
                verbs=args.verb,
                load=args.load,
                seconds=True if args.seconds else (False if args.kg else None),
                reps=args.reps,
                rir=args.rir,
                rest=args.rest,
                note=args.note,
            )
            print(f"[{entry.id}] {format_entry_line(entry, tz)}")
        elif args.cmd == "edit":
            await engine.load()
            patch = _patch_from_args(args)
            if not patch:
                print("nothing to change")
                return 1
            entry = await engine.update(RemoteId(args.row), patch)
            print(f"[{entry.id}] {format_entry_line(entry, tz)}")
        elif args.cmd == "delete":
            await engine.load()
            await engine.delete(RemoteId(args.row))
            await engine.flush()
            print(f"deleted row {args.row}")
        elif args.cmd == "menu":
            menu = Menu(tuple(args.modifiers), tuple(args.verbs))
            await asyncio.to_thread(engine.store.set_menu, menu)
            print("menu updated")
    return 0


def _add_set_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--load", type=float, help="Weight in kg or duration in s")
    unit = parser.add_mutually_exclusive_group()
    unit.add_argument("--seconds", action="store_true", help="Load is a duration")
    unit.add_argument("--kg", action="store_true", help="Load is a weight")
    parser.add_argument("--reps", type=int)
    parser.add_argument("--rir", type=float, help="Reps in reserve")
    parser.add_argument("--rest", type=int, help="Rest in seconds")
    parser.add_argument("--note")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Workout set logger")
    parser.add_argument("--settings", default="settings.yaml")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose debug logging"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    serve_p = sub.add_parser("serve", help="Run the log API")
    serve_p.add_argument("--host", default="127.0.0.1")
    serve_p.add_argument("--port", type=int, default=3001)

    show_p = sub.add_parser("show", help="List recent days")
    show_p.add_argument("--more", type=int, default=0, help="Extra pages of 5 days")

    sub.add_parser("today", help="Print today's sets as text")

    hist_p = sub.add_parser("history", help="Show the activity histogram")
    hist_p.add_argument("--days", type=int)

    log_p = sub.add_parser("log", help="Log a set")
    log_p.add_argument("--mod", nargs="*", help="Modifier tokens")
    log_p.add_argument("--verb", nargs="+", help="Verb tokens")
    _add_set_fields(log_p)

    edit_p = sub.add_parser("edit", help="Change a logged set")
    edit_p.add_argument("row", type=int)
    edit_p.add_argument("--exercise")
    _add_set_fields(edit_p)

    del_p = sub.add_parser("delete", help="Delete a logged set")
    del_p.add_argument("row", type=int)

    menu_p = sub.add_parser("menu", help="Replace the exercise menu")
    menu_p.add_argument("--modifiers", nargs="*", default=[])
    menu_p.add_argument("--verbs", nargs="+", required=True)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        settings = load_settings(args.settings)
    except ValueError as e:
        logger.error("invalid settings: %s", e)
        return 2
    if args.cmd == "serve":
        import uvicorn
        from rest_api import LogAPI

        uvicorn.run(LogAPI(args.settings).app, host=args.host, port=args.port)
        return 0
    try:
        return asyncio.run(_run(args, settings))
    except LogSyncError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
