"""Owner of the in-memory workout log.

Every operation is a command put on one queue and executed by one worker
task, so the log is never read or written while another command is half way
through. Local changes (optimistic apply and revert) happen synchronously
inside a command; remote calls are the only points where a command waits.
"""
from __future__ import annotations

import asyncio
import datetime
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

from aggregator import compute_set_number, find_autofill_source, local_day
from clock import Clock, SystemClock
from entry import (
    PATCHABLE_FIELDS,
    Draft,
    Entry,
    EntryId,
    Menu,
    ProvisionalId,
    RemoteId,
    new_provisional_id,
)
from errors import (
    EntryNotFoundError,
    LogSyncError,
    NotYetPersistedError,
    RemoteUnavailableError,
    StaleIdError,
    ValidationError,
)
from remote_store import RemoteLogStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_RELOAD_DELAY = 1.0
JOURNAL_SIZE = 200


@dataclass(frozen=True)
class ReloadCommand:
    pass


@dataclass(frozen=True)
class AppendCommand:
    draft: Draft


@dataclass(frozen=True)
class UpdateCommand:
    entry_id: RemoteId
    patch: dict


@dataclass(frozen=True)
class DeleteCommand:
    entry_id: RemoteId


Command = Union[ReloadCommand, AppendCommand, UpdateCommand, DeleteCommand]

_WRITES = (AppendCommand, UpdateCommand, DeleteCommand)


@dataclass
class JournalRecord:
    command: Command
    ok: bool
    error: Optional[str] = None
    at: datetime.datetime = field(default_factory=datetime.datetime.now)


class SyncEngine:
    """Keeps the local log in step with a positional remote store."""

    def __init__(
        self,
        store: RemoteLogStore,
        clock: Clock | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        reload_delay: float = DEFAULT_RELOAD_DELAY,
        tz: Optional[datetime.tzinfo] = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.store = store
        self.clock = clock or SystemClock()
        self.timeout = timeout
        self.reload_delay = reload_delay
        self.tz = tz
        self.menu = Menu()
        self.pending_write_count = 0
        self.ids_stale = False
        self.journal: deque[JournalRecord] = deque(maxlen=JOURNAL_SIZE)
        self._log: list[Entry] = []
        self._menu_loaded = False
        self._listeners: list[Callable[[tuple[Entry, ...]], None]] = []
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None
        self._current: asyncio.Future | None = None
        self._reload_handle: asyncio.TimerHandle | None = None

    async def __aenter__(self) -> "SyncEngine":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def log(self) -> tuple[Entry, ...]:
        """Newest-first snapshot of the log."""
        return tuple(self._log)

    def find(self, entry_id: EntryId) -> Optional[Entry]:
        for entry in self._log:
            if entry.id == entry_id:
                return entry
        return None

    def subscribe(
        self, callback: Callable[[tuple[Entry, ...]], None]
    ) -> Callable[[], None]:
        """Call ``callback`` with the log after every local change."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def next_set_number(self, exercise_name: str) -> int:
        today = local_day(self.clock.now(), self.tz)
        return compute_set_number(self._log, exercise_name, today, self.tz)

    def autofill(self, draft: Draft) -> Draft:
        """Fill ``draft`` from the latest entry matching its verbs, if any."""
        source = find_autofill_source(self._log, draft.verbs)
        return draft if source is None else draft.autofill_from(source)

    # public operations

    async def load(self) -> tuple[Entry, ...]:
        """Replace the log with a fresh snapshot of the store."""
        return await self._submit(ReloadCommand())

    async def append(self, draft: Draft) -> Entry:
        """Log a new set; returns the entry, persisted if the resync worked."""
        draft.validate(self.menu)
        return await self._submit(AppendCommand(draft))

    async def update(self, entry_id: EntryId, patch: dict) -> Entry:
        self._check_persisted(entry_id)
        unknown = sorted(set(patch) - PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError(f"cannot patch fields: {', '.join(unknown)}", unknown)
        return await self._submit(UpdateCommand(entry_id, dict(patch)))

    async def delete(self, entry_id: EntryId) -> None:
        self._check_persisted(entry_id)
        await self._submit(DeleteCommand(entry_id))

    async def flush(self) -> None:
        """Run a scheduled reload now and wait for queued commands."""
        if self._reload_handle is not None:
            self._reload_handle.cancel()
            self._reload_handle = None
            await self.load()
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        self._cancel_scheduled_reload()
        current = self._current
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        closed = LogSyncError("sync engine closed")
        if current is not None and not current.done():
            current.set_exception(closed)
        while self._queue is not None and not self._queue.empty():
            _, future = self._queue.get_nowait()
            self._queue.task_done()
            if not future.done():
                future.set_exception(closed)
        self._worker = None
        self._current = None

    # queue

    def _enqueue(self, command: Command) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run())
        future = loop.create_future()
        if isinstance(command, _WRITES):
            self.pending_write_count += 1
        self._queue.put_nowait((command, future))
        return future

    async def _submit(self, command: Command):
        return await self._enqueue(command)

    async def _run(self) -> None:
        while True:
            command, future = await self._queue.get()
            self._current = future
            try:
                if future.done():
                    continue
                logger.debug("executing %s", command)
                result = await self._execute(command)
            except Exception as e:
                self.journal.append(JournalRecord(command, False, str(e)))
                if not future.done():
                    future.set_exception(e)
            else:
                self.journal.append(JournalRecord(command, True))
                if not future.done():
                    future.set_result(result)
            finally:
                if isinstance(command, _WRITES):
                    self.pending_write_count -= 1
                self._current = None
                self._queue.task_done()

    async def _execute(self, command: Command):
        if isinstance(command, ReloadCommand):
            return await self._reload()
        if isinstance(command, AppendCommand):
            return await self._append(command.draft)
        if isinstance(command, UpdateCommand):
            return await self._update(command.entry_id, command.patch)
        if isinstance(command, DeleteCommand):
            return await self._delete(command.entry_id)
        raise TypeError(f"unknown command: {command!r}")

    def _schedule_reload(self) -> None:
        self._cancel_scheduled_reload()
        loop = asyncio.get_running_loop()
        self._reload_handle = loop.call_later(self.reload_delay, self._scheduled_reload)

    def _cancel_scheduled_reload(self) -> None:
        if self._reload_handle is not None:
            self._reload_handle.cancel()
            self._reload_handle = None

    def _scheduled_reload(self) -> None:
        self._reload_handle = None
        future = self._enqueue(ReloadCommand())
        future.add_done_callback(self._report_scheduled_reload)

    @staticmethod
    def _report_scheduled_reload(future: asyncio.Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("scheduled reload failed: %s", error)

    # command handlers

    async def _remote(self, call: Awaitable):
        try:
            return await asyncio.wait_for(call, self.timeout)
        except asyncio.TimeoutError:
            raise RemoteUnavailableError(
                f"store did not answer within {self.timeout}s"
            ) from None

    async def _fetch(self) -> tuple[Menu, list[Entry]]:
        snapshot = await self._remote(self.store.list_all())
        entries = [
            Entry.from_row(row, RemoteId(position))
            for position, row in enumerate(snapshot.rows, start=1)
        ]
        entries.reverse()
        return snapshot.menu, entries

    def _adopt(self, menu: Menu, entries: list[Entry]) -> None:
        if not self._menu_loaded:
            self.menu = menu
            self._menu_loaded = True
        self._log = entries
        self.ids_stale = False
        self._cancel_scheduled_reload()
        self._notify()

    async def _reload(self) -> tuple[Entry, ...]:
        menu, entries = await self._fetch()
        self._adopt(menu, entries)
        logger.debug("loaded %d entries", len(entries))
        return self.log

    async def _append(self, draft: Draft) -> Entry:
        draft.validate(self.menu)
        now = self.clock.now()
        set_number = compute_set_number(
            self._log, draft.exercise_name, local_day(now, self.tz), self.tz
        )
        entry = draft.to_entry(new_provisional_id(), now, set_number)
        self._log.insert(0, entry)
        self._notify()
        try:
            await self._remote(self.store.append(entry.to_row()))
        except BaseException:
            self._log = [e for e in self._log if e.id != entry.id]
            self._notify()
            logger.warning("append of %r failed, provisional entry removed", entry.exercise_name)
            raise
        try:
            await self._reload()
        except LogSyncError as e:
            logger.warning("row stored but reload failed, entry stays provisional: %s", e)
            return entry
        return self._persisted_copy(entry) or entry

    def _persisted_copy(self, entry: Entry) -> Optional[Entry]:
        row = entry.to_row()
        for candidate in self._log:
            if candidate.is_persisted and candidate.to_row() == row:
                return candidate
        return None

    async def _update(self, entry_id: RemoteId, patch: dict) -> Entry:
        index, current = self._locate(entry_id)
        patched = current.with_patch(patch)
        if self.ids_stale:
            await self._revalidate(entry_id, current)
            index, current = self._locate(entry_id)
            patched = current.with_patch(patch)
        self._log[index] = patched
        self._notify()
        try:
            await self._remote(self.store.update(entry_id.row, patched.to_row()))
        except BaseException:
            self._log[index] = current
            self._notify()
            logger.warning("update of row %s failed, reverted", entry_id)
            raise
        return patched

    async def _delete(self, entry_id: RemoteId) -> None:
        index, current = self._locate(entry_id)
        if self.ids_stale:
            await self._revalidate(entry_id, current)
            index, current = self._locate(entry_id)
        del self._log[index]
        self._notify()
        try:
            await self._remote(self.store.delete(entry_id.row))
        except BaseException:
            self._log.insert(index, current)
            self._notify()
            logger.warning("delete of row %s failed, restored", entry_id)
            raise
        # rows after the deleted one have moved up
        self.ids_stale = True
        self._schedule_reload()

    async def _revalidate(self, entry_id: RemoteId, expected: Entry) -> None:
        """Check against a fresh snapshot that ``entry_id`` still holds ``expected``."""
        menu, entries = await self._fetch()
        fresh = next((e for e in entries if e.id == entry_id), None)
        self._adopt(menu, entries)
        if fresh != expected:
            logger.warning("row %s moved since the last load", entry_id)
            raise StaleIdError(
                f"row {entry_id} no longer holds the entry it referred to; log reloaded"
            )

    # helpers

    @staticmethod
    def _check_persisted(entry_id: EntryId) -> None:
        if isinstance(entry_id, ProvisionalId):
            raise NotYetPersistedError(f"entry {entry_id} has not been stored yet")
        if not isinstance(entry_id, RemoteId):
            raise TypeError(f"expected an entry id, got {entry_id!r}")

    def _locate(self, entry_id: RemoteId) -> tuple[int, Entry]:
        for index, entry in enumerate(self._log):
            if entry.id == entry_id:
                return index, entry
        raise EntryNotFoundError(f"no entry with id {entry_id}")

    def _notify(self) -> None:
        snapshot = self.log
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("log listener failed")
