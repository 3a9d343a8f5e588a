import sqlite3
import aiosqlite
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Sequence

from entry import Menu, ROW_WIDTH
from errors import RemoteRejectedError, RemoteUnavailableError
from remote_store import Snapshot


class Database:
    """Provides SQLite connection management and schema initialization.

    The ``log_rows`` table stands in for a spreadsheet tab: every cell is
    text and rows are addressed by their position in insertion order, not
    by ``id``.
    """

    _TABLE_DEFINITIONS = {
        "log_rows": """CREATE TABLE log_rows (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    unix TEXT NOT NULL DEFAULT '',
                    exercise TEXT NOT NULL DEFAULT '',
                    set_number TEXT NOT NULL DEFAULT '',
                    load TEXT NOT NULL DEFAULT '',
                    reps TEXT NOT NULL DEFAULT '',
                    effort TEXT NOT NULL DEFAULT '',
                    rest TEXT NOT NULL DEFAULT '',
                    note TEXT NOT NULL DEFAULT ''
                );""",
        "menu_items": """CREATE TABLE menu_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL CHECK (kind IN ('modifier', 'verb')),
                    name TEXT NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0
                );""",
    }

    _LOG_COLUMNS = "unix, exercise, set_number, load, reps, effort, rest, note"

    def __init__(self, db_path: str = "liftlog.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        try:
            connection = sqlite3.connect(self._db_path)
        except sqlite3.Error as e:
            raise RemoteUnavailableError(f"cannot open {self._db_path}: {e}") from e
        try:
            yield connection
            connection.commit()
        except sqlite3.OperationalError as e:
            raise RemoteUnavailableError(str(e)) from e
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, sql in self._TABLE_DEFINITIONS.items():
                cur = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name=?;",
                    (table,),
                )
                if cur.fetchone() is None:
                    conn.execute(sql)

    @staticmethod
    def _cells(row: Sequence) -> Tuple[str, ...]:
        if len(row) > ROW_WIDTH:
            raise ValueError(f"row has {len(row)} columns, expected {ROW_WIDTH}")
        cells = ["" if c is None else str(c) for c in row]
        return tuple(cells + [""] * (ROW_WIDTH - len(cells)))


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


class LogRepository(BaseRepository):
    """Positional access to the log table and its menu."""

    def _row_key(self, row_id: int) -> int:
        if row_id < 1:
            raise ValueError("row not found")
        rows = self.fetch_all(
            "SELECT id FROM log_rows ORDER BY id LIMIT 1 OFFSET ?;",
            (row_id - 1,),
        )
        if not rows:
            raise ValueError("row not found")
        return int(rows[0][0])

    def fetch_rows(self) -> List[Tuple[str, ...]]:
        return [
            tuple(r)
            for r in self.fetch_all(
                f"SELECT {self._LOG_COLUMNS} FROM log_rows ORDER BY id;"
            )
        ]

    def append_row(self, row: Sequence) -> None:
        self.execute(
            f"INSERT INTO log_rows ({self._LOG_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
            self._cells(row),
        )

    def update_row(self, row_id: int, row: Sequence) -> None:
        key = self._row_key(row_id)
        self.execute(
            "UPDATE log_rows SET unix = ?, exercise = ?, set_number = ?, load = ?, "
            "reps = ?, effort = ?, rest = ?, note = ? WHERE id = ?;",
            self._cells(row) + (key,),
        )

    def delete_row(self, row_id: int) -> None:
        key = self._row_key(row_id)
        self.execute("DELETE FROM log_rows WHERE id = ?;", (key,))

    def fetch_menu(self) -> Menu:
        rows = self.fetch_all(
            "SELECT kind, name FROM menu_items ORDER BY position, id;"
        )
        return Menu(
            tuple(name for kind, name in rows if kind == "modifier"),
            tuple(name for kind, name in rows if kind == "verb"),
        )

    def set_menu(self, menu: Menu) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM menu_items;")
            for kind, names in (("modifier", menu.modifiers), ("verb", menu.verbs)):
                for position, name in enumerate(names):
                    conn.execute(
                        "INSERT INTO menu_items (kind, name, position) VALUES (?, ?, ?);",
                        (kind, name, position),
                    )

    def clear(self) -> None:
        self._delete_all("log_rows")


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        try:
            conn = await aiosqlite.connect(self._db_path)
        except sqlite3.Error as e:
            raise RemoteUnavailableError(f"cannot open {self._db_path}: {e}") from e
        try:
            yield conn
            await conn.commit()
        except sqlite3.OperationalError as e:
            raise RemoteUnavailableError(str(e)) from e
        finally:
            await conn.close()


class AsyncLogRepository(AsyncDatabase):
    """In-process ``RemoteLogStore`` backed by the SQLite log table."""

    async def _row_key(self, conn, row_id: int) -> int:
        cursor = await conn.execute(
            "SELECT id FROM log_rows ORDER BY id LIMIT 1 OFFSET ?;",
            (max(row_id - 1, 0),),
        )
        found = await cursor.fetchone()
        if row_id < 1 or found is None:
            raise RemoteRejectedError(f"row {row_id} does not exist")
        return int(found[0])

    async def list_all(self) -> Snapshot:
        async with self._async_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {self._LOG_COLUMNS} FROM log_rows ORDER BY id;"
            )
            rows = await cursor.fetchall()
            cursor = await conn.execute(
                "SELECT kind, name FROM menu_items ORDER BY position, id;"
            )
            items = await cursor.fetchall()
        menu = Menu(
            tuple(name for kind, name in items if kind == "modifier"),
            tuple(name for kind, name in items if kind == "verb"),
        )
        return Snapshot(menu, tuple(tuple(r) for r in rows))

    async def append(self, row: Sequence) -> None:
        async with self._async_connection() as conn:
            await conn.execute(
                f"INSERT INTO log_rows ({self._LOG_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
                self._cells(row),
            )

    async def update(self, row_id: int, row: Sequence) -> None:
        async with self._async_connection() as conn:
            key = await self._row_key(conn, row_id)
            await conn.execute(
                "UPDATE log_rows SET unix = ?, exercise = ?, set_number = ?, load = ?, "
                "reps = ?, effort = ?, rest = ?, note = ? WHERE id = ?;",
                self._cells(row) + (key,),
            )

    async def delete(self, row_id: int) -> None:
        async with self._async_connection() as conn:
            key = await self._row_key(conn, row_id)
            await conn.execute("DELETE FROM log_rows WHERE id = ?;", (key,))
