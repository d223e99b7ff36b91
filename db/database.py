"""
db/database.py -- Cross-database facade over SQLAlchemy Core.

One class, one interface, several backends. The type names are the ones the
framework has always used in its config files:

  mysql    -> mysql+pymysql
  mysql_i  -> mysql+mysqldb
  pgsql    -> postgresql+psycopg2
  dbase    -> file-backed SQLite (single-file local database)
  sqlite   -> SQLite

Database.init() is the process-wide singleton factory. Handlers keep the
classic cursor-style API (query / num_rows / fetch_assoc / error) so the
Users and Authentication layers can branch on the outcome of the last query
without try/except around every call.

Cursor state (last rows, last error, explicit connection) is thread-local:
FastAPI runs sync route handlers in a thread pool and all of them share the
singleton.

Security:
  All values are bound parameters. Pass a SQLAlchemy executable, or a text
  SQL string with :name placeholders plus a params dict. Never format values
  into SQL strings.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.base import Executable

from core.errors import UnsupportedDatabaseError

logger = logging.getLogger("splkit.db")

# type -> (drivername, default options)
_HANDLERS: dict[str, tuple[str, dict]] = {
    "mysql": ("mysql+pymysql", {"db": "default", "host": "localhost", "port": "3306", "user": "root", "passwd": ""}),
    "mysql_i": ("mysql+mysqldb", {"db": "default", "host": "localhost", "port": "3306", "user": "root", "passwd": ""}),
    "pgsql": ("postgresql+psycopg2", {"db": "default", "host": "localhost", "port": "5432", "user": "root", "passwd": ""}),
    "dbase": ("sqlite", {"db": "default.db"}),
    "sqlite": ("sqlite", {"db": ":memory:"}),
}


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety on SQLite files."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def build_url(type: str, options: dict) -> str | URL:
    """Translate framework options into a SQLAlchemy URL."""
    if options.get("url"):
        return options["url"]
    drivername, defaults = _HANDLERS[type]
    opts = {**defaults, **{k: v for k, v in options.items() if v not in (None, "")}}
    if drivername == "sqlite":
        return URL.create(drivername, database=opts["db"])
    return URL.create(
        drivername,
        username=opts["user"],
        password=opts["passwd"] or None,
        host=opts["host"],
        port=int(opts["port"]),
        database=opts["db"],
    )


class Database:
    """Database handler. Use Database.init() rather than the constructor.

    Usage:
        db = Database.init({"type": "sqlite", "db": "/tmp/app.db"})
        if db.query("SELECT * FROM users WHERE username = :u", {"u": "brian"}):
            row = db.fetch_assoc()
    """

    SUPPORTED: tuple[str, ...] = tuple(_HANDLERS)

    _instance: Database | None = None
    _lock = threading.Lock()

    @classmethod
    def init(cls, options: dict | None = None, new: bool = False) -> Database:
        """Return the shared Database, creating it on first call (or when new=True).

        options["type"] selects the handler (default "mysql"); the remaining
        keys are handler options (db, host, port, user, passwd) or a full "url".

        Raises UnsupportedDatabaseError for an unknown type.
        """
        options = dict(options or {})
        type_ = options.pop("type", "mysql")
        with cls._lock:
            if cls._instance is None or new:
                if not cls.is_supported(type_):
                    raise UnsupportedDatabaseError(f"The database type {type_!r} is not supported by any handler")
                if cls._instance is not None:
                    cls._instance.dispose()
                cls._instance = cls(type_, options)
        return cls._instance

    @classmethod
    def is_supported(cls, type: str) -> bool:
        return type in _HANDLERS

    def __init__(self, type: str, options: dict | None = None) -> None:
        if not self.is_supported(type):
            raise UnsupportedDatabaseError(f"The database type {type!r} is not supported by any handler")
        self.type = type
        url = build_url(type, options or {})
        connect_args: dict = {}
        is_sqlite = str(url).startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(url, connect_args=connect_args)
        if is_sqlite and ":memory:" not in str(url) and "mode=memory" not in str(url):
            event.listen(self.engine, "connect", _set_wal_mode)
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Thread-local cursor state
    # ------------------------------------------------------------------

    @property
    def _state(self) -> threading.local:
        local = self._local
        if not hasattr(local, "rows"):
            local.rows = None
            local.position = 0
            local.affected = 0
            local.last_id = None
            local.error = ""
            local.conn = None
        return local

    def _reset_result(self) -> None:
        state = self._state
        state.rows = None
        state.position = 0
        state.affected = 0
        state.last_id = None
        state.error = ""

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """Open an explicit connection kept until disconnect(). Returns success."""
        state = self._state
        if state.conn is not None:
            return True
        try:
            state.conn = self.engine.connect()
        except SQLAlchemyError as exc:
            state.error = str(exc)
            logger.error("Could not connect to %s database: %s", self.type, exc)
            return False
        return True

    def disconnect(self) -> bool:
        state = self._state
        if state.conn is None:
            return False
        state.conn.close()
        state.conn = None
        return True

    def dispose(self) -> None:
        self.disconnect()
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Query execution
    # ------------------------------------------------------------------

    def query(self, statement: str | Executable, params: dict | None = None) -> bool:
        """Execute a statement. Returns True on success, False on failure.

        Without an explicit connect() the call connects lazily, executes,
        commits and releases the connection again. On failure the message
        is available from error().
        """
        self._reset_result()
        state = self._state
        if isinstance(statement, str):
            statement = text(statement)

        lazy = state.conn is None
        try:
            conn: Connection = self.engine.connect() if lazy else state.conn
        except SQLAlchemyError as exc:
            state.error = str(exc)
            logger.error("Could not connect to %s database: %s", self.type, exc)
            return False

        try:
            result = conn.execute(statement, params or {})
            if result.returns_rows:
                state.rows = [dict(row) for row in result.mappings()]
            else:
                state.affected = result.rowcount if result.rowcount is not None else 0
                if result.is_insert and result.inserted_primary_key:
                    state.last_id = result.inserted_primary_key[0]
                elif result.lastrowid:
                    state.last_id = result.lastrowid
            conn.commit()
        except SQLAlchemyError as exc:
            conn.rollback()
            orig = getattr(exc, "orig", None)
            state.error = str(orig if orig is not None else exc)
            logger.warning("Query failed: %s", state.error)
            return False
        finally:
            if lazy:
                conn.close()
        return True

    def last_id(self, statement: str | Executable, params: dict | None = None) -> Any:
        """Execute an INSERT and return the generated primary key (None on failure).

        Use this instead of query() when the new id is needed.
        """
        if not self.query(statement, params):
            return None
        return self.insert_id()

    def insert_id(self) -> Any:
        """Return the primary key generated by the last INSERT, or None."""
        return self._state.last_id

    def error(self) -> str:
        """Return the last error text, or "" if the last query succeeded."""
        return self._state.error

    # ------------------------------------------------------------------
    # Result access
    # ------------------------------------------------------------------

    def num_rows(self) -> int:
        rows = self._state.rows
        return len(rows) if rows is not None else 0

    def affected_rows(self) -> int:
        return self._state.affected

    def fetch_assoc(self) -> dict | None:
        """Return the next row as a dict, or None when the result is exhausted."""
        state = self._state
        if state.rows is None or state.position >= len(state.rows):
            return None
        row = state.rows[state.position]
        state.position += 1
        return dict(row)

    def fetch_array(self, result_type: str = "both") -> dict | None:
        """Return the next row keyed by column name, column index, or both."""
        row = self.fetch_assoc()
        if row is None:
            return None
        numbered = dict(enumerate(row.values()))
        if result_type == "assoc":
            return row
        if result_type == "num":
            return numbered
        return {**numbered, **row}

    def fetch_row(self, row: int = 0) -> tuple | None:
        """Seek to row and return it as a tuple of values."""
        state = self._state
        if state.rows is None or not 0 <= row < len(state.rows):
            return None
        state.position = row + 1
        return tuple(state.rows[row].values())

    def fetch_all(self) -> list[dict]:
        state = self._state
        if state.rows is None:
            return []
        remaining = state.rows[state.position :]
        state.position = len(state.rows)
        return [dict(r) for r in remaining]

    def result(self, row: int = 0, field: int | str = 0) -> Any:
        """Return a single value from the last result, or None."""
        rows = self._state.rows
        if rows is None or not 0 <= row < len(rows):
            return None
        record = rows[row]
        if isinstance(field, int):
            values = list(record.values())
            return values[field] if 0 <= field < len(values) else None
        return record.get(field)
