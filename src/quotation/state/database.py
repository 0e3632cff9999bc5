"""SQLite connection wrapper with serialized write transactions.

Every read-modify-write sequence in the quotation core runs inside
:meth:`Database.transaction`, which holds a process-level re-entrant lock and
opens the SQLite transaction with ``BEGIN IMMEDIATE`` so the write lock is
taken up front.  Nested ``transaction()`` calls from the same thread join the
outer transaction, letting the service compose several store operations into
one atomic unit.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()


def new_id() -> str:
    """Return a new random entity identifier."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def to_db_timestamp(value: datetime) -> str:
    """Serialize an aware datetime for storage (ISO 8601, UTC, microseconds)."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def dumps(value: Any) -> str:
    """Serialize a JSON column value, rendering Decimals and dates as strings."""
    return json.dumps(value, default=str)


def loads(value: str | None) -> Any:
    """Deserialize a JSON column value (``None`` stays ``None``)."""
    if value is None:
        return None
    return json.loads(value)


class Database:
    """A single shared SQLite connection guarded by a re-entrant lock.

    Args:
        conn: An open connection created with ``isolation_level=None`` so that
              transactions are controlled explicitly.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

    @classmethod
    def connect(cls, db_path: Path | str) -> Database:
        """Open (or create) the database at *db_path* with WAL and foreign keys.

        ``":memory:"`` is accepted for tests.
        """
        path = str(db_path)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA busy_timeout=5000")
        return cls(conn)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed block as one serialized write transaction.

        Commits on normal exit and rolls back if the block raises.  Re-entrant
        within a thread: inner blocks share the outermost transaction.

        Yields:
            The underlying connection.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self._conn
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._conn.execute("ROLLBACK")
                raise
            self._depth -= 1
            if outermost:
                self._conn.execute("COMMIT")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def ping(self) -> bool:
        """Return True if the connection answers a trivial query."""
        try:
            self.fetchone("SELECT 1")
        except sqlite3.Error:
            logger.warning("database_ping_failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()
