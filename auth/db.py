"""
auth/db.py -- Shared SQLAlchemy plumbing for the four security stores.

Every store (credentials, lockouts, sessions, audit) gets its own engine and
its own database, so operations on different stores never contend. Within a
store, LockedStore.transaction() is the only way to touch the database: it
holds the store's RLock for the whole read-modify-write span and runs the
body inside a single engine.begin() transaction. Two concurrent mutations of
the same store are therefore serialized rather than racing on a stale read.

SQLAlchemyError raised anywhere inside the span is logged here and re-raised
as StorageError. Domain errors (Conflict, NotFound) pass through untouched and
roll the transaction back.

Timestamps are stored as ISO 8601 text with a fixed microsecond precision so
that lexicographic order in SQL matches chronological order.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import MetaData, create_engine, event, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from core.errors import StorageError

logger = logging.getLogger("accountguard.db")


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        # Naive text is treated as UTC.
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine, preparing the parent directory of a SQLite file."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # Handlers run in FastAPI's thread pool; the store lock serializes access.
        connect_args["check_same_thread"] = False
        database = make_url(db_url).database or ""
        if database and database != ":memory:" and not database.startswith("file:"):
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Base repository
# ---------------------------------------------------------------------------


class LockedStore:
    """Base for repositories that need exclusive read-modify-write spans.

    Subclasses pass their own MetaData so each store creates only its tables.
    """

    name = "store"

    def __init__(self, db_url: str, metadata: MetaData) -> None:
        self._lock = threading.RLock()
        try:
            self.engine: Engine = make_engine(db_url)
            metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            logger.exception("Failed to open %s store", self.name)
            raise StorageError() from exc

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Hold the store lock and an open transaction for the whole block."""
        with self._lock:
            try:
                with self.engine.begin() as conn:
                    yield conn
            except SQLAlchemyError as exc:
                logger.exception("Storage failure in %s store", self.name)
                raise StorageError() from exc

    def ping(self) -> None:
        """Round-trip the database. Raises StorageError if it is unreachable."""
        with self.transaction() as conn:
            conn.execute(text("SELECT 1"))

    def close(self) -> None:
        self.engine.dispose()
