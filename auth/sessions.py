"""
auth/sessions.py -- Durable session registry.

Lifecycle:

  active --revoke / cap eviction / validate() past expiry--> revoked
  active --sweep_expired() past expiry--------------------> expired

revoked and expired are terminal; no method writes to a session that has
left active.

Cap: a user never holds more than `cap` active sessions after create().
When a new session would exceed it, the single active session with the
smallest created_at is revoked first (oldest-first, not least-recently-used).
The count, the eviction and the insert share one locked transaction.

Expiry comparisons use strict `expires_at < now`.

DB path: <DATA_DIR>/sessions.db.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text

from auth.db import LockedStore, from_iso, to_iso, utcnow
from auth.models import Session, SessionStatus
from auth.tokens import generate_session_id
from core.errors import NotFound, ValidationError

logger = logging.getLogger("accountguard.sessions")

_DEFAULT_DB_URL = "sqlite:///data/sessions.db"
_DEFAULT_TTL_SECONDS = 3600

_ACTIVE = SessionStatus.active.value
_REVOKED = SessionStatus.revoked.value
_EXPIRED = SessionStatus.expired.value

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("session_id", String(64), nullable=False, unique=True),
    Column("user_id", Integer, nullable=False),
    Column("status", String(10), nullable=False, server_default=_ACTIVE),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(40), nullable=False),
    Column("last_activity_at", String(40), nullable=False),
    Column("expires_at", String(40), nullable=False),
    Column("revoked_at", String(40)),
    Index("ix_sessions_user_status", "user_id", "status"),
    sqlite_autoincrement=True,
)


class SessionRegistry(LockedStore):
    name = "sessions"

    def __init__(self, db_url: str = _DEFAULT_DB_URL, cap: int = 5) -> None:
        super().__init__(db_url, _metadata)
        self.cap = cap

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        user_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
        ttl_seconds: int = _DEFAULT_TTL_SECONDS,
        now: datetime | None = None,
    ) -> Session:
        if not user_id:
            raise ValidationError("User ID is required.")
        now = now or utcnow()
        now_iso = to_iso(now)
        with self.transaction() as conn:
            active = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.status == _ACTIVE))
                .order_by(_sessions.c.created_at, _sessions.c.id)
            ).fetchall()
            # Normally at most one eviction; loop in case the cap was lowered.
            for oldest in active[: max(0, len(active) - self.cap + 1)]:
                conn.execute(
                    _sessions.update().where(_sessions.c.id == oldest.id).values(status=_REVOKED, revoked_at=now_iso)
                )
                logger.info("Session cap reached for user id=%s; revoked session id=%s", user_id, oldest.id)

            result = conn.execute(
                _sessions.insert().values(
                    session_id=generate_session_id(),
                    user_id=user_id,
                    status=_ACTIVE,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    created_at=now_iso,
                    last_activity_at=now_iso,
                    expires_at=to_iso(now + timedelta(seconds=ttl_seconds)),
                )
            )
            row = conn.execute(
                _sessions.select().where(_sessions.c.id == result.inserted_primary_key[0])
            ).fetchone()
        return _row_to_session(row)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Session | None:
        with self.transaction() as conn:
            row = self._row(conn, session_id)
        return _row_to_session(row) if row is not None else None

    def list_for_user(self, user_id: int, include_inactive: bool = False) -> list[Session]:
        """Return a user's sessions, most recently active first."""
        query = _sessions.select().where(_sessions.c.user_id == user_id)
        if not include_inactive:
            query = query.where(_sessions.c.status == _ACTIVE)
        with self.transaction() as conn:
            rows = conn.execute(query.order_by(_sessions.c.last_activity_at.desc(), _sessions.c.id.desc())).fetchall()
        return [_row_to_session(r) for r in rows]

    def count_active(self, user_id: int) -> int:
        return len(self.list_for_user(user_id))

    def validate(self, session_id: str, now: datetime | None = None) -> bool:
        """Return True only for an existing, active, unexpired session.

        An active session found past its expiry is revoked on the spot.
        """
        now = now or utcnow()
        now_iso = to_iso(now)
        with self.transaction() as conn:
            row = self._row(conn, session_id)
            if row is None or row.status != _ACTIVE:
                return False
            if row.expires_at < now_iso:
                conn.execute(
                    _sessions.update().where(_sessions.c.id == row.id).values(status=_REVOKED, revoked_at=now_iso)
                )
                return False
        return True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def touch(self, session_id: str, now: datetime | None = None) -> None:
        """Stamp last_activity_at. No-op for an unknown or terminal session."""
        with self.transaction() as conn:
            conn.execute(
                _sessions.update()
                .where((_sessions.c.session_id == session_id) & (_sessions.c.status == _ACTIVE))
                .values(last_activity_at=to_iso(now or utcnow()))
            )

    def revoke(self, session_id: str, now: datetime | None = None) -> Session:
        """Revoke a session. Raises NotFound if absent; terminal sessions are returned as-is."""
        with self.transaction() as conn:
            row = self._row(conn, session_id)
            if row is None:
                raise NotFound("Session not found.")
            if row.status == _ACTIVE:
                conn.execute(
                    _sessions.update()
                    .where(_sessions.c.id == row.id)
                    .values(status=_REVOKED, revoked_at=to_iso(now or utcnow()))
                )
                row = self._row(conn, session_id)
        return _row_to_session(row)

    def revoke_all_for_user(
        self,
        user_id: int,
        except_session_id: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Revoke every active session of user_id except one. Returns the count."""
        condition = (_sessions.c.user_id == user_id) & (_sessions.c.status == _ACTIVE)
        if except_session_id:
            condition = condition & (_sessions.c.session_id != except_session_id)
        with self.transaction() as conn:
            result = conn.execute(
                _sessions.update().where(condition).values(status=_REVOKED, revoked_at=to_iso(now or utcnow()))
            )
        return result.rowcount

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Mark every active session past its expiry as expired. Idempotent."""
        now_iso = to_iso(now or utcnow())
        with self.transaction() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.status == _ACTIVE) & (_sessions.c.expires_at < now_iso))
                .values(status=_EXPIRED)
            )
        if result.rowcount:
            logger.info("Expired %d session(s)", result.rowcount)
        return result.rowcount

    @staticmethod
    def _row(conn, session_id: str):
        return conn.execute(_sessions.select().where(_sessions.c.session_id == session_id)).fetchone()


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        session_id=row.session_id,
        user_id=row.user_id,
        status=row.status,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=from_iso(row.created_at),
        last_activity_at=from_iso(row.last_activity_at),
        expires_at=from_iso(row.expires_at),
        revoked_at=from_iso(row.revoked_at),
    )
