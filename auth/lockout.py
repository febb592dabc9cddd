"""
auth/lockout.py -- Brute-force lockout tracking.

Per-user state machine:

  Clear    no record, or a record with no attempts in the window and no lock
  Warning  1 .. max_attempts-1 failures inside the attempt window
  Locked   locked_until is in the future

record_failure() prunes, appends and locks once the count reaches the
threshold. status() expires a finished lock (Locked -> Clear) and otherwise
prunes stale attempts. clear() is the forced transition used by a successful
login and by admin unlock.

Boundaries: an attempt exactly attempt_window old is dropped (kept only while
now - ts < window); a lock whose locked_until == now has expired.

Every operation runs inside LockedStore.transaction(), so the read of the
attempt list and the write of the updated list cannot interleave with another
failure for the same user.

DB path: <DATA_DIR>/lockouts.db.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

from sqlalchemy import Column, Integer, MetaData, String, Table, Text

from auth.db import LockedStore, from_iso, to_iso, utcnow
from auth.models import FailedAttempt, LockedAccount, LockoutRecord, LockoutStatus

logger = logging.getLogger("accountguard.lockout")

_DEFAULT_DB_URL = "sqlite:///data/lockouts.db"

_metadata = MetaData()

_lockouts = Table(
    "lockouts",
    _metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=False),
    Column("failed_attempts", Text, nullable=False, server_default="[]"),  # JSON array
    Column("locked_until", String(40)),
)


class LockoutTracker(LockedStore):
    name = "lockouts"

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        max_attempts: int = 5,
        lockout_duration: timedelta = timedelta(minutes=15),
        attempt_window: timedelta = timedelta(minutes=30),
    ) -> None:
        super().__init__(db_url, _metadata)
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration
        self.attempt_window = attempt_window

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def record_failure(
        self,
        user_id: int,
        source_address: str | None = None,
        now: datetime | None = None,
    ) -> LockoutStatus:
        now = now or utcnow()
        with self.transaction() as conn:
            record = self._load(conn, user_id) or LockoutRecord(user_id=user_id)
            if record.locked_until is not None and record.locked_until <= now:
                record = LockoutRecord(user_id=user_id)
            record.failed_attempts = self._prune(record.failed_attempts, now)
            record.failed_attempts.append(FailedAttempt(timestamp=now, source_address=source_address))
            count = len(record.failed_attempts)
            if count >= self.max_attempts:
                record.locked_until = now + self.lockout_duration
                logger.warning("User id=%s locked until %s after %d failures", user_id, record.locked_until, count)
            self._save(conn, record)

        is_locked = record.locked_until is not None and record.locked_until > now
        return LockoutStatus(
            is_locked=is_locked,
            attempts_remaining=max(0, self.max_attempts - count),
            locked_until=record.locked_until,
        )

    def status(self, user_id: int, now: datetime | None = None) -> LockoutStatus:
        now = now or utcnow()
        with self.transaction() as conn:
            record = self._load(conn, user_id)
            if record is None:
                return LockoutStatus(is_locked=False, attempts_remaining=self.max_attempts)

            if record.locked_until is not None and record.locked_until <= now:
                # Lock ran out: attempts and lock are both cleared.
                self._delete(conn, user_id)
                logger.info("Lock expired for user id=%s", user_id)
                return LockoutStatus(is_locked=False, attempts_remaining=self.max_attempts)

            pruned = self._prune(record.failed_attempts, now)
            if len(pruned) != len(record.failed_attempts):
                record.failed_attempts = pruned
                self._save(conn, record)

        is_locked = record.locked_until is not None and record.locked_until > now
        return LockoutStatus(
            is_locked=is_locked,
            attempts_remaining=max(0, self.max_attempts - len(record.failed_attempts)),
            locked_until=record.locked_until if is_locked else None,
        )

    def clear(self, user_id: int) -> None:
        """Forced transition to Clear. Idempotent."""
        with self.transaction() as conn:
            self._delete(conn, user_id)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_record(self, user_id: int) -> LockoutRecord | None:
        with self.transaction() as conn:
            return self._load(conn, user_id)

    def locked_accounts(self, now: datetime | None = None) -> list[LockedAccount]:
        """Return every account whose lock is still in force, soonest expiry first."""
        now_iso = to_iso(now or utcnow())
        with self.transaction() as conn:
            rows = conn.execute(
                _lockouts.select()
                .where(_lockouts.c.locked_until.is_not(None) & (_lockouts.c.locked_until > now_iso))
                .order_by(_lockouts.c.locked_until)
            ).fetchall()
        return [
            LockedAccount(
                user_id=r.user_id,
                locked_until=from_iso(r.locked_until),
                failed_attempts=len(json.loads(r.failed_attempts or "[]")),
            )
            for r in rows
        ]

    def describe(self) -> dict:
        return {
            "max_attempts": self.max_attempts,
            "lockout_duration_minutes": int(self.lockout_duration.total_seconds() // 60),
            "attempt_window_minutes": int(self.attempt_window.total_seconds() // 60),
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _prune(self, attempts: list[FailedAttempt], now: datetime) -> list[FailedAttempt]:
        return [a for a in attempts if now - a.timestamp < self.attempt_window]

    @staticmethod
    def _load(conn, user_id: int) -> LockoutRecord | None:
        row = conn.execute(_lockouts.select().where(_lockouts.c.user_id == user_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    @staticmethod
    def _save(conn, record: LockoutRecord) -> None:
        values = {
            "failed_attempts": json.dumps(
                [{"timestamp": to_iso(a.timestamp), "source_address": a.source_address} for a in record.failed_attempts]
            ),
            "locked_until": to_iso(record.locked_until),
        }
        result = conn.execute(_lockouts.update().where(_lockouts.c.user_id == record.user_id).values(**values))
        if result.rowcount == 0:
            conn.execute(_lockouts.insert().values(user_id=record.user_id, **values))

    @staticmethod
    def _delete(conn, user_id: int) -> None:
        conn.execute(_lockouts.delete().where(_lockouts.c.user_id == user_id))


def _row_to_record(row) -> LockoutRecord:
    return LockoutRecord(
        user_id=row.user_id,
        failed_attempts=[
            FailedAttempt(timestamp=from_iso(a["timestamp"]), source_address=a.get("source_address"))
            for a in json.loads(row.failed_attempts or "[]")
        ],
        locked_until=from_iso(row.locked_until),
    )
