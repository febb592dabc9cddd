"""
auth/audit.py -- Append-only, capacity-bounded audit trail.

Entries are never updated. The store holds at most max_entries rows; an
append that would exceed the cap discards the oldest entries (lowest id)
in the same transaction, so the cap holds after every append. Eviction is
by insertion order, not by a rolling time window.

Ids come from SQLite AUTOINCREMENT: monotonically increasing and never
reused, even after the entries that held them were evicted.

DB path: <DATA_DIR>/audit.db.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, func, select

from auth.db import LockedStore, from_iso, to_iso, utcnow
from auth.models import AuditEntry, AuditPage, AuditStatus
from core.errors import ValidationError

logger = logging.getLogger("accountguard.audit")

_DEFAULT_DB_URL = "sqlite:///data/audit.db"
_DEFAULT_LIMIT = 50
_MAX_LIMIT = 500

_metadata = MetaData()

_audit = Table(
    "audit_entries",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),
    Column("action", String(100), nullable=False),
    Column("resource", String(100), nullable=False),
    Column("resource_id", String(100)),
    Column("details", Text, nullable=False, server_default="{}"),  # JSON object
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("status", String(10), nullable=False, server_default="success"),
    Column("timestamp", String(40), nullable=False),
    Index("ix_audit_user", "user_id"),
    Index("ix_audit_resource", "resource", "resource_id"),
    sqlite_autoincrement=True,
)

_VALID_STATUSES = {s.value for s in AuditStatus}


class AuditTrail(LockedStore):
    name = "audit"

    def __init__(self, db_url: str = _DEFAULT_DB_URL, max_entries: int = 10_000) -> None:
        super().__init__(db_url, _metadata)
        self.max_entries = max_entries

    def append(
        self,
        user_id: int | None,
        action: str,
        resource: str,
        resource_id: str | int | None = None,
        details: dict | None = None,
        status: str = AuditStatus.success.value,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> AuditEntry:
        if status not in _VALID_STATUSES:
            raise ValidationError(f"Unknown audit status {status!r}.")
        with self.transaction() as conn:
            result = conn.execute(
                _audit.insert().values(
                    user_id=user_id,
                    action=action,
                    resource=resource,
                    resource_id=str(resource_id) if resource_id is not None else None,
                    details=json.dumps(details or {}, default=str),
                    ip_address=ip_address,
                    user_agent=user_agent,
                    status=status,
                    timestamp=to_iso(now or utcnow()),
                )
            )
            entry_id = result.inserted_primary_key[0]
            self._evict_overflow(conn)
            row = conn.execute(_audit.select().where(_audit.c.id == entry_id)).fetchone()
        return _row_to_entry(row)

    def query(
        self,
        user_id: int | None = None,
        action: str | None = None,
        resource: str | None = None,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        limit: int = _DEFAULT_LIMIT,
    ) -> AuditPage:
        """Filter, sort newest first, and paginate. start/end are inclusive."""
        page = max(1, page)
        limit = min(max(1, limit), _MAX_LIMIT)

        condition = None
        for clause in (
            _audit.c.user_id == user_id if user_id is not None else None,
            _audit.c.action == action if action else None,
            _audit.c.resource == resource if resource else None,
            _audit.c.status == status if status else None,
            _audit.c.timestamp >= to_iso(start) if start else None,
            _audit.c.timestamp <= to_iso(end) if end else None,
        ):
            if clause is not None:
                condition = clause if condition is None else condition & clause

        count_q = select(func.count()).select_from(_audit)
        rows_q = _audit.select()
        if condition is not None:
            count_q = count_q.where(condition)
            rows_q = rows_q.where(condition)
        rows_q = rows_q.order_by(_audit.c.timestamp.desc(), _audit.c.id.desc()).offset((page - 1) * limit).limit(limit)

        with self.transaction() as conn:
            total = conn.execute(count_q).scalar() or 0
            rows = conn.execute(rows_q).fetchall()
        return AuditPage(
            entries=[_row_to_entry(r) for r in rows],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )

    def recent_for_user(self, user_id: int, limit: int = _DEFAULT_LIMIT) -> list[AuditEntry]:
        return self.query(user_id=user_id, limit=limit).entries

    def history_for_resource(self, resource: str, resource_id: str | int, limit: int = _DEFAULT_LIMIT) -> list[AuditEntry]:
        query = (
            _audit.select()
            .where((_audit.c.resource == resource) & (_audit.c.resource_id == str(resource_id)))
            .order_by(_audit.c.timestamp.desc(), _audit.c.id.desc())
            .limit(min(max(1, limit), _MAX_LIMIT))
        )
        with self.transaction() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_entry(r) for r in rows]

    def count(self) -> int:
        with self.transaction() as conn:
            return conn.execute(select(func.count()).select_from(_audit)).scalar() or 0

    def _evict_overflow(self, conn) -> None:
        total = conn.execute(select(func.count()).select_from(_audit)).scalar() or 0
        overflow = total - self.max_entries
        if overflow <= 0:
            return
        oldest = select(_audit.c.id).order_by(_audit.c.id).limit(overflow)
        conn.execute(_audit.delete().where(_audit.c.id.in_(oldest)))
        logger.debug("Evicted %d audit entr%s", overflow, "y" if overflow == 1 else "ies")


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        resource=row.resource,
        resource_id=row.resource_id,
        details=json.loads(row.details or "{}"),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        status=row.status,
        timestamp=from_iso(row.timestamp),
    )
