"""Unit tests for auth/audit.py (AuditTrail).

Covers:
- append() stores details as JSON and rejects unknown statuses
- Capacity cap: the oldest entries are evicted, ids are never reused
- query(): filters, inclusive time range, newest-first, pagination math
- recent_for_user() and history_for_resource()
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.audit import AuditTrail, _audit
from auth.db import to_iso
from core.errors import ValidationError

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _seed(trail: AuditTrail) -> None:
    trail.append(1, "login", "auth", resource_id=1, now=T0)
    trail.append(1, "password_change", "user", resource_id=1, now=T0 + timedelta(minutes=1))
    trail.append(2, "login", "auth", resource_id=2, status="failure", details={"reason": "bad_password"}, now=T0 + timedelta(minutes=2))
    trail.append(None, "login", "auth", status="failure", details={"reason": "unknown_user"}, now=T0 + timedelta(minutes=3))
    trail.append(2, "login", "auth", resource_id=2, now=T0 + timedelta(minutes=4))


def test_append_round_trips_fields(audit: AuditTrail) -> None:
    entry = audit.append(
        7,
        "login",
        "auth",
        resource_id=7,
        details={"session": 3, "when": T0},
        ip_address="10.0.0.1",
        user_agent="pytest",
        now=T0,
    )
    assert entry.id is not None
    assert entry.resource_id == "7"
    assert entry.details == {"session": 3, "when": str(T0)}
    assert entry.status == "success"
    assert entry.timestamp == T0
    assert entry.ip_address == "10.0.0.1"


def test_append_rejects_unknown_status(audit: AuditTrail) -> None:
    with pytest.raises(ValidationError) as exc_info:
        audit.append(1, "login", "auth", status="maybe")
    assert exc_info.value.status_code == 400
    assert audit.count() == 0


def test_cap_evicts_oldest_entries() -> None:
    trail = AuditTrail("sqlite:///:memory:", max_entries=3)
    try:
        ids = [trail.append(1, f"action{i}", "auth", now=T0 + timedelta(seconds=i)).id for i in range(5)]
        assert trail.count() == 3
        remaining = trail.query(limit=10).entries
        assert sorted(e.id for e in remaining) == ids[2:]
        assert {e.action for e in remaining} == {"action2", "action3", "action4"}
    finally:
        trail.close()


def test_cap_at_ten_thousand(audit: AuditTrail) -> None:
    rows = [
        {
            "user_id": 1,
            "action": "seed",
            "resource": "auth",
            "details": "{}",
            "status": "success",
            "timestamp": to_iso(T0 + timedelta(seconds=i)),
        }
        for i in range(10_000)
    ]
    with audit.engine.begin() as conn:
        conn.execute(_audit.insert(), rows)
    assert audit.count() == 10_000

    newest = audit.append(1, "login", "auth", now=T0 + timedelta(days=1))
    assert audit.count() == 10_000
    assert newest.id == 10_001
    oldest = audit.query(limit=1, page=10_000).entries[0]
    assert oldest.id == 2


def test_ids_keep_increasing_after_eviction() -> None:
    trail = AuditTrail("sqlite:///:memory:", max_entries=1)
    try:
        first = trail.append(1, "a", "auth")
        second = trail.append(1, "b", "auth")
        assert second.id > first.id
        assert trail.count() == 1
    finally:
        trail.close()


def test_query_newest_first(audit: AuditTrail) -> None:
    _seed(audit)
    page = audit.query()
    assert page.total == 5
    assert [e.timestamp for e in page.entries] == sorted((e.timestamp for e in page.entries), reverse=True)


def test_query_filters(audit: AuditTrail) -> None:
    _seed(audit)
    assert audit.query(user_id=2).total == 2
    assert audit.query(action="login").total == 4
    assert audit.query(resource="user").total == 1
    assert audit.query(status="failure").total == 2
    assert audit.query(user_id=2, status="failure").entries[0].details == {"reason": "bad_password"}


def test_query_time_range_is_inclusive(audit: AuditTrail) -> None:
    _seed(audit)
    page = audit.query(start=T0 + timedelta(minutes=1), end=T0 + timedelta(minutes=3))
    assert page.total == 3


def test_pagination(audit: AuditTrail) -> None:
    _seed(audit)
    first = audit.query(page=1, limit=2)
    last = audit.query(page=3, limit=2)
    assert first.total_pages == 3
    assert len(first.entries) == 2
    assert len(last.entries) == 1
    assert last.entries[0].timestamp == T0
    assert audit.query(page=4, limit=2).entries == []


def test_limit_is_capped(audit: AuditTrail) -> None:
    assert audit.query(limit=5000).limit == 500


def test_empty_trail(audit: AuditTrail) -> None:
    page = audit.query()
    assert page.total == 0
    assert page.total_pages == 0
    assert page.entries == []


def test_recent_for_user_and_resource_history(audit: AuditTrail) -> None:
    _seed(audit)
    assert [e.action for e in audit.recent_for_user(1)] == ["password_change", "login"]
    history = audit.history_for_resource("auth", 2)
    assert len(history) == 2
    assert all(e.resource_id == "2" for e in history)
