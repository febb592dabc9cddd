"""
auth/models.py -- Domain dataclasses for account-security entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the shape. Timestamps are timezone-aware UTC
datetimes here -- the stores' row mappers convert to and from ISO 8601 text.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    user = "user"
    admin = "admin"


class SessionStatus(str, Enum):
    active = "active"
    revoked = "revoked"
    expired = "expired"


class AuditStatus(str, Enum):
    success = "success"
    failure = "failure"


@dataclass
class UserCredential:
    """A local account and its password material.

    password_history holds the most recent password hashes, the current one
    included, so a reuse check against the history also rejects "changing"
    to the same password.
    """

    name: str
    password_hash: str
    role: str = Role.user.value
    profession: str = ""
    id: int | None = None
    password_history: list[str] = field(default_factory=list)
    password_changed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def public_dict(self) -> dict:
        """Return the credential minus its secret fields."""
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "profession": self.profession,
            "password_changed_at": self.password_changed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class FailedAttempt:
    timestamp: datetime
    source_address: str | None = None


@dataclass
class LockoutRecord:
    user_id: int
    failed_attempts: list[FailedAttempt] = field(default_factory=list)
    locked_until: datetime | None = None


@dataclass(frozen=True)
class LockoutStatus:
    """Point-in-time view of a user's lockout state."""

    is_locked: bool
    attempts_remaining: int
    locked_until: datetime | None = None


@dataclass(frozen=True)
class LockedAccount:
    user_id: int
    locked_until: datetime
    failed_attempts: int


@dataclass
class Session:
    """An issued login session.

    session_id is the opaque bearer value (256 bits, hex). revoked and expired
    are terminal: once a session leaves active it is never modified again.
    """

    session_id: str
    user_id: int
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    status: str = SessionStatus.active.value
    id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    revoked_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.active.value


@dataclass
class AuditEntry:
    user_id: int | None
    action: str
    resource: str
    timestamp: datetime
    status: str = AuditStatus.success.value
    id: int | None = None
    resource_id: str | None = None
    details: dict = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class AuditPage:
    entries: list[AuditEntry]
    total: int
    page: int
    limit: int
    total_pages: int
