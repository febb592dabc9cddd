"""
core/errors.py -- Domain error taxonomy for AccountGuard.

Every error carries its HTTP classification (status_code) and a stable
machine-readable code from the moment it is raised. Stores and services raise
these at the point of detection; api/main.py maps them to the ErrorResponse
envelope in one place. Nothing between the two layers re-wraps or swallows
them.

StorageError is the only class whose message is fixed: the underlying
database error is logged by the store that caught it and never reaches the
client.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

from datetime import datetime


class SecurityError(Exception):
    """Base class for every domain error raised by the security core."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def extra(self) -> dict:
        """Additional structured fields merged into the error envelope."""
        return {}


class ValidationError(SecurityError):
    """Malformed or missing input, or a password policy violation (400).

    violations lists every failed rule, not just the first one, so a client
    can show the full set of requirements in a single round trip.
    """

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, violations: list[str] | None = None) -> None:
        super().__init__(message)
        self.violations = list(violations or [])

    def extra(self) -> dict:
        return {"violations": self.violations} if self.violations else {}


class AuthenticationError(SecurityError):
    """Bad credentials (401). The message never reveals whether the name exists."""

    status_code = 401
    code = "bad_credentials"

    def __init__(self, message: str = "Invalid credentials.", attempts_remaining: int | None = None) -> None:
        super().__init__(message)
        self.attempts_remaining = attempts_remaining

    def extra(self) -> dict:
        if self.attempts_remaining is None:
            return {}
        return {"attempts_remaining": self.attempts_remaining}


class PermissionDenied(SecurityError):
    status_code = 403
    code = "forbidden"


class NotFound(SecurityError):
    status_code = 404
    code = "not_found"


class Conflict(SecurityError):
    status_code = 409
    code = "conflict"


class AccountLocked(SecurityError):
    """Too many failed attempts; the account is locked until locked_until (423)."""

    status_code = 423
    code = "account_locked"

    def __init__(self, message: str, locked_until: datetime | None = None) -> None:
        super().__init__(message)
        self.locked_until = locked_until

    def extra(self) -> dict:
        return {"locked_until": self.locked_until.isoformat()} if self.locked_until else {}


class StorageError(SecurityError):
    """Durable I/O failure (500). Never retried automatically."""

    status_code = 500
    code = "storage_error"

    def __init__(self, message: str = "A storage error occurred.") -> None:
        super().__init__(message)
