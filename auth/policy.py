"""
auth/policy.py -- Password policy evaluation.

PasswordPolicy is a pure rule evaluator. It never touches storage and every
method is deterministic given its inputs (time is passed in, hash checking is
injected), so it is tested on its own without a database.

validate() reports every violated rule, not just the first. require_valid()
turns a non-empty result into a single ValidationError listing all of them.

Reuse detection works against salted bcrypt hashes: comparing a fresh hash
with stored ones would never match, so the candidate plaintext is verified
against each of the most recent history entries instead.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth.models import UserCredential
from core.config import Settings
from core.errors import ValidationError

_SPECIAL_CHARS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")
_WARN_WITHIN_DAYS = 7


@dataclass(frozen=True)
class PolicyViolation:
    rule: str
    message: str


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 8
    max_length: int = 128
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True
    expiration_days: int = 90
    prevent_reuse: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordPolicy":
        return cls(
            min_length=settings.password_min_length,
            max_length=settings.password_max_length,
            require_uppercase=settings.password_require_uppercase,
            require_lowercase=settings.password_require_lowercase,
            require_numbers=settings.password_require_numbers,
            require_special_chars=settings.password_require_special_chars,
            expiration_days=settings.password_expiration_days,
            prevent_reuse=settings.password_prevent_reuse,
        )

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def validate(self, password: str) -> list[PolicyViolation]:
        """Return every rule the password breaks. Empty list means valid."""
        violations: list[PolicyViolation] = []
        if len(password) < self.min_length:
            violations.append(
                PolicyViolation("min_length", f"Password must be at least {self.min_length} characters long")
            )
        if len(password) > self.max_length:
            violations.append(
                PolicyViolation("max_length", f"Password must not exceed {self.max_length} characters")
            )
        if self.require_uppercase and not re.search(r"[A-Z]", password):
            violations.append(PolicyViolation("uppercase", "Password must contain at least one uppercase letter"))
        if self.require_lowercase and not re.search(r"[a-z]", password):
            violations.append(PolicyViolation("lowercase", "Password must contain at least one lowercase letter"))
        if self.require_numbers and not re.search(r"\d", password):
            violations.append(PolicyViolation("digit", "Password must contain at least one number"))
        if self.require_special_chars and not _SPECIAL_CHARS.search(password):
            violations.append(PolicyViolation("special", "Password must contain at least one special character"))
        return violations

    def require_valid(self, password: str) -> None:
        violations = self.validate(password)
        if violations:
            raise ValidationError(
                ". ".join(v.message for v in violations),
                violations=[v.rule for v in violations],
            )

    # ------------------------------------------------------------------
    # Reuse
    # ------------------------------------------------------------------

    def check_reuse(
        self,
        new_password: str,
        history: Sequence[str],
        verify: Callable[[str, str], bool],
    ) -> None:
        """Raise ValidationError if new_password matches a recent history hash.

        Only the last prevent_reuse entries are considered.
        """
        if self.prevent_reuse <= 0 or not history:
            return
        for old_hash in list(history)[-self.prevent_reuse :]:
            if verify(new_password, old_hash):
                raise ValidationError(
                    "Password has been used recently. Please choose a different password.",
                    violations=["reuse"],
                )

    # ------------------------------------------------------------------
    # Expiration
    # ------------------------------------------------------------------

    def _baseline(self, user: UserCredential) -> datetime:
        stamps = [t for t in (user.password_changed_at, user.created_at) if t is not None]
        if not stamps:
            raise ValueError("credential has neither password_changed_at nor created_at")
        return max(stamps)

    def expiration_date(self, user: UserCredential) -> datetime:
        return self._baseline(user) + timedelta(days=self.expiration_days)

    def is_expired(self, user: UserCredential, now: datetime) -> bool:
        return now - self._baseline(user) > timedelta(days=self.expiration_days)

    def days_until_expiration(self, user: UserCredential, now: datetime) -> int:
        remaining = (self.expiration_date(user) - now).total_seconds() / 86400
        return max(0, math.ceil(remaining))

    def should_warn(self, user: UserCredential, now: datetime) -> bool:
        days = self.days_until_expiration(user, now)
        return 0 < days <= _WARN_WITHIN_DAYS

    def describe(self) -> dict:
        """Return the public policy document served by GET /password-policy."""
        return {
            "min_length": self.min_length,
            "max_length": self.max_length,
            "require_uppercase": self.require_uppercase,
            "require_lowercase": self.require_lowercase,
            "require_numbers": self.require_numbers,
            "require_special_chars": self.require_special_chars,
            "expiration_days": self.expiration_days,
            "prevent_reuse": self.prevent_reuse,
        }
