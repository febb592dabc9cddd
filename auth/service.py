"""
auth/service.py -- AuthService, the login/registration state machine.

AuthService is the only component with cross-cutting control flow. It owns
no storage of its own: the four stores are injected at construction (see
from_settings()) and the same instance is shared by every request handler
through app.state.

Login:
  1. empty name or password              -> ValidationError
  2. unknown name                        -> AuthenticationError (generic) [C1]
  3. LockoutTracker.status() is locked   -> AccountLocked, password untouched
  4. CredentialStore.check_password fails -> record_failure(); AccountLocked if
                                            that locked the account, else
                                            AuthenticationError(attempts_remaining)
  5. success                             -> clear(), create session, audit,
                                            sign {id, name, role}

Unknown names and wrong passwords produce the same message and the same
bcrypt cost, so neither the body nor the timing reveals whether a name exists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from auth.audit import AuditTrail
from auth.db import LockedStore, utcnow
from auth.lockout import LockoutTracker
from auth.models import AuditStatus, Role, Session, UserCredential
from auth.policy import PasswordPolicy
from auth.sessions import SessionRegistry
from auth.store import CredentialStore
from auth.tokens import burn_dummy_verify, create_access_token, token_lifetime
from core.config import Settings
from core.errors import AccountLocked, AuthenticationError, NotFound, ValidationError

logger = logging.getLogger("accountguard.auth")

_LOCKED_MESSAGE = "Account is locked due to too many failed login attempts. Please try again later."


@dataclass
class LoginResult:
    token: str
    expires_in: int
    user: UserCredential
    session: Session
    password_expired: bool
    password_expires_in_days: int


@dataclass
class RegisterResult:
    token: str
    expires_in: int
    user: UserCredential


class AuthService:
    def __init__(
        self,
        credentials: CredentialStore,
        lockouts: LockoutTracker,
        sessions: SessionRegistry,
        audit: AuditTrail,
        session_ttl_seconds: int = 3600,
    ) -> None:
        self.credentials = credentials
        self.lockouts = lockouts
        self.sessions = sessions
        self.audit = audit
        self.session_ttl_seconds = session_ttl_seconds

    @property
    def policy(self) -> PasswordPolicy:
        return self.credentials.policy

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthService":
        """Build the service and its stores from application settings."""
        Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
        return cls(
            credentials=CredentialStore(settings.store_url("users"), PasswordPolicy.from_settings(settings)),
            lockouts=LockoutTracker(
                settings.store_url("lockouts"),
                max_attempts=settings.lockout_max_attempts,
                lockout_duration=timedelta(minutes=settings.lockout_duration_minutes),
                attempt_window=timedelta(minutes=settings.lockout_window_minutes),
            ),
            sessions=SessionRegistry(settings.store_url("sessions"), cap=settings.session_cap),
            audit=AuditTrail(settings.store_url("audit"), max_entries=settings.audit_max_entries),
            session_ttl_seconds=settings.session_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Login / registration
    # ------------------------------------------------------------------

    def login(
        self,
        name: str,
        password: str,
        source_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        if not name or not password:
            raise ValidationError("Name and password are required.")

        user = self.credentials.get_by_name(name)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            burn_dummy_verify(password)
            self._audit_login_failure(None, "unknown_user", source_address, user_agent, name=name)
            raise AuthenticationError()

        status = self.lockouts.status(user.id)
        if status.is_locked:
            self._audit_login_failure(user.id, "locked", source_address, user_agent)
            raise AccountLocked(_LOCKED_MESSAGE, locked_until=status.locked_until)

        if not self.credentials.check_password(user, password):
            status = self.lockouts.record_failure(user.id, source_address)
            self._audit_login_failure(
                user.id, "bad_password", source_address, user_agent, attempts_remaining=status.attempts_remaining
            )
            if status.is_locked:
                self.audit.append(
                    user.id,
                    "account_locked",
                    "user",
                    resource_id=user.id,
                    details={"locked_until": status.locked_until},
                    ip_address=source_address,
                    user_agent=user_agent,
                )
                raise AccountLocked(_LOCKED_MESSAGE, locked_until=status.locked_until)
            raise AuthenticationError(attempts_remaining=status.attempts_remaining)

        self.lockouts.clear(user.id)
        session = self.sessions.create(
            user.id, ip_address=source_address, user_agent=user_agent, ttl_seconds=self.session_ttl_seconds
        )
        self.audit.append(
            user.id,
            "login",
            "auth",
            resource_id=user.id,
            details={"session": session.id},
            ip_address=source_address,
            user_agent=user_agent,
        )
        now = utcnow()
        logger.info("Login succeeded for user id=%s", user.id)
        return LoginResult(
            token=create_access_token(user.id, user.name, user.role),
            expires_in=token_lifetime(),
            user=user,
            session=session,
            password_expired=self.policy.is_expired(user, now),
            password_expires_in_days=self.policy.days_until_expiration(user, now),
        )

    def register(
        self,
        name: str,
        password: str,
        profession: str = "",
        role: str = Role.user.value,
        actor_id: int | None = None,
        source_address: str | None = None,
    ) -> RegisterResult:
        """Create an account (policy enforced by the store) and sign a token for it.

        actor_id is set when an admin creates the account on someone's behalf.
        """
        user = self.credentials.create(name, password, profession=profession, role=role)
        self.audit.append(
            actor_id if actor_id is not None else user.id,
            "register",
            "user",
            resource_id=user.id,
            details={"role": user.role},
            ip_address=source_address,
        )
        return RegisterResult(
            token=create_access_token(user.id, user.name, user.role),
            expires_in=token_lifetime(),
            user=user,
        )

    # ------------------------------------------------------------------
    # Account maintenance
    # ------------------------------------------------------------------

    def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        keep_session_id: str | None = None,
        source_address: str | None = None,
    ) -> int:
        """Change a user's own password. Returns the number of other sessions revoked.

        The current password is checked under the same lockout rules as login.
        """
        user = self.credentials.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found.")
        status = self.lockouts.status(user_id)
        if status.is_locked:
            raise AccountLocked(_LOCKED_MESSAGE, locked_until=status.locked_until)
        if not self.credentials.check_password(user, current_password):
            status = self.lockouts.record_failure(user_id, source_address)
            if status.is_locked:
                raise AccountLocked(_LOCKED_MESSAGE, locked_until=status.locked_until)
            raise AuthenticationError("Current password is incorrect.", attempts_remaining=status.attempts_remaining)

        self.credentials.update_password(user_id, new_password)
        revoked = self.sessions.revoke_all_for_user(user_id, except_session_id=keep_session_id)
        self.audit.append(
            user_id,
            "password_change",
            "user",
            resource_id=user_id,
            details={"sessions_revoked": revoked},
            ip_address=source_address,
        )
        return revoked

    def logout(self, user_id: int, session_id: str | None) -> None:
        if session_id:
            session = self.sessions.get(session_id)
            if session is not None and session.user_id == user_id:
                self.sessions.revoke(session_id)
        self.audit.append(user_id, "logout", "auth", resource_id=user_id)

    def unlock(self, user_id: int, actor_id: int) -> None:
        """Admin unlock. Idempotent: unlocking a clear account is not an error."""
        self.lockouts.clear(user_id)
        self.audit.append(actor_id, "unlock", "user", resource_id=user_id)
        logger.info("User id=%s unlocked by admin id=%s", user_id, actor_id)

    def delete_user(self, user_id: int, actor_id: int) -> None:
        """Delete an account, revoke its sessions and drop its lockout record.

        Audit entries that reference the user are kept.
        """
        user = self.credentials.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found.")
        if user.role == Role.admin.value and self.credentials.count_admins() <= 1:
            raise ValidationError("Cannot delete the last admin account.")
        self.credentials.delete(user_id)
        revoked = self.sessions.revoke_all_for_user(user_id)
        self.lockouts.clear(user_id)
        self.audit.append(actor_id, "delete", "user", resource_id=user_id, details={"sessions_revoked": revoked})

    @property
    def stores(self) -> tuple[LockedStore, ...]:
        return (self.credentials, self.lockouts, self.sessions, self.audit)

    def close(self) -> None:
        for store in self.stores:
            store.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _audit_login_failure(
        self,
        user_id: int | None,
        reason: str,
        source_address: str | None,
        user_agent: str | None,
        **details,
    ) -> None:
        self.audit.append(
            user_id,
            "login",
            "auth",
            resource_id=user_id,
            details={"reason": reason, **details},
            status=AuditStatus.failure.value,
            ip_address=source_address,
            user_agent=user_agent,
        )
