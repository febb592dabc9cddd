"""
auth/store.py -- SQLAlchemy Core persistence for user credentials.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_credential is the mapper. Route and service code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Names are unique case-insensitively. The lower-cased form lives in its own
  UNIQUE column (name_key) so the check is enforced by the database as well as
  by the pre-insert lookup done under the store lock.

  Password history is a JSON array of bcrypt hashes, newest last, holding the
  current hash plus its predecessors up to the reuse window.

Ids come from SQLite AUTOINCREMENT, so a deleted user's id is never handed
out again.

DB path: <DATA_DIR>/users.db.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.exc import IntegrityError

from auth.db import LockedStore, from_iso, to_iso, utcnow
from auth.models import Role, UserCredential
from auth.policy import PasswordPolicy
from auth.tokens import hash_password, verify_password
from core.errors import Conflict, NotFound, ValidationError

logger = logging.getLogger("accountguard.store")

_DEFAULT_DB_URL = "sqlite:///data/users.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("name_key", String(255), nullable=False, unique=True),  # lower(name)
    Column("password_hash", Text, nullable=False),
    Column("password_history", Text, nullable=False, server_default="[]"),  # JSON array
    Column("password_changed_at", String(40)),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("profession", String(255), nullable=False, server_default=""),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    sqlite_autoincrement=True,
)

_VALID_ROLES = {r.value for r in Role}


def _name_key(name: str) -> str:
    return name.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore(LockedStore):
    """Repository for UserCredential records.

    Usage:
        store = CredentialStore("sqlite:///data/users.db", PasswordPolicy())
        user = store.create("alice", "S3cure!pass")
        store.verify("ALICE", "S3cure!pass")   # True
        store.close()
    """

    name = "credentials"

    def __init__(self, db_url: str = _DEFAULT_DB_URL, policy: PasswordPolicy | None = None) -> None:
        super().__init__(db_url, _metadata)
        self.policy = policy or PasswordPolicy()

    @property
    def _history_limit(self) -> int:
        return max(self.policy.prevent_reuse, 1)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, name: str, password: str, profession: str = "", role: str = Role.user.value) -> UserCredential:
        """Insert a new credential after policy validation.

        Raises ValidationError for missing fields, an unknown role, or a
        password that breaks the policy; Conflict if the name is taken.
        """
        name = (name or "").strip()
        if not name or not password:
            raise ValidationError("Name and password are required.")
        if role not in _VALID_ROLES:
            raise ValidationError(f"Unknown role {role!r}.")
        self.policy.require_valid(password)

        # bcrypt is slow; hash before taking the lock.
        hashed = hash_password(password)
        now = to_iso(utcnow())
        with self.transaction() as conn:
            if self._row_by_name(conn, name) is not None:
                raise Conflict("User with this name already exists.")
            try:
                result = conn.execute(
                    _users.insert().values(
                        name=name,
                        name_key=_name_key(name),
                        password_hash=hashed,
                        password_history=json.dumps([hashed]),
                        password_changed_at=now,
                        role=role,
                        profession=profession or "",
                        created_at=now,
                        updated_at=now,
                    )
                )
            except IntegrityError as exc:
                raise Conflict("User with this name already exists.") from exc
            user_id = result.inserted_primary_key[0]
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        logger.info("Created user id=%s role=%s", user_id, role)
        return _row_to_credential(row)

    def update_profile(
        self,
        user_id: int,
        name: str | None = None,
        profession: str | None = None,
        role: str | None = None,
    ) -> UserCredential:
        """Update mutable profile fields. Raises NotFound or Conflict."""
        if role is not None and role not in _VALID_ROLES:
            raise ValidationError(f"Unknown role {role!r}.")
        with self.transaction() as conn:
            row = self._row_by_id(conn, user_id)
            if row is None:
                raise NotFound("User not found.")
            values: dict = {"updated_at": to_iso(utcnow())}
            if name:
                name = name.strip()
                other = self._row_by_name(conn, name)
                if other is not None and other.id != user_id:
                    raise Conflict("User with this name already exists.")
                values["name"] = name
                values["name_key"] = _name_key(name)
            if profession is not None:
                values["profession"] = profession
            if role is not None:
                values["role"] = role
            conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            row = self._row_by_id(conn, user_id)
        return _row_to_credential(row)

    def update_password(self, user_id: int, new_password: str) -> UserCredential:
        """Replace the password, rejecting policy violations and recent reuse.

        The reuse check and the history append happen inside one locked
        transaction so two concurrent changes cannot both pass against the
        same stale history.
        """
        if not new_password:
            raise ValidationError("Password is required.")
        self.policy.require_valid(new_password)
        with self.transaction() as conn:
            row = self._row_by_id(conn, user_id)
            if row is None:
                raise NotFound("User not found.")
            history: list[str] = json.loads(row.password_history or "[]")
            self.policy.check_reuse(new_password, history, verify_password)
            hashed = hash_password(new_password)
            history = (history + [hashed])[-self._history_limit :]
            now = to_iso(utcnow())
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    password_hash=hashed,
                    password_history=json.dumps(history),
                    password_changed_at=now,
                    updated_at=now,
                )
            )
            row = self._row_by_id(conn, user_id)
        logger.info("Password changed for user id=%s", user_id)
        return _row_to_credential(row)

    def delete(self, user_id: int) -> None:
        """Permanently delete a credential. Raises NotFound if absent."""
        with self.transaction() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            if result.rowcount == 0:
                raise NotFound("User not found.")
        logger.info("Deleted user id=%s", user_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def verify(self, name: str, password: str) -> bool:
        """Return True if name exists and password matches its current hash."""
        user = self.get_by_name(name)
        if user is None:
            return False
        return self.check_password(user, password)

    @staticmethod
    def check_password(user: UserCredential, password: str) -> bool:
        """Verify against an already loaded credential, skipping the name lookup.

        AuthService loads the user first (it needs the id for the lockout
        check), so it verifies through here instead of a second verify() lookup.
        """
        return verify_password(password or "", user.password_hash)

    def get_by_name(self, name: str) -> UserCredential | None:
        """Case-insensitive lookup. Returns None if not found."""
        with self.transaction() as conn:
            row = self._row_by_name(conn, name)
        return _row_to_credential(row) if row is not None else None

    def get_by_id(self, user_id: int) -> UserCredential | None:
        with self.transaction() as conn:
            row = self._row_by_id(conn, user_id)
        return _row_to_credential(row) if row is not None else None

    def list_users(self) -> list[UserCredential]:
        """Return all users ordered by name. Admin-only operation."""
        with self.transaction() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.name_key)).fetchall()
        return [_row_to_credential(r) for r in rows]

    def count_admins(self) -> int:
        """Used to stop the last admin account from being deleted."""
        with self.transaction() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == Role.admin.value)
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _row_by_name(conn, name: str):
        return conn.execute(_users.select().where(_users.c.name_key == _name_key(name))).fetchone()

    @staticmethod
    def _row_by_id(conn, user_id: int):
        return conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> UserCredential:
    return UserCredential(
        id=row.id,
        name=row.name,
        password_hash=row.password_hash,
        password_history=json.loads(row.password_history or "[]"),
        password_changed_at=from_iso(row.password_changed_at),
        role=row.role,
        profession=row.profession or "",
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )
