"""
API request and response models for AccountGuard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two
with the from_domain() factories below.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuditEntry, AuditPage, LockedAccount, LockoutStatus, Session, UserCredential

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


class AuditStatusEnum(str, Enum):
    success = "success"
    failure = "failure"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Empty strings are accepted here so the service can answer with its own
    ValidationError envelope instead of a generic 422.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=255)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register. Role is always "user"."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=255)
    profession: str = Field(default="", max_length=255)


class UserCreate(RegisterRequest):
    """Request body for POST /api/v1/auth/users (admin)."""

    role: RoleEnum = RoleEnum.user


class PasswordChange(BaseModel):
    current_password: str = Field(max_length=255)
    new_password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """A user without any password material."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    role: str
    profession: str = ""
    password_changed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, user: UserCredential) -> "UserResponse":
        return cls(**user.public_dict())


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class LoginResponse(TokenResponse):
    session_id: str
    password_expired: bool
    password_expires_in_days: int


class MessageResponse(BaseModel):
    message: str
    count: Optional[int] = None


class PasswordPolicyResponse(BaseModel):
    min_length: int
    max_length: int
    require_uppercase: bool
    require_lowercase: bool
    require_numbers: bool
    require_special_chars: bool
    expiration_days: int
    prevent_reuse: int


class LockoutPolicyResponse(BaseModel):
    max_attempts: int
    lockout_duration_minutes: int
    attempt_window_minutes: int


class LockoutStatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_locked: bool
    attempts_remaining: int
    locked_until: Optional[datetime] = None

    @classmethod
    def from_domain(cls, status: LockoutStatus) -> "LockoutStatusResponse":
        return cls(
            is_locked=status.is_locked,
            attempts_remaining=status.attempts_remaining,
            locked_until=status.locked_until,
        )


class LockedAccountRow(BaseModel):
    user_id: int
    locked_until: datetime
    failed_attempts: int

    @classmethod
    def from_domain(cls, account: LockedAccount) -> "LockedAccountRow":
        return cls(user_id=account.user_id, locked_until=account.locked_until, failed_attempts=account.failed_attempts)


class LockedAccountsResponse(BaseModel):
    accounts: list[LockedAccountRow]
    count: int


class SessionResponse(BaseModel):
    """A session as shown to its owner or an admin."""

    id: int
    session_id: str
    user_id: int
    status: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    revoked_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            session_id=session.session_id,
            user_id=session.user_id,
            status=session.status,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=session.created_at,
            last_activity_at=session.last_activity_at,
            expires_at=session.expires_at,
            revoked_at=session.revoked_at,
        )


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    count: int


class AuditEntryResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    details: dict = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    status: AuditStatusEnum
    timestamp: datetime

    @classmethod
    def from_domain(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            action=entry.action,
            resource=entry.resource,
            resource_id=entry.resource_id,
            details=entry.details,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            status=entry.status,
            timestamp=entry.timestamp,
        )


class AuditListResponse(BaseModel):
    logs: list[AuditEntryResponse]
    count: int


class AuditPageResponse(BaseModel):
    logs: list[AuditEntryResponse]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def from_domain(cls, page: AuditPage) -> "AuditPageResponse":
        return cls(
            logs=[AuditEntryResponse.from_domain(e) for e in page.entries],
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    extra="allow" lets domain errors attach their structured fields
    (violations, attempts_remaining, locked_until) next to code and message.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
