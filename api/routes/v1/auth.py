"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST   /api/v1/auth/login           -- password login; sets JWT cookie, opens a session
  POST   /api/v1/auth/register        -- self-registration (role "user")
  POST   /api/v1/auth/logout          -- clears cookie; revokes X-Session-Id if sent
  GET    /api/v1/auth/me              -- current user info (requires auth)
  POST   /api/v1/auth/password        -- change own password (requires auth)
  GET    /api/v1/auth/users           -- list all users (admin only)
  POST   /api/v1/auth/users           -- create user with a role (admin only)
  DELETE /api/v1/auth/users/{id}      -- delete user (admin only)
  GET    /api/v1/password-policy      -- public password policy document

Security:
  [H2] POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] AuthService.login() equalizes timing for unknown names -- use it, never inline.
  [M5] Cache-Control: no-store on token-bearing responses.

Handlers are plain def: every store call blocks (SQLite, bcrypt) and must
run in FastAPI's thread pool, not on the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordChange,
    PasswordPolicyResponse,
    RegisterRequest,
    TokenResponse,
    UserCreate,
    UserResponse,
)
from auth.dependencies import current_session_id, get_auth_service, get_current_user, require_admin
from auth.models import UserCredential
from auth.tokens import set_auth_cookie
from core.config import get_settings
from core.errors import PermissionDenied

router = APIRouter()


def client_address(request: Request) -> str | None:
    return request.client.host if request.client else None


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_RATE_LIMIT)  # [H2] above @router so FastAPI introspects the undecorated signature
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with name and password; open a session and set the JWT cookie.

    Failures surface as domain errors: 400 (missing fields), 401 (bad
    credentials, with attempts_remaining when the name exists) or 423 (locked).
    """
    service = get_auth_service(request)
    result = service.login(
        body.name,
        body.password,
        source_address=client_address(request),
        user_agent=request.headers.get("User-Agent"),
    )
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=result.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=result.expires_in,
            user=UserResponse.from_domain(result.user),
            session_id=result.session.session_id,
            password_expired=result.password_expired,
            password_expires_in_days=result.password_expires_in_days,
        ).model_dump(mode="json"),
    )
    set_auth_cookie(resp, result.token, result.expires_in)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(LOGIN_RATE_LIMIT)
@router.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a regular user account and return a token for it."""
    if not get_settings().self_registration_enabled:
        raise PermissionDenied("Self-registration is disabled.")
    service = get_auth_service(request)
    result = service.register(
        body.name,
        body.password,
        profession=body.profession,
        source_address=client_address(request),
    )
    resp = JSONResponse(
        status_code=201,
        content=TokenResponse(
            access_token=result.token,
            token_type="bearer",  # noqa: S106 # nosec B106
            expires_in=result.expires_in,
            user=UserResponse.from_domain(result.user),
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/password-policy", response_model=PasswordPolicyResponse)
def password_policy(request: Request) -> PasswordPolicyResponse:
    return PasswordPolicyResponse(**get_auth_service(request).policy.describe())


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, current_user: UserCredential = Depends(get_current_user)) -> JSONResponse:
    """Revoke the current session (if named) and clear the JWT cookie."""
    get_auth_service(request).logout(current_user.id, current_session_id(request))
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: UserCredential = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_domain(current_user)


@router.post("/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    current_user: UserCredential = Depends(get_current_user),
) -> MessageResponse:
    """Change the caller's password. Other sessions are revoked; the current one is kept."""
    revoked = get_auth_service(request).change_password(
        current_user.id,
        body.current_password,
        body.new_password,
        keep_session_id=current_session_id(request),
        source_address=client_address(request),
    )
    return MessageResponse(message="Password changed.", count=revoked)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: UserCredential = Depends(require_admin)) -> list[UserResponse]:
    return [UserResponse.from_domain(u) for u in get_auth_service(request).credentials.list_users()]


@router.post("/auth/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: UserCredential = Depends(require_admin),
) -> UserResponse:
    """Create an account with an explicit role. Admin only."""
    result = get_auth_service(request).register(
        body.name,
        body.password,
        profession=body.profession,
        role=body.role.value,
        actor_id=current_user.id,
        source_address=client_address(request),
    )
    return UserResponse.from_domain(result.user)


@router.delete("/auth/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: UserCredential = Depends(require_admin),
) -> Response:
    """Delete an account. Its sessions are revoked; its audit history is kept."""
    get_auth_service(request).delete_user(user_id, actor_id=current_user.id)
    return Response(status_code=204)
