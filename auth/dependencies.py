"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by POST /auth/login.
  2. Authorization: Bearer <token> header -- API clients.

If the request also carries X-Session-Id, that session must be a valid,
active session of the token's user; it is touched on every request. A
revoked or expired session therefore locks the client out even while its
JWT is still within its expiry.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

Layer rule: may import from fastapi because this module is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Role, UserCredential
from auth.service import AuthService
from auth.tokens import decode_access_token

SESSION_HEADER = "X-Session-Id"


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def current_session_id(request: Request) -> str | None:
    return request.headers.get(SESSION_HEADER) or None


def try_get_current_user(request: Request) -> UserCredential | None:
    """Attempt to authenticate the request via cookie or Bearer header.

    Returns the authenticated user on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_user().
    """
    service = get_auth_service(request)

    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    if not token:
        return None

    payload = decode_access_token(token)
    if not payload:
        return None
    user = service.credentials.get_by_id(payload["id"])
    if user is None:
        return None

    session_id = current_session_id(request)
    if session_id:
        session = service.sessions.get(session_id)
        if session is None or session.user_id != user.id or not service.sessions.validate(session_id):
            return None
        service.sessions.touch(session_id)
    return user


def get_current_user(request: Request) -> UserCredential:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: UserCredential = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_admin(request: Request) -> UserCredential:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if user.role != Role.admin.value:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
