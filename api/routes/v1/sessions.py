"""
api/routes/v1/sessions.py -- Session management endpoints.

Routes:
  GET    /api/v1/sessions/my                 -- caller's active sessions
  DELETE /api/v1/sessions/{session_id}       -- revoke one session (owner or admin)
  DELETE /api/v1/sessions                    -- revoke all of the caller's sessions
  GET    /api/v1/sessions/users/{user_id}    -- a user's sessions (admin only)
  POST   /api/v1/sessions/cleanup            -- sweep expired sessions (admin only)

Another user's session id is answered with 404, not 403, so session ids
cannot be probed for existence.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request

from api.models import MessageResponse, SessionListResponse, SessionResponse
from auth.dependencies import current_session_id, get_auth_service, get_current_user, require_admin
from auth.models import Role, UserCredential
from core.errors import NotFound

logger = logging.getLogger("accountguard.api")

router = APIRouter()


@router.get("/sessions/my", response_model=SessionListResponse)
def my_sessions(request: Request, current_user: UserCredential = Depends(get_current_user)) -> SessionListResponse:
    sessions = get_auth_service(request).sessions.list_for_user(current_user.id)
    return SessionListResponse(sessions=[SessionResponse.from_domain(s) for s in sessions], count=len(sessions))


@router.delete("/sessions/{session_id}", response_model=SessionResponse)
def revoke_session(
    request: Request,
    session_id: str,
    current_user: UserCredential = Depends(get_current_user),
) -> SessionResponse:
    service = get_auth_service(request)
    session = service.sessions.get(session_id)
    if session is None or (session.user_id != current_user.id and current_user.role != Role.admin.value):
        raise NotFound("Session not found.")
    revoked = service.sessions.revoke(session_id)
    service.audit.append(
        current_user.id,
        "revoke",
        "session",
        resource_id=revoked.id,
        details={"owner": revoked.user_id},
    )
    return SessionResponse.from_domain(revoked)


@router.delete("/sessions", response_model=MessageResponse)
def revoke_my_sessions(
    request: Request,
    except_current: bool = Query(default=True),
    current_user: UserCredential = Depends(get_current_user),
) -> MessageResponse:
    """Revoke all of the caller's sessions, by default keeping the one in X-Session-Id."""
    service = get_auth_service(request)
    keep = current_session_id(request) if except_current else None
    count = service.sessions.revoke_all_for_user(current_user.id, except_session_id=keep)
    service.audit.append(current_user.id, "revoke_all", "session", resource_id=current_user.id, details={"count": count})
    return MessageResponse(message=f"Revoked {count} session(s).", count=count)


@router.get("/sessions/users/{user_id}", response_model=SessionListResponse)
def user_sessions(
    request: Request,
    user_id: int,
    include_inactive: bool = Query(default=False),
    current_user: UserCredential = Depends(require_admin),
) -> SessionListResponse:
    sessions = get_auth_service(request).sessions.list_for_user(user_id, include_inactive=include_inactive)
    return SessionListResponse(sessions=[SessionResponse.from_domain(s) for s in sessions], count=len(sessions))


@router.post("/sessions/cleanup", response_model=MessageResponse)
def cleanup_sessions(request: Request, current_user: UserCredential = Depends(require_admin)) -> MessageResponse:
    count = get_auth_service(request).sessions.sweep_expired()
    logger.info("Manual session sweep by admin id=%s expired %d session(s)", current_user.id, count)
    return MessageResponse(message=f"Expired {count} session(s).", count=count)
