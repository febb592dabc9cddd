"""
api/routes/v1/lockout.py -- Account lockout endpoints.

Routes:
  GET  /api/v1/lockout/policy              -- public lockout thresholds
  GET  /api/v1/lockout                     -- currently locked accounts (admin only)
  GET  /api/v1/lockout/{user_id}           -- one account's status (self or admin)
  POST /api/v1/lockout/{user_id}/unlock    -- clear a lock (admin only)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    LockedAccountRow,
    LockedAccountsResponse,
    LockoutPolicyResponse,
    LockoutStatusResponse,
    MessageResponse,
)
from auth.dependencies import get_auth_service, get_current_user, require_admin
from auth.models import Role, UserCredential
from core.errors import NotFound, PermissionDenied

router = APIRouter()


@router.get("/lockout/policy", response_model=LockoutPolicyResponse)
def lockout_policy(request: Request) -> LockoutPolicyResponse:
    return LockoutPolicyResponse(**get_auth_service(request).lockouts.describe())


@router.get("/lockout", response_model=LockedAccountsResponse)
def locked_accounts(request: Request, current_user: UserCredential = Depends(require_admin)) -> LockedAccountsResponse:
    accounts = get_auth_service(request).lockouts.locked_accounts()
    return LockedAccountsResponse(accounts=[LockedAccountRow.from_domain(a) for a in accounts], count=len(accounts))


@router.get("/lockout/{user_id}", response_model=LockoutStatusResponse)
def lockout_status(
    request: Request,
    user_id: int,
    current_user: UserCredential = Depends(get_current_user),
) -> LockoutStatusResponse:
    if user_id != current_user.id and current_user.role != Role.admin.value:
        raise PermissionDenied("You may only view your own lockout status.")
    return LockoutStatusResponse.from_domain(get_auth_service(request).lockouts.status(user_id))


@router.post("/lockout/{user_id}/unlock", response_model=MessageResponse)
def unlock(request: Request, user_id: int, current_user: UserCredential = Depends(require_admin)) -> MessageResponse:
    service = get_auth_service(request)
    if service.credentials.get_by_id(user_id) is None:
        raise NotFound("User not found.")
    service.unlock(user_id, actor_id=current_user.id)
    return MessageResponse(message="Account unlocked.")
