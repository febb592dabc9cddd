"""
api/routes/v1/audit.py -- Read-only audit trail endpoints.

Routes:
  GET /api/v1/audit                                    -- filtered, paginated (admin only)
  GET /api/v1/audit/my                                 -- caller's recent entries
  GET /api/v1/audit/users/{user_id}                    -- a user's entries (admin only)
  GET /api/v1/audit/resources/{resource}/{resource_id} -- one resource's history (admin only)

There is no write endpoint: entries are appended by the services that act.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse, AuditListResponse, AuditPageResponse, AuditStatusEnum
from auth.dependencies import get_auth_service, get_current_user, require_admin
from auth.models import UserCredential

router = APIRouter()


def _listing(entries) -> AuditListResponse:
    return AuditListResponse(logs=[AuditEntryResponse.from_domain(e) for e in entries], count=len(entries))


@router.get("/audit", response_model=AuditPageResponse)
def query_audit(
    request: Request,
    user_id: Optional[int] = Query(default=None),
    action: Optional[str] = Query(default=None, max_length=100),
    resource: Optional[str] = Query(default=None, max_length=100),
    status: Optional[AuditStatusEnum] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    current_user: UserCredential = Depends(require_admin),
) -> AuditPageResponse:
    result = get_auth_service(request).audit.query(
        user_id=user_id,
        action=action,
        resource=resource,
        status=status.value if status else None,
        start=start,
        end=end,
        page=page,
        limit=limit,
    )
    return AuditPageResponse.from_domain(result)


@router.get("/audit/my", response_model=AuditListResponse)
def my_audit(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    current_user: UserCredential = Depends(get_current_user),
) -> AuditListResponse:
    return _listing(get_auth_service(request).audit.recent_for_user(current_user.id, limit=limit))


@router.get("/audit/users/{user_id}", response_model=AuditListResponse)
def user_audit(
    request: Request,
    user_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    current_user: UserCredential = Depends(require_admin),
) -> AuditListResponse:
    return _listing(get_auth_service(request).audit.recent_for_user(user_id, limit=limit))


@router.get("/audit/resources/{resource}/{resource_id}", response_model=AuditListResponse)
def resource_audit(
    request: Request,
    resource: str,
    resource_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    current_user: UserCredential = Depends(require_admin),
) -> AuditListResponse:
    return _listing(get_auth_service(request).audit.history_for_resource(resource, resource_id, limit=limit))
