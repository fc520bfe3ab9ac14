from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from crmhub.context import get_correlation_id, set_actor_id
from crmhub.core.auth import AuthUser, get_current_user as get_auth_user
from crmhub.core.database import get_db
from crmhub.identity.models import Profile
from crmhub.platform.persistence import coerce_user_uuid
from crmhub.platform.security.actor import ActorUser
from crmhub.platform.security.context import ADMIN_ROLE_TYPES
from crmhub.rbac.resolver import effective_permission_resolver


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def get_current_user(
    request: Request,
    auth_user: AuthUser = Depends(get_auth_user),
    db: Session = Depends(get_db),
) -> ActorUser:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "correlation_id", None)
    token_roles = {str(role).lower() for role in auth_user.roles}

    permissions: set[str] = set(token_roles)
    roles: set[str] = token_roles & ADMIN_ROLE_TYPES
    profile_id = None

    actor_uuid = coerce_user_uuid(auth_user.sub)
    profile = db.scalar(select(Profile).where(Profile.user_id == actor_uuid, Profile.deleted_at.is_(None)))
    if profile is not None:
        profile_id = profile.id
        effective = effective_permission_resolver.resolve(db, profile.id)
        permissions.update(effective.permissions)
        roles.update(effective.role_types)

    set_actor_id(auth_user.sub)
    return ActorUser(
        user_id=auth_user.sub,
        permissions=permissions,
        roles=roles,
        profile_id=profile_id,
        is_super_admin=bool(roles & ADMIN_ROLE_TYPES),
        correlation_id=correlation_id,
    )


def require_permission(user: ActorUser, permission: str) -> None:
    if not user.can(permission):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")


def require_any_permission(user: ActorUser, permissions: list[str]) -> None:
    if not any(user.can(permission) for permission in permissions):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {' or '.join(permissions)}")


def http_error_response(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=getattr(exc, "context", None) or exc.detail,
    )
