from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from crmhub.api.deps import get_current_user, http_error_response, require_any_permission, require_permission
from crmhub.core.database import get_db
from crmhub.platform.security.actor import ActorUser
from crmhub.rbac.schemas import (
    AssignRoleRequest,
    DelegateRoleRequest,
    DelegationRead,
    EffectivePermissionsRead,
    ExpirySweepRead,
    GrantPermissionRequest,
    PermissionCreate,
    PermissionRead,
    PermissionUpdate,
    RevokeDelegationRequest,
    RevokeRoleRequest,
    RoleAssignmentHistoryRead,
    RoleCheckRead,
    RoleConflictReport,
    RoleCreate,
    RoleHierarchyRead,
    RolePermissionRead,
    RoleRead,
    RoleUpdate,
    SeedResultRead,
    TemporaryRoleRequest,
    UserRoleRead,
)
from crmhub.rbac.service import rbac_service as service


router = APIRouter(prefix="/api/rbac", tags=["rbac"])


def _require_self_or(user: ActorUser, profile_id: uuid.UUID, permission: str) -> None:
    if user.profile_id is not None and user.profile_id == profile_id:
        return
    require_permission(user, permission)


@router.post("/roles", response_model=RoleRead, status_code=status.HTTP_201_CREATED)
def create_role(
    request: Request,
    dto: RoleCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> RoleRead | JSONResponse:
    try:
        require_permission(user, "role.create")
        return service.create_role(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_create_failed")


@router.get("/roles", response_model=list[RoleRead])
def list_roles(
    request: Request,
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[RoleRead] | JSONResponse:
    try:
        require_permission(user, "role.read")
        return service.list_roles(db, include_inactive=include_inactive)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_list_failed")


@router.get("/roles/{role_id}", response_model=RoleRead)
def get_role(
    request: Request,
    role_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> RoleRead | JSONResponse:
    try:
        require_permission(user, "role.read")
        return service.get_role(db, role_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_get_failed")


@router.patch("/roles/{role_id}", response_model=RoleRead)
def update_role(
    request: Request,
    role_id: uuid.UUID,
    dto: RoleUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> RoleRead | JSONResponse:
    try:
        require_permission(user, "role.update")
        return service.update_role(db, user, role_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_update_failed")


@router.delete("/roles/{role_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_role(
    request: Request,
    role_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "role.delete")
        service.delete_role(db, user, role_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_delete_failed")


@router.get("/roles/{role_id}/hierarchy", response_model=RoleHierarchyRead)
def get_role_hierarchy(
    request: Request,
    role_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> RoleHierarchyRead | JSONResponse:
    try:
        require_permission(user, "role.read")
        return service.get_role_hierarchy_level(db, role_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_hierarchy_failed")


@router.get("/roles/{role_id}/permissions", response_model=list[RolePermissionRead])
def list_role_permissions(
    request: Request,
    role_id: uuid.UUID,
    include_inherited: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[RolePermissionRead] | JSONResponse:
    try:
        require_any_permission(user, ["role.read", "permission.read"])
        return service.get_role_permissions(db, role_id, include_inherited=include_inherited)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_permissions_failed")


@router.post("/roles/{role_id}/permissions", response_model=RolePermissionRead, status_code=status.HTTP_201_CREATED)
def grant_permission(
    request: Request,
    role_id: uuid.UUID,
    dto: GrantPermissionRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> RolePermissionRead | JSONResponse:
    try:
        require_permission(user, "permission.assign")
        return service.grant_permission(db, user, role_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_permission_grant_failed")


@router.delete("/roles/{role_id}/permissions/{permission_id}", status_code=status.HTTP_200_OK, response_model=None)
def revoke_permission(
    request: Request,
    role_id: uuid.UUID,
    permission_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "permission.assign")
        service.revoke_permission(db, user, role_id, permission_id)
        return {"status": "revoked"}
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_permission_revoke_failed")


@router.get("/roles/{role_id}/users", response_model=list[UserRoleRead])
def list_role_users(
    request: Request,
    role_id: uuid.UUID,
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[UserRoleRead] | JSONResponse:
    try:
        require_permission(user, "role.read")
        return service.get_users_by_role(db, role_id, include_inactive=include_inactive)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_users_failed")


@router.post("/permissions", response_model=PermissionRead, status_code=status.HTTP_201_CREATED)
def create_permission(
    request: Request,
    dto: PermissionCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> PermissionRead | JSONResponse:
    try:
        require_permission(user, "permission.create")
        return service.create_permission(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_permission_create_failed")


@router.get("/permissions", response_model=list[PermissionRead])
def list_permissions(
    request: Request,
    category: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[PermissionRead] | JSONResponse:
    try:
        require_permission(user, "permission.read")
        return service.list_permissions(db, category=category)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_permission_list_failed")


@router.get("/permissions/{permission_id}", response_model=PermissionRead)
def get_permission(
    request: Request,
    permission_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> PermissionRead | JSONResponse:
    try:
        require_permission(user, "permission.read")
        return service.get_permission(db, permission_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_permission_get_failed")


@router.patch("/permissions/{permission_id}", response_model=PermissionRead)
def update_permission(
    request: Request,
    permission_id: uuid.UUID,
    dto: PermissionUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> PermissionRead | JSONResponse:
    try:
        require_permission(user, "permission.update")
        return service.update_permission(db, user, permission_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_permission_update_failed")


@router.delete("/permissions/{permission_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_permission(
    request: Request,
    permission_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "permission.delete")
        service.delete_permission(db, user, permission_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_permission_delete_failed")


@router.get("/users/{user_id}/roles", response_model=list[UserRoleRead])
def list_user_roles(
    request: Request,
    user_id: uuid.UUID,
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[UserRoleRead] | JSONResponse:
    try:
        _require_self_or(user, user_id, "role.read")
        return service.get_user_roles(db, user_id, include_inactive=include_inactive)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_user_roles_failed")


@router.post("/users/{user_id}/roles", response_model=UserRoleRead, status_code=status.HTTP_201_CREATED)
def assign_role(
    request: Request,
    user_id: uuid.UUID,
    dto: AssignRoleRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UserRoleRead | JSONResponse:
    try:
        require_permission(user, "role.assign")
        return service.assign_role(db, user, user_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_assign_failed")


@router.post("/users/{user_id}/roles/temporary", response_model=UserRoleRead, status_code=status.HTTP_201_CREATED)
def assign_temporary_role(
    request: Request,
    user_id: uuid.UUID,
    dto: TemporaryRoleRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UserRoleRead | JSONResponse:
    try:
        require_permission(user, "role.assign")
        return service.assign_temporary_role(db, user, user_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_temporary_role_failed")


@router.post("/users/{user_id}/roles/{role_id}/revoke", status_code=status.HTTP_200_OK, response_model=None)
def revoke_role(
    request: Request,
    user_id: uuid.UUID,
    role_id: uuid.UUID,
    dto: RevokeRoleRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "role.assign")
        service.revoke_role(db, user, user_id, role_id, reason=dto.reason)
        return {"status": "revoked"}
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_revoke_failed")


@router.get("/users/{user_id}/roles/check", response_model=RoleCheckRead)
def check_user_role(
    request: Request,
    user_id: uuid.UUID,
    role: str = Query(min_length=1),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> RoleCheckRead | JSONResponse:
    try:
        _require_self_or(user, user_id, "role.read")
        return service.check_user_role(db, user_id, role)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_check_failed")


@router.get("/users/{user_id}/roles/{role_id}/conflicts", response_model=RoleConflictReport)
def check_role_conflicts(
    request: Request,
    user_id: uuid.UUID,
    role_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> RoleConflictReport | JSONResponse:
    try:
        require_permission(user, "role.assign")
        return service.check_role_conflicts(db, user, user_id, role_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_conflict_check_failed")


@router.get("/users/{user_id}/role-history", response_model=list[RoleAssignmentHistoryRead])
def role_assignment_history(
    request: Request,
    user_id: uuid.UUID,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[RoleAssignmentHistoryRead] | JSONResponse:
    try:
        require_any_permission(user, ["role.read", "audit.read"])
        return service.get_role_assignment_history(db, user_id, limit=limit)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_history_failed")


@router.get("/users/{user_id}/effective-permissions", response_model=EffectivePermissionsRead)
def effective_permissions(
    request: Request,
    user_id: uuid.UUID,
    at: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EffectivePermissionsRead | JSONResponse:
    try:
        _require_self_or(user, user_id, "permission.read")
        return service.get_effective_permissions(db, user_id, at=at)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_effective_permissions_failed")


@router.post("/user-roles/{user_role_id}/approve", response_model=UserRoleRead)
def approve_user_role(
    request: Request,
    user_role_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UserRoleRead | JSONResponse:
    try:
        require_permission(user, "role.approve")
        return service.approve_user_role(db, user, user_role_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_role_approve_failed")


@router.post("/delegations", response_model=DelegationRead, status_code=status.HTTP_201_CREATED)
def delegate_role(
    request: Request,
    dto: DelegateRoleRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DelegationRead | JSONResponse:
    try:
        require_permission(user, "role.delegate")
        return service.delegate_role(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_delegation_create_failed")


@router.get("/users/{user_id}/delegations", response_model=list[DelegationRead])
def list_delegations(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[DelegationRead] | JSONResponse:
    try:
        _require_self_or(user, user_id, "role.read")
        return service.list_delegations(db, user_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_delegation_list_failed")


@router.post("/delegations/{delegation_id}/approve", response_model=DelegationRead)
def approve_delegation(
    request: Request,
    delegation_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DelegationRead | JSONResponse:
    try:
        require_permission(user, "role.approve")
        return service.approve_delegation(db, user, delegation_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_delegation_approve_failed")


@router.post("/delegations/{delegation_id}/revoke", response_model=DelegationRead)
def revoke_delegation(
    request: Request,
    delegation_id: uuid.UUID,
    dto: RevokeDelegationRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DelegationRead | JSONResponse:
    try:
        require_any_permission(user, ["role.delegate", "role.assign"])
        return service.revoke_delegation(db, user, delegation_id, dto.reason)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_delegation_revoke_failed")


@router.post("/maintenance/expire-grants", response_model=ExpirySweepRead)
def expire_grants(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ExpirySweepRead | JSONResponse:
    try:
        require_permission(user, "system.maintenance")
        return service.expire_lapsed_grants(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_expiry_sweep_failed")


@router.post("/maintenance/seed", response_model=SeedResultRead)
def seed_defaults(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SeedResultRead | JSONResponse:
    try:
        require_permission(user, "system.maintenance")
        return service.initialize_default_roles(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "rbac_seed_failed")
