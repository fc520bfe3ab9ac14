from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from crmhub.api.deps import get_current_user, http_error_response, require_permission
from crmhub.core.database import get_db
from crmhub.enums import StatusType
from crmhub.identity.schemas import (
    LoginAttemptRequest,
    LoginResultRead,
    OnboardingRead,
    OnboardingStepRequest,
    PreferencesRead,
    PreferencesUpdate,
    ProfileCreate,
    ProfileRead,
    ProfileStatusUpdate,
    ProfileUpdate,
    SecuritySettingsRead,
    SecuritySettingsUpdate,
    UserActiveRead,
)
from crmhub.identity.service import profile_service as service
from crmhub.platform.security.actor import ActorUser


router = APIRouter(prefix="/api/identity", tags=["identity"])


@router.post("/profiles", response_model=ProfileRead, status_code=status.HTTP_201_CREATED)
def create_profile(
    request: Request,
    dto: ProfileCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        client_ip = request.client.host if request.client else None
        return service.create_profile(db, user, dto, client_ip=client_ip)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_profile_create_failed")


@router.get("/profiles", response_model=list[ProfileRead])
def search_profiles(
    request: Request,
    q: str | None = Query(default=None, max_length=100),
    status_filter: StatusType | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.search_profiles(db, user, query=q, status_filter=status_filter, limit=limit, offset=offset)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_profile_search_failed")


@router.get("/profiles/by-handle/{handle}", response_model=ProfileRead)
def get_profile_by_handle(
    request: Request,
    handle: str,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.get_profile_by_handle(db, user, handle)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_profile_get_failed")


@router.get("/profiles/{profile_id}", response_model=ProfileRead)
def get_profile(
    request: Request,
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.get_profile(db, user, profile_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_profile_get_failed")


@router.patch("/profiles/{profile_id}", response_model=ProfileRead)
def update_profile(
    request: Request,
    profile_id: uuid.UUID,
    dto: ProfileUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.update_profile(db, user, profile_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_profile_update_failed")


@router.post("/profiles/{profile_id}/status", response_model=ProfileRead)
def update_status(
    request: Request,
    profile_id: uuid.UUID,
    dto: ProfileStatusUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.update_status(db, user, profile_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_profile_status_failed")


@router.delete("/profiles/{profile_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_profile(
    request: Request,
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        service.soft_delete_profile(db, user, profile_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_profile_delete_failed")


@router.post("/profiles/{profile_id}/restore", response_model=ProfileRead)
def restore_profile(
    request: Request,
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.restore_profile(db, user, profile_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_profile_restore_failed")


@router.get("/users/{user_id}/active", response_model=UserActiveRead)
def is_user_active(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        if user_id != user.actor_uuid:
            require_permission(user, "user.read")
        return service.is_user_active(db, user_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_user_active_failed")


@router.post("/users/{user_id}/logins", response_model=LoginResultRead)
def record_login(
    request: Request,
    user_id: uuid.UUID,
    dto: LoginAttemptRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        if user_id != user.actor_uuid:
            require_permission(user, "system.monitor")
        if dto.ip_address is None and request.client is not None:
            dto = dto.model_copy(update={"ip_address": request.client.host})
        return service.record_login(db, user, user_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_login_record_failed")


@router.get("/profiles/{profile_id}/preferences", response_model=PreferencesRead)
def get_preferences(
    request: Request,
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.get_preferences(db, user, profile_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_preferences_get_failed")


@router.patch("/profiles/{profile_id}/preferences", response_model=PreferencesRead)
def update_preferences(
    request: Request,
    profile_id: uuid.UUID,
    dto: PreferencesUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.update_preferences(db, user, profile_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_preferences_update_failed")


@router.get("/profiles/{profile_id}/security", response_model=SecuritySettingsRead)
def get_security_settings(
    request: Request,
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.get_security_settings(db, user, profile_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_security_get_failed")


@router.patch("/profiles/{profile_id}/security", response_model=SecuritySettingsRead)
def update_security_settings(
    request: Request,
    profile_id: uuid.UUID,
    dto: SecuritySettingsUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.update_security_settings(db, user, profile_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_security_update_failed")


@router.get("/profiles/{profile_id}/onboarding", response_model=OnboardingRead)
def get_onboarding(
    request: Request,
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.get_onboarding(db, user, profile_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_onboarding_get_failed")


@router.post("/profiles/{profile_id}/onboarding/steps", response_model=OnboardingRead)
def advance_onboarding(
    request: Request,
    profile_id: uuid.UUID,
    dto: OnboardingStepRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.advance_onboarding(db, user, profile_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "identity_onboarding_advance_failed")
