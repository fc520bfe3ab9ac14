from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from crmhub.api.deps import get_current_user, http_error_response, require_permission
from crmhub.auditing.schemas import (
    ActivityCreate,
    ActivityRead,
    AuditLogRead,
    ComplianceAssessmentCreate,
    ComplianceCompleteRequest,
    ComplianceLogRead,
    PurgeResultRead,
    SecurityEventCreate,
    SecurityEventRead,
    SecurityEventResolve,
)
from crmhub.auditing.service import audit_service as service
from crmhub.core.database import get_db
from crmhub.enums import ActivityType, SecuritySeverity
from crmhub.platform.security.actor import ActorUser


router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/history/{table_name}/{record_id}", response_model=list[AuditLogRead])
def list_entity_history(
    request: Request,
    table_name: str,
    record_id: uuid.UUID,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "audit.read")
        return service.list_entity_history(db, table_name, record_id, limit=limit)
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_history_failed")


@router.post("/activities", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def log_activity(
    request: Request,
    dto: ActivityCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.log_activity(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_activity_create_failed")


@router.get("/users/{user_id}/activities", response_model=list[ActivityRead])
def list_user_activities(
    request: Request,
    user_id: uuid.UUID,
    activity_type: ActivityType | None = Query(default=None),
    since: datetime | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        if user.profile_id != user_id:
            require_permission(user, "audit.read")
        return service.list_user_activities(
            db,
            user_id,
            activity_type=activity_type,
            since=since,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_activity_list_failed")


@router.get("/security-events", response_model=list[SecurityEventRead])
def list_security_events(
    request: Request,
    unresolved_only: bool = Query(default=False),
    severity: SecuritySeverity | None = Query(default=None),
    user_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "system.monitor")
        return service.list_security_events(
            db,
            unresolved_only=unresolved_only,
            severity=severity,
            user_id=user_id,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_security_event_list_failed")


@router.post("/security-events", response_model=SecurityEventRead, status_code=status.HTTP_201_CREATED)
def log_security_event(
    request: Request,
    dto: SecurityEventCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "system.monitor")
        return service.log_security_event(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_security_event_create_failed")


@router.post("/security-events/{event_id}/resolve", response_model=SecurityEventRead)
def resolve_security_event(
    request: Request,
    event_id: uuid.UUID,
    dto: SecurityEventResolve,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "system.monitor")
        return service.resolve_security_event(db, user, event_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_security_event_resolve_failed")


@router.get("/compliance", response_model=list[ComplianceLogRead])
def list_compliance_items(
    request: Request,
    framework: str | None = Query(default=None),
    open_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "audit.read")
        return service.list_compliance_items(db, framework=framework, open_only=open_only)
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_compliance_list_failed")


@router.post("/compliance", response_model=ComplianceLogRead, status_code=status.HTTP_201_CREATED)
def record_compliance_assessment(
    request: Request,
    dto: ComplianceAssessmentCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "system.config")
        return service.record_compliance_assessment(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_compliance_create_failed")


@router.post("/compliance/{item_id}/complete", response_model=ComplianceLogRead)
def complete_compliance_item(
    request: Request,
    item_id: uuid.UUID,
    dto: ComplianceCompleteRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "system.config")
        return service.complete_compliance_item(db, user, item_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_compliance_complete_failed")


@router.post("/maintenance/purge", response_model=PurgeResultRead)
def purge_expired_audit_logs(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "system.maintenance")
        return service.purge_expired_audit_logs(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_purge_failed")
