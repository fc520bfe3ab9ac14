"""Change history reads, user activity, security events and compliance tracking."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import delete, select, text
from sqlalchemy.orm import Session

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
from crmhub.context import get_correlation_id
from crmhub.enums import ActivityType, AuditCategory, AuditStatus, SecuritySeverity
from crmhub.models.audit import AuditLog, ComplianceLog, SecurityEvent, UserActivity
from crmhub.platform.persistence import AUDIT_PURGE_INFO_KEY, as_utc, utcnow
from crmhub.platform.security.actor import ActorUser
from crmhub.services.common import bind, check_version, commit_or_conflict, not_found, publish, unprocessable


logger = logging.getLogger("crmhub.audit")


class AuditService:
    def list_entity_history(
        self,
        session: Session,
        table_name: str,
        record_id: uuid.UUID,
        *,
        limit: int = 100,
    ) -> list[AuditLogRead]:
        rows = session.scalars(
            select(AuditLog)
            .where(AuditLog.table_name == table_name, AuditLog.record_id == record_id)
            .order_by(AuditLog.performed_at.desc(), AuditLog.created_at.desc())
            .limit(limit)
        ).all()
        return [AuditLogRead.model_validate(row) for row in rows]

    def log_activity(self, session: Session, actor_user: ActorUser, dto: ActivityCreate) -> ActivityRead:
        if actor_user.profile_id is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="caller has no profile")
        bind(session, actor_user)
        activity = self.stage_activity(
            session,
            user_id=actor_user.profile_id,
            activity_type=dto.activity_type,
            entity_type=dto.entity_type,
            entity_id=dto.entity_id,
            description=dto.description,
            category=dto.category,
            status=dto.status,
            ip_address=dto.ip_address,
            user_agent=dto.user_agent,
            session_id=dto.session_id,
            metadata=dto.metadata,
            tags=dto.tags,
            duration_ms=dto.duration_ms,
        )
        commit_or_conflict(session, "activity could not be recorded")
        session.refresh(activity)
        return ActivityRead.model_validate(activity)

    def stage_activity(
        self,
        session: Session,
        *,
        user_id: uuid.UUID,
        activity_type: ActivityType,
        entity_type: str,
        entity_id: uuid.UUID | None,
        description: str,
        category: AuditCategory = AuditCategory.USER,
        status: AuditStatus = AuditStatus.COMPLETED,
        ip_address: str | None = None,
        user_agent: str | None = None,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        tags: list[str] | None = None,
        duration_ms: int | None = None,
    ) -> UserActivity:
        """Add an activity row to the caller's transaction."""

        activity = UserActivity(
            user_id=user_id,
            activity_type=activity_type,
            status=status,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            category=category,
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            request_id=get_correlation_id(),
            activity_metadata=metadata or {},
            tags=tags or [],
            duration_ms=duration_ms,
        )
        session.add(activity)
        return activity

    def list_user_activities(
        self,
        session: Session,
        user_id: uuid.UUID,
        *,
        activity_type: ActivityType | None = None,
        since: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ActivityRead]:
        stmt = select(UserActivity).where(UserActivity.user_id == user_id, UserActivity.deleted_at.is_(None))
        if activity_type is not None:
            stmt = stmt.where(UserActivity.activity_type == activity_type)
        if since is not None:
            stmt = stmt.where(UserActivity.created_at >= since)
        rows = session.scalars(stmt.order_by(UserActivity.created_at.desc()).offset(offset).limit(limit)).all()
        return [ActivityRead.model_validate(row) for row in rows]

    def log_security_event(self, session: Session, actor_user: ActorUser, dto: SecurityEventCreate) -> SecurityEventRead:
        bind(session, actor_user)
        event = self.stage_security_event(
            session,
            event_type=dto.event_type,
            severity=dto.severity,
            user_id=dto.user_id,
            source=dto.source,
            description=dto.description,
            ip_address=dto.ip_address,
            user_agent=dto.user_agent,
            metadata=dto.metadata,
            evidence=dto.evidence,
        )
        publish(
            "audit.security_event.logged",
            actor_user,
            {"id": str(event.id), "event_type": event.event_type, "severity": str(event.severity)},
        )
        commit_or_conflict(session, "security event could not be recorded")
        session.refresh(event)
        return SecurityEventRead.model_validate(event)

    def stage_security_event(
        self,
        session: Session,
        *,
        event_type: str,
        severity: SecuritySeverity,
        source: str,
        description: str,
        user_id: uuid.UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        metadata: dict[str, Any] | None = None,
        evidence: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            id=uuid.uuid4(),
            event_type=event_type,
            severity=severity,
            status=AuditStatus.PENDING,
            user_id=user_id,
            source=source,
            description=description,
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=get_correlation_id(),
            event_metadata=metadata or {},
            evidence=evidence,
        )
        session.add(event)
        logger.warning(
            "audit.security_event",
            extra={"event_type": event_type, "severity": str(severity), "user_id": str(user_id) if user_id else None},
        )
        return event

    def list_security_events(
        self,
        session: Session,
        *,
        unresolved_only: bool = False,
        severity: SecuritySeverity | None = None,
        user_id: uuid.UUID | None = None,
        limit: int = 100,
    ) -> list[SecurityEventRead]:
        stmt = select(SecurityEvent).where(SecurityEvent.deleted_at.is_(None))
        if unresolved_only:
            stmt = stmt.where(SecurityEvent.resolved_at.is_(None))
        if severity is not None:
            stmt = stmt.where(SecurityEvent.severity == severity)
        if user_id is not None:
            stmt = stmt.where(SecurityEvent.user_id == user_id)
        rows = session.scalars(stmt.order_by(SecurityEvent.created_at.desc()).limit(limit)).all()
        return [SecurityEventRead.model_validate(row) for row in rows]

    def resolve_security_event(
        self,
        session: Session,
        actor_user: ActorUser,
        event_id: uuid.UUID,
        dto: SecurityEventResolve,
    ) -> SecurityEventRead:
        bind(session, actor_user)
        event = session.scalar(
            select(SecurityEvent).where(SecurityEvent.id == event_id, SecurityEvent.deleted_at.is_(None))
        )
        if event is None:
            raise not_found("security event")
        check_version(event, dto.version, "security_events")
        if event.resolved_at is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="security event already resolved")

        event.resolved_at = utcnow()
        event.resolved_by = actor_user.actor_uuid
        event.resolution_notes = dto.resolution_notes
        event.status = dto.status
        publish("audit.security_event.resolved", actor_user, {"id": str(event.id)})
        commit_or_conflict(session, "security event could not be resolved")
        session.refresh(event)
        return SecurityEventRead.model_validate(event)

    def record_compliance_assessment(
        self,
        session: Session,
        actor_user: ActorUser,
        dto: ComplianceAssessmentCreate,
    ) -> ComplianceLogRead:
        bind(session, actor_user)
        assessed_at = dto.assessed_at or utcnow()
        if dto.due_date is not None and as_utc(dto.due_date) <= as_utc(assessed_at):
            raise unprocessable("due_date must be after assessed_at")

        entry = ComplianceLog(
            requirement_id=dto.requirement_id,
            status=dto.status,
            framework=dto.framework,
            assessed_at=assessed_at,
            assessed_by=actor_user.actor_uuid,
            evidence=dto.evidence,
            findings=dto.findings,
            risk_level=dto.risk_level,
            impact_level=dto.impact_level,
            remediation_plan=dto.remediation_plan,
            due_date=dto.due_date,
        )
        session.add(entry)
        commit_or_conflict(session, "compliance assessment could not be recorded")
        session.refresh(entry)
        return ComplianceLogRead.model_validate(entry)

    def list_compliance_items(
        self,
        session: Session,
        *,
        framework: str | None = None,
        open_only: bool = False,
    ) -> list[ComplianceLogRead]:
        stmt = select(ComplianceLog).where(ComplianceLog.deleted_at.is_(None))
        if framework is not None:
            stmt = stmt.where(ComplianceLog.framework == framework)
        if open_only:
            stmt = stmt.where(ComplianceLog.completed_at.is_(None))
        rows = session.scalars(stmt.order_by(ComplianceLog.assessed_at.desc())).all()
        return [ComplianceLogRead.model_validate(row) for row in rows]

    def complete_compliance_item(
        self,
        session: Session,
        actor_user: ActorUser,
        item_id: uuid.UUID,
        dto: ComplianceCompleteRequest,
    ) -> ComplianceLogRead:
        bind(session, actor_user)
        entry = session.scalar(select(ComplianceLog).where(ComplianceLog.id == item_id, ComplianceLog.deleted_at.is_(None)))
        if entry is None:
            raise not_found("compliance item")
        check_version(entry, dto.version, "compliance_logs")
        if entry.completed_at is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="compliance item already completed")

        now = utcnow()
        if now <= as_utc(entry.assessed_at):  # type: ignore[operator]
            raise unprocessable("completion must follow the assessment")
        entry.completed_at = now
        entry.completed_by = actor_user.actor_uuid
        entry.status = dto.status
        if dto.findings is not None:
            entry.findings = list(dto.findings)
        commit_or_conflict(session, "compliance item could not be completed")
        session.refresh(entry)
        return ComplianceLogRead.model_validate(entry)

    def purge_expired_audit_logs(self, session: Session, *, at: datetime | None = None) -> PurgeResultRead:
        """Physically drop audit rows past their ``expires_at``; the one delete the audit trail allows."""

        cutoff = at or utcnow()
        session.info[AUDIT_PURGE_INFO_KEY] = True
        try:
            if session.get_bind().dialect.name == "postgresql":
                session.execute(text("SELECT set_config('crmhub.audit_purge', 'on', true)"))
            result = session.execute(
                delete(AuditLog)
                .where(AuditLog.expires_at.is_not(None), AuditLog.expires_at <= cutoff)
                .execution_options(synchronize_session=False)
            )
            session.commit()
        finally:
            session.info.pop(AUDIT_PURGE_INFO_KEY, None)

        purged = result.rowcount or 0
        logger.info("audit.purged", extra={"purged": purged, "cutoff": cutoff.isoformat()})
        return PurgeResultRead(purged=purged, cutoff=cutoff)


audit_service = AuditService()
