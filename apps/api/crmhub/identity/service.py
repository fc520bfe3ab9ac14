"""Profiles and their 1:1 satellites: preferences, security settings and onboarding."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from crmhub import audit
from crmhub.auditing.service import audit_service
from crmhub.contacts.models import EntityEmail
from crmhub.contacts.service import contact_point_service
from crmhub.core.config import get_settings
from crmhub.enums import ActivityType, AuditCategory, AuditStatus, EntityType, OnboardingStatus, SecuritySeverity, StatusType
from crmhub.identity.models import Profile, UserOnboarding, UserPreferences, UserSecuritySettings
from crmhub.identity.repository import ProfileRepository
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
from crmhub.platform.persistence import as_utc, utcnow
from crmhub.platform.security.actor import ActorUser, to_auth_context
from crmhub.platform.security.fls import validate_fls_write
from crmhub.rbac.service import rbac_service
from crmhub.services.common import (
    bind,
    check_version,
    commit_or_conflict,
    flush_or_conflict,
    not_found,
    publish,
    security_errors_as_http,
    unprocessable,
)


logger = logging.getLogger("crmhub.identity")

SATELLITE_MODELS = (UserPreferences, UserSecuritySettings, UserOnboarding)


class ProfileService:
    repository = ProfileRepository()

    def create_profile(
        self,
        session: Session,
        actor_user: ActorUser,
        dto: ProfileCreate,
        *,
        client_ip: str | None = None,
    ) -> ProfileRead:
        """Sign a user up: profile, satellites, primary email and the default role in one transaction."""

        bind(session, actor_user)
        if dto.entity_id is not None:
            user_id = None
            if not actor_user.can("user.create"):
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: user.create")
        else:
            user_id = dto.user_id or actor_user.actor_uuid
            if user_id != actor_user.actor_uuid and not actor_user.can("user.create"):
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: user.create")
            if dto.email is None:
                raise unprocessable("email is required for user profiles")
        if (dto.terms_accepted or dto.privacy_accepted) and not client_ip:
            raise unprocessable("accepting terms requires the client ip address")

        if self._live_profile_by_handle(session, dto.handle) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="handle already taken")
        if user_id is not None and self._live_profile_by_user(session, user_id) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="profile already exists")
        email = str(dto.email).strip().lower() if dto.email is not None else None
        if email is not None and session.scalar(
            select(EntityEmail.id).where(func.lower(EntityEmail.email) == email, EntityEmail.deleted_at.is_(None))
        ):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="email address already in use")

        profile = Profile(
            user_id=user_id,
            entity_id=dto.entity_id,
            entity_type=dto.entity_type,
            **dto.model_dump(
                include={
                    "handle",
                    "username",
                    "full_name",
                    "display_name",
                    "avatar_url",
                    "website",
                    "bio",
                    "tagline",
                    "birth_date",
                    "gender",
                    "pronouns",
                }
            ),
        )
        session.add(profile)
        flush_or_conflict(session, "handle already taken")

        now = utcnow()
        session.add(UserPreferences(user_id=profile.id))
        session.add(UserSecuritySettings(user_id=profile.id))
        session.add(
            UserOnboarding(
                user_id=profile.id,
                terms_accepted=dto.terms_accepted,
                terms_accepted_at=now if dto.terms_accepted else None,
                terms_accepted_ip=client_ip if dto.terms_accepted else None,
                privacy_accepted=dto.privacy_accepted,
                privacy_accepted_at=now if dto.privacy_accepted else None,
                privacy_accepted_ip=client_ip if dto.privacy_accepted else None,
                marketing_consent=dto.marketing_consent,
                marketing_consent_at=now if dto.marketing_consent else None,
                onboarding_platform=dto.onboarding_platform,
                referral_source=dto.referral_source,
            )
        )
        if email is not None:
            contact_point_service.add_in_transaction(
                session,
                "emails",
                entity_type=EntityType.USER_PROFILE,
                entity_id=profile.id,
                values={"email": email, "is_primary": True},
            )
        flush_or_conflict(session, "email address already in use")

        if user_id is not None:
            rbac_service.assign_default_role(session, actor_user, profile)

        publish(
            "identity.profile.created",
            actor_user,
            {"profile_id": str(profile.id), "user_id": str(user_id) if user_id else None, "handle": profile.handle},
        )
        commit_or_conflict(session, "profile already exists")
        session.refresh(profile)
        logger.info("identity.profile_created", extra={"profile_id": str(profile.id)})
        return self._to_read(profile, actor_user)

    def get_profile(self, session: Session, actor_user: ActorUser, profile_id: uuid.UUID) -> ProfileRead:
        return self._to_read(self._get_visible(session, actor_user, Profile.id == profile_id), actor_user)

    def get_profile_by_handle(self, session: Session, actor_user: ActorUser, handle: str) -> ProfileRead:
        return self._to_read(self._get_visible(session, actor_user, Profile.handle == handle), actor_user)

    def search_profiles(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        query: str | None = None,
        status_filter: StatusType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProfileRead]:
        stmt = select(Profile).where(Profile.deleted_at.is_(None))
        if query:
            pattern = f"%{query.strip()}%"
            stmt = stmt.where(
                or_(
                    Profile.handle.ilike(pattern),
                    Profile.full_name.ilike(pattern),
                    Profile.display_name.ilike(pattern),
                    Profile.username.ilike(pattern),
                )
            )
        if status_filter is not None:
            stmt = stmt.where(Profile.status == status_filter)
        stmt = self.repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(Profile.handle).offset(offset).limit(limit)).all()
        return [self._to_read(row, actor_user) for row in rows]

    def update_profile(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        dto: ProfileUpdate,
    ) -> ProfileRead:
        bind(session, actor_user)
        profile = self._get_visible(session, actor_user, Profile.id == profile_id)
        changes = dto.model_dump(exclude_unset=True, exclude={"version"})
        self._authorize_write(session, actor_user, profile, changes, "update")
        check_version(profile, dto.version, "profiles")

        new_handle = changes.get("handle")
        if new_handle is not None and new_handle != profile.handle:
            if self._live_profile_by_handle(session, new_handle) is not None:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="handle already taken")
        self._apply(profile, changes)

        publish("identity.profile.updated", actor_user, {"profile_id": str(profile.id), "fields": sorted(changes)})
        commit_or_conflict(session, "handle already taken")
        session.refresh(profile)
        return self._to_read(profile, actor_user)

    def update_status(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        dto: ProfileStatusUpdate,
    ) -> ProfileRead:
        bind(session, actor_user)
        profile = self._get_visible(session, actor_user, Profile.id == profile_id)
        if not actor_user.can("user.update"):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: user.update")
        check_version(profile, dto.version, "profiles")
        previous = profile.status
        profile.status = dto.status
        publish(
            "identity.profile.status_changed",
            actor_user,
            {"profile_id": str(profile.id), "from": str(previous), "to": str(dto.status)},
        )
        commit_or_conflict(session, "profile status could not be changed")
        session.refresh(profile)
        return self._to_read(profile, actor_user)

    def soft_delete_profile(self, session: Session, actor_user: ActorUser, profile_id: uuid.UUID) -> None:
        bind(session, actor_user)
        profile = self._get_visible(session, actor_user, Profile.id == profile_id)
        self._authorize_write(session, actor_user, profile, {}, "delete")

        now = utcnow()
        actor_id = actor_user.actor_uuid
        profile.soft_delete(actor_id, at=now)
        for satellite in self._satellites(session, profile.id, deleted=False):
            satellite.soft_delete(actor_id, at=now)
        removed_contacts = contact_point_service.soft_delete_for_entity(
            session,
            actor_id,
            EntityType.USER_PROFILE,
            profile.id,
            at=now,
        )
        publish(
            "identity.profile.deleted",
            actor_user,
            {"profile_id": str(profile.id), "handle": profile.handle, "contacts_removed": removed_contacts},
        )
        commit_or_conflict(session, "profile could not be deleted")

    def restore_profile(self, session: Session, actor_user: ActorUser, profile_id: uuid.UUID) -> ProfileRead:
        bind(session, actor_user)
        profile = session.scalar(select(Profile).where(Profile.id == profile_id, Profile.deleted_at.is_not(None)))
        if profile is None:
            raise not_found("profile")
        owns = profile.user_id is not None and profile.user_id == actor_user.actor_uuid
        if not owns and not actor_user.can("user.restore"):
            raise not_found("profile")

        if self._live_profile_by_handle(session, profile.handle) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="handle was reused by another profile")
        if profile.user_id is not None and self._live_profile_by_user(session, profile.user_id) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="profile already exists")

        marker = as_utc(profile.deleted_at)
        profile.restore()
        for satellite in self._satellites(session, profile.id, deleted=True):
            if as_utc(satellite.deleted_at) == marker:
                satellite.restore()
        contact_point_service.restore_for_entity(
            session,
            EntityType.USER_PROFILE,
            profile.id,
            deleted_at=marker,  # type: ignore[arg-type]
        )
        publish("identity.profile.restored", actor_user, {"profile_id": str(profile.id)})
        commit_or_conflict(session, "a restored contact record is already in use")
        session.refresh(profile)
        return self._to_read(profile, actor_user)

    def is_user_active(self, session: Session, user_id: uuid.UUID, *, at: datetime | None = None) -> UserActiveRead:
        moment = at or utcnow()
        profile = self._live_profile_by_user(session, user_id)
        if profile is None or profile.status != StatusType.ACTIVE:
            return UserActiveRead(user_id=user_id, is_active=False)
        settings_row = self._satellite(session, UserSecuritySettings, profile.id)
        locked = settings_row is not None and settings_row.is_locked(moment)
        return UserActiveRead(user_id=user_id, is_active=not locked)

    def record_login(
        self,
        session: Session,
        actor_user: ActorUser,
        user_id: uuid.UUID,
        dto: LoginAttemptRequest,
    ) -> LoginResultRead:
        """Count a login outcome; repeated failures lock the account and raise a security event."""

        bind(session, actor_user)
        profile = self._live_profile_by_user(session, user_id)
        if profile is None:
            raise not_found("profile")
        settings_row = self._satellite(session, UserSecuritySettings, profile.id)
        if settings_row is None:
            raise not_found("security settings")

        config = get_settings()
        now = utcnow()
        if settings_row.is_locked(now):
            audit.record(
                actor_user_id=str(user_id),
                entity_type="identity.login",
                entity_id=str(profile.id),
                action="login.blocked",
                before=None,
                after={"locked_until": as_utc(settings_row.locked_until).isoformat()},  # type: ignore[union-attr]
                category="security",
            )
            raise HTTPException(status_code=status.HTTP_423_LOCKED, detail="account locked")
        if settings_row.locked_until is not None:
            # lapsed lockout: the next window starts from zero
            settings_row.failed_login_attempts = 0
            settings_row.locked_until = None

        if dto.success:
            settings_row.failed_login_attempts = 0
            settings_row.locked_until = None
            settings_row.last_login_at = now
            profile.last_active_at = now
        else:
            settings_row.failed_login_attempts += 1
            if settings_row.failed_login_attempts >= config.login_max_failed_attempts:
                settings_row.locked_until = now + timedelta(minutes=config.login_lockout_minutes)
                audit_service.stage_security_event(
                    session,
                    event_type="account_locked",
                    severity=SecuritySeverity.HIGH,
                    user_id=profile.id,
                    source="identity.login",
                    description=f"account locked after {settings_row.failed_login_attempts} failed login attempts",
                    ip_address=dto.ip_address,
                    user_agent=dto.user_agent,
                    metadata={"failed_login_attempts": settings_row.failed_login_attempts},
                )

        audit_service.stage_activity(
            session,
            user_id=profile.id,
            activity_type=ActivityType.LOGIN,
            entity_type=str(EntityType.USER_PROFILE),
            entity_id=profile.id,
            description="login succeeded" if dto.success else "login failed",
            category=AuditCategory.SECURITY,
            status=AuditStatus.COMPLETED if dto.success else AuditStatus.FAILED,
            ip_address=dto.ip_address,
            user_agent=dto.user_agent,
        )
        audit.record(
            actor_user_id=str(user_id),
            entity_type="identity.login",
            entity_id=str(profile.id),
            action="login.succeeded" if dto.success else "login.failed",
            before=None,
            after={"failed_login_attempts": settings_row.failed_login_attempts, "ip_address": dto.ip_address},
            category="security",
        )
        commit_or_conflict(session, "login could not be recorded")
        session.refresh(settings_row)
        return LoginResultRead(
            user_id=user_id,
            success=dto.success,
            failed_login_attempts=settings_row.failed_login_attempts,
            locked_until=settings_row.locked_until,
            is_locked=settings_row.is_locked(now),
        )

    def get_preferences(self, session: Session, actor_user: ActorUser, profile_id: uuid.UUID) -> PreferencesRead:
        row = self._owned_satellite(session, actor_user, UserPreferences, profile_id, write=False)
        return PreferencesRead.model_validate(row)

    def update_preferences(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        dto: PreferencesUpdate,
    ) -> PreferencesRead:
        bind(session, actor_user)
        row = self._owned_satellite(session, actor_user, UserPreferences, profile_id, write=True)
        check_version(row, dto.version, "user_preferences")
        changes = dto.model_dump(exclude_unset=True, exclude={"version"})
        start = changes.get("quiet_hours_start", row.quiet_hours_start)
        end = changes.get("quiet_hours_end", row.quiet_hours_end)
        if (start is None) != (end is None):
            raise unprocessable("quiet hours need both a start and an end")
        self._apply(row, changes)
        commit_or_conflict(session, "preferences could not be updated")
        session.refresh(row)
        return PreferencesRead.model_validate(row)

    def get_security_settings(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
    ) -> SecuritySettingsRead:
        row = self._owned_satellite(session, actor_user, UserSecuritySettings, profile_id, write=False)
        return self._to_security_read(row)

    def update_security_settings(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        dto: SecuritySettingsUpdate,
    ) -> SecuritySettingsRead:
        bind(session, actor_user)
        row = self._owned_satellite(session, actor_user, UserSecuritySettings, profile_id, write=True)
        check_version(row, dto.version, "user_security_settings")
        changes = dto.model_dump(exclude_unset=True, exclude={"version", "session_settings", "security_preferences"})
        enabled = changes.get("two_factor_enabled", row.two_factor_enabled)
        method = changes.get("two_factor_method", row.two_factor_method)
        if enabled and method is None:
            raise unprocessable("two factor authentication needs a method")
        if "two_factor_backup_codes" in changes and changes["two_factor_backup_codes"] is None:
            changes["two_factor_backup_codes"] = []
        self._apply(row, changes)
        if dto.session_settings is not None:
            row.session_settings = dto.session_settings.model_copy()
        if dto.security_preferences is not None:
            row.security_preferences = dto.security_preferences.model_copy()
        publish("identity.security_settings.updated", actor_user, {"profile_id": str(profile_id)})
        commit_or_conflict(session, "security settings could not be updated")
        session.refresh(row)
        return self._to_security_read(row)

    def get_onboarding(self, session: Session, actor_user: ActorUser, profile_id: uuid.UUID) -> OnboardingRead:
        row = self._owned_satellite(session, actor_user, UserOnboarding, profile_id, write=False)
        return OnboardingRead.model_validate(row)

    def advance_onboarding(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        dto: OnboardingStepRequest,
    ) -> OnboardingRead:
        bind(session, actor_user)
        row = self._owned_satellite(session, actor_user, UserOnboarding, profile_id, write=True)
        data = row.onboarding_data.model_copy(deep=True)
        step = data.steps.get(dto.step)
        if step is None:
            raise unprocessable(f"unknown onboarding step: {dto.step}")
        if dto.status == "skipped" and step.required:
            raise unprocessable("required onboarding steps cannot be skipped")

        now = utcnow()
        step.status = dto.status
        step.completed_at = now if dto.status == "completed" else None
        row.onboarding_data = data
        row.completed_steps = [name for name, item in data.steps.items() if item.status == "completed"]
        row.completion_percentage = data.completion_percentage()
        row.last_active_at = now
        pending = [name for name, item in data.steps.items() if item.status in {"pending", "in_progress"}]
        row.current_step = pending[0] if pending else dto.step

        if data.all_required_done():
            if not row.is_completed:
                row.is_completed = True
                row.completed_at = max(now, as_utc(row.started_at))  # type: ignore[type-var]
                publish("identity.onboarding.completed", actor_user, {"profile_id": str(profile_id)})
            row.status = OnboardingStatus.COMPLETED
        else:
            row.is_completed = False
            row.completed_at = None
            row.status = OnboardingStatus.IN_PROGRESS
        commit_or_conflict(session, "onboarding could not be updated")
        session.refresh(row)
        return OnboardingRead.model_validate(row)

    def _get_visible(self, session: Session, actor_user: ActorUser, criterion: Any) -> Profile:
        stmt = select(Profile).where(criterion, Profile.deleted_at.is_(None))
        stmt = self.repository.apply_scope_query(stmt, to_auth_context(actor_user))
        profile = session.scalar(stmt)
        if profile is None:
            raise not_found("profile")
        return profile

    def _authorize_write(
        self,
        session: Session,
        actor_user: ActorUser,
        profile: Profile,
        changes: dict[str, Any],
        action: str,
    ) -> None:
        ctx = to_auth_context(actor_user)
        with security_errors_as_http():
            if self._owns(profile, actor_user):
                owned_changes = {k: v for k, v in changes.items() if k not in self.repository.sensitive_fields}
                self.repository.validate_write_security(owned_changes, ctx, record=profile, action=action, session=session)
            elif actor_user.can(f"user.{action}"):
                validate_fls_write(self.repository.resource, changes, ctx)
            else:
                self.repository.validate_write_security(changes, ctx, record=profile, action=action, session=session)

    def _owned_satellite(
        self,
        session: Session,
        actor_user: ActorUser,
        model: Any,
        profile_id: uuid.UUID,
        *,
        write: bool,
    ) -> Any:
        profile = session.scalar(select(Profile).where(Profile.id == profile_id, Profile.deleted_at.is_(None)))
        if profile is None:
            raise not_found("profile")
        if not self._owns(profile, actor_user):
            permission = "user.update" if write else "user.read"
            if not actor_user.can(permission):
                raise not_found("profile")
        row = self._satellite(session, model, profile.id)
        if row is None:
            raise not_found(model.__tablename__.replace("_", " "))
        return row

    @staticmethod
    def _owns(profile: Profile, actor_user: ActorUser) -> bool:
        if profile.user_id is not None and profile.user_id == actor_user.actor_uuid:
            return True
        return actor_user.profile_id is not None and profile.id == actor_user.profile_id

    @staticmethod
    def _satellite(session: Session, model: Any, profile_id: uuid.UUID) -> Any:
        return session.scalar(select(model).where(model.user_id == profile_id, model.deleted_at.is_(None)))

    @staticmethod
    def _satellites(session: Session, profile_id: uuid.UUID, *, deleted: bool) -> list[Any]:
        rows: list[Any] = []
        for model in SATELLITE_MODELS:
            predicate = model.deleted_at.is_not(None) if deleted else model.deleted_at.is_(None)
            rows.extend(session.scalars(select(model).where(model.user_id == profile_id, predicate)))
        return rows

    @staticmethod
    def _live_profile_by_handle(session: Session, handle: str) -> Profile | None:
        return session.scalar(select(Profile).where(Profile.handle == handle, Profile.deleted_at.is_(None)))

    @staticmethod
    def _live_profile_by_user(session: Session, user_id: uuid.UUID) -> Profile | None:
        return session.scalar(select(Profile).where(Profile.user_id == user_id, Profile.deleted_at.is_(None)))

    @staticmethod
    def _apply(row: Any, changes: dict[str, Any]) -> None:
        columns = row.__table__.columns
        for key, value in changes.items():
            if value is None and not columns[key].nullable:
                continue
            setattr(row, key, value)

    def _to_read(self, profile: Profile, actor_user: ActorUser) -> ProfileRead:
        payload = ProfileRead.model_validate(profile).model_dump()
        secured = self.repository.apply_read_security_for(profile, payload, to_auth_context(actor_user))
        return ProfileRead.model_validate(secured)

    @staticmethod
    def _to_security_read(row: UserSecuritySettings) -> SecuritySettingsRead:
        return SecuritySettingsRead(
            id=row.id,
            user_id=row.user_id,
            two_factor_enabled=row.two_factor_enabled,
            two_factor_method=row.two_factor_method,
            backup_codes_remaining=len(row.two_factor_backup_codes or []),
            recovery_email=row.recovery_email,
            recovery_phone=row.recovery_phone,
            session_settings=row.session_settings,
            security_preferences=row.security_preferences,
            failed_login_attempts=row.failed_login_attempts,
            locked_until=row.locked_until,
            last_login_at=row.last_login_at,
            email_verified=row.email_verified,
            phone_verified=row.phone_verified,
            identity_verified=row.identity_verified,
            version=row.version,
        )


profile_service = ProfileService()
