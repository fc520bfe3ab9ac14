from __future__ import annotations

import uuid
from datetime import date, datetime, time

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text, Time, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crmhub.core.database import Base
from crmhub.documents import OnboardingData, SecurityPreferences, SessionSettings
from crmhub.enums import (
    DateFormat,
    DisplayDensity,
    EntityType,
    Gender,
    NotificationFrequency,
    OnboardingStatus,
    ProfileVisibility,
    StatusType,
    Theme,
    TimeFormat,
    TwoFactorMethod,
    db_enum,
)
from crmhub.platform.persistence import (
    AuditedMixin,
    JSONDocument,
    PydanticJSON,
    as_utc,
    audited_table_args,
    live_index,
    live_unique_index,
    pg_check,
    utcnow,
)


class Profile(AuditedMixin, Base):
    """A user's profile, or the profile of a CRM entity (lead, contact, ...)."""

    __tablename__ = "profiles"
    __audit_sensitivity__ = "confidential"

    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    entity_type: Mapped[EntityType | None] = mapped_column(db_enum(EntityType), nullable=True)
    handle: Mapped[str] = mapped_column(String(50), nullable=False)
    username: Mapped[str | None] = mapped_column(String(50), nullable=True)
    full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    banner_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    tagline: Mapped[str | None] = mapped_column(String(160), nullable=True)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[Gender | None] = mapped_column(db_enum(Gender), nullable=True)
    pronouns: Mapped[str | None] = mapped_column(String(30), nullable=True)
    status: Mapped[StatusType] = mapped_column(db_enum(StatusType), nullable=False, default=StatusType.ACTIVE)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reputation_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trust_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    followers_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    following_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    profile_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    profile_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    preferences: Mapped[UserPreferences | None] = relationship(
        "UserPreferences",
        primaryjoin="and_(UserPreferences.user_id == Profile.id, UserPreferences.deleted_at.is_(None))",
        uselist=False,
        viewonly=True,
    )
    security_settings: Mapped[UserSecuritySettings | None] = relationship(
        "UserSecuritySettings",
        primaryjoin="and_(UserSecuritySettings.user_id == Profile.id, UserSecuritySettings.deleted_at.is_(None))",
        uselist=False,
        viewonly=True,
    )
    onboarding: Mapped[UserOnboarding | None] = relationship(
        "UserOnboarding",
        primaryjoin="and_(UserOnboarding.user_id == Profile.id, UserOnboarding.deleted_at.is_(None))",
        uselist=False,
        viewonly=True,
    )

    __table_args__ = audited_table_args(
        CheckConstraint(
            "(user_id IS NOT NULL AND entity_id IS NULL AND entity_type IS NULL) OR "
            "(user_id IS NULL AND entity_id IS NOT NULL AND entity_type IS NOT NULL)",
            name="valid_entity",
        ),
        CheckConstraint("length(handle) >= 3 AND length(handle) <= 50", name="valid_handle"),
        CheckConstraint("username IS NULL OR length(username) >= 2", name="valid_username"),
        CheckConstraint("display_name IS NULL OR length(display_name) <= 50", name="valid_display_name"),
        CheckConstraint("bio IS NULL OR length(bio) <= 500", name="valid_bio_length"),
        CheckConstraint("tagline IS NULL OR length(tagline) <= 160", name="valid_tagline_length"),
        CheckConstraint("birth_date IS NULL OR birth_date >= '1900-01-01'", name="valid_birth_date"),
        CheckConstraint("verification_level BETWEEN 0 AND 5", name="valid_verification_level"),
        CheckConstraint("reputation_score >= 0", name="valid_reputation_score"),
        CheckConstraint("trust_score >= 0 AND trust_score <= 100", name="valid_trust_score"),
        CheckConstraint(
            "followers_count >= 0 AND following_count >= 0 AND profile_views >= 0",
            name="valid_counters",
        ),
        pg_check("handle ~* '^[a-zA-Z0-9_]{3,50}$'", name="valid_handle_format"),
        pg_check(r"username IS NULL OR username ~* '^[a-zA-Z0-9\s]{2,50}$'", name="valid_username_format"),
        pg_check("avatar_url IS NULL OR avatar_url ~* '^https?://'", name="valid_avatar_url"),
        pg_check("banner_url IS NULL OR banner_url ~* '^https?://'", name="valid_banner_url"),
        pg_check("website IS NULL OR website ~* '^https?://'", name="valid_website"),
        pg_check(r"pronouns IS NULL OR pronouns ~* '^[a-zA-Z/\s]{2,30}$'", name="valid_pronouns"),
        live_unique_index("idx_profiles_user_id", "user_id"),
        live_unique_index("idx_profiles_handle", "handle"),
        live_unique_index("idx_profiles_entity", "entity_id", "entity_type"),
        live_index("idx_profiles_username", "username"),
        live_index("idx_profiles_verification", "is_verified", "verification_level"),
        live_index("idx_profiles_last_active", "last_active_at"),
        live_index("idx_profiles_full_name", "full_name"),
    )


class UserPreferences(AuditedMixin, Base):
    __tablename__ = "user_preferences"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    preferred_language: Mapped[str] = mapped_column(String(5), nullable=False, default="en")
    timezone: Mapped[str] = mapped_column(Text, nullable=False, default="UTC")
    date_format: Mapped[DateFormat] = mapped_column(db_enum(DateFormat), nullable=False, default=DateFormat.ISO)
    time_format: Mapped[TimeFormat] = mapped_column(db_enum(TimeFormat), nullable=False, default=TimeFormat.H24)
    number_format: Mapped[str] = mapped_column(Text, nullable=False, default="#,##0.00")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    email_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sms_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    push_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    in_app_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    quiet_hours_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    quiet_hours_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    notification_frequency: Mapped[NotificationFrequency] = mapped_column(
        db_enum(NotificationFrequency),
        nullable=False,
        default=NotificationFrequency.INSTANT,
    )
    weekly_digest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    marketing_emails: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    security_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    product_updates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    theme: Mapped[Theme] = mapped_column(db_enum(Theme), nullable=False, default=Theme.SYSTEM)
    sidebar_collapsed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    display_density: Mapped[DisplayDensity] = mapped_column(
        db_enum(DisplayDensity),
        nullable=False,
        default=DisplayDensity.COMFORTABLE,
    )
    default_dashboard: Mapped[str] = mapped_column(Text, nullable=False, default="home")
    items_per_page: Mapped[int] = mapped_column(Integer, nullable=False, default=25)
    enable_animations: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    high_contrast: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    font_size: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    profile_visibility: Mapped[ProfileVisibility] = mapped_column(
        db_enum(ProfileVisibility),
        nullable=False,
        default=ProfileVisibility.PUBLIC,
    )
    online_status_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    activity_status_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    share_data_for_improvement: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    preferences_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("items_per_page BETWEEN 10 AND 100", name="valid_items_per_page"),
        CheckConstraint(
            "(quiet_hours_start IS NULL AND quiet_hours_end IS NULL) OR "
            "(quiet_hours_start IS NOT NULL AND quiet_hours_end IS NOT NULL)",
            name="valid_quiet_hours",
        ),
        CheckConstraint("font_size IN ('small', 'medium', 'large')", name="valid_font_size"),
        pg_check("preferred_language ~ '^[a-z]{2}(-[A-Z]{2})?$'", name="valid_language"),
        live_unique_index("idx_user_preferences_user_id", "user_id"),
        live_index("idx_user_preferences_theme", "theme"),
        live_index("idx_user_preferences_language", "preferred_language"),
    )


class UserSecuritySettings(AuditedMixin, Base):
    __tablename__ = "user_security_settings"
    __audit_sensitivity__ = "restricted"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    two_factor_method: Mapped[TwoFactorMethod | None] = mapped_column(db_enum(TwoFactorMethod), nullable=True)
    two_factor_backup_codes: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    recovery_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    recovery_phone: Mapped[str | None] = mapped_column(String(16), nullable=True)
    security_questions: Mapped[list[dict]] = mapped_column(JSONDocument, nullable=False, default=list)
    session_settings: Mapped[SessionSettings] = mapped_column(
        PydanticJSON(SessionSettings),
        nullable=False,
        default=lambda: SessionSettings(),
    )
    security_preferences: Mapped[SecurityPreferences] = mapped_column(
        PydanticJSON(SecurityPreferences),
        nullable=False,
        default=lambda: SecurityPreferences(),
    )
    failed_login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_password_change_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    identity_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    security_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("failed_login_attempts >= 0", name="valid_failed_attempts"),
        CheckConstraint(
            "NOT two_factor_enabled OR two_factor_method IS NOT NULL",
            name="valid_two_factor",
        ),
        pg_check("jsonb_array_length(two_factor_backup_codes) <= 10", name="valid_backup_codes"),
        pg_check("jsonb_array_length(security_questions) <= 5", name="valid_security_questions"),
        pg_check(
            "(session_settings->>'max_sessions')::int BETWEEN 1 AND 10 AND "
            "(session_settings->>'session_timeout')::int BETWEEN 300 AND 86400",
            name="valid_session_settings",
        ),
        pg_check(
            "recovery_email IS NULL OR recovery_email ~* '^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\\.[A-Za-z]{2,}$'",
            name="valid_recovery_email",
        ),
        pg_check(r"recovery_phone IS NULL OR recovery_phone ~ '^\+[1-9]\d{1,14}$'", name="valid_recovery_phone"),
        live_unique_index("idx_security_settings_user_id", "user_id"),
        live_index("idx_security_settings_two_factor", "two_factor_enabled"),
    )

    def is_locked(self, at: datetime) -> bool:
        locked_until = as_utc(self.locked_until)
        return locked_until is not None and locked_until > at


class UserOnboarding(AuditedMixin, Base):
    __tablename__ = "user_onboarding"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    current_step: Mapped[str] = mapped_column(Text, nullable=False, default="profile_setup")
    completed_steps: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[OnboardingStatus] = mapped_column(
        db_enum(OnboardingStatus),
        nullable=False,
        default=OnboardingStatus.PENDING,
    )
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=utcnow)
    terms_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    terms_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    terms_version: Mapped[str] = mapped_column(String(16), nullable=False, default="1.0")
    terms_accepted_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    privacy_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    privacy_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    privacy_version: Mapped[str] = mapped_column(String(16), nullable=False, default="1.0")
    privacy_accepted_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    marketing_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    marketing_consent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    onboarding_data: Mapped[OnboardingData] = mapped_column(
        PydanticJSON(OnboardingData),
        nullable=False,
        default=lambda: OnboardingData(),
    )
    onboarding_platform: Mapped[str | None] = mapped_column(String(16), nullable=True)
    device_info: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    referral_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_parameters: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    onboarding_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("completion_percentage BETWEEN 0 AND 100", name="valid_completion_percentage"),
        CheckConstraint(
            "(NOT is_completed AND completed_at IS NULL) OR "
            "(is_completed AND completed_at IS NOT NULL AND completed_at >= started_at)",
            name="valid_completion",
        ),
        CheckConstraint(
            "(NOT terms_accepted AND terms_accepted_at IS NULL) OR "
            "(terms_accepted AND terms_accepted_at IS NOT NULL AND terms_accepted_ip IS NOT NULL)",
            name="valid_terms_acceptance",
        ),
        CheckConstraint(
            "(NOT privacy_accepted AND privacy_accepted_at IS NULL) OR "
            "(privacy_accepted AND privacy_accepted_at IS NOT NULL AND privacy_accepted_ip IS NOT NULL)",
            name="valid_privacy_acceptance",
        ),
        CheckConstraint(
            "(NOT marketing_consent AND marketing_consent_at IS NULL) OR "
            "(marketing_consent AND marketing_consent_at IS NOT NULL)",
            name="valid_marketing_consent",
        ),
        CheckConstraint(
            "onboarding_platform IS NULL OR onboarding_platform IN ('web', 'ios', 'android', 'desktop')",
            name="valid_onboarding_platform",
        ),
        pg_check("jsonb_array_length(completed_steps) <= 10", name="valid_steps_completion"),
        live_unique_index("idx_user_onboarding_user_id", "user_id"),
        live_index("idx_user_onboarding_completion", "is_completed", "completion_percentage"),
        live_index("idx_user_onboarding_step", "current_step"),
    )
