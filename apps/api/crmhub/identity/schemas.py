from __future__ import annotations

from datetime import date, datetime, time
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

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
)


HANDLE_PATTERN = r"^[a-zA-Z0-9_]{3,50}$"
URL_PATTERN = r"^https?://"


class ProfileCreate(BaseModel):
    """Signup payload; ``user_id`` defaults to the caller, entity profiles give ``entity_id``/``entity_type``."""

    user_id: UUID | None = None
    entity_id: UUID | None = None
    entity_type: EntityType | None = None
    email: EmailStr | None = None
    handle: str = Field(pattern=HANDLE_PATTERN)
    username: str | None = Field(default=None, min_length=2, max_length=50)
    full_name: str | None = None
    display_name: str | None = Field(default=None, max_length=50)
    avatar_url: str | None = Field(default=None, pattern=URL_PATTERN)
    website: str | None = Field(default=None, pattern=URL_PATTERN)
    bio: str | None = Field(default=None, max_length=500)
    tagline: str | None = Field(default=None, max_length=160)
    birth_date: date | None = None
    gender: Gender | None = None
    pronouns: str | None = Field(default=None, min_length=2, max_length=30)
    terms_accepted: bool = False
    privacy_accepted: bool = False
    marketing_consent: bool = False
    onboarding_platform: Literal["web", "ios", "android", "desktop"] | None = None
    referral_source: str | None = None

    @model_validator(mode="after")
    def _single_owner_form(self) -> "ProfileCreate":
        if (self.entity_id is None) != (self.entity_type is None):
            raise ValueError("entity_id and entity_type must be given together")
        if self.entity_id is not None and self.user_id is not None:
            raise ValueError("a profile belongs to a user or to an entity, not both")
        if self.birth_date is not None and self.birth_date < date(1900, 1, 1):
            raise ValueError("birth_date must be on or after 1900-01-01")
        return self


class ProfileUpdate(BaseModel):
    handle: str | None = Field(default=None, pattern=HANDLE_PATTERN)
    username: str | None = Field(default=None, min_length=2, max_length=50)
    full_name: str | None = None
    display_name: str | None = Field(default=None, max_length=50)
    avatar_url: str | None = Field(default=None, pattern=URL_PATTERN)
    banner_url: str | None = Field(default=None, pattern=URL_PATTERN)
    website: str | None = Field(default=None, pattern=URL_PATTERN)
    bio: str | None = Field(default=None, max_length=500)
    tagline: str | None = Field(default=None, max_length=160)
    birth_date: date | None = None
    gender: Gender | None = None
    pronouns: str | None = Field(default=None, min_length=2, max_length=30)
    version: int


class ProfileStatusUpdate(BaseModel):
    status: StatusType
    version: int


class ProfileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID | None
    entity_id: UUID | None
    entity_type: EntityType | None
    handle: str
    username: str | None
    full_name: str | None
    display_name: str | None
    avatar_url: str | None
    banner_url: str | None
    bio: str | None
    tagline: str | None
    website: str | None
    birth_date: date | str | None = None
    gender: Gender | str | None = None
    pronouns: str | None
    status: StatusType
    is_verified: bool
    verification_level: int
    reputation_score: int
    trust_score: int
    followers_count: int
    following_count: int
    last_active_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None


class PreferencesUpdate(BaseModel):
    preferred_language: str | None = Field(default=None, pattern=r"^[a-z]{2}(-[A-Z]{2})?$")
    timezone: str | None = None
    date_format: DateFormat | None = None
    time_format: TimeFormat | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    email_notifications: bool | None = None
    sms_notifications: bool | None = None
    push_notifications: bool | None = None
    in_app_notifications: bool | None = None
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None
    notification_frequency: NotificationFrequency | None = None
    marketing_emails: bool | None = None
    theme: Theme | None = None
    display_density: DisplayDensity | None = None
    items_per_page: int | None = Field(default=None, ge=10, le=100)
    font_size: Literal["small", "medium", "large"] | None = None
    profile_visibility: ProfileVisibility | None = None
    version: int


class PreferencesRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    preferred_language: str
    timezone: str
    date_format: DateFormat
    time_format: TimeFormat
    currency: str
    email_notifications: bool
    sms_notifications: bool
    push_notifications: bool
    in_app_notifications: bool
    quiet_hours_start: time | None
    quiet_hours_end: time | None
    notification_frequency: NotificationFrequency
    marketing_emails: bool
    theme: Theme
    display_density: DisplayDensity
    items_per_page: int
    font_size: str
    profile_visibility: ProfileVisibility
    version: int


class SecuritySettingsUpdate(BaseModel):
    two_factor_enabled: bool | None = None
    two_factor_method: TwoFactorMethod | None = None
    two_factor_backup_codes: list[str] | None = Field(default=None, max_length=10)
    recovery_email: EmailStr | None = None
    recovery_phone: str | None = Field(default=None, pattern=r"^\+[1-9]\d{1,14}$")
    session_settings: SessionSettings | None = None
    security_preferences: SecurityPreferences | None = None
    version: int


class SecuritySettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    two_factor_enabled: bool
    two_factor_method: TwoFactorMethod | None
    backup_codes_remaining: int
    recovery_email: str | None
    recovery_phone: str | None
    session_settings: SessionSettings
    security_preferences: SecurityPreferences
    failed_login_attempts: int
    locked_until: datetime | None
    last_login_at: datetime | None
    email_verified: bool
    phone_verified: bool
    identity_verified: bool
    version: int


class OnboardingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    current_step: str
    completed_steps: list[str]
    completion_percentage: int
    status: OnboardingStatus
    is_completed: bool
    started_at: datetime
    completed_at: datetime | None
    terms_accepted: bool
    privacy_accepted: bool
    marketing_consent: bool
    onboarding_data: OnboardingData
    version: int


class OnboardingStepRequest(BaseModel):
    step: str = Field(min_length=1)
    status: Literal["completed", "skipped", "in_progress"] = "completed"


class LoginAttemptRequest(BaseModel):
    success: bool
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = None


class LoginResultRead(BaseModel):
    user_id: UUID
    success: bool
    failed_login_attempts: int
    locked_until: datetime | None
    is_locked: bool


class UserActiveRead(BaseModel):
    user_id: UUID
    is_active: bool
