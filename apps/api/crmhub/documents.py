"""Typed JSON configuration documents stored in JSON/JSONB columns.

Each model carries the defaults new rows start with; columns bind them through
``PydanticJSON`` so reads come back as models and writes are validated.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


Weekday = Literal["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"]
WEEKDAYS: tuple[Weekday, ...] = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")


class SessionSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    max_sessions: int = Field(default=5, ge=1, le=10)
    session_timeout: int = Field(default=3600, ge=300, le=86400)
    remember_me: bool = True


class SecurityPreferences(BaseModel):
    model_config = ConfigDict(extra="allow")

    login_notification: bool = True
    suspicious_activity_alert: bool = True
    password_expiry_days: int = Field(default=90, ge=1)


OnboardingStepStatus = Literal["pending", "in_progress", "completed", "skipped"]


class OnboardingStep(BaseModel):
    status: OnboardingStepStatus = "pending"
    required: bool = True
    completed_at: datetime | None = None


def _default_onboarding_steps() -> dict[str, OnboardingStep]:
    return {
        "profile_setup": OnboardingStep(),
        "email_verification": OnboardingStep(),
        "preferences": OnboardingStep(),
        "security_setup": OnboardingStep(),
        "welcome_tour": OnboardingStep(required=False),
    }


class OnboardingData(BaseModel):
    model_config = ConfigDict(extra="allow")

    steps: dict[str, OnboardingStep] = Field(default_factory=_default_onboarding_steps)

    def required_steps(self) -> list[str]:
        return [name for name, step in self.steps.items() if step.required]

    def completion_percentage(self) -> int:
        if not self.steps:
            return 100
        done = sum(1 for step in self.steps.values() if step.status in {"completed", "skipped"})
        return int(done * 100 / len(self.steps))

    def all_required_done(self) -> bool:
        return all(self.steps[name].status == "completed" for name in self.required_steps())


class AllowedHours(BaseModel):
    start: time = time(9, 0)
    end: time = time(17, 0)


class TimeRestriction(BaseModel):
    """Weekday/hour window a grant may be exercised in; evaluated at check time."""

    model_config = ConfigDict(extra="allow")

    allowed_days: list[Weekday] = Field(default_factory=lambda: ["MON", "TUE", "WED", "THU", "FRI"])
    allowed_hours: AllowedHours = Field(default_factory=AllowedHours)

    def allows(self, at: datetime) -> bool:
        if WEEKDAYS[at.weekday()] not in self.allowed_days:
            return False
        moment = at.time().replace(tzinfo=None)
        start, end = self.allowed_hours.start, self.allowed_hours.end
        if start <= end:
            return start <= moment <= end
        # window crosses midnight
        return moment >= start or moment <= end

    @classmethod
    def unrestricted(cls) -> "TimeRestriction":
        return cls(allowed_days=list(WEEKDAYS), allowed_hours=AllowedHours(start=time.min, end=time.max))


class PasswordPolicy(BaseModel):
    model_config = ConfigDict(extra="allow")

    min_length: int = Field(default=8, ge=6, le=128)
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_number: bool = True
    require_special: bool = True
    max_age_days: int = Field(default=90, ge=1)


class AutoRevokeConditions(BaseModel):
    model_config = ConfigDict(extra="allow")

    on_delegator_role_change: bool = True
    on_delegate_leave: bool = True
    on_security_incident: bool = True


class SeasonalDates(BaseModel):
    start: date
    end: date

    @model_validator(mode="after")
    def _ordered(self) -> "SeasonalDates":
        if self.end < self.start:
            raise ValueError("seasonal end date must not precede start date")
        return self


class SeasonalAvailability(BaseModel):
    available_all_year: bool = True
    seasonal_dates: SeasonalDates | None = None

    @model_validator(mode="after")
    def _dates_when_seasonal(self) -> "SeasonalAvailability":
        if not self.available_all_year and self.seasonal_dates is None:
            raise ValueError("seasonal_dates required when not available all year")
        return self


class PipelineStage(BaseModel):
    key: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1)
    order: int = Field(ge=0)
    probability: int = Field(default=0, ge=0, le=100)
    is_won: bool = False
    is_lost: bool = False

    @model_validator(mode="after")
    def _single_terminal_flag(self) -> "PipelineStage":
        if self.is_won and self.is_lost:
            raise ValueError("stage cannot be both won and lost")
        return self


class PipelineStages(BaseModel):
    """Ordered stage list of a pipeline; keys are unique."""

    stages: list[PipelineStage] = Field(default_factory=list)

    @field_validator("stages")
    @classmethod
    def _unique_keys(cls, value: list[PipelineStage]) -> list[PipelineStage]:
        keys = [stage.key for stage in value]
        if len(keys) != len(set(keys)):
            raise ValueError("pipeline stage keys must be unique")
        return sorted(value, key=lambda stage: stage.order)

    def get(self, key: str) -> PipelineStage | None:
        return next((stage for stage in self.stages if stage.key == key), None)


DEFAULT_SALES_STAGES: list[dict[str, object]] = [
    {"key": "prospecting", "name": "Prospecting", "order": 0, "probability": 10},
    {"key": "qualification", "name": "Qualification", "order": 1, "probability": 25},
    {"key": "proposal", "name": "Proposal", "order": 2, "probability": 60},
    {"key": "negotiation", "name": "Negotiation", "order": 3, "probability": 80},
    {"key": "won", "name": "Closed Won", "order": 4, "probability": 100, "is_won": True},
    {"key": "lost", "name": "Closed Lost", "order": 5, "probability": 0, "is_lost": True},
]
