from __future__ import annotations

from datetime import datetime, time
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from crmhub.documents import SeasonalAvailability
from crmhub.enums import (
    AddressType,
    AddressValidationStatus,
    BounceStatus,
    ContactMethod,
    EmailSubscriptionStatus,
    EmailType,
    EntityType,
    PhoneType,
    SecurityLevel,
    StatusType,
)


E164_PATTERN = r"^\+[1-9]\d{1,14}$"
POSTAL_CODE_PATTERN = r"^[A-Za-z0-9\-\s]{3,10}$"


class ContactPointCreate(BaseModel):
    entity_id: UUID
    entity_type: EntityType
    is_primary: bool = False
    is_public: bool = False
    priority: int = Field(default=0, ge=0)
    security_level: SecurityLevel = SecurityLevel.STANDARD
    label: str | None = None
    tags: list[str] = Field(default_factory=list)
    purpose: list[str] = Field(default_factory=list)


class ContactPointUpdate(BaseModel):
    status: StatusType | None = None
    is_public: bool | None = None
    priority: int | None = Field(default=None, ge=0)
    security_level: SecurityLevel | None = None
    label: str | None = None
    tags: list[str] | None = None
    purpose: list[str] | None = None
    version: int


class ContactPointRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_id: UUID
    entity_type: EntityType
    status: StatusType
    is_primary: bool
    is_public: bool
    priority: int
    is_verified: bool
    verified_at: datetime | None
    security_level: SecurityLevel
    label: str | None
    tags: list[str]
    purpose: list[str]
    version: int
    created_at: datetime
    updated_at: datetime


class EmailCreate(ContactPointCreate):
    email: EmailStr
    email_type: EmailType = EmailType.PERSONAL
    is_subscribed: bool = True
    requires_2fa: bool = False


class EmailUpdate(ContactPointUpdate):
    email: EmailStr | None = None
    email_type: EmailType | None = None
    is_subscribed: bool | None = None
    subscription_status: EmailSubscriptionStatus | None = None
    requires_2fa: bool | None = None


class EmailRead(ContactPointRead):
    email: str
    email_type: EmailType
    is_subscribed: bool
    subscription_status: EmailSubscriptionStatus
    bounce_status: BounceStatus
    verification_attempts: int
    max_verification_attempts: int
    requires_2fa: bool


class PhoneCreate(ContactPointCreate):
    phone_number: str = Field(pattern=E164_PATTERN)
    phone_type: PhoneType = PhoneType.MOBILE
    country_code: str | None = Field(default=None, max_length=8)
    area_code: str | None = Field(default=None, max_length=8)
    extension: str | None = Field(default=None, max_length=16)
    timezone: str | None = None
    is_sms_enabled: bool = True
    is_voice_enabled: bool = True
    is_whatsapp_enabled: bool = False
    preferred_contact_method: ContactMethod = ContactMethod.SMS
    do_not_disturb_start: time | None = None
    do_not_disturb_end: time | None = None

    @model_validator(mode="after")
    def _dnd_pair(self) -> "PhoneCreate":
        if (self.do_not_disturb_start is None) != (self.do_not_disturb_end is None):
            raise ValueError("do_not_disturb_start and do_not_disturb_end must be set together")
        return self


class PhoneUpdate(ContactPointUpdate):
    phone_number: str | None = Field(default=None, pattern=E164_PATTERN)
    phone_type: PhoneType | None = None
    country_code: str | None = Field(default=None, max_length=8)
    area_code: str | None = Field(default=None, max_length=8)
    extension: str | None = Field(default=None, max_length=16)
    timezone: str | None = None
    is_sms_enabled: bool | None = None
    is_voice_enabled: bool | None = None
    is_whatsapp_enabled: bool | None = None
    preferred_contact_method: ContactMethod | None = None
    do_not_disturb_start: time | None = None
    do_not_disturb_end: time | None = None


class PhoneRead(ContactPointRead):
    phone_number: str
    phone_type: PhoneType
    country_code: str | None
    area_code: str | None
    extension: str | None
    timezone: str | None
    is_sms_enabled: bool
    is_voice_enabled: bool
    is_whatsapp_enabled: bool
    preferred_contact_method: ContactMethod
    do_not_disturb_start: time | None
    do_not_disturb_end: time | None
    verification_attempts: int
    max_verification_attempts: int


class AddressCreate(ContactPointCreate):
    address_type: AddressType = AddressType.RESIDENTIAL
    street_address: str = Field(min_length=1)
    street_address2: str | None = None
    city: str = Field(min_length=1)
    state_province: str | None = None
    postal_code: str | None = Field(default=None, pattern=POSTAL_CODE_PATTERN)
    country: str = Field(min_length=2)
    building_name: str | None = None
    floor_number: str | None = None
    unit_number: str | None = None
    landmark: str | None = None
    district: str | None = None
    region: str | None = None
    latitude: Decimal | None = Field(default=None, ge=-90, le=90)
    longitude: Decimal | None = Field(default=None, ge=-180, le=180)
    is_deliverable: bool = True
    delivery_instructions: str | None = None
    access_codes: str | None = None
    preferred_delivery_time: str | None = None
    requires_appointment: bool = False
    seasonal_availability: SeasonalAvailability = Field(default_factory=SeasonalAvailability)

    @model_validator(mode="after")
    def _coordinates_pair(self) -> "AddressCreate":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be set together")
        return self


class AddressUpdate(ContactPointUpdate):
    address_type: AddressType | None = None
    street_address: str | None = Field(default=None, min_length=1)
    street_address2: str | None = None
    city: str | None = Field(default=None, min_length=1)
    state_province: str | None = None
    postal_code: str | None = Field(default=None, pattern=POSTAL_CODE_PATTERN)
    country: str | None = Field(default=None, min_length=2)
    latitude: Decimal | None = Field(default=None, ge=-90, le=90)
    longitude: Decimal | None = Field(default=None, ge=-180, le=180)
    is_deliverable: bool | None = None
    delivery_instructions: str | None = None
    access_codes: str | None = None
    preferred_delivery_time: str | None = None
    requires_appointment: bool | None = None
    seasonal_availability: SeasonalAvailability | None = None


class AddressRead(ContactPointRead):
    address_type: AddressType
    street_address: str
    street_address2: str | None
    city: str
    state_province: str | None
    postal_code: str | None
    country: str
    latitude: Decimal | None
    longitude: Decimal | None
    is_deliverable: bool
    delivery_instructions: str | None
    requires_appointment: bool
    seasonal_availability: SeasonalAvailability
    validation_status: AddressValidationStatus


class VerificationChallengeRead(BaseModel):
    id: UUID
    kind: str
    challenge: str | None
    expires_at: datetime | None
    attempts_remaining: int


class ConfirmVerificationRequest(BaseModel):
    code: str | None = Field(default=None, min_length=4, max_length=128)
    verification_method: str | None = None
    notes: str | None = None
