from __future__ import annotations

import uuid
from datetime import datetime, time
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, Numeric, String, Text, Time, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crmhub.core.database import Base
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
    db_enum,
)
from crmhub.platform.persistence import (
    AuditedMixin,
    JSONDocument,
    PydanticJSON,
    audited_table_args,
    live_index,
    live_unique_index,
    pg_check,
)


class ContactPointMixin(AuditedMixin):
    """Columns shared by every polymorphic contact record owned by ``(entity_id, entity_type)``."""

    __audit_sensitivity__ = "confidential"

    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    entity_type: Mapped[EntityType] = mapped_column(db_enum(EntityType), nullable=False)
    status: Mapped[StatusType] = mapped_column(db_enum(StatusType), nullable=False, default=StatusType.ACTIVE)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    last_verification_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    security_level: Mapped[SecurityLevel] = mapped_column(
        db_enum(SecurityLevel),
        nullable=False,
        default=SecurityLevel.STANDARD,
    )
    last_security_audit: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    label: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    purpose: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)

    contact_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    @classmethod
    def contact_table_args(cls, table: str, *args: object) -> tuple[object, ...]:
        return audited_table_args(
            CheckConstraint(
                "(NOT is_verified AND verified_at IS NULL AND verified_by IS NULL) OR "
                "(is_verified AND verified_at IS NOT NULL AND verified_by IS NOT NULL)",
                name="valid_verification",
            ),
            CheckConstraint("risk_score >= 0 AND usage_count >= 0", name="valid_counters"),
            live_unique_index(f"idx_{table}_primary", "entity_id", "entity_type", where="is_primary"),
            live_index(f"idx_{table}_entity", "entity_id", "entity_type"),
            live_index(f"idx_{table}_status", "status"),
            live_index(f"idx_{table}_verification", "is_verified"),
            *args,
        )


class EntityEmail(ContactPointMixin, Base):
    __tablename__ = "entity_emails"

    email: Mapped[str] = mapped_column(Text, nullable=False)
    email_type: Mapped[EmailType] = mapped_column(db_enum(EmailType), nullable=False, default=EmailType.PERSONAL)
    verification_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    verification_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_verification_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    token_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    token_invalidated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_subscribed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    subscription_status: Mapped[EmailSubscriptionStatus] = mapped_column(
        db_enum(EmailSubscriptionStatus),
        nullable=False,
        default=EmailSubscriptionStatus.OPTED_IN,
    )
    unsubscribed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    bounce_status: Mapped[BounceStatus] = mapped_column(db_enum(BounceStatus), nullable=False, default=BounceStatus.NONE)
    last_bounce_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    send_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requires_2fa: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    domain_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = ContactPointMixin.contact_table_args(
        "entity_emails",
        CheckConstraint(
            "verification_token IS NULL OR (token_expires_at IS NOT NULL AND token_expires_at > created_at)",
            name="valid_token_expiry",
        ),
        CheckConstraint(
            "verification_attempts >= 0 AND verification_attempts <= max_verification_attempts",
            name="valid_verification_attempts",
        ),
        pg_check(
            "email ~* '^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\\.[A-Za-z]{2,}$'",
            name="valid_email",
        ),
        live_unique_index("idx_entity_emails_email", "email"),
        live_index("idx_entity_emails_type", "email_type"),
        live_index("idx_entity_emails_subscription", "subscription_status"),
    )


class EntityPhone(ContactPointMixin, Base):
    __tablename__ = "entity_phones"

    phone_number: Mapped[str] = mapped_column(String(16), nullable=False)
    phone_type: Mapped[PhoneType] = mapped_column(db_enum(PhoneType), nullable=False, default=PhoneType.MOBILE)
    country_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    area_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    extension: Mapped[str | None] = mapped_column(String(16), nullable=True)
    timezone: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    verification_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_verification_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    code_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    code_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    code_invalidated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_sms_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_voice_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_whatsapp_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    preferred_contact_method: Mapped[ContactMethod] = mapped_column(
        db_enum(ContactMethod),
        nullable=False,
        default=ContactMethod.SMS,
    )
    do_not_disturb_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    do_not_disturb_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    last_sms_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sms_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_call_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    call_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requires_2fa: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    carrier_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = ContactPointMixin.contact_table_args(
        "entity_phones",
        CheckConstraint(
            "verification_code IS NULL OR (code_expires_at IS NOT NULL AND code_expires_at > created_at)",
            name="valid_code_expiry",
        ),
        CheckConstraint(
            "verification_attempts >= 0 AND verification_attempts <= max_verification_attempts",
            name="valid_verification_attempts",
        ),
        CheckConstraint(
            "(do_not_disturb_start IS NULL AND do_not_disturb_end IS NULL) OR "
            "(do_not_disturb_start IS NOT NULL AND do_not_disturb_end IS NOT NULL)",
            name="valid_do_not_disturb",
        ),
        pg_check(r"phone_number ~ '^\+[1-9]\d{1,14}$'", name="valid_phone_number"),
        live_unique_index("idx_entity_phones_number", "phone_number"),
        live_index("idx_entity_phones_type", "phone_type"),
        live_index("idx_entity_phones_country", "country_code"),
    )


class EntityAddress(ContactPointMixin, Base):
    __tablename__ = "entity_addresses"

    address_type: Mapped[AddressType] = mapped_column(
        db_enum(AddressType),
        nullable=False,
        default=AddressType.RESIDENTIAL,
    )
    street_address: Mapped[str] = mapped_column(Text, nullable=False)
    street_address2: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str] = mapped_column(Text, nullable=False)
    state_province: Mapped[str | None] = mapped_column(Text, nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    country: Mapped[str] = mapped_column(Text, nullable=False)
    building_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    floor_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    unit_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    landmark: Mapped[str | None] = mapped_column(Text, nullable=True)
    district: Mapped[str | None] = mapped_column(Text, nullable=True)
    region: Mapped[str | None] = mapped_column(Text, nullable=True)
    latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 8), nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(11, 8), nullable=True)
    geocoded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    location_accuracy: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_method: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_deliverable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    delivery_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_codes: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferred_delivery_time: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_delivery_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_success_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    failed_delivery_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requires_appointment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seasonal_availability: Mapped[SeasonalAvailability] = mapped_column(
        PydanticJSON(SeasonalAvailability),
        nullable=False,
        default=lambda: SeasonalAvailability(),
    )
    is_formatted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    format_validation_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    validation_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    validation_status: Mapped[AddressValidationStatus] = mapped_column(
        db_enum(AddressValidationStatus),
        nullable=False,
        default=AddressValidationStatus.PENDING,
    )

    __table_args__ = ContactPointMixin.contact_table_args(
        "entity_addresses",
        CheckConstraint(
            "(latitude IS NULL AND longitude IS NULL) OR "
            "(latitude IS NOT NULL AND longitude IS NOT NULL "
            "AND latitude BETWEEN -90 AND 90 AND longitude BETWEEN -180 AND 180)",
            name="valid_coordinates",
        ),
        CheckConstraint(
            "delivery_success_rate IS NULL OR delivery_success_rate BETWEEN 0 AND 100",
            name="valid_delivery_success_rate",
        ),
        pg_check(r"postal_code IS NULL OR postal_code ~* '^[A-Z0-9-\s]{3,10}$'", name="valid_postal_code"),
        live_index("idx_entity_addresses_country", "country"),
        live_index("idx_entity_addresses_city", "city"),
        live_index("idx_entity_addresses_postal", "postal_code"),
    )
