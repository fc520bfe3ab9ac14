"""create identity and contact point tables

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19 09:10:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "202610190002"
down_revision: str | None = "202610190001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

LIVE = "deleted_at IS NULL"
JSONB = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _enum(name: str) -> sa.types.TypeEngine:
    return sa.Text().with_variant(postgresql.ENUM(name=name, create_type=False), "postgresql")


def _pg_check(sqltext: str, name: str) -> sa.CheckConstraint:
    return sa.CheckConstraint(sqltext, name=name).ddl_if(dialect="postgresql")


def _audited_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_by", sa.Uuid(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.Uuid(), nullable=True),
    ]


def _audited_constraints() -> list[sa.SchemaItem]:
    return [
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("version > 0", name="valid_version"),
        sa.CheckConstraint(
            "(deleted_at IS NULL AND deleted_by IS NULL) OR (deleted_at IS NOT NULL AND deleted_by IS NOT NULL)",
            name="valid_deletion",
        ),
        sa.CheckConstraint("updated_at >= created_at", name="valid_update"),
    ]


def _live_index(name: str, table: str, columns: list[str], *, unique: bool = False, where: str | None = None) -> None:
    predicate = LIVE if where is None else f"{where} AND {LIVE}"
    op.create_index(
        name,
        table,
        columns,
        unique=unique,
        postgresql_where=sa.text(predicate),
        sqlite_where=sa.text(predicate),
    )


def _contact_point_columns() -> list[sa.Column]:
    return [
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", _enum("entity_type"), nullable=False),
        sa.Column("status", _enum("status_type"), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.Uuid(), nullable=True),
        sa.Column("last_verification_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        sa.Column("security_level", _enum("security_level"), nullable=False),
        sa.Column("last_security_audit", sa.DateTime(timezone=True), nullable=True),
        sa.Column("risk_score", sa.Integer(), nullable=False),
        sa.Column("label", sa.Text(), nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("purpose", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
    ]


def _contact_point_constraints() -> list[sa.SchemaItem]:
    return [
        sa.CheckConstraint(
            "(NOT is_verified AND verified_at IS NULL AND verified_by IS NULL) OR "
            "(is_verified AND verified_at IS NOT NULL AND verified_by IS NOT NULL)",
            name="valid_verification",
        ),
        sa.CheckConstraint("risk_score >= 0 AND usage_count >= 0", name="valid_counters"),
    ]


def _contact_point_indexes(table: str) -> None:
    _live_index(f"idx_{table}_primary", table, ["entity_id", "entity_type"], unique=True, where="is_primary")
    _live_index(f"idx_{table}_entity", table, ["entity_id", "entity_type"])
    _live_index(f"idx_{table}_status", table, ["status"])
    _live_index(f"idx_{table}_verification", table, ["is_verified"])


def upgrade() -> None:
    op.create_table(
        "profiles",
        *_audited_columns(),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("entity_id", sa.Uuid(), nullable=True),
        sa.Column("entity_type", _enum("entity_type"), nullable=True),
        sa.Column("handle", sa.String(50), nullable=False),
        sa.Column("username", sa.String(50), nullable=True),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("display_name", sa.String(50), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("banner_url", sa.Text(), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("tagline", sa.String(160), nullable=True),
        sa.Column("website", sa.Text(), nullable=True),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("gender", _enum("gender"), nullable=True),
        sa.Column("pronouns", sa.String(30), nullable=True),
        sa.Column("status", _enum("status_type"), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("verification_level", sa.Integer(), nullable=False),
        sa.Column("reputation_score", sa.Integer(), nullable=False),
        sa.Column("trust_score", sa.Integer(), nullable=False),
        sa.Column("followers_count", sa.Integer(), nullable=False),
        sa.Column("following_count", sa.Integer(), nullable=False),
        sa.Column("profile_views", sa.Integer(), nullable=False),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.CheckConstraint(
            "(user_id IS NOT NULL AND entity_id IS NULL AND entity_type IS NULL) OR "
            "(user_id IS NULL AND entity_id IS NOT NULL AND entity_type IS NOT NULL)",
            name="valid_entity",
        ),
        sa.CheckConstraint("length(handle) >= 3 AND length(handle) <= 50", name="valid_handle"),
        sa.CheckConstraint("username IS NULL OR length(username) >= 2", name="valid_username"),
        sa.CheckConstraint("display_name IS NULL OR length(display_name) <= 50", name="valid_display_name"),
        sa.CheckConstraint("bio IS NULL OR length(bio) <= 500", name="valid_bio_length"),
        sa.CheckConstraint("tagline IS NULL OR length(tagline) <= 160", name="valid_tagline_length"),
        sa.CheckConstraint("birth_date IS NULL OR birth_date >= '1900-01-01'", name="valid_birth_date"),
        sa.CheckConstraint("verification_level BETWEEN 0 AND 5", name="valid_verification_level"),
        sa.CheckConstraint("reputation_score >= 0", name="valid_reputation_score"),
        sa.CheckConstraint("trust_score >= 0 AND trust_score <= 100", name="valid_trust_score"),
        sa.CheckConstraint(
            "followers_count >= 0 AND following_count >= 0 AND profile_views >= 0",
            name="valid_counters",
        ),
        _pg_check("handle ~* '^[a-zA-Z0-9_]{3,50}$'", name="valid_handle_format"),
        _pg_check(r"username IS NULL OR username ~* '^[a-zA-Z0-9\s]{2,50}$'", name="valid_username_format"),
        _pg_check("avatar_url IS NULL OR avatar_url ~* '^https?://'", name="valid_avatar_url"),
        _pg_check("banner_url IS NULL OR banner_url ~* '^https?://'", name="valid_banner_url"),
        _pg_check("website IS NULL OR website ~* '^https?://'", name="valid_website"),
        _pg_check(r"pronouns IS NULL OR pronouns ~* '^[a-zA-Z/\s]{2,30}$'", name="valid_pronouns"),
    )
    _live_index("idx_profiles_user_id", "profiles", ["user_id"], unique=True)
    _live_index("idx_profiles_handle", "profiles", ["handle"], unique=True)
    _live_index("idx_profiles_entity", "profiles", ["entity_id", "entity_type"], unique=True)
    _live_index("idx_profiles_username", "profiles", ["username"])
    _live_index("idx_profiles_verification", "profiles", ["is_verified", "verification_level"])
    _live_index("idx_profiles_last_active", "profiles", ["last_active_at"])
    _live_index("idx_profiles_full_name", "profiles", ["full_name"])

    op.create_table(
        "user_preferences",
        *_audited_columns(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("preferred_language", sa.String(5), nullable=False),
        sa.Column("timezone", sa.Text(), nullable=False),
        sa.Column("date_format", _enum("date_format"), nullable=False),
        sa.Column("time_format", _enum("time_format"), nullable=False),
        sa.Column("number_format", sa.Text(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("email_notifications", sa.Boolean(), nullable=False),
        sa.Column("sms_notifications", sa.Boolean(), nullable=False),
        sa.Column("push_notifications", sa.Boolean(), nullable=False),
        sa.Column("in_app_notifications", sa.Boolean(), nullable=False),
        sa.Column("quiet_hours_start", sa.Time(), nullable=True),
        sa.Column("quiet_hours_end", sa.Time(), nullable=True),
        sa.Column("notification_frequency", _enum("notification_frequency"), nullable=False),
        sa.Column("weekly_digest", sa.Boolean(), nullable=False),
        sa.Column("marketing_emails", sa.Boolean(), nullable=False),
        sa.Column("security_alerts", sa.Boolean(), nullable=False),
        sa.Column("product_updates", sa.Boolean(), nullable=False),
        sa.Column("theme", _enum("theme"), nullable=False),
        sa.Column("sidebar_collapsed", sa.Boolean(), nullable=False),
        sa.Column("display_density", _enum("display_density"), nullable=False),
        sa.Column("default_dashboard", sa.Text(), nullable=False),
        sa.Column("items_per_page", sa.Integer(), nullable=False),
        sa.Column("enable_animations", sa.Boolean(), nullable=False),
        sa.Column("high_contrast", sa.Boolean(), nullable=False),
        sa.Column("font_size", sa.String(10), nullable=False),
        sa.Column("profile_visibility", _enum("profile_visibility"), nullable=False),
        sa.Column("online_status_visible", sa.Boolean(), nullable=False),
        sa.Column("activity_status_visible", sa.Boolean(), nullable=False),
        sa.Column("share_data_for_improvement", sa.Boolean(), nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.CheckConstraint("items_per_page BETWEEN 10 AND 100", name="valid_items_per_page"),
        sa.CheckConstraint(
            "(quiet_hours_start IS NULL AND quiet_hours_end IS NULL) OR "
            "(quiet_hours_start IS NOT NULL AND quiet_hours_end IS NOT NULL)",
            name="valid_quiet_hours",
        ),
        sa.CheckConstraint("font_size IN ('small', 'medium', 'large')", name="valid_font_size"),
        _pg_check("preferred_language ~ '^[a-z]{2}(-[A-Z]{2})?$'", name="valid_language"),
    )
    _live_index("idx_user_preferences_user_id", "user_preferences", ["user_id"], unique=True)
    _live_index("idx_user_preferences_theme", "user_preferences", ["theme"])
    _live_index("idx_user_preferences_language", "user_preferences", ["preferred_language"])

    op.create_table(
        "user_security_settings",
        *_audited_columns(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("two_factor_enabled", sa.Boolean(), nullable=False),
        sa.Column("two_factor_method", _enum("two_factor_method"), nullable=True),
        sa.Column("two_factor_backup_codes", JSONB, nullable=False),
        sa.Column("recovery_email", sa.Text(), nullable=True),
        sa.Column("recovery_phone", sa.String(16), nullable=True),
        sa.Column("security_questions", JSONB, nullable=False),
        sa.Column("session_settings", JSONB, nullable=False),
        sa.Column("security_preferences", JSONB, nullable=False),
        sa.Column("failed_login_attempts", sa.Integer(), nullable=False),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_password_change_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=False),
        sa.Column("phone_verified", sa.Boolean(), nullable=False),
        sa.Column("identity_verified", sa.Boolean(), nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.CheckConstraint("failed_login_attempts >= 0", name="valid_failed_attempts"),
        sa.CheckConstraint("NOT two_factor_enabled OR two_factor_method IS NOT NULL", name="valid_two_factor"),
        _pg_check("jsonb_array_length(two_factor_backup_codes) <= 10", name="valid_backup_codes"),
        _pg_check("jsonb_array_length(security_questions) <= 5", name="valid_security_questions"),
        _pg_check(
            "(session_settings->>'max_sessions')::int BETWEEN 1 AND 10 AND "
            "(session_settings->>'session_timeout')::int BETWEEN 300 AND 86400",
            name="valid_session_settings",
        ),
        _pg_check(
            "recovery_email IS NULL OR recovery_email ~* '^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\\.[A-Za-z]{2,}$'",
            name="valid_recovery_email",
        ),
        _pg_check(r"recovery_phone IS NULL OR recovery_phone ~ '^\+[1-9]\d{1,14}$'", name="valid_recovery_phone"),
    )
    _live_index("idx_security_settings_user_id", "user_security_settings", ["user_id"], unique=True)
    _live_index("idx_security_settings_two_factor", "user_security_settings", ["two_factor_enabled"])

    op.create_table(
        "user_onboarding",
        *_audited_columns(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("current_step", sa.Text(), nullable=False),
        sa.Column("completed_steps", JSONB, nullable=False),
        sa.Column("completion_percentage", sa.Integer(), nullable=False),
        sa.Column("status", _enum("onboarding_status"), nullable=False),
        sa.Column("is_completed", sa.Boolean(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("terms_accepted", sa.Boolean(), nullable=False),
        sa.Column("terms_accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("terms_version", sa.String(16), nullable=False),
        sa.Column("terms_accepted_ip", sa.String(45), nullable=True),
        sa.Column("privacy_accepted", sa.Boolean(), nullable=False),
        sa.Column("privacy_accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("privacy_version", sa.String(16), nullable=False),
        sa.Column("privacy_accepted_ip", sa.String(45), nullable=True),
        sa.Column("marketing_consent", sa.Boolean(), nullable=False),
        sa.Column("marketing_consent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("onboarding_data", JSONB, nullable=False),
        sa.Column("onboarding_platform", sa.String(16), nullable=True),
        sa.Column("device_info", JSONB, nullable=False),
        sa.Column("referral_source", sa.Text(), nullable=True),
        sa.Column("utm_parameters", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.CheckConstraint("completion_percentage BETWEEN 0 AND 100", name="valid_completion_percentage"),
        sa.CheckConstraint(
            "(NOT is_completed AND completed_at IS NULL) OR "
            "(is_completed AND completed_at IS NOT NULL AND completed_at >= started_at)",
            name="valid_completion",
        ),
        sa.CheckConstraint(
            "(NOT terms_accepted AND terms_accepted_at IS NULL) OR "
            "(terms_accepted AND terms_accepted_at IS NOT NULL AND terms_accepted_ip IS NOT NULL)",
            name="valid_terms_acceptance",
        ),
        sa.CheckConstraint(
            "(NOT privacy_accepted AND privacy_accepted_at IS NULL) OR "
            "(privacy_accepted AND privacy_accepted_at IS NOT NULL AND privacy_accepted_ip IS NOT NULL)",
            name="valid_privacy_acceptance",
        ),
        sa.CheckConstraint(
            "(NOT marketing_consent AND marketing_consent_at IS NULL) OR "
            "(marketing_consent AND marketing_consent_at IS NOT NULL)",
            name="valid_marketing_consent",
        ),
        sa.CheckConstraint(
            "onboarding_platform IS NULL OR onboarding_platform IN ('web', 'ios', 'android', 'desktop')",
            name="valid_onboarding_platform",
        ),
        _pg_check("jsonb_array_length(completed_steps) <= 10", name="valid_steps_completion"),
    )
    _live_index("idx_user_onboarding_user_id", "user_onboarding", ["user_id"], unique=True)
    _live_index("idx_user_onboarding_completion", "user_onboarding", ["is_completed", "completion_percentage"])
    _live_index("idx_user_onboarding_step", "user_onboarding", ["current_step"])

    op.create_table(
        "entity_emails",
        *_audited_columns(),
        *_contact_point_columns(),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("email_type", _enum("email_type"), nullable=False),
        sa.Column("verification_token", sa.String(128), nullable=True),
        sa.Column("verification_attempts", sa.Integer(), nullable=False),
        sa.Column("max_verification_attempts", sa.Integer(), nullable=False),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token_invalidated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_subscribed", sa.Boolean(), nullable=False),
        sa.Column("subscription_status", _enum("email_subscription_status"), nullable=False),
        sa.Column("unsubscribed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bounce_status", _enum("bounce_status"), nullable=False),
        sa.Column("last_bounce_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("send_count", sa.Integer(), nullable=False),
        sa.Column("requires_2fa", sa.Boolean(), nullable=False),
        sa.Column("domain_verified", sa.Boolean(), nullable=False),
        *_audited_constraints(),
        *_contact_point_constraints(),
        sa.CheckConstraint(
            "verification_token IS NULL OR (token_expires_at IS NOT NULL AND token_expires_at > created_at)",
            name="valid_token_expiry",
        ),
        sa.CheckConstraint(
            "verification_attempts >= 0 AND verification_attempts <= max_verification_attempts",
            name="valid_verification_attempts",
        ),
        _pg_check("email ~* '^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\\.[A-Za-z]{2,}$'", name="valid_email"),
    )
    _contact_point_indexes("entity_emails")
    _live_index("idx_entity_emails_email", "entity_emails", ["email"], unique=True)
    _live_index("idx_entity_emails_type", "entity_emails", ["email_type"])
    _live_index("idx_entity_emails_subscription", "entity_emails", ["subscription_status"])

    op.create_table(
        "entity_phones",
        *_audited_columns(),
        *_contact_point_columns(),
        sa.Column("phone_number", sa.String(16), nullable=False),
        sa.Column("phone_type", _enum("phone_type"), nullable=False),
        sa.Column("country_code", sa.String(8), nullable=True),
        sa.Column("area_code", sa.String(8), nullable=True),
        sa.Column("extension", sa.String(16), nullable=True),
        sa.Column("timezone", sa.Text(), nullable=True),
        sa.Column("verification_code", sa.String(16), nullable=True),
        sa.Column("verification_attempts", sa.Integer(), nullable=False),
        sa.Column("max_verification_attempts", sa.Integer(), nullable=False),
        sa.Column("code_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("code_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("code_invalidated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_sms_enabled", sa.Boolean(), nullable=False),
        sa.Column("is_voice_enabled", sa.Boolean(), nullable=False),
        sa.Column("is_whatsapp_enabled", sa.Boolean(), nullable=False),
        sa.Column("preferred_contact_method", _enum("contact_method"), nullable=False),
        sa.Column("do_not_disturb_start", sa.Time(), nullable=True),
        sa.Column("do_not_disturb_end", sa.Time(), nullable=True),
        sa.Column("last_sms_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sms_count", sa.Integer(), nullable=False),
        sa.Column("last_call_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("call_count", sa.Integer(), nullable=False),
        sa.Column("requires_2fa", sa.Boolean(), nullable=False),
        sa.Column("carrier_verified", sa.Boolean(), nullable=False),
        *_audited_constraints(),
        *_contact_point_constraints(),
        sa.CheckConstraint(
            "verification_code IS NULL OR (code_expires_at IS NOT NULL AND code_expires_at > created_at)",
            name="valid_code_expiry",
        ),
        sa.CheckConstraint(
            "verification_attempts >= 0 AND verification_attempts <= max_verification_attempts",
            name="valid_verification_attempts",
        ),
        sa.CheckConstraint(
            "(do_not_disturb_start IS NULL AND do_not_disturb_end IS NULL) OR "
            "(do_not_disturb_start IS NOT NULL AND do_not_disturb_end IS NOT NULL)",
            name="valid_do_not_disturb",
        ),
        _pg_check(r"phone_number ~ '^\+[1-9]\d{1,14}$'", name="valid_phone_number"),
    )
    _contact_point_indexes("entity_phones")
    _live_index("idx_entity_phones_number", "entity_phones", ["phone_number"], unique=True)
    _live_index("idx_entity_phones_type", "entity_phones", ["phone_type"])
    _live_index("idx_entity_phones_country", "entity_phones", ["country_code"])

    op.create_table(
        "entity_addresses",
        *_audited_columns(),
        *_contact_point_columns(),
        sa.Column("address_type", _enum("address_type"), nullable=False),
        sa.Column("street_address", sa.Text(), nullable=False),
        sa.Column("street_address2", sa.Text(), nullable=True),
        sa.Column("city", sa.Text(), nullable=False),
        sa.Column("state_province", sa.Text(), nullable=True),
        sa.Column("postal_code", sa.String(10), nullable=True),
        sa.Column("country", sa.Text(), nullable=False),
        sa.Column("building_name", sa.Text(), nullable=True),
        sa.Column("floor_number", sa.Text(), nullable=True),
        sa.Column("unit_number", sa.Text(), nullable=True),
        sa.Column("landmark", sa.Text(), nullable=True),
        sa.Column("district", sa.Text(), nullable=True),
        sa.Column("region", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Numeric(10, 8), nullable=True),
        sa.Column("longitude", sa.Numeric(11, 8), nullable=True),
        sa.Column("geocoded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location_accuracy", sa.Text(), nullable=True),
        sa.Column("verification_method", sa.Text(), nullable=True),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        sa.Column("is_deliverable", sa.Boolean(), nullable=False),
        sa.Column("delivery_instructions", sa.Text(), nullable=True),
        sa.Column("access_codes", sa.Text(), nullable=True),
        sa.Column("preferred_delivery_time", sa.Text(), nullable=True),
        sa.Column("last_delivery_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_success_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("failed_delivery_count", sa.Integer(), nullable=False),
        sa.Column("requires_appointment", sa.Boolean(), nullable=False),
        sa.Column("seasonal_availability", JSONB, nullable=False),
        sa.Column("is_formatted", sa.Boolean(), nullable=False),
        sa.Column("format_validation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validation_source", sa.Text(), nullable=True),
        sa.Column("validation_status", _enum("address_validation_status"), nullable=False),
        *_audited_constraints(),
        *_contact_point_constraints(),
        sa.CheckConstraint(
            "(latitude IS NULL AND longitude IS NULL) OR "
            "(latitude IS NOT NULL AND longitude IS NOT NULL "
            "AND latitude BETWEEN -90 AND 90 AND longitude BETWEEN -180 AND 180)",
            name="valid_coordinates",
        ),
        sa.CheckConstraint(
            "delivery_success_rate IS NULL OR delivery_success_rate BETWEEN 0 AND 100",
            name="valid_delivery_success_rate",
        ),
        _pg_check(r"postal_code IS NULL OR postal_code ~* '^[A-Z0-9-\s]{3,10}$'", name="valid_postal_code"),
    )
    _contact_point_indexes("entity_addresses")
    _live_index("idx_entity_addresses_country", "entity_addresses", ["country"])
    _live_index("idx_entity_addresses_city", "entity_addresses", ["city"])
    _live_index("idx_entity_addresses_postal", "entity_addresses", ["postal_code"])


def downgrade() -> None:
    for table in (
        "entity_addresses",
        "entity_phones",
        "entity_emails",
        "user_onboarding",
        "user_security_settings",
        "user_preferences",
        "profiles",
    ):
        op.drop_table(table)
