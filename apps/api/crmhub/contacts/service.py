from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from fastapi import HTTPException, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from crmhub import audit
from crmhub.contacts.models import EntityAddress, EntityEmail, EntityPhone
from crmhub.contacts.registry import get_registration, is_owned_by, load_owner
from crmhub.contacts.schemas import (
    AddressCreate,
    AddressRead,
    AddressUpdate,
    ConfirmVerificationRequest,
    EmailCreate,
    EmailRead,
    EmailUpdate,
    PhoneCreate,
    PhoneRead,
    PhoneUpdate,
    VerificationChallengeRead,
)
from crmhub.enums import AddressValidationStatus, EntityType
from crmhub.identity.models import UserSecuritySettings
from crmhub.platform.persistence import as_utc, utcnow
from crmhub.platform.security.actor import ActorUser
from crmhub.services.common import bind, check_version, commit_or_conflict, flush_or_conflict, not_found, publish, unprocessable


logger = logging.getLogger("crmhub.contacts")

EMAIL_TOKEN_TTL = timedelta(hours=24)
PHONE_CODE_TTL = timedelta(minutes=10)


@dataclass(frozen=True)
class ContactKind:
    name: str
    singular: str
    model: Any
    read_schema: type[BaseModel]
    value_field: str | None
    duplicate_detail: str


KINDS: dict[str, ContactKind] = {
    "emails": ContactKind("emails", "email", EntityEmail, EmailRead, "email", "email address already in use"),
    "phones": ContactKind("phones", "phone", EntityPhone, PhoneRead, "phone_number", "phone number already in use"),
    "addresses": ContactKind("addresses", "address", EntityAddress, AddressRead, None, "address conflict"),
}

# Fields whose change voids a previous verification.
_VERIFIED_VALUE_FIELDS = {"email", "phone_number", "street_address", "city", "postal_code", "country"}


def get_kind(kind: str) -> ContactKind:
    try:
        return KINDS[kind]
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown contact kind: {kind}")


class ContactPointService:
    """Emails, phones and addresses of users and CRM records, addressed by ``(entity_id, entity_type)``."""

    def add(
        self,
        session: Session,
        actor_user: ActorUser,
        kind: str,
        dto: EmailCreate | PhoneCreate | AddressCreate,
    ) -> BaseModel:
        contact_kind = get_kind(kind)
        bind(session, actor_user)
        self._authorize(session, actor_user, dto.entity_type, dto.entity_id, write=True)

        values = dto.model_dump()
        if contact_kind.value_field == "email":
            values["email"] = str(dto.email).strip().lower()  # type: ignore[union-attr]
        if isinstance(dto, AddressCreate):
            values["seasonal_availability"] = dto.seasonal_availability.model_copy()
        record = contact_kind.model(**values)

        if dto.is_primary:
            self._demote_primary(session, contact_kind, dto.entity_type, dto.entity_id)
        session.add(record)
        flush_or_conflict(session, contact_kind.duplicate_detail)
        publish(
            f"contacts.{contact_kind.singular}.added",
            actor_user,
            {"id": str(record.id), "entity_id": str(record.entity_id), "entity_type": str(record.entity_type)},
        )
        commit_or_conflict(session, contact_kind.duplicate_detail)
        session.refresh(record)
        return contact_kind.read_schema.model_validate(record)

    def add_in_transaction(
        self,
        session: Session,
        kind: str,
        *,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        values: dict[str, Any],
    ) -> Any:
        """Stage a contact record inside a caller-owned transaction; the caller flushes and commits."""

        contact_kind = get_kind(kind)
        if values.get("is_primary"):
            self._demote_primary(session, contact_kind, entity_type, entity_id)
        record = contact_kind.model(entity_type=entity_type, entity_id=entity_id, **values)
        session.add(record)
        return record

    def list_for_entity(
        self,
        session: Session,
        actor_user: ActorUser,
        kind: str,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        *,
        verified_only: bool = False,
    ) -> list[BaseModel]:
        contact_kind = get_kind(kind)
        self._authorize(session, actor_user, entity_type, entity_id, write=False)
        model = contact_kind.model
        stmt = select(model).where(
            model.entity_type == entity_type,
            model.entity_id == entity_id,
            model.deleted_at.is_(None),
        )
        if verified_only:
            stmt = stmt.where(model.is_verified.is_(True))
        rows = session.scalars(stmt.order_by(model.is_primary.desc(), model.priority.desc(), model.created_at.asc())).all()
        return [contact_kind.read_schema.model_validate(row) for row in rows]

    def get(self, session: Session, actor_user: ActorUser, kind: str, record_id: uuid.UUID) -> BaseModel:
        contact_kind = get_kind(kind)
        record = self._get_visible(session, actor_user, contact_kind, record_id, write=False)
        return contact_kind.read_schema.model_validate(record)

    def get_primary(
        self,
        session: Session,
        actor_user: ActorUser,
        kind: str,
        entity_type: EntityType,
        entity_id: uuid.UUID,
    ) -> BaseModel:
        contact_kind = get_kind(kind)
        self._authorize(session, actor_user, entity_type, entity_id, write=False)
        model = contact_kind.model
        record = session.scalar(
            select(model).where(
                model.entity_type == entity_type,
                model.entity_id == entity_id,
                model.is_primary.is_(True),
                model.deleted_at.is_(None),
            )
        )
        if record is None:
            raise not_found(f"primary {contact_kind.singular}")
        return contact_kind.read_schema.model_validate(record)

    def update(
        self,
        session: Session,
        actor_user: ActorUser,
        kind: str,
        record_id: uuid.UUID,
        dto: EmailUpdate | PhoneUpdate | AddressUpdate,
    ) -> BaseModel:
        contact_kind = get_kind(kind)
        bind(session, actor_user)
        record = self._get_visible(session, actor_user, contact_kind, record_id, write=True)
        check_version(record, dto.version, f"entity_{kind}")

        changes = dto.model_dump(exclude_unset=True, exclude={"version"})
        if "email" in changes and changes["email"] is not None:
            changes["email"] = str(changes["email"]).strip().lower()
        if isinstance(dto, AddressUpdate) and dto.seasonal_availability is not None:
            changes["seasonal_availability"] = dto.seasonal_availability.model_copy()

        if isinstance(dto, PhoneUpdate):
            start = changes.get("do_not_disturb_start", record.do_not_disturb_start)
            end = changes.get("do_not_disturb_end", record.do_not_disturb_end)
            if (start is None) != (end is None):
                raise unprocessable("do_not_disturb_start and do_not_disturb_end must be set together")
        if isinstance(dto, AddressUpdate):
            latitude = changes.get("latitude", record.latitude)
            longitude = changes.get("longitude", record.longitude)
            if (latitude is None) != (longitude is None):
                raise unprocessable("latitude and longitude must be set together")

        value_changed = False
        columns = contact_kind.model.__table__.columns
        for key, value in changes.items():
            if value is None and key in columns and not columns[key].nullable:
                continue
            if key in _VERIFIED_VALUE_FIELDS and getattr(record, key) != value:
                value_changed = True
            setattr(record, key, value)

        if value_changed and record.is_verified:
            self._clear_verification(record)
            if isinstance(record, EntityAddress):
                record.validation_status = AddressValidationStatus.PENDING

        commit_or_conflict(session, contact_kind.duplicate_detail)
        session.refresh(record)
        return contact_kind.read_schema.model_validate(record)

    def set_primary(self, session: Session, actor_user: ActorUser, kind: str, record_id: uuid.UUID) -> BaseModel:
        contact_kind = get_kind(kind)
        bind(session, actor_user)
        record = self._get_visible(session, actor_user, contact_kind, record_id, write=True)
        if record.is_primary:
            return contact_kind.read_schema.model_validate(record)

        self._demote_primary(session, contact_kind, record.entity_type, record.entity_id)
        session.flush()
        record.is_primary = True
        publish(
            "contacts.primary.changed",
            actor_user,
            {"kind": kind, "id": str(record.id), "entity_id": str(record.entity_id), "entity_type": str(record.entity_type)},
        )
        commit_or_conflict(session, "primary contact conflict")
        session.refresh(record)
        return contact_kind.read_schema.model_validate(record)

    def start_verification(
        self,
        session: Session,
        actor_user: ActorUser,
        kind: str,
        record_id: uuid.UUID,
    ) -> VerificationChallengeRead:
        """Issue a fresh token (emails) or code (phones); earlier challenges stop working."""

        contact_kind = get_kind(kind)
        bind(session, actor_user)
        record = self._get_visible(session, actor_user, contact_kind, record_id, write=True)
        if record.is_verified:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="already verified")

        now = utcnow()
        if isinstance(record, EntityEmail):
            if record.verification_token is not None:
                record.token_invalidated_at = now
            challenge = secrets.token_urlsafe(32)
            expires_at = now + EMAIL_TOKEN_TTL
            record.verification_token = challenge
            record.token_expires_at = expires_at
            record.token_used_at = None
        elif isinstance(record, EntityPhone):
            if record.verification_code is not None:
                record.code_invalidated_at = now
            challenge = f"{secrets.randbelow(1_000_000):06d}"
            expires_at = now + PHONE_CODE_TTL
            record.verification_code = challenge
            record.code_expires_at = expires_at
            record.code_used_at = None
        else:
            record.validation_status = AddressValidationStatus.NEEDS_REVIEW
            record.last_verification_attempt = now
            commit_or_conflict(session, "verification could not be started")
            return VerificationChallengeRead(
                id=record.id,
                kind=kind,
                challenge=None,
                expires_at=None,
                attempts_remaining=0,
            )

        record.verification_attempts = 0
        record.last_verification_attempt = now
        commit_or_conflict(session, "verification could not be started")
        logger.info("contacts.verification_started", extra={"kind": kind, "record_id": str(record.id)})
        return VerificationChallengeRead(
            id=record.id,
            kind=kind,
            challenge=challenge,
            expires_at=expires_at,
            attempts_remaining=record.max_verification_attempts,
        )

    def confirm_verification(
        self,
        session: Session,
        actor_user: ActorUser,
        kind: str,
        record_id: uuid.UUID,
        dto: ConfirmVerificationRequest,
    ) -> BaseModel:
        contact_kind = get_kind(kind)
        bind(session, actor_user)
        record = self._get_visible(session, actor_user, contact_kind, record_id, write=True)
        if record.is_verified:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="already verified")

        now = utcnow()
        if isinstance(record, EntityAddress):
            record.validation_status = AddressValidationStatus.VALID
            record.verification_method = dto.verification_method or "manual_review"
            record.verification_notes = dto.notes
            self._mark_verified(record, actor_user)
            commit_or_conflict(session, "verification could not be confirmed")
            session.refresh(record)
            return contact_kind.read_schema.model_validate(record)

        if isinstance(record, EntityEmail):
            expected, expires_at = record.verification_token, as_utc(record.token_expires_at)
        else:
            expected, expires_at = record.verification_code, as_utc(record.code_expires_at)

        if expected is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="no verification in progress")
        if record.verification_attempts >= record.max_verification_attempts:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="verification attempts exhausted")
        if expires_at is not None and expires_at <= now:
            raise unprocessable("verification challenge expired")

        record.last_verification_attempt = now
        if dto.code is None or not secrets.compare_digest(dto.code, expected):
            record.verification_attempts += 1
            commit_or_conflict(session, "verification could not be confirmed")
            audit.record(
                actor_user_id=actor_user.user_id,
                entity_type=f"contacts.{kind}",
                entity_id=str(record.id),
                action="verification.failed",
                before=None,
                after={"attempts": record.verification_attempts},
                correlation_id=actor_user.correlation_id,
            )
            raise unprocessable("invalid verification code")

        if isinstance(record, EntityEmail):
            record.verification_token = None
            record.token_used_at = now
        else:
            record.verification_code = None
            record.code_used_at = now
        record.verification_attempts = 0
        self._mark_verified(record, actor_user)
        self._sync_security_flags(session, record)
        publish(
            "contacts.verified",
            actor_user,
            {"kind": kind, "id": str(record.id), "entity_id": str(record.entity_id)},
        )
        commit_or_conflict(session, "verification could not be confirmed")
        session.refresh(record)
        return contact_kind.read_schema.model_validate(record)

    def soft_delete(self, session: Session, actor_user: ActorUser, kind: str, record_id: uuid.UUID) -> None:
        contact_kind = get_kind(kind)
        bind(session, actor_user)
        record = self._get_visible(session, actor_user, contact_kind, record_id, write=True)
        record.is_primary = False
        record.soft_delete(actor_user.actor_uuid)
        publish("contacts.deleted", actor_user, {"kind": kind, "id": str(record.id)})
        commit_or_conflict(session, "contact could not be deleted")

    def soft_delete_for_entity(
        self,
        session: Session,
        actor_id: uuid.UUID,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        *,
        at: datetime | None = None,
    ) -> int:
        """Soft delete every live contact record of an owner; the caller commits."""

        removed = 0
        for contact_kind in KINDS.values():
            model = contact_kind.model
            for record in session.scalars(
                select(model).where(
                    model.entity_type == entity_type,
                    model.entity_id == entity_id,
                    model.deleted_at.is_(None),
                )
            ):
                record.soft_delete(actor_id, at=at)
                removed += 1
        return removed

    def restore_for_entity(
        self,
        session: Session,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        *,
        deleted_at: datetime,
    ) -> int:
        """Undo :meth:`soft_delete_for_entity` for the rows removed at ``deleted_at``; the caller commits."""

        marker = as_utc(deleted_at)
        restored = 0
        for contact_kind in KINDS.values():
            model = contact_kind.model
            for record in session.scalars(
                select(model).where(
                    model.entity_type == entity_type,
                    model.entity_id == entity_id,
                    model.deleted_at.is_not(None),
                )
            ):
                if as_utc(record.deleted_at) == marker:
                    record.restore()
                    restored += 1
        return restored

    def _authorize(
        self,
        session: Session,
        actor_user: ActorUser,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        *,
        write: bool,
    ) -> Any:
        registration = get_registration(entity_type)
        owner = load_owner(session, entity_type, entity_id)
        if registration.model is not None and owner is None:
            raise not_found(str(EntityType(entity_type)).replace("_", " "))

        candidates = {actor_user.actor_uuid}
        if actor_user.profile_id is not None:
            candidates.add(actor_user.profile_id)
        if is_owned_by(owner, registration, candidates):
            return owner
        permission = registration.write_permission if write else registration.read_permission
        if not actor_user.can(permission):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")
        return owner

    def _get_visible(
        self,
        session: Session,
        actor_user: ActorUser,
        contact_kind: ContactKind,
        record_id: uuid.UUID,
        *,
        write: bool,
    ) -> Any:
        model = contact_kind.model
        record = session.scalar(select(model).where(model.id == record_id, model.deleted_at.is_(None)))
        if record is None:
            raise not_found(contact_kind.singular)
        try:
            self._authorize(session, actor_user, record.entity_type, record.entity_id, write=write)
        except HTTPException as exc:
            if exc.status_code == status.HTTP_403_FORBIDDEN and not write:
                raise not_found(contact_kind.singular)
            raise
        return record

    @staticmethod
    def _demote_primary(session: Session, contact_kind: ContactKind, entity_type: EntityType, entity_id: uuid.UUID) -> None:
        model = contact_kind.model
        for current in session.scalars(
            select(model).where(
                model.entity_type == entity_type,
                model.entity_id == entity_id,
                model.is_primary.is_(True),
                model.deleted_at.is_(None),
            )
        ):
            current.is_primary = False
        session.flush()

    @staticmethod
    def _mark_verified(record: Any, actor_user: ActorUser) -> None:
        record.is_verified = True
        record.verified_at = utcnow()
        record.verified_by = actor_user.actor_uuid

    @staticmethod
    def _clear_verification(record: Any) -> None:
        record.is_verified = False
        record.verified_at = None
        record.verified_by = None

    @staticmethod
    def _sync_security_flags(session: Session, record: Any) -> None:
        if record.entity_type != EntityType.USER_PROFILE or not record.is_primary:
            return
        settings_row = session.scalar(
            select(UserSecuritySettings).where(
                UserSecuritySettings.user_id == record.entity_id,
                UserSecuritySettings.deleted_at.is_(None),
            )
        )
        if settings_row is None:
            return
        if isinstance(record, EntityEmail):
            settings_row.email_verified = True
        elif isinstance(record, EntityPhone):
            settings_row.phone_verified = True


contact_point_service = ContactPointService()
