"""Owners of polymorphic contact records.

``entity_emails``, ``entity_phones`` and ``entity_addresses`` reference their
owner through ``(entity_id, entity_type)`` without a foreign key, so owner
existence and access are checked here before any contact row is written.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from crmhub.crm.models import CRMContact, CRMLead, CRMOpportunity, CRMReferral
from crmhub.enums import EntityType
from crmhub.identity.models import Profile


@dataclass(frozen=True)
class EntityRegistration:
    model: Any
    owner_columns: tuple[str, ...]
    read_permission: str
    write_permission: str


ENTITY_REGISTRY: dict[EntityType, EntityRegistration] = {
    EntityType.USER_PROFILE: EntityRegistration(Profile, ("user_id", "id"), "user.read", "user.update"),
    EntityType.CRM_CONTACT: EntityRegistration(
        CRMContact,
        ("assigned_to", "account_manager", "created_by"),
        "customer.read",
        "customer.update",
    ),
    EntityType.CRM_LEAD: EntityRegistration(CRMLead, ("assigned_to", "created_by"), "sales.read", "sales.update"),
    EntityType.CRM_OPPORTUNITY: EntityRegistration(
        CRMOpportunity,
        ("assigned_to", "created_by"),
        "sales.read",
        "sales.update",
    ),
    EntityType.CRM_REFERRAL: EntityRegistration(CRMReferral, ("created_by",), "marketing.read", "marketing.update"),
    EntityType.SYSTEM: EntityRegistration(None, (), "system.config", "system.config"),
}


def get_registration(entity_type: EntityType) -> EntityRegistration:
    return ENTITY_REGISTRY[EntityType(entity_type)]


def load_owner(session: Session, entity_type: EntityType, entity_id: uuid.UUID) -> Any | None:
    """The live owning row, or ``None``; ``system`` owners have no row and resolve to ``None``."""

    registration = get_registration(entity_type)
    if registration.model is None:
        return None
    model = registration.model
    return session.scalar(select(model).where(model.id == entity_id, model.deleted_at.is_(None)))


def is_owned_by(owner: Any, registration: EntityRegistration, candidates: set[uuid.UUID]) -> bool:
    if owner is None:
        return False
    return any(getattr(owner, column, None) in candidates for column in registration.owner_columns)
