from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import audit, events
from crmhub.contacts.schemas import EmailCreate
from crmhub.contacts.service import contact_point_service
from crmhub.core.database import Base
from crmhub.crm.models import CRMContact
from crmhub.crm.schemas import ContactCreate, ContactUpdate, OpportunityCreate, OpportunityUpdate
from crmhub.crm.service import crm_service
from crmhub.enums import EntityType, SecuritySeverity
from crmhub.identity.schemas import ProfileCreate
from crmhub.identity.service import profile_service
from crmhub.models import AuditLog, EntityEmail, Profile, SecurityEvent
from crmhub.platform.persistence import HardDeleteForbiddenError, utcnow
from crmhub.platform.security.actor import ActorUser
from crmhub.rbac.resolver import effective_permission_resolver
from crmhub.rbac.schemas import AssignRoleRequest, DelegateRoleRequest, GrantPermissionRequest, PermissionCreate, RoleCreate
from crmhub.rbac.service import rbac_service
from crmhub.services.common import ConflictError, commit_or_conflict


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_state() -> None:
    audit.audit_entries.clear()
    events.published_events.clear()


def _user(**overrides) -> ActorUser:
    values = {"user_id": str(uuid.uuid4()), "permissions": set()}
    values.update(overrides)
    return ActorUser(**values)


def _admin() -> ActorUser:
    return _user(roles={"system_admin"})


def _sales_user() -> ActorUser:
    return _user(permissions={"customer.create", "customer.read", "sales.create", "sales.read", "sales.update"})


def _signup(session: Session, actor: ActorUser, handle: str, email: str):
    return profile_service.create_profile(session, actor, ProfileCreate(handle=handle, email=email))


def test_soft_delete_sets_deletion_pair_and_hard_delete_is_refused(db_session: Session) -> None:
    actor = _sales_user()
    contact = crm_service.create(db_session, actor, "contacts", ContactCreate(first_name="Grace", last_name="Hopper"))

    crm_service.soft_delete(db_session, actor, "contacts", contact.id)

    row = db_session.get(CRMContact, contact.id)
    assert row is not None
    assert row.deleted_at is not None
    assert row.deleted_by == actor.actor_uuid

    db_session.delete(row)
    with pytest.raises(HardDeleteForbiddenError):
        db_session.flush()
    db_session.rollback()

    actions = db_session.scalars(
        select(AuditLog.action).where(AuditLog.table_name == "crm_contacts", AuditLog.record_id == contact.id)
    ).all()
    assert sorted(str(action) for action in actions) == ["create", "soft_delete"]


def test_only_one_live_primary_email_per_entity(db_session: Session) -> None:
    actor = _user()
    profile = _signup(db_session, actor, "ada_l", "ada@example.com")

    second = contact_point_service.add(
        db_session,
        actor,
        "emails",
        EmailCreate(
            entity_id=profile.id,
            entity_type=EntityType.USER_PROFILE,
            email="Ada.Work@Example.com",
            is_primary=True,
        ),
    )
    assert second.email == "ada.work@example.com"

    primaries = db_session.scalars(
        select(EntityEmail).where(
            EntityEmail.entity_id == profile.id,
            EntityEmail.is_primary.is_(True),
            EntityEmail.deleted_at.is_(None),
        )
    ).all()
    assert [row.id for row in primaries] == [second.id]

    first = db_session.scalar(select(EntityEmail).where(EntityEmail.email == "ada@example.com"))
    promoted = contact_point_service.set_primary(db_session, actor, "emails", first.id)
    assert promoted.is_primary is True
    primary = contact_point_service.get_primary(db_session, actor, "emails", EntityType.USER_PROFILE, profile.id)
    assert primary.id == first.id


def test_duplicate_live_handle_is_conflict(db_session: Session) -> None:
    _signup(db_session, _user(), "linus", "linus@example.com")

    with pytest.raises(HTTPException) as exc_info:
        _signup(db_session, _user(), "linus", "other@example.com")

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "handle already taken"


def test_expected_revenue_follows_amount_and_probability(db_session: Session) -> None:
    actor = _sales_user()
    contact = crm_service.create(db_session, actor, "contacts", ContactCreate(company_name="Initech", first_name="Bill"))
    opportunity = crm_service.create(
        db_session,
        actor,
        "opportunities",
        OpportunityCreate(name="Printers", contact_id=contact.id, amount=Decimal("200"), probability=25),
    )
    assert opportunity.expected_revenue == Decimal("50")

    updated = crm_service.update(
        db_session,
        actor,
        "opportunities",
        opportunity.id,
        OpportunityUpdate(version=opportunity.version, probability=50),
    )
    assert updated.expected_revenue == Decimal("100")
    assert updated.version == opportunity.version + 1


def test_stale_version_is_rejected(db_session: Session) -> None:
    actor = _sales_user()
    contact = crm_service.create(db_session, actor, "contacts", ContactCreate(first_name="Ken"))
    crm_service.update(db_session, actor, "contacts", contact.id, ContactUpdate(version=contact.version, first_name="Kenneth"))

    with pytest.raises(HTTPException) as exc_info:
        crm_service.update(db_session, actor, "contacts", contact.id, ContactUpdate(version=contact.version, first_name="Kenny"))

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "version conflict"
    assert exc_info.value.context == {"record_id": str(contact.id), "expected": contact.version, "actual": contact.version + 1}


def test_check_violation_reports_the_constraint_name(db_session: Session) -> None:
    db_session.add(
        SecurityEvent(
            event_type="token_replay",
            severity=SecuritySeverity.HIGH,
            source="auth",
            description="refresh token replayed",
            resolved_at=utcnow(),
        )
    )

    with pytest.raises(ConflictError) as exc_info:
        commit_or_conflict(db_session, "security event rejected")

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "security event rejected"
    assert exc_info.value.context == {"constraint": "valid_resolution"}


def test_self_delegation_is_rejected(db_session: Session) -> None:
    actor = _user()
    profile = _signup(db_session, actor, "barbara", "barbara@example.com")
    actor.profile_id = profile.id
    role = rbac_service.create_role(db_session, _admin(), RoleCreate(name="Reviewers"))

    with pytest.raises(HTTPException) as exc_info:
        rbac_service.delegate_role(db_session, actor, DelegateRoleRequest(delegate_id=profile.id, role_id=role.id))

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "self-delegation is not allowed"


def test_resolver_ignores_lapsed_role_assignments(db_session: Session) -> None:
    admin = _admin()
    profile = _signup(db_session, _user(), "margaret", "margaret@example.com")
    permission = rbac_service.create_permission(db_session, admin, PermissionCreate(name="reports.export"))
    role = rbac_service.create_role(db_session, admin, RoleCreate(name="Report Exporters"))
    rbac_service.grant_permission(db_session, admin, role.id, GrantPermissionRequest(permission_id=permission.id))

    now = utcnow()
    rbac_service.assign_role(
        db_session,
        admin,
        profile.id,
        AssignRoleRequest(role_id=role.id, valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=1)),
    )

    colleague = _signup(db_session, _user(), "katherine", "katherine@example.com")
    rbac_service.assign_role(db_session, admin, colleague.id, AssignRoleRequest(role_id=role.id))

    assert "reports.export" not in effective_permission_resolver.resolve(db_session, profile.id).permissions
    assert "reports.export" in effective_permission_resolver.resolve(db_session, colleague.id).permissions


def test_signup_delete_and_handle_reuse(db_session: Session) -> None:
    first_actor = _user()
    profile = _signup(db_session, first_actor, "hedy", "hedy@example.com")

    primary = contact_point_service.get_primary(db_session, first_actor, "emails", EntityType.USER_PROFILE, profile.id)
    assert primary.email == "hedy@example.com"
    assert primary.is_primary is True

    profile_service.soft_delete_profile(db_session, first_actor, profile.id)
    deleted_email = db_session.get(EntityEmail, primary.id)
    assert deleted_email is not None
    assert deleted_email.deleted_at is not None

    reused = _signup(db_session, _user(), "hedy", "hedy@example.com")
    assert reused.id != profile.id
    assert reused.handle == "hedy"

    live = db_session.scalars(select(Profile).where(Profile.handle == "hedy", Profile.deleted_at.is_(None))).all()
    assert [row.id for row in live] == [reused.id]

    with pytest.raises(HTTPException) as exc_info:
        profile_service.restore_profile(db_session, first_actor, profile.id)
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "handle was reused by another profile"
