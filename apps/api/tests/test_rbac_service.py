from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import timedelta

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import audit, events
from crmhub.core.database import Base
from crmhub.enums import DelegationStatus, RoleType, StatusType
from crmhub.identity.schemas import ProfileCreate
from crmhub.identity.service import profile_service
from crmhub.models import Role, UserRole
from crmhub.platform.persistence import utcnow
from crmhub.platform.security.actor import ActorUser
from crmhub.rbac.resolver import effective_permission_resolver
from crmhub.rbac.schemas import AssignRoleRequest, DelegateRoleRequest, TemporaryRoleRequest
from crmhub.rbac.seed import DEFAULT_ROLES
from crmhub.rbac.service import rbac_service


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


@pytest.fixture()
def admin() -> ActorUser:
    return ActorUser(user_id="admin-1", permissions=set(), roles={"system_admin"})


def _member(session: Session, handle: str) -> ActorUser:
    actor = ActorUser(user_id=str(uuid.uuid4()), permissions=set())
    profile = profile_service.create_profile(session, actor, ProfileCreate(handle=handle, email=f"{handle}@example.com"))
    actor.profile_id = profile.id
    return actor


def _role(session: Session, role_type: RoleType) -> Role:
    return session.scalar(select(Role).where(Role.role_type == role_type, Role.deleted_at.is_(None)))


def test_default_roles_seed_once(db_session: Session) -> None:
    first = rbac_service.initialize_default_roles(db_session)
    second = rbac_service.initialize_default_roles(db_session)

    assert first.roles == len(DEFAULT_ROLES)
    assert first.permissions > 0
    assert first.role_permissions > 0
    assert (second.roles, second.permissions, second.role_permissions) == (0, 0, 0)

    sales_rep = _role(db_session, RoleType.SALES_REP)
    standard = _role(db_session, RoleType.STANDARD_USER)
    assert sales_rep.parent_role_id == standard.id
    assert sales_rep.is_system is True


def test_permissions_are_inherited_from_parent_roles(db_session: Session, admin: ActorUser) -> None:
    rbac_service.initialize_default_roles(db_session)
    rep = _member(db_session, "rep_one")

    rbac_service.assign_role(db_session, admin, rep.profile_id, AssignRoleRequest(role_id=_role(db_session, RoleType.SALES_REP).id))
    effective = effective_permission_resolver.resolve(db_session, rep.profile_id)

    assert "sales.create" in effective.permissions
    # standard_user grants customer.read and tasks.read; guest_user grants user.read
    assert {"customer.read", "tasks.read", "user.read"} <= effective.permissions
    assert {"sales_rep", "standard_user", "guest_user"} <= set(effective.role_types)
    assert "sales.approve" not in effective.permissions


def test_duplicate_assignment_is_conflict(db_session: Session, admin: ActorUser) -> None:
    rbac_service.initialize_default_roles(db_session)
    member = _member(db_session, "dup_member")
    role_id = _role(db_session, RoleType.SUPPORT_SPECIALIST).id

    rbac_service.assign_role(db_session, admin, member.profile_id, AssignRoleRequest(role_id=role_id))
    with pytest.raises(HTTPException) as exc_info:
        rbac_service.assign_role(db_session, admin, member.profile_id, AssignRoleRequest(role_id=role_id))

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "role already assigned"


def test_delegation_takes_effect_only_after_approval(db_session: Session, admin: ActorUser) -> None:
    rbac_service.initialize_default_roles(db_session)
    manager = _member(db_session, "manager")
    deputy = _member(db_session, "deputy")
    role = _role(db_session, RoleType.ACCOUNT_MANAGER)
    rbac_service.assign_role(db_session, admin, manager.profile_id, AssignRoleRequest(role_id=role.id))

    delegation = rbac_service.delegate_role(
        db_session,
        manager,
        DelegateRoleRequest(delegate_id=deputy.profile_id, role_id=role.id, excluded_permissions=["accounting.create"]),
    )
    assert delegation.status == DelegationStatus.PENDING
    assert "accounting.read" not in effective_permission_resolver.resolve(db_session, deputy.profile_id).permissions

    with pytest.raises(HTTPException) as exc_info:
        rbac_service.approve_delegation(db_session, deputy, delegation.id)
    assert exc_info.value.status_code == 403

    approved = rbac_service.approve_delegation(db_session, admin, delegation.id)
    assert approved.status == DelegationStatus.ACTIVE

    effective = effective_permission_resolver.resolve(db_session, deputy.profile_id)
    assert "accounting.read" in effective.permissions
    assert "accounting.create" not in effective.permissions
    assert effective.sources["accounting.read"] == [f"delegation:{delegation.id}"]


def test_delegating_an_unheld_role_is_forbidden(db_session: Session) -> None:
    rbac_service.initialize_default_roles(db_session)
    delegator = _member(db_session, "no_role")
    delegate = _member(db_session, "wants_role")

    with pytest.raises(HTTPException) as exc_info:
        rbac_service.delegate_role(
            db_session,
            delegator,
            DelegateRoleRequest(delegate_id=delegate.profile_id, role_id=_role(db_session, RoleType.SALES_DIRECTOR).id),
        )

    assert exc_info.value.status_code == 403


def test_expiry_sweep_retires_lapsed_grants(db_session: Session, admin: ActorUser) -> None:
    rbac_service.initialize_default_roles(db_session)
    member = _member(db_session, "temp_worker")
    other = _member(db_session, "colleague")
    role = _role(db_session, RoleType.MARKETING_SPECIALIST)
    now = utcnow()

    temporary = rbac_service.assign_temporary_role(
        db_session,
        admin,
        member.profile_id,
        TemporaryRoleRequest(role_id=role.id, valid_until=now + timedelta(hours=1), reason="campaign cover"),
    )
    rbac_service.assign_role(db_session, admin, other.profile_id, AssignRoleRequest(role_id=role.id))
    rbac_service.delegate_role(
        db_session,
        other,
        DelegateRoleRequest(
            delegate_id=member.profile_id,
            role_id=role.id,
            requires_approval=False,
            ends_at=now + timedelta(minutes=30),
        ),
    )

    result = rbac_service.expire_lapsed_grants(db_session, at=now + timedelta(hours=2))

    assert (result.user_roles_expired, result.delegations_expired) == (1, 1)
    row = db_session.get(UserRole, temporary.id)
    assert row.status == StatusType.EXPIRED
    assert "marketing.create" not in effective_permission_resolver.resolve(
        db_session, member.profile_id, now + timedelta(hours=2)
    ).permissions

    again = rbac_service.expire_lapsed_grants(db_session, at=now + timedelta(hours=2))
    assert (again.user_roles_expired, again.delegations_expired) == (0, 0)


def test_grants_stored_without_a_time_window_hold_at_any_hour(db_session: Session) -> None:
    rbac_service.initialize_default_roles(db_session)
    member = _member(db_session, "night_owl")
    db_session.add(UserRole(user_id=member.profile_id, role_id=_role(db_session, RoleType.SALES_REP).id))
    db_session.commit()

    now = utcnow()
    sunday_night = (now + timedelta(days=(6 - now.weekday()) % 7 + 7)).replace(hour=3, minute=0, second=0, microsecond=0)
    effective = effective_permission_resolver.resolve(db_session, member.profile_id, at=sunday_night)

    assert "sales.create" in effective.permissions
