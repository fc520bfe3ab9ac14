from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from collections.abc import Generator

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import audit, events
from crmhub.core.config import get_settings
from crmhub.core.database import Base
from crmhub.enums import OnboardingStatus, StatusType
from crmhub.identity.schemas import LoginAttemptRequest, OnboardingStepRequest, ProfileCreate, ProfileStatusUpdate
from crmhub.identity.service import profile_service
from crmhub.models import SecurityEvent, UserRole, UserSecuritySettings
from crmhub.platform.security.actor import ActorUser
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
def configure_lockout(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("LOGIN_MAX_FAILED_ATTEMPTS", "3")
    get_settings.cache_clear()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()


def _actor() -> ActorUser:
    return ActorUser(user_id=str(uuid.uuid4()), permissions=set())


def test_signup_creates_satellites_and_default_role(db_session: Session) -> None:
    rbac_service.initialize_default_roles(db_session)
    actor = _actor()

    profile = profile_service.create_profile(
        db_session,
        actor,
        ProfileCreate(handle="alan_t", email="alan@example.com", terms_accepted=True),
        client_ip="10.0.0.7",
    )

    assert profile.user_id == actor.actor_uuid
    assert profile.status == StatusType.ACTIVE
    onboarding = profile_service.get_onboarding(db_session, actor, profile.id)
    assert onboarding.terms_accepted is True
    assert onboarding.status == OnboardingStatus.PENDING

    roles = db_session.scalars(select(UserRole).where(UserRole.user_id == profile.id)).all()
    assert len(roles) == 1
    assert roles[0].is_primary is True
    assert any(event["event_type"] == "identity.profile.created" for event in events.published_events)


def test_accepting_terms_requires_client_ip(db_session: Session) -> None:
    with pytest.raises(HTTPException) as exc_info:
        profile_service.create_profile(
            db_session,
            _actor(),
            ProfileCreate(handle="no_ip", email="noip@example.com", terms_accepted=True),
        )
    assert exc_info.value.status_code == 422


def test_signup_without_seeded_roles_still_succeeds(db_session: Session) -> None:
    profile = profile_service.create_profile(db_session, _actor(), ProfileCreate(handle="solo", email="solo@example.com"))

    assert db_session.scalars(select(UserRole).where(UserRole.user_id == profile.id)).all() == []


def test_repeated_failed_logins_lock_the_account(db_session: Session) -> None:
    actor = _actor()
    profile = profile_service.create_profile(db_session, actor, ProfileCreate(handle="joan", email="joan@example.com"))
    failure = LoginAttemptRequest(success=False, ip_address="192.0.2.10")

    results = [profile_service.record_login(db_session, actor, actor.actor_uuid, failure) for _ in range(3)]

    assert [result.failed_login_attempts for result in results] == [1, 2, 3]
    assert results[-1].is_locked is True
    assert profile_service.is_user_active(db_session, actor.actor_uuid).is_active is False

    with pytest.raises(HTTPException) as exc_info:
        profile_service.record_login(db_session, actor, actor.actor_uuid, LoginAttemptRequest(success=True))
    assert exc_info.value.status_code == 423

    locked = db_session.scalars(select(SecurityEvent).where(SecurityEvent.user_id == profile.id)).all()
    assert [event.event_type for event in locked] == ["account_locked"]
    assert audit.audit_entries[-1]["action"] == "login.blocked"


def test_successful_login_resets_failures(db_session: Session) -> None:
    actor = _actor()
    profile_service.create_profile(db_session, actor, ProfileCreate(handle="mary", email="mary@example.com"))

    profile_service.record_login(db_session, actor, actor.actor_uuid, LoginAttemptRequest(success=False))
    result = profile_service.record_login(db_session, actor, actor.actor_uuid, LoginAttemptRequest(success=True))

    assert result.failed_login_attempts == 0
    assert result.is_locked is False


def test_onboarding_completes_when_required_steps_are_done(db_session: Session) -> None:
    actor = _actor()
    profile = profile_service.create_profile(db_session, actor, ProfileCreate(handle="dorothy", email="dorothy@example.com"))

    with pytest.raises(HTTPException) as exc_info:
        profile_service.advance_onboarding(
            db_session, actor, profile.id, OnboardingStepRequest(step="email_verification", status="skipped")
        )
    assert exc_info.value.status_code == 422

    profile_service.advance_onboarding(db_session, actor, profile.id, OnboardingStepRequest(step="welcome_tour", status="skipped"))
    for step in ("profile_setup", "email_verification", "preferences"):
        progress = profile_service.advance_onboarding(db_session, actor, profile.id, OnboardingStepRequest(step=step))
        assert progress.is_completed is False

    done = profile_service.advance_onboarding(db_session, actor, profile.id, OnboardingStepRequest(step="security_setup"))

    assert done.is_completed is True
    assert done.status == OnboardingStatus.COMPLETED
    assert done.completion_percentage == 100
    assert done.completed_at is not None


def test_suspended_profile_is_not_active(db_session: Session) -> None:
    actor = _actor()
    admin = ActorUser(user_id="admin-1", permissions=set(), roles={"system_admin"})
    profile = profile_service.create_profile(db_session, actor, ProfileCreate(handle="radia", email="radia@example.com"))

    profile_service.update_status(
        db_session,
        admin,
        profile.id,
        ProfileStatusUpdate(status=StatusType.SUSPENDED, version=profile.version),
    )

    assert profile_service.is_user_active(db_session, actor.actor_uuid).is_active is False


def test_restore_brings_back_profile_and_its_email(db_session: Session) -> None:
    actor = _actor()
    profile = profile_service.create_profile(db_session, actor, ProfileCreate(handle="frances", email="frances@example.com"))
    profile_service.soft_delete_profile(db_session, actor, profile.id)

    restored = profile_service.restore_profile(db_session, actor, profile.id)

    assert restored.id == profile.id
    assert restored.deleted_at is None
    assert profile_service.is_user_active(db_session, actor.actor_uuid).is_active is True


def test_owner_reads_private_profile_and_stranger_gets_404(db_session: Session) -> None:
    owner = _actor()
    profile = profile_service.create_profile(db_session, owner, ProfileCreate(handle="grace_h", email="grace@example.com"))

    assert profile_service.get_profile(db_session, owner, profile.id).handle == "grace_h"
    assert profile_service.get_profile_by_handle(db_session, owner, "grace_h").id == profile.id

    with pytest.raises(HTTPException) as exc_info:
        profile_service.get_profile(db_session, _actor(), profile.id)
    assert exc_info.value.status_code == 404


def test_failures_after_a_lapsed_lockout_start_a_new_count(db_session: Session) -> None:
    actor = _actor()
    profile = profile_service.create_profile(db_session, actor, ProfileCreate(handle="hedy", email="hedy@example.com"))
    failure = LoginAttemptRequest(success=False)
    for _ in range(3):
        profile_service.record_login(db_session, actor, actor.actor_uuid, failure)

    settings_row = db_session.scalars(select(UserSecuritySettings).where(UserSecuritySettings.user_id == profile.id)).one()
    settings_row.locked_until = datetime.now(timezone.utc) - timedelta(minutes=1)
    db_session.commit()

    result = profile_service.record_login(db_session, actor, actor.actor_uuid, failure)

    assert result.failed_login_attempts == 1
    assert result.is_locked is False
    assert profile_service.is_user_active(db_session, actor.actor_uuid).is_active is True
