from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import audit, events
from crmhub.auditing.schemas import ActivityCreate
from crmhub.auditing.service import audit_service
from crmhub.core.database import Base
from crmhub.crm.schemas import ContactCreate, ContactUpdate
from crmhub.crm.service import crm_service
from crmhub.models import AuditLog
from crmhub.platform.persistence import AuditLogImmutableError, utcnow
from crmhub.platform.security.actor import ActorUser


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
def actor() -> ActorUser:
    return ActorUser(user_id=str(uuid.uuid4()), permissions={"customer.create", "customer.read", "customer.update"})


def test_entity_history_lists_changes_newest_first(db_session: Session, actor: ActorUser) -> None:
    contact = crm_service.create(db_session, actor, "contacts", ContactCreate(first_name="Alan"))
    crm_service.update(db_session, actor, "contacts", contact.id, ContactUpdate(version=contact.version, last_name="Kay"))

    history = audit_service.list_entity_history(db_session, "crm_contacts", contact.id)

    assert [str(row.action) for row in history] == ["update", "create"]
    assert "last_name" in history[0].changed_fields
    assert history[0].performed_by == actor.actor_uuid


def test_create_entry_stores_missing_before_image_as_sql_null(db_session: Session, actor: ActorUser) -> None:
    contact = crm_service.create(db_session, actor, "contacts", ContactCreate(first_name="Grace"))

    row = db_session.scalar(select(AuditLog).where(AuditLog.old_data.is_(None)))

    assert row is not None
    assert row.record_id == contact.id
    assert row.new_data["first_name"] == "Grace"


def test_audit_rows_cannot_be_changed_or_deleted(db_session: Session, actor: ActorUser) -> None:
    crm_service.create(db_session, actor, "contacts", ContactCreate(first_name="Barbara"))
    row = db_session.scalar(select(AuditLog))

    row.notes = "tampered"
    with pytest.raises(AuditLogImmutableError):
        db_session.flush()
    db_session.rollback()

    row = db_session.scalar(select(AuditLog))
    db_session.delete(row)
    with pytest.raises(AuditLogImmutableError):
        db_session.flush()
    db_session.rollback()

    assert db_session.scalar(select(func.count()).select_from(AuditLog)) == 1


def test_purge_only_drops_expired_rows(db_session: Session, actor: ActorUser) -> None:
    crm_service.create(db_session, actor, "contacts", ContactCreate(first_name="Frances"))
    crm_service.create(db_session, actor, "contacts", ContactCreate(first_name="Jean"))

    nothing = audit_service.purge_expired_audit_logs(db_session)
    assert nothing.purged == 0
    assert db_session.scalar(select(func.count()).select_from(AuditLog)) == 2

    later = utcnow() + timedelta(days=400)
    result = audit_service.purge_expired_audit_logs(db_session, at=later)

    assert result.purged == 2
    assert result.cutoff == later
    assert db_session.scalar(select(func.count()).select_from(AuditLog)) == 0
    assert "crmhub.audit_purge" not in db_session.info


def test_activity_logging_needs_a_profile(db_session: Session, actor: ActorUser) -> None:
    activity = ActivityCreate(activity_type="login", entity_type="session", entity_id=uuid.uuid4(), description="signed in")

    with pytest.raises(HTTPException) as exc_info:
        audit_service.log_activity(db_session, actor, activity)

    assert exc_info.value.status_code == 403


def test_activity_outside_system_scope_needs_an_entity_id() -> None:
    with pytest.raises(ValidationError):
        ActivityCreate(activity_type="login", entity_type="session", description="signed in")

    assert ActivityCreate(activity_type="login", entity_type="system", description="signed in").entity_id is None
