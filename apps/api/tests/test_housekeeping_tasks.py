from __future__ import annotations

import logging
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub.core import celery_app
from crmhub.core.database import Base


@pytest.fixture()
def session_factory(monkeypatch: pytest.MonkeyPatch) -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    monkeypatch.setattr(celery_app, "SessionLocal", factory)
    yield factory
    Base.metadata.drop_all(bind=engine)


def test_ping_task() -> None:
    assert celery_app.ping_task() == "pong"


def test_beat_schedule_lists_housekeeping_tasks() -> None:
    tasks = {entry["task"] for entry in celery_app.celery_app.conf.beat_schedule.values()}
    assert tasks == {"rbac.expire_lapsed_grants", "audit.purge_expired"}


def test_expire_task_on_empty_database(session_factory: sessionmaker, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    result = celery_app.expire_lapsed_grants_task()

    assert result == {"user_roles_expired": 0, "delegations_expired": 0}
    assert any(
        record.name == "crmhub.housekeeping" and getattr(record, "task", None) == "rbac.expire_lapsed_grants"
        for record in caplog.records
    )
