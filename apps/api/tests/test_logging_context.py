from __future__ import annotations

import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub.api.deps import get_current_user
from crmhub.core.config import get_settings
from crmhub.core.database import Base, get_db
from crmhub.logging import JsonLogFormatter
from crmhub.main import app
from crmhub.middleware.rate_limit import reset_rate_limiter
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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            permissions={"customer.read", "customer.create"},
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/api/crm/contacts/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record for record in caplog.records if record.name == "crmhub.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/crm/contacts/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_json_formatter_renders_known_extras() -> None:
    record = logging.makeLogRecord(
        {
            "name": "crmhub.housekeeping",
            "msg": "housekeeping.finished",
            "levelname": "INFO",
            "levelno": logging.INFO,
            "purged": 3,
            "correlation_id": "fmt-1",
        }
    )

    rendered = JsonLogFormatter().format(record)

    assert '"msg": "housekeeping.finished"' in rendered
    assert '"correlation_id": "fmt-1"' in rendered
    assert '"purged": 3' in rendered
