from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub.api.deps import get_current_user
from crmhub.core.config import get_settings
from crmhub.core.database import Base, get_db
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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def permissions() -> set[str]:
    return {"customer.create", "customer.read", "system.metrics.read"}


@pytest.fixture()
def client(db_session: Session, permissions: set[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_current_user() -> ActorUser:
        return ActorUser(user_id="metrics-user", permissions=permissions, correlation_id="metrics-corr-1")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    contact = client.post("/api/crm/contacts", json={"first_name": "Metrics"})
    assert contact.status_code == 201

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "audit_rows_written_total" in body
    assert 'path="/health"' in body
    assert 'path="/api/crm/contacts"' in body


def test_metrics_require_permission(client: TestClient, permissions: set[str]) -> None:
    permissions.discard("system.metrics.read")

    response = client.get("/metrics")

    assert response.status_code == 403
    assert response.json()["detail"] == "Missing permission: system.metrics.read"


def test_metrics_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    assert client.get("/metrics").status_code == 404
