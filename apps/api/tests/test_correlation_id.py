from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import audit, events
from crmhub.api.deps import get_current_user
from crmhub.core.config import get_settings
from crmhub.core.database import Base, get_db
from crmhub.main import app
from crmhub.middleware.rate_limit import reset_rate_limiter
from crmhub.models import AuditLog
from crmhub.platform.security.actor import ActorUser


ALL_PERMISSIONS = {
    "customer.create",
    "customer.read",
    "customer.update",
    "sales.create",
    "sales.read",
}


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
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    user_id = str(uuid.uuid4())

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id=user_id,
            permissions=ALL_PERMISSIONS,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_contact(client: TestClient, correlation_id: str, name: str = "Corr Contact") -> dict:
    response = client.post(
        "/api/crm/contacts",
        json={"first_name": name},
        headers={"X-Correlation-Id": correlation_id},
    )
    assert response.status_code == 201
    return response.json()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/crm/contacts/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(f"/api/crm/contacts/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_malformed_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get(f"/api/crm/contacts/{uuid.uuid4()}", headers={"X-Correlation-Id": "bad id; drop table"})
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value != "bad id; drop table"
    assert uuid.UUID(header_value)
    assert response.json()["correlation_id"] == header_value


def test_response_carries_a_request_id_distinct_from_correlation_id(client: TestClient) -> None:
    response = client.get(f"/api/crm/contacts/{uuid.uuid4()}", headers={"X-Correlation-Id": "corr-req-1"})
    request_id = response.headers.get("x-request-id")
    assert request_id
    assert request_id != "corr-req-1"


def test_audit_rows_use_request_correlation_id(client: TestClient, db_session: Session) -> None:
    contact = _create_contact(client, "corr-audit-1")

    rows = db_session.scalars(
        select(AuditLog).where(AuditLog.table_name == "crm_contacts", AuditLog.record_id == uuid.UUID(contact["id"]))
    ).all()
    assert rows
    assert rows[-1].correlation_id == "corr-audit-1"


def test_event_envelope_includes_correlation_id(client: TestClient) -> None:
    response = client.post(
        "/api/crm/leads",
        json={"title": "Corr Lead", "lead_source": "website"},
        headers={"X-Correlation-Id": "corr-event-1"},
    )
    assert response.status_code == 201

    created_events = [item for item in events.published_events if item.get("event_type") == "crm.lead.created"]
    assert created_events
    assert created_events[-1].get("correlation_id") == "corr-event-1"


def test_security_audit_note_carries_correlation_id(client: TestClient) -> None:
    contact = _create_contact(client, "corr-fls-1")

    denied = client.patch(
        f"/api/crm/contacts/{contact['id']}",
        json={"version": contact["version"], "credit_limit": "10"},
        headers={"X-Correlation-Id": "corr-fls-1"},
    )
    assert denied.status_code == 403

    notes = [entry for entry in audit.audit_entries if entry.get("correlation_id") == "corr-fls-1"]
    assert notes


def test_rate_limited_response_includes_correlation_id(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_CRM_MUTATIONS_PER_MINUTE", "1")
    get_settings.cache_clear()
    reset_rate_limiter()

    _create_contact(client, "corr-rate-1", "Rate Limit Contact 1")

    second = client.post(
        "/api/crm/contacts",
        json={"first_name": "Rate Limit Contact 2"},
        headers={"X-Correlation-Id": "corr-rate-1"},
    )
    assert second.status_code == 429
    payload = second.json()
    assert payload["correlation_id"] == "corr-rate-1"
    assert second.headers.get("x-correlation-id") == "corr-rate-1"
