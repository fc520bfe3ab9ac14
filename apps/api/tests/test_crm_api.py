from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import audit, events
from crmhub.api.deps import get_current_user
from crmhub.core.config import get_settings
from crmhub.core.database import Base, get_db
from crmhub.main import app
from crmhub.middleware.rate_limit import reset_rate_limiter
from crmhub.platform.security.actor import ActorUser


SALES_PERMISSIONS = {
    "customer.create",
    "customer.delete",
    "customer.read",
    "customer.update",
    "sales.create",
    "sales.read",
    "sales.update",
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
def disable_rate_limit(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def acting() -> dict[str, ActorUser]:
    return {"user": ActorUser(user_id=str(uuid.uuid4()), permissions=set(SALES_PERMISSIONS))}


@pytest.fixture()
def client(db_session: Session, acting: dict[str, ActorUser]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        actor = acting["user"]
        actor.correlation_id = getattr(request.state, "correlation_id", None)
        return actor

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_create_and_read_contact(client: TestClient) -> None:
    created = client.post("/api/crm/contacts", json={"first_name": "Ada", "last_name": "Lovelace", "tags": ["vip"]})
    assert created.status_code == 201
    body = created.json()
    assert body["full_name"] == "Ada Lovelace"
    assert body["version"] == 1

    fetched = client.get(f"/api/crm/contacts/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["tags"] == ["vip"]

    listed = client.get("/api/crm/contacts")
    assert [row["id"] for row in listed.json()] == [body["id"]]


def test_contact_without_a_name_is_rejected(client: TestClient) -> None:
    response = client.post("/api/crm/contacts", json={"company_name": "Nameless Ltd"})

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "crm_contact_create_failed"
    assert body["message"] == "first_name or last_name is required"


def test_credit_limit_is_masked_for_non_admin_readers(client: TestClient, acting: dict[str, ActorUser]) -> None:
    reader = acting["user"]
    acting["user"] = ActorUser(user_id=str(uuid.uuid4()), permissions=set(), roles={"system_admin"})
    created = client.post(
        "/api/crm/contacts",
        json={"first_name": "Rosalind", "credit_limit": "1500.50", "assigned_to": str(reader.actor_uuid)},
    )
    assert created.status_code == 201
    assert Decimal(created.json()["credit_limit"]) == Decimal("1500.50")

    acting["user"] = reader
    fetched = client.get(f"/api/crm/contacts/{created.json()['id']}")

    assert fetched.status_code == 200
    assert fetched.json()["credit_limit"] == "***"


def test_editing_credit_limit_needs_field_permission(client: TestClient) -> None:
    created = client.post("/api/crm/contacts", json={"first_name": "Lise"})

    response = client.patch(
        f"/api/crm/contacts/{created.json()['id']}",
        json={"version": 1, "credit_limit": "100"},
    )

    assert response.status_code == 403
    assert response.json()["details"] == {"forbidden_fields": ["credit_limit"]}


def test_other_users_cannot_see_private_contacts(client: TestClient, acting: dict[str, ActorUser]) -> None:
    created = client.post("/api/crm/contacts", json={"first_name": "Emmy", "last_name": "Noether"})
    acting["user"] = ActorUser(user_id=str(uuid.uuid4()), permissions=set(SALES_PERMISSIONS))

    response = client.get(f"/api/crm/contacts/{created.json()['id']}")

    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "crm_contact_get_failed"
    assert body["message"] == "contact not found"
    assert client.get("/api/crm/contacts").json() == []


def test_missing_permission_is_forbidden(client: TestClient, acting: dict[str, ActorUser]) -> None:
    acting["user"] = ActorUser(user_id=str(uuid.uuid4()), permissions={"customer.read"})

    response = client.post("/api/crm/contacts", json={"first_name": "Chien-Shiung"})

    assert response.status_code == 403
    assert response.json()["message"] == "Missing permission: customer.create"


def test_convert_lead_then_close_opportunity(client: TestClient) -> None:
    contact = client.post("/api/crm/contacts", json={"first_name": "Marie", "company_name": "Curie SARL"}).json()
    lead = client.post(
        "/api/crm/leads",
        json={"title": "Radium supply", "contact_id": contact["id"], "estimated_value": "2500"},
    ).json()
    assert lead["lead_status"] == "new"

    converted = client.post(
        f"/api/crm/leads/{lead['id']}/convert",
        json={"version": lead["version"], "amount": "2500", "probability": 40},
    )
    assert converted.status_code == 200
    body = converted.json()
    assert body["lead"]["is_converted"] is True
    assert body["lead"]["lead_status"] == "converted"
    opportunity = body["opportunity"]
    assert body["lead"]["converted_to_opportunity_id"] == opportunity["id"]
    assert opportunity["name"] == "Radium supply"
    assert Decimal(opportunity["expected_revenue"]) == Decimal("1000")

    again = client.post(
        f"/api/crm/leads/{lead['id']}/convert",
        json={"version": body["lead"]["version"]},
    )
    assert again.status_code == 409
    assert again.json()["message"] == "lead already converted"

    closed = client.post(
        f"/api/crm/opportunities/{opportunity['id']}/close",
        json={"outcome": "won", "reason": "best price", "version": opportunity["version"]},
    )
    assert closed.status_code == 200
    assert closed.json()["opportunity_status"] == "won"
    assert closed.json()["probability"] == 100
    assert closed.json()["win_reason"] == "best price"
    assert closed.json()["closed_at"] is not None

    reopened = client.post(
        f"/api/crm/opportunities/{opportunity['id']}/close",
        json={"outcome": "lost", "reason": "changed mind", "version": closed.json()["version"]},
    )
    assert reopened.status_code == 409


def test_delete_contact_hides_it(client: TestClient) -> None:
    created = client.post("/api/crm/contacts", json={"last_name": "Franklin"}).json()

    deleted = client.delete(f"/api/crm/contacts/{created['id']}")

    assert deleted.status_code == 200
    assert deleted.json() == {"status": "deleted"}
    assert client.get(f"/api/crm/contacts/{created['id']}").status_code == 404
    assert any(event["event_type"] == "crm.contact.created" for event in events.published_events)


def test_stale_update_reports_both_versions(client: TestClient) -> None:
    created = client.post("/api/crm/contacts", json={"first_name": "Hedy"}).json()
    assert client.patch(f"/api/crm/contacts/{created['id']}", json={"version": 1, "last_name": "Lamarr"}).status_code == 200

    stale = client.patch(f"/api/crm/contacts/{created['id']}", json={"version": 1, "last_name": "Kiesler"})

    assert stale.status_code == 409
    body = stale.json()
    assert body["code"] == "crm_contact_update_failed"
    assert body["message"] == "version conflict"
    assert body["details"] == {"record_id": created["id"], "expected": 1, "actual": 2}
