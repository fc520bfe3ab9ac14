from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub.api.deps import get_current_user
from crmhub.core.config import get_settings
from crmhub.core.database import Base, get_db
from crmhub.main import app
from crmhub.middleware.rate_limit import reset_rate_limiter, resolve_route_group
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
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_CRM_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            permissions={"customer.read", "customer.create", "sales.create"},
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_mutating_crm_endpoints_are_rate_limited(client: TestClient) -> None:
    responses = [client.post("/api/crm/contacts", json={"first_name": f"Limited {index}"}) for index in range(5)]

    assert [response.status_code for response in responses[:3]] == [201, 201, 201]
    limited = [response for response in responses if response.status_code == 429]
    assert limited

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] is not None
    assert first_limited.headers.get("Retry-After") is not None


def test_buckets_are_kept_per_route_group(client: TestClient) -> None:
    for index in range(3):
        assert client.post("/api/crm/contacts", json={"first_name": f"Bucket {index}"}).status_code == 201
    assert client.post("/api/crm/contacts", json={"first_name": "Over"}).status_code == 429

    lead = client.post("/api/crm/leads", json={"title": "Separate bucket"})
    assert lead.status_code == 201


def test_get_endpoints_are_not_rate_limited(client: TestClient) -> None:
    create = client.post("/api/crm/contacts", json={"first_name": "Readable"})
    assert create.status_code == 201

    responses = [client.get("/api/crm/contacts") for _ in range(10)]
    assert all(response.status_code != 429 for response in responses)


def test_limited_response_names_the_route_group(client: TestClient) -> None:
    responses = [client.post("/api/crm/leads", json={"title": f"Lead {index}"}) for index in range(4)]

    assert responses[-1].status_code == 429
    assert responses[-1].json()["details"]["route_group"] == "leads"


def test_each_token_subject_gets_its_own_bucket(client: TestClient) -> None:
    settings = get_settings()

    def bearer(subject: str) -> dict[str, str]:
        token = jwt.encode({"sub": subject}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
        return {"Authorization": f"Bearer {token}"}

    for index in range(3):
        response = client.post("/api/crm/contacts", json={"first_name": f"Alice {index}"}, headers=bearer("alice"))
        assert response.status_code == 201
    assert client.post("/api/crm/contacts", json={"first_name": "Alice 4"}, headers=bearer("alice")).status_code == 429

    other = client.post("/api/crm/contacts", json={"first_name": "Bob"}, headers=bearer("bob"))
    assert other.status_code == 201


@pytest.mark.parametrize(
    ("path", "group"),
    [
        ("/api/crm/contacts", "contacts"),
        (f"/api/crm/contacts/{uuid.uuid4()}/restore", "contacts"),
        ("/api/crm", "crm"),
    ],
)
def test_route_group_is_the_resource_segment(path: str, group: str) -> None:
    assert resolve_route_group(path) == group
