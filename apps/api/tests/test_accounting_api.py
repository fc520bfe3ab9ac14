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

from crmhub.api.deps import get_current_user
from crmhub.core.database import Base, get_db
from crmhub.main import app
from crmhub.platform.security.actor import ActorUser


BOOKKEEPER = {"accounting.create", "accounting.read"}


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


@pytest.fixture()
def permissions() -> set[str]:
    return set(BOOKKEEPER)


@pytest.fixture()
def client(db_session: Session, permissions: set[str]) -> Generator[TestClient, None, None]:
    user_id = str(uuid.uuid4())

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id=user_id,
            permissions=permissions,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _accounts(client: TestClient) -> tuple[str, str]:
    cash = client.post("/api/accounting/accounts", json={"account_number": "1000", "name": "Cash", "account_type": "asset"})
    sales = client.post(
        "/api/accounting/accounts",
        json={"account_number": "4000", "name": "Sales", "account_type": "revenue"},
    )
    assert cash.status_code == 201
    assert sales.status_code == 201
    return cash.json()["id"], sales.json()["id"]


def _lines(debit: str, credit: str, amount: str) -> list[dict[str, str]]:
    return [
        {"account_id": debit, "side": "debit", "amount": amount},
        {"account_id": credit, "side": "credit", "amount": amount},
    ]


def test_posting_requires_post_permission(client: TestClient, permissions: set[str]) -> None:
    cash, sales = _accounts(client)

    denied = client.post("/api/accounting/journal-entries", json={"lines": _lines(cash, sales, "20"), "post": True})
    assert denied.status_code == 403
    assert denied.json()["code"] == "accounting_entry_create_failed"

    draft = client.post("/api/accounting/journal-entries", json={"lines": _lines(cash, sales, "20")})
    assert draft.status_code == 201
    assert draft.json()["posting_status"] == "draft"

    permissions.add("accounting.post")
    posted = client.post(
        f"/api/accounting/journal-entries/{draft.json()['id']}/post",
        json={"version": draft.json()["version"]},
    )
    assert posted.status_code == 200
    assert posted.json()["posting_status"] == "posted"

    voided = client.post(
        f"/api/accounting/journal-entries/{draft.json()['id']}/void",
        json={"version": posted.json()["version"], "reason": "wrong customer"},
    )
    assert voided.status_code == 201
    assert voided.json()["reversal_of_id"] == draft.json()["id"]

    report = client.get("/api/accounting/trial-balance")
    assert report.status_code == 200
    assert report.json()["is_balanced"] is True
    assert Decimal(report.json()["total_debits"]) == Decimal("40")


def test_unbalanced_entry_returns_error_envelope(client: TestClient) -> None:
    cash, sales = _accounts(client)

    response = client.post(
        "/api/accounting/journal-entries",
        json={
            "lines": [
                {"account_id": cash, "side": "debit", "amount": "10"},
                {"account_id": sales, "side": "credit", "amount": "7.5"},
            ]
        },
    )

    assert response.status_code == 422
    body = response.json()
    assert body["message"] == "journal entry is not balanced"
    assert body["code"] == "accounting_entry_create_failed"


def test_reading_without_permission_is_forbidden(client: TestClient, permissions: set[str]) -> None:
    permissions.clear()

    response = client.get("/api/accounting/accounts")

    assert response.status_code == 403
    assert response.json()["message"] == "Missing permission: accounting.read"
