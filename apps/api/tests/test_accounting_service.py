from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import audit, events
from crmhub.accounting.schemas import (
    AccountCreate,
    JournalEntryCreate,
    JournalEntryVoid,
    JournalLineCreate,
    PaymentCreate,
    PaymentRefund,
    VersionedRequest,
)
from crmhub.accounting.service import accounting_service
from crmhub.core.database import Base
from crmhub.enums import AccountType, JournalEntryType, LineSide, PaymentMethod, PaymentStatus, PostingStatus
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
def admin() -> ActorUser:
    return ActorUser(user_id=str(uuid.uuid4()), permissions=set(), roles={"system_admin"})


@pytest.fixture()
def accounts(db_session: Session, admin: ActorUser) -> dict[str, uuid.UUID]:
    chart = {
        "cash": ("1000", "Cash", AccountType.ASSET),
        "receivables": ("1200", "Accounts Receivable", AccountType.ASSET),
        "revenue": ("4000", "Sales Revenue", AccountType.REVENUE),
    }
    return {
        key: accounting_service.create_account(
            db_session,
            admin,
            AccountCreate(account_number=number, name=name, account_type=account_type),
        ).id
        for key, (number, name, account_type) in chart.items()
    }


def _entry(debit: uuid.UUID, credit: uuid.UUID, amount: str, *, post: bool = False) -> JournalEntryCreate:
    return JournalEntryCreate(
        description="Invoice",
        post=post,
        lines=[
            JournalLineCreate(account_id=debit, side=LineSide.DEBIT, amount=Decimal(amount)),
            JournalLineCreate(account_id=credit, side=LineSide.CREDIT, amount=Decimal(amount)),
        ],
    )


def test_balanced_entry_is_drafted_then_posted(
    db_session: Session, admin: ActorUser, accounts: dict[str, uuid.UUID]
) -> None:
    draft = accounting_service.create_journal_entry(
        db_session, admin, _entry(accounts["receivables"], accounts["revenue"], "250.5")
    )
    assert draft.entry_number == "JE-000001"
    assert draft.posting_status == PostingStatus.DRAFT
    assert [(line.line_number, line.side) for line in draft.lines] == [(1, LineSide.DEBIT), (2, LineSide.CREDIT)]

    posted = accounting_service.post_journal_entry(db_session, admin, draft.id, VersionedRequest(version=draft.version))
    assert posted.posting_status == PostingStatus.POSTED
    assert posted.posted_by == admin.actor_uuid

    with pytest.raises(HTTPException) as exc_info:
        accounting_service.post_journal_entry(db_session, admin, draft.id, VersionedRequest(version=posted.version))
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "journal entry is posted"


def test_unbalanced_and_one_sided_entries_are_rejected(
    db_session: Session, admin: ActorUser, accounts: dict[str, uuid.UUID]
) -> None:
    unbalanced = JournalEntryCreate(
        lines=[
            JournalLineCreate(account_id=accounts["cash"], side=LineSide.DEBIT, amount=Decimal("100")),
            JournalLineCreate(account_id=accounts["revenue"], side=LineSide.CREDIT, amount=Decimal("99.5")),
        ]
    )
    with pytest.raises(HTTPException) as not_balanced:
        accounting_service.create_journal_entry(db_session, admin, unbalanced)
    assert not_balanced.value.status_code == 422
    assert not_balanced.value.detail == "journal entry is not balanced"

    one_sided = JournalEntryCreate(
        lines=[
            JournalLineCreate(account_id=accounts["cash"], side=LineSide.DEBIT, amount=Decimal("10")),
            JournalLineCreate(account_id=accounts["receivables"], side=LineSide.DEBIT, amount=Decimal("10")),
        ]
    )
    with pytest.raises(HTTPException) as single_side:
        accounting_service.create_journal_entry(db_session, admin, one_sided)
    assert single_side.value.status_code == 422


def test_void_books_a_reversal_and_keeps_trial_balance_even(
    db_session: Session, admin: ActorUser, accounts: dict[str, uuid.UUID]
) -> None:
    entry = accounting_service.create_journal_entry(
        db_session, admin, _entry(accounts["receivables"], accounts["revenue"], "125.5", post=True)
    )

    reversal = accounting_service.void_journal_entry(
        db_session, admin, entry.id, JournalEntryVoid(version=entry.version, reason="billed twice")
    )

    assert reversal.reversal_of_id == entry.id
    assert reversal.entry_type == JournalEntryType.REVERSING
    assert reversal.posting_status == PostingStatus.POSTED
    assert [line.side for line in reversal.lines] == [LineSide.CREDIT, LineSide.DEBIT]

    original = accounting_service.get_journal_entry(db_session, admin, entry.id)
    assert original.posting_status == PostingStatus.VOIDED
    assert original.voided_by == admin.actor_uuid

    report = accounting_service.trial_balance(db_session, admin)
    assert report.is_balanced is True
    assert report.total_debits == Decimal("251")
    by_number = {line.account_number: line for line in report.lines}
    assert by_number["1200"].balance == Decimal("0")
    assert by_number["4000"].balance == Decimal("0")
    assert audit.audit_entries[-1]["action"] == "accounting.journal_entry.voided"


def test_trial_balance_reports_normal_balances(
    db_session: Session, admin: ActorUser, accounts: dict[str, uuid.UUID]
) -> None:
    accounting_service.create_journal_entry(db_session, admin, _entry(accounts["cash"], accounts["revenue"], "80", post=True))
    accounting_service.create_journal_entry(db_session, admin, _entry(accounts["cash"], accounts["revenue"], "999"))

    report = accounting_service.trial_balance(db_session, admin)

    assert [line.account_number for line in report.lines] == ["1000", "4000"]
    cash, revenue = report.lines
    assert (cash.debit_total, cash.credit_total, cash.balance) == (Decimal("80"), Decimal("0"), Decimal("80"))
    assert (revenue.debit_total, revenue.credit_total, revenue.balance) == (Decimal("0"), Decimal("80"), Decimal("80"))
    assert report.total_debits == report.total_credits == Decimal("80")


def test_payment_posts_journal_entry_and_refund_reverses_it(
    db_session: Session, admin: ActorUser, accounts: dict[str, uuid.UUID]
) -> None:
    payment = accounting_service.record_payment(
        db_session,
        admin,
        PaymentCreate(
            amount=Decimal("42.25"),
            payment_method=PaymentMethod.BANK_TRANSFER,
            debit_account_id=accounts["cash"],
            credit_account_id=accounts["receivables"],
        ),
    )

    assert payment.transaction_number == "PAY-000001"
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.processed_at is not None
    entry = accounting_service.get_journal_entry(db_session, admin, payment.journal_entry_id)
    assert entry.posting_status == PostingStatus.POSTED
    assert entry.reference_type == "payment"
    assert entry.reference_id == payment.id

    refunded = accounting_service.refund_payment(
        db_session, admin, payment.id, PaymentRefund(version=payment.version, reason="customer cancelled")
    )
    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.refund_reason == "customer cancelled"
    assert accounting_service.get_journal_entry(db_session, admin, entry.id).posting_status == PostingStatus.VOIDED
    assert accounting_service.trial_balance(db_session, admin).is_balanced is True

    with pytest.raises(HTTPException) as exc_info:
        accounting_service.refund_payment(
            db_session, admin, payment.id, PaymentRefund(version=refunded.version, reason="again")
        )
    assert exc_info.value.status_code == 409


def test_pending_payment_has_no_journal_entry(db_session: Session, admin: ActorUser) -> None:
    payment = accounting_service.record_payment(
        db_session,
        admin,
        PaymentCreate(amount=Decimal("10"), payment_method=PaymentMethod.CASH, status=PaymentStatus.PENDING),
    )

    assert payment.journal_entry_id is None
    assert payment.processed_at is None

    with pytest.raises(HTTPException) as exc_info:
        accounting_service.refund_payment(db_session, admin, payment.id, PaymentRefund(version=payment.version, reason="n/a"))
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "payment is pending"
