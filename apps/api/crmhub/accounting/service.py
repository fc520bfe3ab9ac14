"""Chart of accounts, double-entry journal, payments and external ledger sync bookkeeping.

Journal entries are created as drafts (or posted straight away) and are never
edited once posted. Voiding a posted entry books a reversing entry with the
debit and credit sides swapped and flags the original as voided, so both stay
in the ledger and net to zero in the trial balance.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from crmhub import audit
from crmhub.accounting.models import Account, AccountMapping, JournalEntry, JournalEntryLine, PaymentTransaction, SyncLog
from crmhub.accounting.repositories import (
    account_repository,
    journal_entry_repository,
    journal_line_repository,
    mapping_repository,
    payment_repository,
    sync_log_repository,
)
from crmhub.accounting.schemas import (
    AccountCreate,
    AccountMappingCreate,
    AccountMappingRead,
    AccountRead,
    AccountUpdate,
    JournalEntryCreate,
    JournalEntryRead,
    JournalEntryVoid,
    JournalLineCreate,
    JournalLineRead,
    PaymentCreate,
    PaymentRead,
    PaymentRefund,
    SyncLogCreate,
    SyncLogRead,
    TrialBalance,
    TrialBalanceLine,
    VersionedRequest,
)
from crmhub.enums import (
    AccountType,
    JournalEntryType,
    LineSide,
    PaymentStatus,
    PostingStatus,
    SyncStatus,
)
from crmhub.metrics import observe_journal_entry_posted, observe_journal_post_failure
from crmhub.platform.persistence import utcnow
from crmhub.platform.security.actor import ActorUser, to_auth_context
from crmhub.platform.security.repository import BaseRepository
from crmhub.services.common import (
    bind,
    check_version,
    commit_or_conflict,
    flush_or_conflict,
    next_sequence_number,
    not_found,
    publish,
    security_errors_as_http,
    unprocessable,
)


logger = logging.getLogger("crmhub.accounting")

PRECISION = Decimal("0.0001")
DEBIT_NORMAL = {AccountType.ASSET, AccountType.EXPENSE}
LEDGER_STATUSES = (PostingStatus.POSTED, PostingStatus.VOIDED)


def _conflict(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


class AccountingService:
    # chart of accounts

    def create_account(self, session: Session, actor_user: ActorUser, dto: AccountCreate) -> AccountRead:
        bind(session, actor_user)
        values = dto.model_dump(exclude={"metadata"})
        self._authorize(actor_user, account_repository, values)
        parent = self._live_account(session, dto.parent_id, "parent_id")
        if parent is not None and parent.account_type != dto.account_type:
            raise unprocessable("sub-accounts must share the parent's account type")

        account = Account(**values, account_metadata=dto.metadata)
        self._place(account, parent)
        session.add(account)
        flush_or_conflict(session, "account number already in use")
        publish(
            "accounting.account.created",
            actor_user,
            {"id": str(account.id), "account_number": account.account_number},
        )
        commit_or_conflict(session, "account number already in use")
        session.refresh(account)
        return self._read(AccountRead, account_repository, account, actor_user)

    def get_account(self, session: Session, actor_user: ActorUser, account_id: uuid.UUID) -> AccountRead:
        account = self._visible(session, actor_user, account_repository, account_id, "account")
        return self._read(AccountRead, account_repository, account, actor_user)

    def list_accounts(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        account_type: AccountType | None = None,
        parent_id: uuid.UUID | None = None,
        active_only: bool = False,
    ) -> list[AccountRead]:
        stmt = select(Account).where(Account.deleted_at.is_(None))
        if account_type is not None:
            stmt = stmt.where(Account.account_type == account_type)
        if parent_id is not None:
            stmt = stmt.where(Account.parent_id == parent_id)
        if active_only:
            stmt = stmt.where(Account.is_active.is_(True))
        stmt = account_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(Account.account_number)).all()
        return [self._read(AccountRead, account_repository, row, actor_user) for row in rows]

    def update_account(
        self,
        session: Session,
        actor_user: ActorUser,
        account_id: uuid.UUID,
        dto: AccountUpdate,
    ) -> AccountRead:
        bind(session, actor_user)
        account = self._visible(session, actor_user, account_repository, account_id, "account")
        changes = dto.model_dump(exclude_unset=True)
        expected = changes.pop("version", None)
        self._authorize(actor_user, account_repository, changes)
        check_version(account, expected, "chart_of_accounts")
        if account.is_system:
            raise _conflict("system accounts cannot be modified")

        moved = "parent_id" in changes and changes["parent_id"] != account.parent_id
        renumbered = changes.get("account_number") not in (None, account.account_number)
        if moved:
            parent = self._live_account(session, changes["parent_id"], "parent_id")
            if parent is not None:
                if parent.id == account.id or str(account.account_number) in parent.path:
                    raise unprocessable("account hierarchy cannot contain cycles")
                if parent.account_type != account.account_type:
                    raise unprocessable("sub-accounts must share the parent's account type")
        if "metadata" in changes:
            changes["account_metadata"] = changes.pop("metadata") or {}
        for key, value in changes.items():
            if value is not None or key in {"description", "parent_id", "notes"}:
                setattr(account, key, value)

        if moved or renumbered:
            self._place(account, session.get(Account, account.parent_id) if account.parent_id else None)
            self._replace_descendants(session, account)
        publish(
            "accounting.account.updated",
            actor_user,
            {"id": str(account.id), "fields": sorted(changes)},
        )
        commit_or_conflict(session, "account number already in use")
        session.refresh(account)
        return self._read(AccountRead, account_repository, account, actor_user)

    def delete_account(self, session: Session, actor_user: ActorUser, account_id: uuid.UUID) -> None:
        bind(session, actor_user)
        account = self._visible(session, actor_user, account_repository, account_id, "account")
        if account.is_system:
            raise _conflict("system accounts cannot be deleted")
        if self._children(session, account.id):
            raise _conflict("account has sub-accounts")
        used = session.scalar(
            select(JournalEntryLine.id).where(
                JournalEntryLine.account_id == account.id,
                JournalEntryLine.deleted_at.is_(None),
            )
        )
        if used is not None:
            raise _conflict("account has journal lines")
        for mapping in session.scalars(
            select(AccountMapping).where(AccountMapping.account_id == account.id, AccountMapping.deleted_at.is_(None))
        ):
            mapping.soft_delete(actor_user.actor_uuid)
        account.soft_delete(actor_user.actor_uuid)
        publish("accounting.account.deleted", actor_user, {"id": str(account.id)})
        commit_or_conflict(session, "account could not be deleted")

    # journal

    def create_journal_entry(self, session: Session, actor_user: ActorUser, dto: JournalEntryCreate) -> JournalEntryRead:
        """Record a balanced entry as a draft, or post it at once when ``post`` is set."""

        bind(session, actor_user)
        self._authorize(actor_user, journal_entry_repository, dto.model_dump(exclude={"lines", "post"}, exclude_unset=True))
        entry = self._book(
            session,
            dto.lines,
            entry_date=dto.entry_date or utcnow().date(),
            description=dto.description,
            entry_type=dto.entry_type,
            reference_type=dto.reference_type,
            reference_id=dto.reference_id,
            notes=dto.notes,
            entry_metadata=dto.metadata,
        )
        if dto.post:
            self._post(entry, actor_user)
        publish(
            "accounting.journal_entry.created",
            actor_user,
            {"id": str(entry.id), "entry_number": entry.entry_number, "posted": dto.post},
        )
        commit_or_conflict(session, "journal entry could not be recorded")
        if dto.post:
            self._after_post(entry, actor_user)
        return self._entry_read(session, entry.id, actor_user)

    def post_journal_entry(
        self,
        session: Session,
        actor_user: ActorUser,
        entry_id: uuid.UUID,
        dto: VersionedRequest,
    ) -> JournalEntryRead:
        bind(session, actor_user)
        entry = self._visible(session, actor_user, journal_entry_repository, entry_id, "journal entry")
        check_version(entry, dto.version, "journal_entries")
        if entry.posting_status != PostingStatus.DRAFT:
            observe_journal_post_failure("not_draft")
            raise _conflict(f"journal entry is {entry.posting_status.value}")
        lines = self._lines(session, entry.id)
        self._check_balanced([(line.entry_type, line.amount) for line in lines])
        self._check_accounts(session, [line.account_id for line in lines])
        self._post(entry, actor_user)
        publish("accounting.journal_entry.posted", actor_user, {"id": str(entry.id)})
        commit_or_conflict(session, "journal entry could not be posted")
        self._after_post(entry, actor_user)
        return self._entry_read(session, entry.id, actor_user)

    def void_journal_entry(
        self,
        session: Session,
        actor_user: ActorUser,
        entry_id: uuid.UUID,
        dto: JournalEntryVoid,
    ) -> JournalEntryRead:
        """Void a posted entry by booking its reversal; returns the reversing entry."""

        bind(session, actor_user)
        entry = self._visible(session, actor_user, journal_entry_repository, entry_id, "journal entry")
        check_version(entry, dto.version, "journal_entries")
        if entry.posting_status != PostingStatus.POSTED:
            raise _conflict(f"journal entry is {entry.posting_status.value}")
        reversal = self._reverse(session, entry, actor_user, dto.reason, dto.void_date)
        commit_or_conflict(session, "journal entry could not be voided")
        self._after_post(reversal, actor_user)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type="accounting.journal_entry",
            entity_id=str(entry.id),
            action="accounting.journal_entry.voided",
            before={"posting_status": PostingStatus.POSTED.value},
            after={"posting_status": PostingStatus.VOIDED.value, "reversal_entry_id": str(reversal.id)},
            correlation_id=actor_user.correlation_id,
            category="domain",
        )
        return self._entry_read(session, reversal.id, actor_user)

    def get_journal_entry(self, session: Session, actor_user: ActorUser, entry_id: uuid.UUID) -> JournalEntryRead:
        entry = self._visible(session, actor_user, journal_entry_repository, entry_id, "journal entry")
        return self._entry_read(session, entry.id, actor_user)

    def list_journal_entries(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        posting_status: PostingStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        reference_type: str | None = None,
        reference_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[JournalEntryRead]:
        stmt = select(JournalEntry).where(JournalEntry.deleted_at.is_(None)).options(selectinload(JournalEntry.lines))
        if posting_status is not None:
            stmt = stmt.where(JournalEntry.posting_status == posting_status)
        if start_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end_date)
        if reference_type is not None:
            stmt = stmt.where(JournalEntry.reference_type == reference_type)
        if reference_id is not None:
            stmt = stmt.where(JournalEntry.reference_id == reference_id)
        stmt = journal_entry_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(
            stmt.order_by(JournalEntry.entry_date.desc(), JournalEntry.entry_number.desc()).offset(offset).limit(limit)
        ).all()
        return [self._to_entry_read(row, list(row.lines), actor_user) for row in rows]

    # payments

    def record_payment(self, session: Session, actor_user: ActorUser, dto: PaymentCreate) -> PaymentRead:
        bind(session, actor_user)
        values = dto.model_dump(exclude={"metadata", "debit_account_id", "credit_account_id"}, exclude_unset=True)
        self._authorize(actor_user, payment_repository, values)

        now = utcnow()
        payment = PaymentTransaction(
            transaction_number=next_sequence_number(
                session,
                PaymentTransaction,
                PaymentTransaction.transaction_number,
                "PAY",
            ),
            payment_date=dto.payment_date or now,
            description=dto.description,
            amount=dto.amount,
            currency_code=dto.currency_code,
            exchange_rate=dto.exchange_rate,
            payment_method=dto.payment_method,
            payment_reference=dto.payment_reference,
            status=dto.status,
            processed_at=now if dto.status == PaymentStatus.COMPLETED else None,
            reference_type=dto.reference_type,
            reference_id=dto.reference_id,
            notes=dto.notes,
            payment_metadata=dto.metadata,
        )
        session.add(payment)
        flush_or_conflict(session, "payment number already in use")

        entry = None
        if dto.debit_account_id is not None and dto.credit_account_id is not None:
            booked = (dto.amount * dto.exchange_rate).quantize(PRECISION)
            entry = self._book(
                session,
                [
                    JournalLineCreate(account_id=dto.debit_account_id, side=LineSide.DEBIT, amount=booked),
                    JournalLineCreate(account_id=dto.credit_account_id, side=LineSide.CREDIT, amount=booked),
                ],
                entry_date=payment.payment_date.date(),
                description=dto.description or f"Payment {payment.transaction_number}",
                entry_type=JournalEntryType.STANDARD,
                reference_type="payment",
                reference_id=payment.id,
            )
            self._post(entry, actor_user)
            payment.journal_entry_id = entry.id

        publish(
            "accounting.payment.recorded",
            actor_user,
            {
                "id": str(payment.id),
                "transaction_number": payment.transaction_number,
                "amount": str(payment.amount),
                "journal_entry_id": str(entry.id) if entry else None,
            },
        )
        commit_or_conflict(session, "payment could not be recorded")
        if entry is not None:
            self._after_post(entry, actor_user)
        session.refresh(payment)
        logger.info("accounting.payment_recorded", extra={"payment_id": str(payment.id)})
        return self._read(PaymentRead, payment_repository, payment, actor_user)

    def get_payment(self, session: Session, actor_user: ActorUser, payment_id: uuid.UUID) -> PaymentRead:
        payment = self._visible(session, actor_user, payment_repository, payment_id, "payment")
        return self._read(PaymentRead, payment_repository, payment, actor_user)

    def list_payments(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        status_value: PaymentStatus | None = None,
        reference_type: str | None = None,
        reference_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PaymentRead]:
        stmt = select(PaymentTransaction).where(PaymentTransaction.deleted_at.is_(None))
        if status_value is not None:
            stmt = stmt.where(PaymentTransaction.status == status_value)
        if reference_type is not None:
            stmt = stmt.where(PaymentTransaction.reference_type == reference_type)
        if reference_id is not None:
            stmt = stmt.where(PaymentTransaction.reference_id == reference_id)
        stmt = payment_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(
            stmt.order_by(PaymentTransaction.payment_date.desc(), PaymentTransaction.transaction_number.desc())
            .offset(offset)
            .limit(limit)
        ).all()
        return [self._read(PaymentRead, payment_repository, row, actor_user) for row in rows]

    def refund_payment(
        self,
        session: Session,
        actor_user: ActorUser,
        payment_id: uuid.UUID,
        dto: PaymentRefund,
    ) -> PaymentRead:
        bind(session, actor_user)
        payment = self._visible(session, actor_user, payment_repository, payment_id, "payment")
        check_version(payment, dto.version, "payment_transactions")
        if payment.status != PaymentStatus.COMPLETED:
            raise _conflict(f"payment is {payment.status.value}")

        reversal = None
        if payment.journal_entry_id is not None:
            entry = session.get(JournalEntry, payment.journal_entry_id)
            if entry is not None and entry.posting_status == PostingStatus.POSTED:
                reversal = self._reverse(session, entry, actor_user, f"Refund: {dto.reason}", None)
        payment.status = PaymentStatus.REFUNDED
        payment.refunded_at = utcnow()
        payment.refund_reason = dto.reason
        publish(
            "accounting.payment.refunded",
            actor_user,
            {"id": str(payment.id), "reversal_entry_id": str(reversal.id) if reversal else None},
        )
        commit_or_conflict(session, "payment could not be refunded")
        if reversal is not None:
            self._after_post(reversal, actor_user)
        session.refresh(payment)
        return self._read(PaymentRead, payment_repository, payment, actor_user)

    # external systems

    def map_account(
        self,
        session: Session,
        actor_user: ActorUser,
        account_id: uuid.UUID,
        dto: AccountMappingCreate,
    ) -> AccountMappingRead:
        """Create or replace the account's mapping for one external system."""

        bind(session, actor_user)
        account = self._visible(session, actor_user, account_repository, account_id, "account")
        values = dto.model_dump(exclude={"metadata"})
        self._authorize(actor_user, mapping_repository, values)
        mapping = session.scalar(
            select(AccountMapping).where(
                AccountMapping.account_id == account.id,
                AccountMapping.external_system == dto.external_system,
                AccountMapping.deleted_at.is_(None),
            )
        )
        if mapping is None:
            mapping = AccountMapping(account_id=account.id, **values, mapping_metadata=dto.metadata)
            session.add(mapping)
        else:
            for key, value in values.items():
                setattr(mapping, key, value)
            mapping.mapping_metadata = dto.metadata
            mapping.sync_status = SyncStatus.PENDING
            mapping.sync_error = None
        account.external_refs = {**(account.external_refs or {}), dto.external_system.value: dto.external_id}
        account.sync_status = SyncStatus.PENDING
        flush_or_conflict(session, "account is already mapped for this system")
        publish(
            "accounting.account.mapped",
            actor_user,
            {"account_id": str(account.id), "external_system": dto.external_system.value, "external_id": dto.external_id},
        )
        commit_or_conflict(session, "account is already mapped for this system")
        session.refresh(mapping)
        return self._read(AccountMappingRead, mapping_repository, mapping, actor_user)

    def list_account_mappings(
        self,
        session: Session,
        actor_user: ActorUser,
        account_id: uuid.UUID,
    ) -> list[AccountMappingRead]:
        account = self._visible(session, actor_user, account_repository, account_id, "account")
        stmt = select(AccountMapping).where(AccountMapping.account_id == account.id, AccountMapping.deleted_at.is_(None))
        stmt = mapping_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(AccountMapping.external_system)).all()
        return [self._read(AccountMappingRead, mapping_repository, row, actor_user) for row in rows]

    def record_sync(self, session: Session, actor_user: ActorUser, dto: SyncLogCreate) -> SyncLogRead:
        """Log one sync run; a finished run marks the system's mappings with its outcome."""

        bind(session, actor_user)
        values = dto.model_dump()
        self._authorize(actor_user, sync_log_repository, values)
        values["started_at"] = dto.started_at or utcnow()
        log = SyncLog(**values)
        session.add(log)

        if dto.external_system is not None and dto.status in {SyncStatus.SYNCED, SyncStatus.FAILED}:
            finished = dto.completed_at or utcnow()
            for mapping in session.scalars(
                select(AccountMapping).where(
                    AccountMapping.external_system == dto.external_system,
                    AccountMapping.deleted_at.is_(None),
                )
            ):
                mapping.sync_status = dto.status
                mapping.sync_error = dto.error_message if dto.status == SyncStatus.FAILED else None
                if dto.status == SyncStatus.SYNCED:
                    mapping.last_synced_at = finished
        publish(
            "accounting.sync.recorded",
            actor_user,
            {
                "sync_type": dto.sync_type.value,
                "status": dto.status.value,
                "records_processed": dto.records_processed,
            },
        )
        commit_or_conflict(session, "sync log violates record count rules")
        session.refresh(log)
        return self._read(SyncLogRead, sync_log_repository, log, actor_user)

    def list_sync_logs(self, session: Session, actor_user: ActorUser, *, limit: int = 50) -> list[SyncLogRead]:
        stmt = select(SyncLog).where(SyncLog.deleted_at.is_(None))
        stmt = sync_log_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(SyncLog.started_at.desc()).limit(limit)).all()
        return [self._read(SyncLogRead, sync_log_repository, row, actor_user) for row in rows]

    # reporting

    def trial_balance(self, session: Session, actor_user: ActorUser, *, as_of: date | None = None) -> TrialBalance:
        """Debit and credit totals per account over posted (and voided plus reversing) entries."""

        as_of = as_of or utcnow().date()
        stmt = (
            select(JournalEntryLine.account_id, JournalEntryLine.entry_type, func.sum(JournalEntryLine.amount))
            .join(JournalEntry, JournalEntry.id == JournalEntryLine.journal_entry_id)
            .where(
                JournalEntry.posting_status.in_(LEDGER_STATUSES),
                JournalEntry.entry_date <= as_of,
                JournalEntry.deleted_at.is_(None),
                JournalEntryLine.deleted_at.is_(None),
            )
            .group_by(JournalEntryLine.account_id, JournalEntryLine.entry_type)
        )
        totals: dict[uuid.UUID, dict[LineSide, Decimal]] = {}
        for account_id, side, amount in session.execute(stmt):
            totals.setdefault(account_id, {LineSide.DEBIT: Decimal("0"), LineSide.CREDIT: Decimal("0")})
            totals[account_id][LineSide(side)] = Decimal(amount or 0).quantize(PRECISION)

        accounts = session.scalars(select(Account).where(Account.id.in_(list(totals)))).all() if totals else []
        lines: list[TrialBalanceLine] = []
        for account in sorted(accounts, key=lambda item: item.account_number):
            debit = totals[account.id][LineSide.DEBIT]
            credit = totals[account.id][LineSide.CREDIT]
            balance = debit - credit if account.account_type in DEBIT_NORMAL else credit - debit
            lines.append(
                TrialBalanceLine(
                    account_id=account.id,
                    account_number=account.account_number,
                    name=account.name,
                    account_type=account.account_type,
                    debit_total=debit,
                    credit_total=credit,
                    balance=balance,
                )
            )
        total_debits = sum((line.debit_total for line in lines), Decimal("0"))
        total_credits = sum((line.credit_total for line in lines), Decimal("0"))
        return TrialBalance(
            as_of=as_of,
            lines=lines,
            total_debits=total_debits,
            total_credits=total_credits,
            is_balanced=total_debits == total_credits,
        )

    # helpers

    def _visible(
        self,
        session: Session,
        actor_user: ActorUser,
        repository: BaseRepository,
        record_id: uuid.UUID,
        label: str,
    ) -> Any:
        model = repository.model
        stmt = select(model).where(model.id == record_id, model.deleted_at.is_(None))
        record = session.scalar(repository.apply_scope_query(stmt, to_auth_context(actor_user)))
        if record is None:
            raise not_found(label)
        return record

    @staticmethod
    def _authorize(actor_user: ActorUser, repository: BaseRepository, payload: dict[str, Any]) -> None:
        with security_errors_as_http():
            repository.validate_write_security(payload, to_auth_context(actor_user))

    @staticmethod
    def _read(schema: Any, repository: BaseRepository, record: Any, actor_user: ActorUser) -> Any:
        payload = schema.model_validate(record).model_dump()
        return schema.model_validate(repository.apply_read_security(payload, to_auth_context(actor_user)))

    @staticmethod
    def _live_account(session: Session, account_id: uuid.UUID | None, field: str) -> Account | None:
        if account_id is None:
            return None
        account = session.scalar(select(Account).where(Account.id == account_id, Account.deleted_at.is_(None)))
        if account is None:
            raise unprocessable(f"{field} does not reference a live account")
        return account

    @staticmethod
    def _children(session: Session, account_id: uuid.UUID) -> list[Account]:
        return list(
            session.scalars(
                select(Account).where(Account.parent_id == account_id, Account.deleted_at.is_(None))
            ).all()
        )

    @staticmethod
    def _place(account: Account, parent: Account | None) -> None:
        if parent is None:
            account.path = [account.account_number]
            account.level = 1
        else:
            account.path = [*parent.path, account.account_number]
            account.level = parent.level + 1

    def _replace_descendants(self, session: Session, account: Account) -> None:
        for child in self._children(session, account.id):
            self._place(child, account)
            self._replace_descendants(session, child)

    @staticmethod
    def _check_balanced(lines: list[tuple[LineSide, Decimal]]) -> None:
        debits = sum((amount for side, amount in lines if side == LineSide.DEBIT), Decimal("0"))
        credits = sum((amount for side, amount in lines if side == LineSide.CREDIT), Decimal("0"))
        if debits == 0 or credits == 0:
            observe_journal_post_failure("one_sided_entry")
            raise unprocessable("journal entry needs at least one debit and one credit line")
        if debits.quantize(PRECISION) != credits.quantize(PRECISION):
            observe_journal_post_failure("unbalanced_entry")
            raise unprocessable("journal entry is not balanced")

    @staticmethod
    def _check_accounts(session: Session, account_ids: list[uuid.UUID], *, require_active: bool = True) -> None:
        wanted = set(account_ids)
        accounts = session.scalars(
            select(Account).where(Account.id.in_(list(wanted)), Account.deleted_at.is_(None))
        ).all()
        if len(accounts) != len(wanted):
            observe_journal_post_failure("account_not_found")
            raise unprocessable("one or more accounts not found")
        if require_active and any(not account.is_active for account in accounts):
            observe_journal_post_failure("account_inactive")
            raise unprocessable("journal lines cannot use inactive accounts")

    def _book(
        self,
        session: Session,
        lines: list[JournalLineCreate],
        *,
        require_active: bool = True,
        **values: Any,
    ) -> JournalEntry:
        self._check_balanced([(line.side, line.amount) for line in lines])
        self._check_accounts(session, [line.account_id for line in lines], require_active=require_active)
        entry = JournalEntry(
            entry_number=next_sequence_number(session, JournalEntry, JournalEntry.entry_number, "JE"),
            posting_status=PostingStatus.DRAFT,
            **values,
        )
        session.add(entry)
        flush_or_conflict(session, "journal entry number already in use")
        for number, line in enumerate(lines, start=1):
            session.add(
                JournalEntryLine(
                    journal_entry_id=entry.id,
                    line_number=number,
                    account_id=line.account_id,
                    description=line.description,
                    amount=line.amount,
                    entry_type=line.side,
                )
            )
        flush_or_conflict(session, "journal line rejected")
        return entry

    @staticmethod
    def _post(entry: JournalEntry, actor_user: ActorUser) -> None:
        entry.posting_status = PostingStatus.POSTED
        entry.posted_at = utcnow()
        entry.posted_by = actor_user.actor_uuid

    def _reverse(
        self,
        session: Session,
        entry: JournalEntry,
        actor_user: ActorUser,
        reason: str,
        void_date: date | None,
    ) -> JournalEntry:
        swapped = {LineSide.DEBIT: LineSide.CREDIT, LineSide.CREDIT: LineSide.DEBIT}
        reversal = self._book(
            session,
            [
                JournalLineCreate(
                    account_id=line.account_id,
                    side=swapped[line.entry_type],
                    amount=line.amount,
                    description=line.description,
                )
                for line in self._lines(session, entry.id)
            ],
            entry_date=void_date or utcnow().date(),
            description=f"Reversal of {entry.entry_number}: {reason}",
            entry_type=JournalEntryType.REVERSING,
            reversal_of_id=entry.id,
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
            require_active=False,
        )
        self._post(reversal, actor_user)
        entry.posting_status = PostingStatus.VOIDED
        entry.voided_at = utcnow()
        entry.voided_by = actor_user.actor_uuid
        entry.void_reason = reason
        publish(
            "accounting.journal_entry.voided",
            actor_user,
            {"id": str(entry.id), "reversal_entry_id": str(reversal.id), "reason": reason},
        )
        return reversal

    @staticmethod
    def _after_post(entry: JournalEntry, actor_user: ActorUser) -> None:
        observe_journal_entry_posted()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type="accounting.journal_entry",
            entity_id=str(entry.id),
            action="accounting.journal_entry.posted",
            before=None,
            after={"entry_number": entry.entry_number, "entry_type": entry.entry_type.value},
            correlation_id=actor_user.correlation_id,
            category="domain",
        )
        logger.info("accounting.entry_posted", extra={"journal_entry_id": str(entry.id)})

    @staticmethod
    def _lines(session: Session, entry_id: uuid.UUID) -> list[JournalEntryLine]:
        return list(
            session.scalars(
                select(JournalEntryLine)
                .where(JournalEntryLine.journal_entry_id == entry_id, JournalEntryLine.deleted_at.is_(None))
                .order_by(JournalEntryLine.line_number)
            ).all()
        )

    def _entry_read(self, session: Session, entry_id: uuid.UUID, actor_user: ActorUser) -> JournalEntryRead:
        entry = session.get(JournalEntry, entry_id)
        if entry is None:
            raise not_found("journal entry")
        session.refresh(entry)
        return self._to_entry_read(entry, self._lines(session, entry.id), actor_user)

    def _to_entry_read(
        self,
        entry: JournalEntry,
        lines: list[JournalEntryLine],
        actor_user: ActorUser,
    ) -> JournalEntryRead:
        ctx = to_auth_context(actor_user)
        payload = JournalEntryRead.model_validate(entry).model_dump(exclude={"lines"})
        secured = journal_entry_repository.apply_read_security(payload, ctx)
        secured_lines = journal_line_repository.apply_read_security_many(
            [JournalLineRead.model_validate(line).model_dump() for line in lines],
            ctx,
        )
        secured["lines"] = [JournalLineRead.model_validate(item) for item in secured_lines]
        return JournalEntryRead.model_validate(secured)


accounting_service = AccountingService()
