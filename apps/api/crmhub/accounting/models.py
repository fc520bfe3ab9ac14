from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Computed,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crmhub.core.database import Base
from crmhub.enums import (
    AccountType,
    Currency,
    ExternalSystem,
    JournalEntryType,
    LineSide,
    PaymentMethod,
    PaymentStatus,
    PostingStatus,
    SyncStatus,
    SyncType,
    db_enum,
)
from crmhub.platform.persistence import AuditedMixin, JSONDocument, audited_table_args, live_index, live_unique_index, pg_check


AMOUNT = Numeric(19, 4)
RATE = Numeric(10, 6)


class SyncTrackedMixin:
    """Columns recording the last push of a row to an external accounting system."""

    external_refs: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    sync_status: Mapped[SyncStatus] = mapped_column(db_enum(SyncStatus), nullable=False, default=SyncStatus.PENDING)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)


class Account(SyncTrackedMixin, AuditedMixin, Base):
    """Chart of accounts node; ``path`` lists account numbers from the root down to this account."""

    __tablename__ = "chart_of_accounts"

    account_number: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_type: Mapped[AccountType] = mapped_column(db_enum(AccountType), nullable=False)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chart_of_accounts.id"),
        nullable=True,
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    path: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("level > 0", name="valid_level"),
        CheckConstraint("parent_id IS NULL OR parent_id <> id", name="valid_account_parent"),
        pg_check("account_number ~ '^[A-Z0-9-]{4,20}$'", name="valid_account_number"),
        live_unique_index("idx_chart_of_accounts_active_number", "account_number"),
        live_index("idx_chart_of_accounts_parent", "parent_id"),
        live_index("idx_chart_of_accounts_type", "account_type"),
    )


class JournalEntry(SyncTrackedMixin, AuditedMixin, Base):
    __tablename__ = "journal_entries"

    entry_number: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entry_type: Mapped[JournalEntryType] = mapped_column(
        db_enum(JournalEntryType),
        nullable=False,
        default=JournalEntryType.STANDARD,
    )
    posting_status: Mapped[PostingStatus] = mapped_column(
        db_enum(PostingStatus),
        nullable=False,
        default=PostingStatus.DRAFT,
    )
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reversal_of_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    entry_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    lines: Mapped[list[JournalEntryLine]] = relationship(
        "JournalEntryLine",
        primaryjoin="and_(JournalEntry.id == JournalEntryLine.journal_entry_id, JournalEntryLine.deleted_at.is_(None))",
        order_by="JournalEntryLine.line_number",
        viewonly=True,
    )

    __table_args__ = audited_table_args(
        CheckConstraint(
            "(posting_status = 'draft' AND posted_at IS NULL) OR "
            "(posting_status IN ('posted', 'voided') AND posted_at IS NOT NULL)",
            name="valid_posting",
        ),
        CheckConstraint(
            "(posting_status = 'voided') = (voided_at IS NOT NULL)",
            name="valid_void",
        ),
        pg_check("entry_number ~ '^JE-[0-9]{6,}$'", name="valid_entry_number"),
        live_unique_index("idx_journal_entries_active_number", "entry_number"),
        live_index("idx_journal_entries_date", "entry_date"),
        live_index("idx_journal_entries_status", "posting_status"),
    )


class JournalEntryLine(SyncTrackedMixin, AuditedMixin, Base):
    __tablename__ = "journal_entry_lines"

    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chart_of_accounts.id"),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    entry_type: Mapped[LineSide] = mapped_column(db_enum(LineSide, name="debit_credit"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    line_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("amount > 0", name="positive_amount"),
        live_index("idx_journal_entry_lines_entry", "journal_entry_id"),
        live_index("idx_journal_entry_lines_account", "account_id"),
    )


class PaymentTransaction(SyncTrackedMixin, AuditedMixin, Base):
    __tablename__ = "payment_transactions"

    transaction_number: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    currency_code: Mapped[Currency] = mapped_column(db_enum(Currency), nullable=False, default=Currency.USD)
    exchange_rate: Mapped[Decimal] = mapped_column(RATE, nullable=False, default=Decimal("1"))
    converted_amount: Mapped[Decimal | None] = mapped_column(
        AMOUNT,
        Computed("amount * exchange_rate", persisted=True),
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(db_enum(PaymentMethod), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(db_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint("exchange_rate > 0", name="valid_exchange_rate"),
        CheckConstraint("(status = 'refunded') = (refunded_at IS NOT NULL)", name="valid_refund"),
        pg_check("payment_reference IS NULL OR payment_reference ~ '^[A-Z0-9-]{4,50}$'", name="valid_payment_reference"),
        pg_check("transaction_number ~ '^PAY-[0-9]{6,}$'", name="valid_payment_number"),
        live_unique_index("idx_payment_transactions_active_number", "transaction_number"),
        live_index("idx_payment_transactions_status", "status"),
        live_index("idx_payment_transactions_journal", "journal_entry_id"),
    )


class AccountMapping(AuditedMixin, Base):
    """Link between a local account and its counterpart in an external ledger."""

    __tablename__ = "account_mappings"

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chart_of_accounts.id"),
        nullable=False,
    )
    external_system: Mapped[ExternalSystem] = mapped_column(db_enum(ExternalSystem), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_refs: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    mapping_details: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    custom_fields: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    sync_status: Mapped[SyncStatus] = mapped_column(db_enum(SyncStatus), nullable=False, default=SyncStatus.PENDING)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    mapping_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("length(external_id) > 0", name="valid_external_id"),
        live_unique_index("idx_account_mappings_active", "account_id", "external_system"),
        live_index("idx_account_mappings_external", "external_system", "external_id"),
    )


class SyncLog(AuditedMixin, Base):
    __tablename__ = "sync_logs"

    sync_type: Mapped[SyncType] = mapped_column(db_enum(SyncType), nullable=False)
    external_system: Mapped[ExternalSystem | None] = mapped_column(db_enum(ExternalSystem), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[SyncStatus] = mapped_column(db_enum(SyncStatus), nullable=False, default=SyncStatus.PENDING)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    log_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "records_processed >= 0 AND records_succeeded >= 0 AND records_failed >= 0 "
            "AND records_processed >= records_succeeded + records_failed",
            name="valid_record_counts",
        ),
        CheckConstraint("completed_at IS NULL OR completed_at >= started_at", name="valid_sync_window"),
        live_index("idx_sync_logs_status", "status"),
        live_index("idx_sync_logs_type", "sync_type"),
    )
