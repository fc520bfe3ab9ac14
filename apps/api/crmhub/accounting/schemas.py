from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

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
)


ACCOUNT_NUMBER_PATTERN = r"^[A-Z0-9-]{4,20}$"
PAYMENT_REFERENCE_PATTERN = r"^[A-Z0-9-]{4,50}$"


class AccountingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    version: int
    created_at: datetime
    updated_at: datetime
    created_by: UUID | None = None
    updated_by: UUID | None = None


class SyncStateRead(AccountingRead):
    external_refs: dict[str, Any] = Field(default_factory=dict)
    sync_status: SyncStatus
    last_synced_at: datetime | None = None
    sync_error: str | None = None


class VersionedRequest(BaseModel):
    version: int


# chart of accounts


class AccountCreate(BaseModel):
    account_number: str = Field(pattern=ACCOUNT_NUMBER_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    account_type: AccountType
    parent_id: UUID | None = None
    is_active: bool = True
    is_system: bool = False
    external_refs: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AccountUpdate(VersionedRequest):
    account_number: str | None = Field(default=None, pattern=ACCOUNT_NUMBER_PATTERN)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    parent_id: UUID | None = None
    is_active: bool | None = None
    external_refs: dict[str, Any] | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None


class AccountRead(SyncStateRead):
    account_number: str
    name: str
    description: str | None = None
    account_type: AccountType
    parent_id: UUID | None = None
    level: int
    path: list[str] = Field(default_factory=list)
    is_active: bool
    is_system: bool
    notes: str | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("account_metadata", "metadata"),
    )


# journal entries


class JournalLineCreate(BaseModel):
    account_id: UUID
    side: LineSide
    amount: Decimal = Field(gt=0, max_digits=19, decimal_places=4)
    description: str | None = None


class JournalEntryCreate(BaseModel):
    entry_date: date | None = None
    description: str | None = None
    entry_type: JournalEntryType = JournalEntryType.STANDARD
    reference_type: str | None = Field(default=None, max_length=50)
    reference_id: UUID | None = None
    notes: str | None = None
    lines: list[JournalLineCreate] = Field(min_length=2)
    post: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class JournalEntryVoid(VersionedRequest):
    reason: str = Field(min_length=1)
    void_date: date | None = None


class JournalLineRead(AccountingRead):
    journal_entry_id: UUID
    line_number: int
    account_id: UUID
    description: str | None = None
    amount: Decimal
    side: LineSide = Field(validation_alias=AliasChoices("entry_type", "side"))


class JournalEntryRead(SyncStateRead):
    entry_number: str
    entry_date: date
    description: str | None = None
    entry_type: JournalEntryType
    posting_status: PostingStatus
    posted_at: datetime | None = None
    posted_by: UUID | None = None
    voided_at: datetime | None = None
    voided_by: UUID | None = None
    void_reason: str | None = None
    reversal_of_id: UUID | None = None
    reference_type: str | None = None
    reference_id: UUID | None = None
    notes: str | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("entry_metadata", "metadata"),
    )
    lines: list[JournalLineRead] = Field(default_factory=list)


# payments


class PaymentCreate(BaseModel):
    """A payment; with both posting accounts it is booked to the ledger as it is recorded."""

    amount: Decimal = Field(gt=0, max_digits=19, decimal_places=4)
    currency_code: Currency = Currency.USD
    exchange_rate: Decimal = Field(default=Decimal("1"), gt=0)
    payment_method: PaymentMethod
    payment_reference: str | None = Field(default=None, pattern=PAYMENT_REFERENCE_PATTERN)
    payment_date: datetime | None = None
    status: PaymentStatus = PaymentStatus.COMPLETED
    description: str | None = None
    reference_type: str | None = Field(default=None, max_length=50)
    reference_id: UUID | None = None
    debit_account_id: UUID | None = None
    credit_account_id: UUID | None = None
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _posting_accounts(self) -> "PaymentCreate":
        if (self.debit_account_id is None) != (self.credit_account_id is None):
            raise ValueError("debit_account_id and credit_account_id must be given together")
        if self.debit_account_id is not None and self.debit_account_id == self.credit_account_id:
            raise ValueError("debit and credit accounts must differ")
        if self.status not in {PaymentStatus.PENDING, PaymentStatus.COMPLETED}:
            raise ValueError("payments are recorded as pending or completed")
        if self.debit_account_id is not None and self.status != PaymentStatus.COMPLETED:
            raise ValueError("only completed payments can be posted")
        return self


class PaymentRefund(VersionedRequest):
    reason: str = Field(min_length=1)


class PaymentRead(SyncStateRead):
    transaction_number: str
    payment_date: datetime
    description: str | None = None
    amount: Decimal
    currency_code: Currency
    exchange_rate: Decimal
    converted_amount: Decimal | None = None
    payment_method: PaymentMethod
    payment_reference: str | None = None
    status: PaymentStatus
    processed_at: datetime | None = None
    journal_entry_id: UUID | None = None
    reference_type: str | None = None
    reference_id: UUID | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None
    notes: str | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("payment_metadata", "metadata"),
    )


# external systems


class AccountMappingCreate(BaseModel):
    external_system: ExternalSystem
    external_id: str = Field(min_length=1, max_length=255)
    external_refs: dict[str, Any] = Field(default_factory=dict)
    mapping_details: dict[str, Any] = Field(default_factory=dict)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class AccountMappingRead(AccountingRead):
    account_id: UUID
    external_system: ExternalSystem
    external_id: str
    external_refs: dict[str, Any] = Field(default_factory=dict)
    mapping_details: dict[str, Any] = Field(default_factory=dict)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    sync_status: SyncStatus
    last_synced_at: datetime | None = None
    sync_error: str | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("mapping_metadata", "metadata"),
    )


class SyncLogCreate(BaseModel):
    sync_type: SyncType
    external_system: ExternalSystem | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    status: SyncStatus = SyncStatus.PENDING
    records_processed: int = Field(default=0, ge=0)
    records_succeeded: int = Field(default=0, ge=0)
    records_failed: int = Field(default=0, ge=0)
    error_message: str | None = None
    error_details: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None

    @model_validator(mode="after")
    def _record_counts(self) -> "SyncLogCreate":
        if self.records_processed < self.records_succeeded + self.records_failed:
            raise ValueError("records_processed must cover succeeded and failed records")
        if self.started_at is not None and self.completed_at is not None and self.completed_at < self.started_at:
            raise ValueError("completed_at cannot precede started_at")
        return self


class SyncLogRead(AccountingRead):
    sync_type: SyncType
    external_system: ExternalSystem | None = None
    started_at: datetime
    completed_at: datetime | None = None
    status: SyncStatus
    records_processed: int
    records_succeeded: int
    records_failed: int
    error_message: str | None = None
    error_details: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None


# reporting


class TrialBalanceLine(BaseModel):
    account_id: UUID
    account_number: str
    name: str
    account_type: AccountType
    debit_total: Decimal
    credit_total: Decimal
    balance: Decimal


class TrialBalance(BaseModel):
    as_of: date
    lines: list[TrialBalanceLine]
    total_debits: Decimal
    total_credits: Decimal
    is_balanced: bool
