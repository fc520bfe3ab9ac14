import uuid
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from crmhub.accounting.schemas import (
    AccountCreate,
    AccountMappingCreate,
    AccountMappingRead,
    AccountRead,
    AccountUpdate,
    JournalEntryCreate,
    JournalEntryRead,
    JournalEntryVoid,
    PaymentCreate,
    PaymentRead,
    PaymentRefund,
    SyncLogCreate,
    SyncLogRead,
    TrialBalance,
    VersionedRequest,
)
from crmhub.accounting.service import accounting_service as service
from crmhub.api.deps import get_current_user, http_error_response, require_permission
from crmhub.core.database import get_db
from crmhub.enums import AccountType, PaymentStatus, PostingStatus
from crmhub.platform.security.actor import ActorUser


router = APIRouter(prefix="/api/accounting", tags=["accounting"])


# chart of accounts


@router.get("/accounts", response_model=list[AccountRead])
def list_accounts(
    request: Request,
    account_type: AccountType | None = Query(default=None),
    parent_id: uuid.UUID | None = Query(default=None),
    active_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.read")
        return service.list_accounts(db, user, account_type=account_type, parent_id=parent_id, active_only=active_only)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_account_list_failed")


@router.post("/accounts", response_model=AccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    request: Request,
    dto: AccountCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.create")
        return service.create_account(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_account_create_failed")


@router.get("/accounts/{account_id}", response_model=AccountRead)
def get_account(
    request: Request,
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.read")
        return service.get_account(db, user, account_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_account_get_failed")


@router.patch("/accounts/{account_id}", response_model=AccountRead)
def update_account(
    request: Request,
    account_id: uuid.UUID,
    dto: AccountUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.update")
        return service.update_account(db, user, account_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_account_update_failed")


@router.delete("/accounts/{account_id}", response_model=None)
def delete_account(
    request: Request,
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.delete")
        service.delete_account(db, user, account_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_account_delete_failed")


@router.get("/accounts/{account_id}/mappings", response_model=list[AccountMappingRead])
def list_account_mappings(
    request: Request,
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.read")
        return service.list_account_mappings(db, user, account_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_mapping_list_failed")


@router.put("/accounts/{account_id}/mappings", response_model=AccountMappingRead)
def map_account(
    request: Request,
    account_id: uuid.UUID,
    dto: AccountMappingCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.update")
        return service.map_account(db, user, account_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_mapping_failed")


# journal


@router.get("/journal-entries", response_model=list[JournalEntryRead])
def list_journal_entries(
    request: Request,
    posting_status: PostingStatus | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    reference_type: str | None = Query(default=None),
    reference_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.read")
        return service.list_journal_entries(
            db,
            user,
            posting_status=posting_status,
            start_date=start_date,
            end_date=end_date,
            reference_type=reference_type,
            reference_id=reference_id,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_entry_list_failed")


@router.post("/journal-entries", response_model=JournalEntryRead, status_code=status.HTTP_201_CREATED)
def create_journal_entry(
    request: Request,
    dto: JournalEntryCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.create")
        if dto.post:
            require_permission(user, "accounting.post")
        return service.create_journal_entry(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_entry_create_failed")


@router.get("/journal-entries/{entry_id}", response_model=JournalEntryRead)
def get_journal_entry(
    request: Request,
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.read")
        return service.get_journal_entry(db, user, entry_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_entry_get_failed")


@router.post("/journal-entries/{entry_id}/post", response_model=JournalEntryRead)
def post_journal_entry(
    request: Request,
    entry_id: uuid.UUID,
    dto: VersionedRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.post")
        return service.post_journal_entry(db, user, entry_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_entry_post_failed")


@router.post("/journal-entries/{entry_id}/void", response_model=JournalEntryRead, status_code=status.HTTP_201_CREATED)
def void_journal_entry(
    request: Request,
    entry_id: uuid.UUID,
    dto: JournalEntryVoid,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.post")
        return service.void_journal_entry(db, user, entry_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_entry_void_failed")


@router.get("/trial-balance", response_model=TrialBalance)
def trial_balance(
    request: Request,
    as_of: date | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.read")
        return service.trial_balance(db, user, as_of=as_of)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_trial_balance_failed")


# payments


@router.get("/payments", response_model=list[PaymentRead])
def list_payments(
    request: Request,
    status_value: PaymentStatus | None = Query(default=None, alias="status"),
    reference_type: str | None = Query(default=None),
    reference_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.read")
        return service.list_payments(
            db,
            user,
            status_value=status_value,
            reference_type=reference_type,
            reference_id=reference_id,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_payment_list_failed")


@router.post("/payments", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
def record_payment(
    request: Request,
    dto: PaymentCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.create")
        if dto.debit_account_id is not None:
            require_permission(user, "accounting.post")
        return service.record_payment(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_payment_create_failed")


@router.get("/payments/{payment_id}", response_model=PaymentRead)
def get_payment(
    request: Request,
    payment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.read")
        return service.get_payment(db, user, payment_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_payment_get_failed")


@router.post("/payments/{payment_id}/refund", response_model=PaymentRead)
def refund_payment(
    request: Request,
    payment_id: uuid.UUID,
    dto: PaymentRefund,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.post")
        return service.refund_payment(db, user, payment_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_payment_refund_failed")


# sync


@router.get("/sync-logs", response_model=list[SyncLogRead])
def list_sync_logs(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.read")
        return service.list_sync_logs(db, user, limit=limit)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_sync_list_failed")


@router.post("/sync-logs", response_model=SyncLogRead, status_code=status.HTTP_201_CREATED)
def record_sync(
    request: Request,
    dto: SyncLogCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "accounting.update")
        return service.record_sync(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "accounting_sync_record_failed")
