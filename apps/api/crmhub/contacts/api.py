from __future__ import annotations

import uuid
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from crmhub.api.deps import get_current_user, http_error_response
from crmhub.contacts.schemas import (
    AddressCreate,
    AddressRead,
    AddressUpdate,
    ConfirmVerificationRequest,
    EmailCreate,
    EmailRead,
    EmailUpdate,
    PhoneCreate,
    PhoneRead,
    PhoneUpdate,
    VerificationChallengeRead,
)
from crmhub.contacts.service import contact_point_service as service
from crmhub.core.database import get_db
from crmhub.enums import EntityType
from crmhub.platform.security.actor import ActorUser


router = APIRouter(prefix="/api/contacts", tags=["contacts"])

ContactKindPath = Literal["emails", "phones", "addresses"]
ContactRead = EmailRead | PhoneRead | AddressRead


@router.post("/emails", response_model=EmailRead, status_code=status.HTTP_201_CREATED)
def add_email(
    request: Request,
    dto: EmailCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.add(db, user, "emails", dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_email_create_failed")


@router.post("/phones", response_model=PhoneRead, status_code=status.HTTP_201_CREATED)
def add_phone(
    request: Request,
    dto: PhoneCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.add(db, user, "phones", dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_phone_create_failed")


@router.post("/addresses", response_model=AddressRead, status_code=status.HTTP_201_CREATED)
def add_address(
    request: Request,
    dto: AddressCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.add(db, user, "addresses", dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_address_create_failed")


@router.patch("/emails/{record_id}", response_model=EmailRead)
def update_email(
    request: Request,
    record_id: uuid.UUID,
    dto: EmailUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.update(db, user, "emails", record_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_email_update_failed")


@router.patch("/phones/{record_id}", response_model=PhoneRead)
def update_phone(
    request: Request,
    record_id: uuid.UUID,
    dto: PhoneUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.update(db, user, "phones", record_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_phone_update_failed")


@router.patch("/addresses/{record_id}", response_model=AddressRead)
def update_address(
    request: Request,
    record_id: uuid.UUID,
    dto: AddressUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.update(db, user, "addresses", record_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_address_update_failed")


@router.get("/{kind}", response_model=list[ContactRead])
def list_for_entity(
    request: Request,
    kind: ContactKindPath,
    entity_type: EntityType = Query(),
    entity_id: uuid.UUID = Query(),
    verified_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.list_for_entity(db, user, kind, entity_type, entity_id, verified_only=verified_only)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_list_failed")


@router.get("/{kind}/primary", response_model=ContactRead)
def get_primary(
    request: Request,
    kind: ContactKindPath,
    entity_type: EntityType = Query(),
    entity_id: uuid.UUID = Query(),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.get_primary(db, user, kind, entity_type, entity_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_primary_get_failed")


@router.get("/{kind}/{record_id}", response_model=ContactRead)
def get_contact_point(
    request: Request,
    kind: ContactKindPath,
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.get(db, user, kind, record_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_get_failed")


@router.post("/{kind}/{record_id}/primary", response_model=ContactRead)
def set_primary(
    request: Request,
    kind: ContactKindPath,
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.set_primary(db, user, kind, record_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_set_primary_failed")


@router.post("/{kind}/{record_id}/verification", response_model=VerificationChallengeRead)
def start_verification(
    request: Request,
    kind: ContactKindPath,
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.start_verification(db, user, kind, record_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_verification_start_failed")


@router.post("/{kind}/{record_id}/verification/confirm", response_model=ContactRead)
def confirm_verification(
    request: Request,
    kind: ContactKindPath,
    record_id: uuid.UUID,
    dto: ConfirmVerificationRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.confirm_verification(db, user, kind, record_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_verification_confirm_failed")


@router.delete("/{kind}/{record_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_contact_point(
    request: Request,
    kind: ContactKindPath,
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        service.soft_delete(db, user, kind, record_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "contacts_delete_failed")
