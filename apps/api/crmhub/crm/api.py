import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from crmhub.api.deps import get_current_user, http_error_response, require_any_permission, require_permission
from crmhub.core.database import get_db
from crmhub.crm.resources import RESOURCES, CRMResource
from crmhub.crm.schemas import (
    CloseOpportunityRequest,
    ConvertLeadRequest,
    ConvertReferralRequest,
    DocumentRead,
    DocumentVersionCreate,
    JobCompleteRequest,
    JobRead,
    JobStartRequest,
    LeadConversionRead,
    NoteFlagRequest,
    NoteRead,
    OpportunityRead,
    PipelineRead,
    QuoteDecisionRequest,
    QuoteRead,
    QuoteRevisionRequest,
    ReferralRead,
    SearchResponse,
    TeamMemberCreate,
    TeamMemberRead,
    VersionedRequest,
)
from crmhub.crm.service import crm_service as service
from crmhub.platform.security.actor import ActorUser


router = APIRouter(prefix="/api/crm", tags=["crm"])


def _require_read(user: ActorUser, resource: CRMResource) -> None:
    # Public resources are narrowed by their row policy instead.
    if not resource.public_reads:
        require_permission(user, resource.permission("read"))


def _register_crud(resource: CRMResource) -> None:
    """Mount list/get/create/update/delete for one CRM resource under ``/api/crm/<name>``."""

    create_schema = resource.create_schema
    update_schema = resource.update_schema
    read_schema = resource.read_schema
    path = f"/{resource.name}"
    label = resource.label

    @router.get(path, response_model=list[read_schema], name=f"list_{resource.name}")
    def list_records(
        request: Request,
        status_value: str | None = Query(default=None, alias="status"),
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            _require_read(user, resource)
            filters = {key: value for key, value in request.query_params.items() if key in resource.filter_fields}
            return service.list(db, user, resource.name, status_value=status_value, filters=filters, limit=limit, offset=offset)
        except HTTPException as exc:
            return http_error_response(request, exc, f"crm_{label}_list_failed")

    @router.get(f"{path}/{{record_id}}", response_model=read_schema, name=f"get_{label}")
    def get_record(
        request: Request,
        record_id: uuid.UUID,
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            _require_read(user, resource)
            return service.get(db, user, resource.name, record_id)
        except HTTPException as exc:
            return http_error_response(request, exc, f"crm_{label}_get_failed")

    @router.post(path, response_model=read_schema, status_code=status.HTTP_201_CREATED, name=f"create_{label}")
    def create_record(
        request: Request,
        dto: create_schema,  # type: ignore[valid-type]
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, resource.permission("create"))
            return service.create(db, user, resource.name, dto)
        except HTTPException as exc:
            return http_error_response(request, exc, f"crm_{label}_create_failed")

    @router.patch(f"{path}/{{record_id}}", response_model=read_schema, name=f"update_{label}")
    def update_record(
        request: Request,
        record_id: uuid.UUID,
        dto: update_schema,  # type: ignore[valid-type]
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, resource.permission("update"))
            return service.update(db, user, resource.name, record_id, dto)
        except HTTPException as exc:
            return http_error_response(request, exc, f"crm_{label}_update_failed")

    @router.delete(f"{path}/{{record_id}}", response_model=None, name=f"delete_{label}")
    def delete_record(
        request: Request,
        record_id: uuid.UUID,
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, resource.permission("delete"))
            service.soft_delete(db, user, resource.name, record_id)
            return {"status": "deleted"}
        except HTTPException as exc:
            return http_error_response(request, exc, f"crm_{label}_delete_failed")


@router.get("/search", response_model=SearchResponse)
def search(
    request: Request,
    q: str = Query(min_length=1),
    resources: list[str] | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        return service.search(db, user, q, resources=resources, limit=limit)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_search_failed")


@router.post("/leads/{lead_id}/convert", response_model=LeadConversionRead)
def convert_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: ConvertLeadRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "sales.update")
        require_permission(user, "sales.create")
        return service.convert_lead(db, user, lead_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_convert_failed")


@router.post("/opportunities/{opportunity_id}/close", response_model=OpportunityRead)
def close_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    dto: CloseOpportunityRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "sales.update")
        return service.close_opportunity(db, user, opportunity_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_close_failed")


@router.get("/{resource_name}/{record_id}/team", response_model=list[TeamMemberRead])
def list_team(
    request: Request,
    resource_name: str,
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        resource = RESOURCES.get(resource_name)
        if resource is not None:
            _require_read(user, resource)
        return service.list_team(db, user, resource_name, record_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_team_list_failed")


@router.post(
    "/{resource_name}/{record_id}/team",
    response_model=TeamMemberRead,
    status_code=status.HTTP_201_CREATED,
)
def add_team_member(
    request: Request,
    resource_name: str,
    record_id: uuid.UUID,
    dto: TeamMemberCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        resource = RESOURCES.get(resource_name)
        if resource is not None:
            require_permission(user, resource.permission("update"))
        return service.add_team_member(db, user, resource_name, record_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_team_add_failed")


@router.delete("/{resource_name}/{record_id}/team/{member_id}", response_model=None)
def remove_team_member(
    request: Request,
    resource_name: str,
    record_id: uuid.UUID,
    member_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        resource = RESOURCES.get(resource_name)
        if resource is not None:
            require_permission(user, resource.permission("update"))
        service.remove_team_member(db, user, resource_name, record_id, member_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_team_remove_failed")


@router.post("/quotes/{quote_id}/accept", response_model=QuoteRead)
def accept_quote(
    request: Request,
    quote_id: uuid.UUID,
    dto: QuoteDecisionRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_any_permission(user, ["sales.update", "sales.approve"])
        return service.accept_quote(db, user, quote_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quote_accept_failed")


@router.post("/quotes/{quote_id}/reject", response_model=QuoteRead)
def reject_quote(
    request: Request,
    quote_id: uuid.UUID,
    dto: QuoteDecisionRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_any_permission(user, ["sales.update", "sales.approve"])
        return service.reject_quote(db, user, quote_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quote_reject_failed")


@router.post("/quotes/{quote_id}/revise", response_model=QuoteRead, status_code=status.HTTP_201_CREATED)
def revise_quote(
    request: Request,
    quote_id: uuid.UUID,
    dto: QuoteRevisionRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "sales.update")
        return service.revise_quote(db, user, quote_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quote_revise_failed")


@router.post("/jobs/{job_id}/start", response_model=JobRead)
def start_job(
    request: Request,
    job_id: uuid.UUID,
    dto: JobStartRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "support.update")
        return service.start_job(db, user, job_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_job_start_failed")


@router.post("/jobs/{job_id}/complete", response_model=JobRead)
def complete_job(
    request: Request,
    job_id: uuid.UUID,
    dto: JobCompleteRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "support.update")
        return service.complete_job(db, user, job_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_job_complete_failed")


@router.post("/referrals/{referral_id}/convert", response_model=ReferralRead)
def convert_referral(
    request: Request,
    referral_id: uuid.UUID,
    dto: ConvertReferralRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "marketing.update")
        return service.convert_referral(db, user, referral_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_referral_convert_failed")


@router.post("/pipelines/{pipeline_id}/default", response_model=PipelineRead)
def set_default_pipeline(
    request: Request,
    pipeline_id: uuid.UUID,
    dto: VersionedRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "sales.update")
        return service.set_default_pipeline(db, user, pipeline_id, dto.version)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_pipeline_default_failed")


@router.post("/documents/{document_id}/versions", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
def new_document_version(
    request: Request,
    document_id: uuid.UUID,
    dto: DocumentVersionCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "customer.update")
        return service.new_document_version(db, user, document_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_document_version_failed")


@router.post("/notes/{note_id}/pin", response_model=NoteRead)
def pin_note(
    request: Request,
    note_id: uuid.UUID,
    dto: NoteFlagRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "customer.update")
        return service.pin_note(db, user, note_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_note_pin_failed")


@router.post("/notes/{note_id}/archive", response_model=NoteRead)
def archive_note(
    request: Request,
    note_id: uuid.UUID,
    dto: NoteFlagRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "customer.update")
        return service.archive_note(db, user, note_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_note_archive_failed")


for _resource in RESOURCES.values():
    _register_crud(_resource)
