from __future__ import annotations

import logging
import secrets
import string
import uuid
from typing import Any

from fastapi import HTTPException, status
from pydantic import BaseModel, ValidationError
from sqlalchemy import Boolean, select
from sqlalchemy.orm import Session

from crmhub.crm.models import (
    CRMContact,
    CRMDocument,
    CRMLead,
    CRMNote,
    CRMOpportunity,
    CRMPipeline,
    CRMQuote,
    CRMReferral,
)
from crmhub.crm.resources import RESOURCES, CRMResource, get_resource
from crmhub.crm.rules import first_violation, seconds_between
from crmhub.crm.schemas import (
    CloseOpportunityRequest,
    ConvertLeadRequest,
    ConvertReferralRequest,
    DocumentVersionCreate,
    JobCompleteRequest,
    JobStartRequest,
    LeadConversionRead,
    NoteFlagRequest,
    QuoteDecisionRequest,
    QuoteRevisionRequest,
    SearchResponse,
    TeamMemberCreate,
    TeamMemberRead,
)
from crmhub.crm.search import crm_search
from crmhub.documents import DEFAULT_SALES_STAGES, PipelineStage, PipelineStages
from crmhub.enums import (
    AssignmentRole,
    JobStatus,
    LeadStatus,
    OpportunityStatus,
    PipelineStatus,
    QuoteStatus,
    ReferralStatus,
)
from crmhub.identity.models import Profile
from crmhub.platform.persistence import as_utc, utcnow
from crmhub.platform.security.actor import ActorUser, to_auth_context
from crmhub.rbac.models import TeamAssignment
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


logger = logging.getLogger("crmhub.crm")

SKU_ALPHABET = string.digits + string.ascii_uppercase
OPEN_QUOTE_STATUSES = {QuoteStatus.DRAFT, QuoteStatus.SENT, QuoteStatus.VIEWED}
CLOSED_OPPORTUNITY_STATUSES = {OpportunityStatus.WON, OpportunityStatus.LOST}


class CRMService:
    """Registry-driven CRUD over the CRM tables plus their workflow transitions.

    Routers check the permission family of a resource; this service applies the
    row policy (invisible rows are 404, visible but not writable rows are 403),
    the field rules and the row rules of ``crmhub.crm.rules``.
    """

    # generic CRUD

    def create(self, session: Session, actor_user: ActorUser, name: str, dto: BaseModel) -> BaseModel:
        resource = get_resource(name)
        bind(session, actor_user)
        with security_errors_as_http():
            resource.repository.validate_write_security(
                dto.model_dump(exclude_unset=True),
                to_auth_context(actor_user),
                action="create",
                session=session,
            )

        values = self._column_values(resource, dto.model_dump())
        self._prepare_create(session, actor_user, resource, values, dto.model_fields_set)
        record = resource.model(**values)
        self._enforce_rules(session, resource, record)
        session.add(record)
        flush_or_conflict(session, f"{resource.label} conflicts with an existing record")
        publish(f"crm.{resource.label}.created", actor_user, {"id": str(record.id)})
        commit_or_conflict(session, f"{resource.label} conflicts with an existing record")
        session.refresh(record)
        logger.info("crm.created", extra={"resource": resource.name, "record_id": str(record.id)})
        return self._to_read(resource, record, actor_user)

    def get(self, session: Session, actor_user: ActorUser, name: str, record_id: uuid.UUID) -> BaseModel:
        resource = get_resource(name)
        record = self._get_visible(session, actor_user, resource, record_id)
        return self._to_read(resource, record, actor_user)

    def list(
        self,
        session: Session,
        actor_user: ActorUser,
        name: str,
        *,
        status_value: str | None = None,
        filters: dict[str, str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[BaseModel]:
        resource = get_resource(name)
        model = resource.model
        stmt = select(model).where(model.deleted_at.is_(None))
        if status_value is not None:
            if resource.status_field is None:
                raise unprocessable(f"{resource.name} have no status")
            column = getattr(model, resource.status_field)
            stmt = stmt.where(column == self._coerce_filter(column, resource.status_field, status_value))
        for key, value in (filters or {}).items():
            if key not in resource.filter_fields:
                raise unprocessable(f"unknown filter: {key}")
            column = getattr(model, key)
            stmt = stmt.where(column == self._coerce_filter(column, key, value))
        stmt = resource.repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(model.created_at.desc(), model.id).offset(offset).limit(limit)).all()
        return [self._to_read(resource, row, actor_user) for row in rows]

    def update(
        self,
        session: Session,
        actor_user: ActorUser,
        name: str,
        record_id: uuid.UUID,
        dto: BaseModel,
    ) -> BaseModel:
        resource = get_resource(name)
        bind(session, actor_user)
        record = self._get_visible(session, actor_user, resource, record_id)
        changes = dto.model_dump(exclude_unset=True)
        expected = changes.pop("version", None)
        self._authorize_write(session, actor_user, resource, record, changes, "update")
        check_version(record, expected, resource.table)

        changes = self._column_values(resource, changes)
        self._prepare_update(session, resource, record, changes)
        for key, value in changes.items():
            setattr(record, key, value)
        self._enforce_rules(session, resource, record)
        publish(
            f"crm.{resource.label}.updated",
            actor_user,
            {"id": str(record.id), "fields": sorted(changes)},
        )
        commit_or_conflict(session, f"{resource.label} conflicts with an existing record")
        session.refresh(record)
        return self._to_read(resource, record, actor_user)

    def soft_delete(self, session: Session, actor_user: ActorUser, name: str, record_id: uuid.UUID) -> None:
        resource = get_resource(name)
        bind(session, actor_user)
        record = self._get_visible(session, actor_user, resource, record_id)
        self._authorize_write(session, actor_user, resource, record, {}, "delete")

        if isinstance(record, CRMPipeline):
            record.is_default = False
        record.soft_delete(actor_user.actor_uuid)
        if resource.team_entity_type is not None:
            for member in self._team_rows(session, resource, record.id):
                member.soft_delete(actor_user.actor_uuid)
        publish(f"crm.{resource.label}.deleted", actor_user, {"id": str(record.id)})
        commit_or_conflict(session, f"{resource.label} could not be deleted")
        logger.info("crm.deleted", extra={"resource": resource.name, "record_id": str(record_id)})

    # leads and opportunities

    def convert_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: ConvertLeadRequest,
    ) -> LeadConversionRead:
        leads = RESOURCES["leads"]
        opportunities = RESOURCES["opportunities"]
        bind(session, actor_user)
        lead = self._get_visible(session, actor_user, leads, lead_id)
        self._authorize_write(session, actor_user, leads, lead, {}, "update")
        check_version(lead, dto.version, leads.table)
        if lead.is_converted:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="lead already converted")

        contact_id = dto.contact_id or lead.contact_id
        if contact_id is None:
            raise unprocessable("a contact is required to convert a lead")
        self._require_live(session, CRMContact, contact_id, "contact_id")
        pipeline = self._require_live(session, CRMPipeline, dto.pipeline_id, "pipeline_id") if dto.pipeline_id else None

        now = utcnow()
        opportunity = CRMOpportunity(
            name=dto.opportunity_name or lead.title,
            description=lead.description,
            contact_id=contact_id,
            lead_id=lead.id,
            pipeline_id=pipeline.id if pipeline else None,
            stage_key=self._first_open_stage(pipeline),
            probability=dto.probability,
            amount=dto.amount,
            currency=lead.currency,
            assigned_to=lead.assigned_to or actor_user.actor_uuid,
            start_date=now.date(),
            close_date=dto.close_date,
            tags=list(lead.tags or []),
        )
        self._enforce_rules(session, opportunities, opportunity)
        session.add(opportunity)
        flush_or_conflict(session, "opportunity conflicts with an existing record")

        lead.is_converted = True
        lead.converted_date = now
        lead.converted_by = actor_user.actor_uuid
        lead.converted_to_opportunity_id = opportunity.id
        lead.conversion_value = dto.amount
        lead.lead_status = LeadStatus.CONVERTED
        if lead.contact_id is None:
            lead.contact_id = contact_id
        publish(
            "crm.lead.converted",
            actor_user,
            {"id": str(lead.id), "opportunity_id": str(opportunity.id), "contact_id": str(contact_id)},
        )
        commit_or_conflict(session, "lead conversion conflicts with an existing record")
        session.refresh(lead)
        session.refresh(opportunity)
        return LeadConversionRead(
            lead=self._to_read(leads, lead, actor_user),
            opportunity=self._to_read(opportunities, opportunity, actor_user),
        )

    def close_opportunity(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity_id: uuid.UUID,
        dto: CloseOpportunityRequest,
    ) -> BaseModel:
        resource = RESOURCES["opportunities"]
        bind(session, actor_user)
        opportunity = self._get_visible(session, actor_user, resource, opportunity_id)
        self._authorize_write(session, actor_user, resource, opportunity, {}, "update")
        check_version(opportunity, dto.version, resource.table)
        if opportunity.opportunity_status in CLOSED_OPPORTUNITY_STATUSES:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="opportunity already closed")

        won = dto.outcome == "won"
        opportunity.opportunity_status = OpportunityStatus.WON if won else OpportunityStatus.LOST
        opportunity.probability = 100 if won else 0
        if won:
            opportunity.win_reason = dto.reason
        else:
            opportunity.loss_reason = dto.reason
            opportunity.competitor = dto.competitor or opportunity.competitor
        opportunity.closed_at = utcnow()
        opportunity.close_date = dto.close_date or opportunity.closed_at.date()
        stage = self._terminal_stage(session, opportunity.pipeline_id, won=won)
        if stage is not None:
            opportunity.stage_key = stage.key
        self._enforce_rules(session, resource, opportunity)
        publish(
            "crm.opportunity.closed",
            actor_user,
            {"id": str(opportunity.id), "outcome": dto.outcome, "amount": str(opportunity.amount)},
        )
        commit_or_conflict(session, "opportunity could not be closed")
        session.refresh(opportunity)
        return self._to_read(resource, opportunity, actor_user)

    # teams

    def add_team_member(
        self,
        session: Session,
        actor_user: ActorUser,
        name: str,
        record_id: uuid.UUID,
        dto: TeamMemberCreate,
    ) -> TeamMemberRead:
        resource = self._team_resource(name)
        bind(session, actor_user)
        record = self._get_visible(session, actor_user, resource, record_id)
        self._authorize_write(session, actor_user, resource, record, {}, "update")
        self._require_live(session, Profile, dto.user_id, "user_id")

        member = TeamAssignment(
            user_id=dto.user_id,
            entity_id=record.id,
            entity_type=resource.team_entity_type,
            team_role=AssignmentRole(dto.team_role),
        )
        session.add(member)
        flush_or_conflict(session, "user already holds this role on the record")
        publish(
            f"crm.{resource.label}.team_member_added",
            actor_user,
            {"id": str(record.id), "user_id": str(dto.user_id), "team_role": dto.team_role},
        )
        commit_or_conflict(session, "user already holds this role on the record")
        session.refresh(member)
        return self._team_read(member)

    def list_team(self, session: Session, actor_user: ActorUser, name: str, record_id: uuid.UUID) -> list[TeamMemberRead]:
        resource = self._team_resource(name)
        record = self._get_visible(session, actor_user, resource, record_id)
        return [self._team_read(member) for member in self._team_rows(session, resource, record.id)]

    def remove_team_member(
        self,
        session: Session,
        actor_user: ActorUser,
        name: str,
        record_id: uuid.UUID,
        member_id: uuid.UUID,
    ) -> None:
        resource = self._team_resource(name)
        bind(session, actor_user)
        record = self._get_visible(session, actor_user, resource, record_id)
        self._authorize_write(session, actor_user, resource, record, {}, "update")
        member = session.scalar(
            select(TeamAssignment).where(
                TeamAssignment.id == member_id,
                TeamAssignment.entity_id == record.id,
                TeamAssignment.entity_type == resource.team_entity_type,
                TeamAssignment.deleted_at.is_(None),
            )
        )
        if member is None:
            raise not_found("team member")
        member.soft_delete(actor_user.actor_uuid)
        publish(
            f"crm.{resource.label}.team_member_removed",
            actor_user,
            {"id": str(record.id), "user_id": str(member.user_id)},
        )
        commit_or_conflict(session, "team member could not be removed")

    # quotes

    def accept_quote(
        self,
        session: Session,
        actor_user: ActorUser,
        quote_id: uuid.UUID,
        dto: QuoteDecisionRequest,
    ) -> BaseModel:
        return self._decide_quote(session, actor_user, quote_id, dto, accepted=True)

    def reject_quote(
        self,
        session: Session,
        actor_user: ActorUser,
        quote_id: uuid.UUID,
        dto: QuoteDecisionRequest,
    ) -> BaseModel:
        return self._decide_quote(session, actor_user, quote_id, dto, accepted=False)

    def _decide_quote(
        self,
        session: Session,
        actor_user: ActorUser,
        quote_id: uuid.UUID,
        dto: QuoteDecisionRequest,
        *,
        accepted: bool,
    ) -> BaseModel:
        resource = RESOURCES["quotes"]
        bind(session, actor_user)
        quote = self._get_visible(session, actor_user, resource, quote_id)
        self._authorize_write(session, actor_user, resource, quote, {}, "update")
        check_version(quote, dto.version, resource.table)
        if quote.quote_status not in OPEN_QUOTE_STATUSES:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"quote is already {quote.quote_status.value}")

        now = utcnow()
        if accepted and quote.expiry_date is not None and as_utc(quote.expiry_date) < now:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="quote has expired")
        if quote.issue_date is None:
            quote.issue_date = now
        if accepted:
            quote.quote_status = QuoteStatus.ACCEPTED
            quote.acceptance_date = now
        else:
            quote.quote_status = QuoteStatus.REJECTED
            quote.rejection_date = now
            quote.rejection_reason = dto.reason
        self._enforce_rules(session, resource, quote)
        publish(
            "crm.quote.accepted" if accepted else "crm.quote.rejected",
            actor_user,
            {"id": str(quote.id), "quote_number": quote.quote_number},
        )
        commit_or_conflict(session, "quote could not be updated")
        session.refresh(quote)
        return self._to_read(resource, quote, actor_user)

    def revise_quote(
        self,
        session: Session,
        actor_user: ActorUser,
        quote_id: uuid.UUID,
        dto: QuoteRevisionRequest,
    ) -> BaseModel:
        """Supersede a quote with a new revision that links back to it."""

        resource = RESOURCES["quotes"]
        bind(session, actor_user)
        quote = self._get_visible(session, actor_user, resource, quote_id)
        self._authorize_write(session, actor_user, resource, quote, {}, "update")
        check_version(quote, dto.version, resource.table)
        if quote.quote_status in {QuoteStatus.ACCEPTED, QuoteStatus.REVISED}:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"quote is already {quote.quote_status.value}")

        overrides = dto.model_dump(exclude_unset=True, exclude={"version"})
        next_version = quote.version_number + 1
        revision = CRMQuote(
            quote_number=f"{quote.quote_number.split('-V')[0]}-V{next_version}",
            title=quote.title,
            description=quote.description,
            contact_id=quote.contact_id,
            opportunity_id=quote.opportunity_id,
            quote_status=QuoteStatus.DRAFT,
            version_number=next_version,
            parent_quote_id=quote.id,
            currency=quote.currency,
            subtotal=quote.subtotal,
            discount_amount=quote.discount_amount,
            tax_amount=quote.tax_amount,
            line_items=list(quote.line_items or []),
            payment_terms=quote.payment_terms,
            delivery_terms=quote.delivery_terms,
            validity_period=quote.validity_period,
            assigned_to=quote.assigned_to,
            expiry_date=quote.expiry_date,
            tags=list(quote.tags or []),
            notes=quote.notes,
            quote_metadata=dict(quote.quote_metadata or {}),
        )
        for key, value in overrides.items():
            setattr(revision, key, value)
        self._enforce_rules(session, resource, revision)
        quote.quote_status = QuoteStatus.REVISED
        session.add(revision)
        flush_or_conflict(session, "quote revision already exists")
        publish(
            "crm.quote.revised",
            actor_user,
            {"id": str(revision.id), "parent_quote_id": str(quote.id), "version_number": next_version},
        )
        commit_or_conflict(session, "quote revision already exists")
        session.refresh(revision)
        return self._to_read(resource, revision, actor_user)

    # jobs

    def start_job(self, session: Session, actor_user: ActorUser, job_id: uuid.UUID, dto: JobStartRequest) -> BaseModel:
        resource = RESOURCES["jobs"]
        bind(session, actor_user)
        job = self._get_visible(session, actor_user, resource, job_id)
        self._authorize_write(session, actor_user, resource, job, {}, "update")
        check_version(job, dto.version, resource.table)
        if job.status not in {JobStatus.SCHEDULED, JobStatus.ON_HOLD}:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"job is {job.status.value}")

        if job.actual_start is None:
            job.actual_start = dto.started_at or utcnow()
        job.status = JobStatus.IN_PROGRESS
        self._enforce_rules(session, resource, job)
        publish("crm.job.started", actor_user, {"id": str(job.id), "job_number": job.job_number})
        commit_or_conflict(session, "job could not be started")
        session.refresh(job)
        return self._to_read(resource, job, actor_user)

    def complete_job(
        self,
        session: Session,
        actor_user: ActorUser,
        job_id: uuid.UUID,
        dto: JobCompleteRequest,
    ) -> BaseModel:
        resource = RESOURCES["jobs"]
        bind(session, actor_user)
        job = self._get_visible(session, actor_user, resource, job_id)
        self._authorize_write(session, actor_user, resource, job, {}, "update")
        check_version(job, dto.version, resource.table)
        if job.status != JobStatus.IN_PROGRESS:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only a job in progress can be completed")

        job.actual_end = dto.completed_at or utcnow()
        job.status = JobStatus.COMPLETED
        job.completion_percentage = 100
        if dto.actual_cost is not None:
            job.actual_cost = dto.actual_cost
        self._enforce_rules(session, resource, job)
        publish("crm.job.completed", actor_user, {"id": str(job.id), "job_number": job.job_number})
        commit_or_conflict(session, "job could not be completed")
        session.refresh(job)
        return self._to_read(resource, job, actor_user)

    # referrals

    def convert_referral(
        self,
        session: Session,
        actor_user: ActorUser,
        referral_id: uuid.UUID,
        dto: ConvertReferralRequest,
    ) -> BaseModel:
        resource = RESOURCES["referrals"]
        bind(session, actor_user)
        referral = self._get_visible(session, actor_user, resource, referral_id)
        self._authorize_write(session, actor_user, resource, referral, {}, "update")
        check_version(referral, dto.version, resource.table)
        if referral.is_converted:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="referral already converted")
        if dto.opportunity_id is not None:
            self._require_live(session, CRMOpportunity, dto.opportunity_id, "opportunity_id")
            referral.opportunity_id = dto.opportunity_id

        referral.is_converted = True
        referral.converted_at = utcnow()
        referral.converted_by = actor_user.actor_uuid
        referral.conversion_value = dto.conversion_value
        referral.status = ReferralStatus.CONVERTED
        publish(
            "crm.referral.converted",
            actor_user,
            {"id": str(referral.id), "conversion_value": str(dto.conversion_value)},
        )
        commit_or_conflict(session, "referral could not be converted")
        session.refresh(referral)
        return self._to_read(resource, referral, actor_user)

    # pipelines

    def set_default_pipeline(
        self,
        session: Session,
        actor_user: ActorUser,
        pipeline_id: uuid.UUID,
        version: int,
    ) -> BaseModel:
        """Make a pipeline the default of its type; the previous default is demoted."""

        resource = RESOURCES["pipelines"]
        bind(session, actor_user)
        pipeline = self._get_visible(session, actor_user, resource, pipeline_id)
        self._authorize_write(session, actor_user, resource, pipeline, {}, "update")
        check_version(pipeline, version, resource.table)
        if pipeline.status != PipelineStatus.ACTIVE:
            raise unprocessable("only an active pipeline can be the default")

        current = session.scalars(
            select(CRMPipeline).where(
                CRMPipeline.pipeline_type == pipeline.pipeline_type,
                CRMPipeline.is_default.is_(True),
                CRMPipeline.deleted_at.is_(None),
                CRMPipeline.id != pipeline.id,
            )
        ).all()
        for other in current:
            other.is_default = False
        session.flush()
        pipeline.is_default = True
        publish(
            "crm.pipeline.default_changed",
            actor_user,
            {"id": str(pipeline.id), "pipeline_type": pipeline.pipeline_type.value},
        )
        commit_or_conflict(session, "another pipeline is already the default")
        session.refresh(pipeline)
        return self._to_read(resource, pipeline, actor_user)

    # documents

    def new_document_version(
        self,
        session: Session,
        actor_user: ActorUser,
        document_id: uuid.UUID,
        dto: DocumentVersionCreate,
    ) -> BaseModel:
        resource = RESOURCES["documents"]
        bind(session, actor_user)
        document = self._get_visible(session, actor_user, resource, document_id)
        self._authorize_write(session, actor_user, resource, document, {}, "update")
        check_version(document, dto.version, resource.table)
        if not document.is_latest_version:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only the latest version can be revised")

        values = dto.model_dump(exclude={"version"})
        revision = CRMDocument(
            document_number=self._next_number(session, resource),
            title=document.title,
            description=values.pop("description") or document.description,
            document_type=document.document_type,
            status=document.status,
            parent_version_id=document.id,
            version_number=(document.version_number or 1) + 1,
            is_latest_version=True,
            entity_type=document.entity_type,
            entity_id=document.entity_id,
            access_level=document.access_level,
            owner_id=document.owner_id,
            shared_with=list(document.shared_with or []),
            retention_start_date=document.retention_start_date,
            expiry_date=document.expiry_date,
            tags=list(document.tags or []),
            document_metadata=dict(document.document_metadata or {}),
            **values,
        )
        document.is_latest_version = False
        self._enforce_rules(session, resource, revision)
        session.add(revision)
        flush_or_conflict(session, "document version conflicts with an existing record")
        publish(
            "crm.document.versioned",
            actor_user,
            {"id": str(revision.id), "parent_version_id": str(document.id), "version_number": revision.version_number},
        )
        commit_or_conflict(session, "document version conflicts with an existing record")
        session.refresh(revision)
        return self._to_read(resource, revision, actor_user)

    # notes

    def pin_note(self, session: Session, actor_user: ActorUser, note_id: uuid.UUID, dto: NoteFlagRequest) -> BaseModel:
        resource = RESOURCES["notes"]
        bind(session, actor_user)
        note = self._get_visible(session, actor_user, resource, note_id)
        self._authorize_write(session, actor_user, resource, note, {}, "update")
        check_version(note, dto.version, resource.table)
        if dto.value and note.is_archived:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="an archived note cannot be pinned")
        note.is_pinned = dto.value
        return self._commit_note(session, actor_user, resource, note, "pinned" if dto.value else "unpinned")

    def archive_note(self, session: Session, actor_user: ActorUser, note_id: uuid.UUID, dto: NoteFlagRequest) -> BaseModel:
        resource = RESOURCES["notes"]
        bind(session, actor_user)
        note = self._get_visible(session, actor_user, resource, note_id)
        self._authorize_write(session, actor_user, resource, note, {}, "update")
        check_version(note, dto.version, resource.table)
        note.is_archived = dto.value
        if dto.value:
            note.is_pinned = False
        return self._commit_note(session, actor_user, resource, note, "archived" if dto.value else "unarchived")

    def _commit_note(
        self,
        session: Session,
        actor_user: ActorUser,
        resource: CRMResource,
        note: CRMNote,
        action: str,
    ) -> BaseModel:
        publish(f"crm.note.{action}", actor_user, {"id": str(note.id)})
        commit_or_conflict(session, "note could not be updated")
        session.refresh(note)
        return self._to_read(resource, note, actor_user)

    # search

    def search(
        self,
        session: Session,
        actor_user: ActorUser,
        query: str,
        *,
        resources: list[str] | None = None,
        limit: int = 20,
    ) -> SearchResponse:
        return crm_search.search(session, actor_user, query, resources=resources, limit=limit)

    # helpers

    def _get_visible(self, session: Session, actor_user: ActorUser, resource: CRMResource, record_id: uuid.UUID) -> Any:
        model = resource.model
        stmt = select(model).where(model.id == record_id, model.deleted_at.is_(None))
        stmt = resource.repository.apply_scope_query(stmt, to_auth_context(actor_user))
        record = session.scalar(stmt)
        if record is None:
            raise not_found(resource.label)
        return record

    def _authorize_write(
        self,
        session: Session,
        actor_user: ActorUser,
        resource: CRMResource,
        record: Any,
        changes: dict[str, Any],
        action: str,
    ) -> None:
        with security_errors_as_http():
            resource.repository.validate_write_security(
                changes,
                to_auth_context(actor_user),
                record=record,
                action=action,
                session=session,
            )

    def _to_read(self, resource: CRMResource, record: Any, actor_user: ActorUser) -> BaseModel:
        payload = resource.read_schema.model_validate(record).model_dump()
        secured = resource.repository.apply_read_security(payload, to_auth_context(actor_user))
        return resource.read_schema.model_validate(secured)

    @staticmethod
    def _column_values(resource: CRMResource, values: dict[str, Any]) -> dict[str, Any]:
        if "metadata" in values:
            metadata = values.pop("metadata")
            if metadata is not None and resource.metadata_attribute is not None:
                values[resource.metadata_attribute] = metadata
        return values

    @staticmethod
    def _coerce_filter(column: Any, key: str, value: str) -> Any:
        if isinstance(column.type, Boolean):
            return value.strip().lower() in {"1", "true", "yes"}
        try:
            return column.type.python_type(value)
        except (TypeError, ValueError):
            raise unprocessable(f"invalid value for {key}: {value}")

    def _enforce_rules(self, session: Session, resource: CRMResource, record: Any) -> None:
        message = first_violation(resource.name, record)
        if message is not None:
            session.rollback()
            raise unprocessable(message)

    def _require_live(self, session: Session, model: Any, record_id: uuid.UUID | None, field: str) -> Any:
        if record_id is None:
            return None
        record = session.scalar(select(model).where(model.id == record_id, model.deleted_at.is_(None)))
        if record is None:
            raise unprocessable(f"{field} does not reference a live record")
        return record

    def _next_number(self, session: Session, resource: CRMResource) -> str:
        model = resource.model
        column = getattr(model, resource.number_field)
        if resource.number_field == "sku":
            while True:
                candidate = f"{resource.number_prefix}-{''.join(secrets.choice(SKU_ALPHABET) for _ in range(8))}"
                if session.scalar(select(model.id).where(column == candidate, model.deleted_at.is_(None))) is None:
                    return candidate
        return next_sequence_number(session, model, column, resource.number_prefix)

    def _prepare_create(
        self,
        session: Session,
        actor_user: ActorUser,
        resource: CRMResource,
        values: dict[str, Any],
        explicit: set[str],
    ) -> None:
        if resource.number_field is not None and not values.get(resource.number_field):
            values[resource.number_field] = self._next_number(session, resource)

        model = resource.model
        if model is CRMContact:
            self._require_live(session, CRMContact, values.get("parent_company_id"), "parent_company_id")
        elif model is CRMLead:
            if values.get("lead_status") == LeadStatus.CONVERTED:
                raise unprocessable("use the convert operation to convert a lead")
            self._require_live(session, CRMContact, values.get("contact_id"), "contact_id")
            values["inquiry_date"] = values.get("inquiry_date") or utcnow()
        elif model is CRMOpportunity:
            self._require_live(session, CRMContact, values.get("contact_id"), "contact_id")
            self._require_live(session, CRMLead, values.get("lead_id"), "lead_id")
            self._apply_stage(session, values, probability_given="probability" in explicit)
        elif resource.name in {"quotes", "jobs"}:
            self._require_live(session, CRMContact, values.get("contact_id"), "contact_id")
            self._require_live(session, CRMOpportunity, values.get("opportunity_id"), "opportunity_id")
        elif model is CRMReferral:
            self._require_live(session, CRMContact, values.get("referrer_id"), "referrer_id")
            self._require_live(session, CRMContact, values.get("referee_id"), "referee_id")
            parent = self._require_live(session, CRMReferral, values.get("parent_referral_id"), "parent_referral_id")
            values["referral_level"] = parent.referral_level + 1 if parent is not None else 1
        elif model is CRMPipeline:
            values["stages"] = self._validated_stages(values.get("stages") or DEFAULT_SALES_STAGES)
            values["is_default"] = False
        elif resource.name == "communications":
            values["duration"] = seconds_between(values.get("start_time"), values.get("end_time"))
        elif model is CRMDocument:
            values["owner_id"] = values.get("owner_id") or actor_user.actor_uuid
        elif model is CRMNote:
            self._require_live(session, CRMNote, values.get("parent_note_id"), "parent_note_id")

    def _prepare_update(self, session: Session, resource: CRMResource, record: Any, changes: dict[str, Any]) -> None:
        if isinstance(record, CRMLead) and changes.get("lead_status") == LeadStatus.CONVERTED:
            raise unprocessable("use the convert operation to convert a lead")
        if isinstance(record, CRMLead) and record.is_converted and "lead_status" in changes:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="a converted lead keeps its status")
        if isinstance(record, CRMOpportunity):
            if record.opportunity_status in CLOSED_OPPORTUNITY_STATUSES and (
                "opportunity_status" in changes or "probability" in changes or "stage_key" in changes
            ):
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="opportunity already closed")
            if "stage_key" in changes or "pipeline_id" in changes:
                staged = {
                    "pipeline_id": changes.get("pipeline_id", record.pipeline_id),
                    "stage_key": changes.get("stage_key", record.stage_key),
                }
                self._apply_stage(session, staged, probability_given=changes.get("probability") is not None)
                changes["stage_key"] = staged["stage_key"]
                if "probability" in staged:
                    changes["probability"] = staged["probability"]
        if isinstance(record, CRMPipeline) and changes.get("stages") is not None:
            changes["stages"] = self._validated_stages(changes["stages"])
        if isinstance(record, CRMPipeline) and changes.get("status") not in (None, PipelineStatus.ACTIVE):
            changes["is_default"] = False
        if resource.name == "communications" and ("start_time" in changes or "end_time" in changes):
            changes["duration"] = seconds_between(
                changes.get("start_time", record.start_time),
                changes.get("end_time", record.end_time),
            )

    def _apply_stage(self, session: Session, values: dict[str, Any], *, probability_given: bool) -> None:
        pipeline = self._require_live(session, CRMPipeline, values.get("pipeline_id"), "pipeline_id")
        if pipeline is None:
            return
        stage_key = values.get("stage_key")
        if stage_key is None:
            values["stage_key"] = self._first_open_stage(pipeline)
            return
        stage = next((stage for stage in pipeline.stages if stage.key == stage_key), None)
        if stage is None:
            raise unprocessable(f"stage {stage_key} is not part of the pipeline")
        if stage.is_won or stage.is_lost:
            raise unprocessable("use the close operation to move an opportunity to a closing stage")
        if not probability_given:
            values["probability"] = stage.probability

    @staticmethod
    def _first_open_stage(pipeline: CRMPipeline | None) -> str | None:
        if pipeline is None:
            return None
        stage = next((stage for stage in pipeline.stages if not stage.is_won and not stage.is_lost), None)
        return stage.key if stage is not None else None

    def _terminal_stage(self, session: Session, pipeline_id: uuid.UUID | None, *, won: bool) -> PipelineStage | None:
        if pipeline_id is None:
            return None
        pipeline = session.get(CRMPipeline, pipeline_id)
        if pipeline is None:
            return None
        return next((stage for stage in pipeline.stages if (stage.is_won if won else stage.is_lost)), None)

    @staticmethod
    def _validated_stages(stages: list[Any]) -> list[PipelineStage]:
        raw = [stage.model_dump() if isinstance(stage, BaseModel) else stage for stage in stages]
        try:
            return PipelineStages.model_validate({"stages": raw}).stages
        except ValidationError as exc:
            raise unprocessable(exc.errors()[0]["msg"])

    @staticmethod
    def _team_resource(name: str) -> CRMResource:
        resource = get_resource(name)
        if resource.team_entity_type is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource.name} have no team")
        return resource

    @staticmethod
    def _team_rows(session: Session, resource: CRMResource, record_id: uuid.UUID) -> list[TeamAssignment]:
        return list(
            session.scalars(
                select(TeamAssignment)
                .where(
                    TeamAssignment.entity_type == resource.team_entity_type,
                    TeamAssignment.entity_id == record_id,
                    TeamAssignment.deleted_at.is_(None),
                )
                .order_by(TeamAssignment.assigned_at)
            ).all()
        )

    @staticmethod
    def _team_read(member: TeamAssignment) -> TeamMemberRead:
        return TeamMemberRead(
            id=member.id,
            user_id=member.user_id,
            entity_id=member.entity_id,
            entity_type=member.entity_type,
            team_role=member.team_role.value,
        )


crm_service = CRMService()
