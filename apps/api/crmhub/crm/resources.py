"""The CRM tables as addressable resources: model, row policy, DTOs, permissions and numbering."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from pydantic import BaseModel

from crmhub.crm import repositories as repos
from crmhub.crm import schemas
from crmhub.crm.models import (
    CRMCommunication,
    CRMContact,
    CRMDocument,
    CRMJob,
    CRMLead,
    CRMNote,
    CRMOpportunity,
    CRMPipeline,
    CRMProduct,
    CRMQuote,
    CRMReferral,
    CRMRelationship,
)
from crmhub.platform.security.repository import BaseRepository


@dataclass(frozen=True)
class CRMResource:
    name: str
    label: str
    model: Any
    repository: BaseRepository
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]
    read_schema: type[BaseModel]
    permission_family: str
    title_field: str
    public_reads: bool = False
    number_field: str | None = None
    number_prefix: str | None = None
    status_field: str | None = None
    team_entity_type: str | None = None
    filter_fields: tuple[str, ...] = ()

    def permission(self, action: str) -> str:
        return f"{self.permission_family}.{action}"

    @property
    def table(self) -> str:
        return self.model.__tablename__

    @property
    def metadata_attribute(self) -> str | None:
        column = self.model.__table__.columns.get("metadata")
        if column is None:
            return None
        return next(attr.key for attr in self.model.__mapper__.column_attrs if column in attr.columns)


RESOURCES: dict[str, CRMResource] = {
    resource.name: resource
    for resource in (
        CRMResource(
            "contacts",
            "contact",
            CRMContact,
            repos.contact_repository,
            schemas.ContactCreate,
            schemas.ContactUpdate,
            schemas.ContactRead,
            "customer",
            "full_name",
            status_field="customer_status",
            filter_fields=("assigned_to", "account_manager", "customer_type", "parent_company_id"),
        ),
        CRMResource(
            "leads",
            "lead",
            CRMLead,
            repos.lead_repository,
            schemas.LeadCreate,
            schemas.LeadUpdate,
            schemas.LeadRead,
            "sales",
            "title",
            status_field="lead_status",
            filter_fields=("assigned_to", "contact_id", "lead_source", "is_converted"),
        ),
        CRMResource(
            "opportunities",
            "opportunity",
            CRMOpportunity,
            repos.opportunity_repository,
            schemas.OpportunityCreate,
            schemas.OpportunityUpdate,
            schemas.OpportunityRead,
            "sales",
            "name",
            status_field="opportunity_status",
            team_entity_type="crm_opportunity",
            filter_fields=("assigned_to", "contact_id", "pipeline_id", "stage_key"),
        ),
        CRMResource(
            "quotes",
            "quote",
            CRMQuote,
            repos.quote_repository,
            schemas.QuoteCreate,
            schemas.QuoteUpdate,
            schemas.QuoteRead,
            "sales",
            "title",
            number_field="quote_number",
            number_prefix="QUO",
            status_field="quote_status",
            filter_fields=("assigned_to", "contact_id", "opportunity_id", "parent_quote_id"),
        ),
        CRMResource(
            "jobs",
            "job",
            CRMJob,
            repos.job_repository,
            schemas.JobCreate,
            schemas.JobUpdate,
            schemas.JobRead,
            "support",
            "title",
            number_field="job_number",
            number_prefix="JOB",
            status_field="status",
            team_entity_type="crm_job",
            filter_fields=("assigned_to", "contact_id", "opportunity_id", "priority", "billing_status"),
        ),
        CRMResource(
            "referrals",
            "referral",
            CRMReferral,
            repos.referral_repository,
            schemas.ReferralCreate,
            schemas.ReferralUpdate,
            schemas.ReferralRead,
            "marketing",
            "referral_number",
            number_field="referral_number",
            number_prefix="REF",
            status_field="status",
            filter_fields=("referrer_id", "referee_id", "opportunity_id", "reward_status"),
        ),
        CRMResource(
            "products",
            "product",
            CRMProduct,
            repos.product_repository,
            schemas.ProductCreate,
            schemas.ProductUpdate,
            schemas.ProductRead,
            "sales",
            "name",
            public_reads=True,
            number_field="sku",
            number_prefix="PRD",
            status_field="status",
            filter_fields=("product_type", "category", "is_service"),
        ),
        CRMResource(
            "pipelines",
            "pipeline",
            CRMPipeline,
            repos.pipeline_repository,
            schemas.PipelineCreate,
            schemas.PipelineUpdate,
            schemas.PipelineRead,
            "sales",
            "name",
            public_reads=True,
            number_field="code",
            number_prefix="PIP",
            status_field="status",
            filter_fields=("pipeline_type", "is_default"),
        ),
        CRMResource(
            "communications",
            "communication",
            CRMCommunication,
            repos.communication_repository,
            schemas.CommunicationCreate,
            schemas.CommunicationUpdate,
            schemas.CommunicationRead,
            "customer",
            "subject",
            number_field="communication_number",
            number_prefix="COM",
            status_field="status",
            filter_fields=("entity_type", "entity_id", "communication_type", "assigned_to", "requires_followup"),
        ),
        CRMResource(
            "documents",
            "document",
            CRMDocument,
            repos.document_repository,
            schemas.DocumentCreate,
            schemas.DocumentUpdate,
            schemas.DocumentRead,
            "customer",
            "title",
            public_reads=True,
            number_field="document_number",
            number_prefix="DOC",
            status_field="status",
            filter_fields=("entity_type", "entity_id", "document_type", "owner_id", "is_latest_version"),
        ),
        CRMResource(
            "relationships",
            "relationship",
            CRMRelationship,
            repos.relationship_repository,
            schemas.RelationshipCreate,
            schemas.RelationshipUpdate,
            schemas.RelationshipRead,
            "customer",
            "relationship_type",
            number_field="relationship_number",
            number_prefix="REL",
            status_field="status",
            filter_fields=("entity1_id", "entity2_id", "relationship_type", "assigned_to"),
        ),
        CRMResource(
            "notes",
            "note",
            CRMNote,
            repos.note_repository,
            schemas.NoteCreate,
            schemas.NoteUpdate,
            schemas.NoteRead,
            "customer",
            "title",
            public_reads=True,
            number_field="note_number",
            number_prefix="NOTE",
            filter_fields=("entity_type", "entity_id", "is_pinned", "is_archived", "parent_note_id"),
        ),
    )
}


def get_resource(name: str) -> CRMResource:
    try:
        return RESOURCES[name]
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown CRM resource: {name}")
