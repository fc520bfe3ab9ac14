from __future__ import annotations

from typing import Any

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
from crmhub.enums import AccessLevel, PipelineStatus, ProductStatus
from crmhub.platform.security.repository import BaseRepository
from crmhub.platform.security.rls import owner_or_role, public_if, team_assignment


SALES_LEADERSHIP = frozenset({"sales_director", "sales_manager"})
MARKETING_LEADERSHIP = frozenset({"marketing_director", "marketing_manager"})
ACCOUNT_ROLES = SALES_LEADERSHIP | {"account_manager"}


class ContactRepository(BaseRepository):
    resource = "crm_contacts"
    model = CRMContact
    policy = owner_or_role("assigned_to", "account_manager", "created_by", roles=ACCOUNT_ROLES)
    sensitive_fields = frozenset({"credit_limit"})
    read_only_fields = frozenset({"full_name"})


class LeadRepository(BaseRepository):
    resource = "crm_leads"
    model = CRMLead
    policy = owner_or_role("assigned_to", "created_by", roles=SALES_LEADERSHIP | MARKETING_LEADERSHIP)
    read_only_fields = frozenset({"is_converted", "converted_date", "converted_by", "converted_to_opportunity_id"})


class OpportunityRepository(BaseRepository):
    resource = "crm_opportunities"
    model = CRMOpportunity
    policy = team_assignment("crm_opportunity", "assigned_to", "created_by", roles=SALES_LEADERSHIP)
    read_only_fields = frozenset({"expected_revenue", "closed_at"})


class QuoteRepository(BaseRepository):
    resource = "crm_quotes"
    model = CRMQuote
    policy = owner_or_role("assigned_to", "created_by", roles=SALES_LEADERSHIP)
    read_only_fields = frozenset({"total_amount", "version_number", "parent_quote_id"})


class JobRepository(BaseRepository):
    resource = "crm_jobs"
    model = CRMJob
    policy = team_assignment("crm_job", "assigned_to", "created_by", roles=frozenset({"support_specialist"}))
    read_only_fields = frozenset({"job_number", "duration_minutes"})


class ReferralRepository(BaseRepository):
    resource = "crm_referrals"
    model = CRMReferral
    policy = owner_or_role("created_by", roles=MARKETING_LEADERSHIP | SALES_LEADERSHIP)
    read_only_fields = frozenset({"referral_number", "is_converted", "converted_at", "converted_by"})


def _product_is_public(model: Any) -> Any:
    return model.status == ProductStatus.ACTIVE


class ProductRepository(BaseRepository):
    resource = "crm_products"
    model = CRMProduct
    policy = public_if(
        _product_is_public,
        lambda record: record.status == ProductStatus.ACTIVE,
        "created_by",
        roles=SALES_LEADERSHIP,
    )
    sensitive_fields = frozenset({"cost_price"})
    read_only_fields = frozenset({"view_count", "purchase_count", "rating_average", "review_count"})


class PipelineRepository(BaseRepository):
    resource = "crm_pipelines"
    model = CRMPipeline
    policy = public_if(
        lambda model: model.status == PipelineStatus.ACTIVE,
        lambda record: record.status == PipelineStatus.ACTIVE,
        "owner_id",
        "created_by",
        roles=SALES_LEADERSHIP,
    )
    read_only_fields = frozenset({"code", "is_default"})


class CommunicationRepository(BaseRepository):
    resource = "crm_communications"
    model = CRMCommunication
    policy = owner_or_role("assigned_to", "created_by", roles=SALES_LEADERSHIP | {"support_specialist"})
    read_only_fields = frozenset({"communication_number"})


class DocumentRepository(BaseRepository):
    resource = "crm_documents"
    model = CRMDocument
    policy = public_if(
        lambda model: model.access_level == AccessLevel.PUBLIC,
        lambda record: record.access_level == AccessLevel.PUBLIC,
        "owner_id",
        "created_by",
        shared_column="shared_with",
    )
    read_only_fields = frozenset(
        {"document_number", "parent_version_id", "version_number", "is_latest_version", "view_count", "download_count"}
    )


class RelationshipRepository(BaseRepository):
    resource = "crm_relationships"
    model = CRMRelationship
    policy = owner_or_role("assigned_to", "created_by", roles=ACCOUNT_ROLES)
    read_only_fields = frozenset({"relationship_number"})


class NoteRepository(BaseRepository):
    """Notes are readable by their author, anyone they are shared with, or everyone when public and not private."""

    resource = "crm_notes"
    model = CRMNote
    policy = public_if(
        lambda model: (model.access_level == AccessLevel.PUBLIC) & model.is_private.is_(False),
        lambda record: record.access_level == AccessLevel.PUBLIC and not record.is_private,
        "created_by",
        shared_column="shared_with",
    )
    read_only_fields = frozenset({"note_number"})


contact_repository = ContactRepository()
lead_repository = LeadRepository()
opportunity_repository = OpportunityRepository()
quote_repository = QuoteRepository()
job_repository = JobRepository()
referral_repository = ReferralRepository()
product_repository = ProductRepository()
pipeline_repository = PipelineRepository()
communication_repository = CommunicationRepository()
document_repository = DocumentRepository()
relationship_repository = RelationshipRepository()
note_repository = NoteRepository()
