from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from crmhub.documents import PipelineStage
from crmhub.enums import (
    AccessLevel,
    ApprovalStatus,
    BillingStatus,
    CommunicationChannel,
    CommunicationDirection,
    CommunicationStatus,
    CommunicationType,
    ContentFormat,
    Currency,
    CustomerSegment,
    CustomerStatus,
    CustomerType,
    DocumentStatus,
    DocumentType,
    JobPriority,
    JobStatus,
    LeadSource,
    LeadStatus,
    OpportunityStatus,
    PipelineStatus,
    PipelineType,
    PriorityLevel,
    ProductStatus,
    ProductType,
    QuoteStatus,
    ReferralStatus,
    RelationshipDirection,
    RelationshipStatus,
    RelationshipStrength,
    RewardStatus,
    TimeUnit,
)


URL_PATTERN = r"^https?://"
NoteEntityType = Literal["contact", "company", "opportunity", "lead", "product", "quote", "job"]


def _metadata(attribute: str) -> Any:
    return Field(default_factory=dict, validation_alias=AliasChoices(attribute, "metadata"))


class CRMRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    version: int
    created_at: datetime
    updated_at: datetime
    created_by: UUID | None = None
    updated_by: UUID | None = None


class VersionedRequest(BaseModel):
    version: int


# contacts


class ContactCreate(BaseModel):
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    company_name: str | None = Field(default=None, max_length=255)
    job_title: str | None = Field(default=None, max_length=255)
    department: str | None = Field(default=None, max_length=255)
    industry: str | None = Field(default=None, max_length=255)
    customer_type: CustomerType = CustomerType.PROSPECT
    customer_status: CustomerStatus = CustomerStatus.ACTIVE
    customer_segment: CustomerSegment | None = None
    lead_source: LeadSource | None = None
    assigned_to: UUID | None = None
    account_manager: UUID | None = None
    parent_company_id: UUID | None = None
    preferred_contact_method: CommunicationChannel | None = None
    first_contact_date: datetime | None = None
    last_contact_date: datetime | None = None
    next_follow_up_date: datetime | None = None
    linkedin_url: str | None = Field(default=None, pattern=URL_PATTERN)
    twitter_url: str | None = Field(default=None, pattern=URL_PATTERN)
    website_url: str | None = Field(default=None, pattern=URL_PATTERN)
    total_revenue: Decimal | None = Field(default=None, ge=0)
    lifetime_value: Decimal | None = Field(default=None, ge=0)
    credit_limit: Decimal | None = Field(default=None, ge=0)
    payment_terms: int | None = Field(default=None, ge=0)
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContactUpdate(VersionedRequest):
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    company_name: str | None = Field(default=None, max_length=255)
    job_title: str | None = Field(default=None, max_length=255)
    department: str | None = Field(default=None, max_length=255)
    industry: str | None = Field(default=None, max_length=255)
    customer_type: CustomerType | None = None
    customer_status: CustomerStatus | None = None
    customer_segment: CustomerSegment | None = None
    assigned_to: UUID | None = None
    account_manager: UUID | None = None
    parent_company_id: UUID | None = None
    preferred_contact_method: CommunicationChannel | None = None
    last_contact_date: datetime | None = None
    next_follow_up_date: datetime | None = None
    linkedin_url: str | None = Field(default=None, pattern=URL_PATTERN)
    twitter_url: str | None = Field(default=None, pattern=URL_PATTERN)
    website_url: str | None = Field(default=None, pattern=URL_PATTERN)
    total_revenue: Decimal | None = Field(default=None, ge=0)
    lifetime_value: Decimal | None = Field(default=None, ge=0)
    credit_limit: Decimal | None = Field(default=None, ge=0)
    payment_terms: int | None = Field(default=None, ge=0)
    tags: list[str] | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None


class ContactRead(CRMRead):
    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    company_name: str | None = None
    job_title: str | None = None
    department: str | None = None
    industry: str | None = None
    customer_type: CustomerType
    customer_status: CustomerStatus
    customer_segment: CustomerSegment | None = None
    lead_source: LeadSource | None = None
    assigned_to: UUID | None = None
    account_manager: UUID | None = None
    parent_company_id: UUID | None = None
    preferred_contact_method: CommunicationChannel | None = None
    first_contact_date: datetime | None = None
    last_contact_date: datetime | None = None
    next_follow_up_date: datetime | None = None
    linkedin_url: str | None = None
    twitter_url: str | None = None
    website_url: str | None = None
    total_revenue: Decimal | None = None
    lifetime_value: Decimal | None = None
    credit_limit: Decimal | str | None = None
    payment_terms: int | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = _metadata("contact_metadata")


# leads


class LeadCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    contact_id: UUID | None = None
    lead_status: LeadStatus = LeadStatus.NEW
    lead_source: LeadSource | None = None
    lead_score: int | None = Field(default=None, ge=0, le=100)
    assigned_to: UUID | None = None
    inquiry_date: datetime | None = None
    qualification_date: datetime | None = None
    last_contact_date: datetime | None = None
    next_follow_up_date: datetime | None = None
    expected_close_date: datetime | None = None
    estimated_value: Decimal | None = Field(default=None, ge=0)
    currency: Currency = Currency.USD
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class LeadUpdate(VersionedRequest):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    contact_id: UUID | None = None
    lead_status: LeadStatus | None = None
    lead_source: LeadSource | None = None
    lead_score: int | None = Field(default=None, ge=0, le=100)
    assigned_to: UUID | None = None
    qualification_date: datetime | None = None
    last_contact_date: datetime | None = None
    next_follow_up_date: datetime | None = None
    expected_close_date: datetime | None = None
    estimated_value: Decimal | None = Field(default=None, ge=0)
    tags: list[str] | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None


class LeadRead(CRMRead):
    title: str
    description: str | None = None
    contact_id: UUID | None = None
    lead_status: LeadStatus
    lead_source: LeadSource | None = None
    lead_score: int | None = None
    assigned_to: UUID | None = None
    inquiry_date: datetime | None = None
    qualification_date: datetime | None = None
    last_contact_date: datetime | None = None
    next_follow_up_date: datetime | None = None
    expected_close_date: datetime | None = None
    estimated_value: Decimal | None = None
    currency: Currency
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    is_converted: bool
    converted_date: datetime | None = None
    converted_by: UUID | None = None
    converted_to_opportunity_id: UUID | None = None
    conversion_value: Decimal | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = _metadata("lead_metadata")


class ConvertLeadRequest(BaseModel):
    """Turn a lead into an opportunity; the lead's contact is used unless ``contact_id`` is given."""

    contact_id: UUID | None = None
    opportunity_name: str | None = Field(default=None, min_length=1, max_length=255)
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    probability: int = Field(default=10, ge=0, le=100)
    close_date: date | None = None
    pipeline_id: UUID | None = None
    version: int


class LeadConversionRead(BaseModel):
    lead: LeadRead
    opportunity: OpportunityRead


# opportunities


class OpportunityCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    contact_id: UUID
    lead_id: UUID | None = None
    pipeline_id: UUID | None = None
    stage_key: str | None = None
    opportunity_status: OpportunityStatus = OpportunityStatus.PROSPECTING
    probability: int = Field(default=0, ge=0, le=100)
    competitor: str | None = None
    currency: Currency = Currency.USD
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    assigned_to: UUID | None = None
    start_date: date | None = None
    close_date: date | None = None
    last_activity_date: datetime | None = None
    next_step: str | None = None
    next_step_date: datetime | None = None
    products: list[dict[str, Any]] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class OpportunityUpdate(VersionedRequest):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    pipeline_id: UUID | None = None
    stage_key: str | None = None
    opportunity_status: OpportunityStatus | None = None
    probability: int | None = Field(default=None, ge=0, le=100)
    competitor: str | None = None
    currency: Currency | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    assigned_to: UUID | None = None
    start_date: date | None = None
    close_date: date | None = None
    last_activity_date: datetime | None = None
    next_step: str | None = None
    next_step_date: datetime | None = None
    products: list[dict[str, Any]] | None = None
    tags: list[str] | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None


class OpportunityRead(CRMRead):
    name: str
    description: str | None = None
    contact_id: UUID
    lead_id: UUID | None = None
    pipeline_id: UUID | None = None
    stage_key: str | None = None
    opportunity_status: OpportunityStatus
    probability: int
    win_reason: str | None = None
    loss_reason: str | None = None
    competitor: str | None = None
    currency: Currency
    amount: Decimal
    expected_revenue: Decimal | None = None
    assigned_to: UUID | None = None
    start_date: date | None = None
    close_date: date | None = None
    closed_at: datetime | None = None
    last_activity_date: datetime | None = None
    next_step: str | None = None
    next_step_date: datetime | None = None
    products: list[dict[str, Any]] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = _metadata("opportunity_metadata")


class CloseOpportunityRequest(BaseModel):
    outcome: Literal["won", "lost"]
    reason: str = Field(min_length=1)
    competitor: str | None = None
    close_date: date | None = None
    version: int


class TeamMemberCreate(BaseModel):
    user_id: UUID
    team_role: Literal["owner", "assignee", "reviewer", "observer", "contributor"] = "contributor"


class TeamMemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    entity_id: UUID
    entity_type: str
    team_role: str


# quotes


class QuoteCreate(BaseModel):
    quote_number: str | None = Field(default=None, max_length=50)
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    contact_id: UUID
    opportunity_id: UUID | None = None
    currency: Currency = Currency.USD
    subtotal: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    line_items: list[dict[str, Any]] = Field(default_factory=list)
    payment_terms: str | None = None
    delivery_terms: str | None = None
    validity_period: int | None = Field(default=None, gt=0)
    assigned_to: UUID | None = None
    issue_date: datetime | None = None
    expiry_date: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class QuoteUpdate(VersionedRequest):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    quote_status: Literal["draft", "sent", "viewed", "expired"] | None = None
    subtotal: Decimal | None = Field(default=None, ge=0)
    discount_amount: Decimal | None = Field(default=None, ge=0)
    tax_amount: Decimal | None = Field(default=None, ge=0)
    line_items: list[dict[str, Any]] | None = None
    payment_terms: str | None = None
    delivery_terms: str | None = None
    validity_period: int | None = Field(default=None, gt=0)
    assigned_to: UUID | None = None
    issue_date: datetime | None = None
    expiry_date: datetime | None = None
    tags: list[str] | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None


class QuoteRead(CRMRead):
    quote_number: str
    title: str
    description: str | None = None
    contact_id: UUID
    opportunity_id: UUID | None = None
    quote_status: QuoteStatus
    version_number: int
    parent_quote_id: UUID | None = None
    currency: Currency
    subtotal: Decimal
    discount_amount: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None
    line_items: list[dict[str, Any]] = Field(default_factory=list)
    payment_terms: str | None = None
    delivery_terms: str | None = None
    validity_period: int | None = None
    assigned_to: UUID | None = None
    issue_date: datetime | None = None
    expiry_date: datetime | None = None
    acceptance_date: datetime | None = None
    rejection_date: datetime | None = None
    rejection_reason: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = _metadata("quote_metadata")


class QuoteDecisionRequest(BaseModel):
    reason: str | None = None
    version: int


class QuoteRevisionRequest(BaseModel):
    """Fields that change in the new revision; everything else is carried over."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    subtotal: Decimal | None = Field(default=None, ge=0)
    discount_amount: Decimal | None = Field(default=None, ge=0)
    tax_amount: Decimal | None = Field(default=None, ge=0)
    line_items: list[dict[str, Any]] | None = None
    expiry_date: datetime | None = None
    notes: str | None = None
    version: int


# jobs


class JobCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    contact_id: UUID
    opportunity_id: UUID | None = None
    quote_id: UUID | None = None
    priority: JobPriority = JobPriority.MEDIUM
    scheduled_start: datetime
    scheduled_end: datetime
    location: dict[str, Any] = Field(default_factory=dict)
    assigned_to: UUID | None = None
    team_members: list[UUID] = Field(default_factory=list)
    estimated_cost: Decimal | None = Field(default=None, ge=0)
    currency: Currency = Currency.USD
    checklist: list[dict[str, Any]] = Field(default_factory=list)
    milestones: list[dict[str, Any]] = Field(default_factory=list)
    time_unit: TimeUnit = TimeUnit.HOURS
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobUpdate(VersionedRequest):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: Literal["scheduled", "on_hold", "cancelled"] | None = None
    priority: JobPriority | None = None
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    location: dict[str, Any] | None = None
    assigned_to: UUID | None = None
    team_members: list[UUID] | None = None
    estimated_cost: Decimal | None = Field(default=None, ge=0)
    billing_status: BillingStatus | None = None
    completion_percentage: int | None = Field(default=None, ge=0, le=100)
    checklist: list[dict[str, Any]] | None = None
    milestones: list[dict[str, Any]] | None = None
    tags: list[str] | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None


class JobRead(CRMRead):
    job_number: str
    title: str
    description: str | None = None
    contact_id: UUID
    opportunity_id: UUID | None = None
    quote_id: UUID | None = None
    status: JobStatus
    priority: JobPriority
    scheduled_start: datetime
    scheduled_end: datetime
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    duration_minutes: int | None = None
    location: dict[str, Any] = Field(default_factory=dict)
    assigned_to: UUID | None = None
    team_members: list[UUID] = Field(default_factory=list)
    estimated_cost: Decimal | None = None
    actual_cost: Decimal | None = None
    currency: Currency
    billing_status: BillingStatus
    completion_percentage: int
    checklist: list[dict[str, Any]] = Field(default_factory=list)
    milestones: list[dict[str, Any]] = Field(default_factory=list)
    time_unit: TimeUnit
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = _metadata("job_metadata")


class JobStartRequest(BaseModel):
    started_at: datetime | None = None
    version: int


class JobCompleteRequest(BaseModel):
    completed_at: datetime | None = None
    actual_cost: Decimal | None = Field(default=None, ge=0)
    version: int


# referrals


class ReferralCreate(BaseModel):
    referrer_id: UUID
    referee_id: UUID
    opportunity_id: UUID | None = None
    referral_type: str | None = Field(default=None, max_length=50)
    reward_type: str | None = Field(default=None, max_length=50)
    reward_value: Decimal | None = Field(default=None, ge=0)
    parent_referral_id: UUID | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ReferralUpdate(VersionedRequest):
    opportunity_id: UUID | None = None
    referral_type: str | None = Field(default=None, max_length=50)
    status: Literal["pending", "contacted", "qualified", "rejected", "expired"] | None = None
    approval_status: ApprovalStatus | None = None
    reward_type: str | None = Field(default=None, max_length=50)
    reward_value: Decimal | None = Field(default=None, ge=0)
    reward_status: RewardStatus | None = None
    tags: list[str] | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None


class ReferralRead(CRMRead):
    referral_number: str
    referrer_id: UUID
    referee_id: UUID
    opportunity_id: UUID | None = None
    referral_type: str | None = None
    status: ReferralStatus
    approval_status: ApprovalStatus
    reward_type: str | None = None
    reward_value: Decimal | None = None
    reward_status: RewardStatus
    is_converted: bool
    converted_at: datetime | None = None
    converted_by: UUID | None = None
    conversion_value: Decimal | None = None
    parent_referral_id: UUID | None = None
    referral_level: int
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    metadata: dict[str, Any] = _metadata("referral_metadata")


class ConvertReferralRequest(BaseModel):
    conversion_value: Decimal = Field(ge=0)
    opportunity_id: UUID | None = None
    version: int


# products


class ProductCreate(BaseModel):
    sku: str | None = Field(default=None, max_length=20)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    product_type: ProductType = ProductType.PHYSICAL
    status: ProductStatus = ProductStatus.DRAFT
    category: str | None = Field(default=None, max_length=100)
    base_price: Decimal = Field(default=Decimal("0"), ge=0)
    cost_price: Decimal | None = Field(default=None, ge=0)
    tax_rate: Decimal | None = Field(default=None, ge=0)
    currency: Currency = Currency.USD
    stock_quantity: int | None = Field(default=None, ge=0)
    low_stock_threshold: int | None = Field(default=None, ge=0)
    reorder_point: int | None = Field(default=None, ge=0)
    reorder_quantity: int | None = Field(default=None, gt=0)
    is_digital: bool = False
    is_service: bool = False
    service_duration: int | None = Field(default=None, gt=0)
    service_unit: TimeUnit | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProductUpdate(VersionedRequest):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: ProductStatus | None = None
    category: str | None = Field(default=None, max_length=100)
    base_price: Decimal | None = Field(default=None, ge=0)
    cost_price: Decimal | None = Field(default=None, ge=0)
    tax_rate: Decimal | None = Field(default=None, ge=0)
    stock_quantity: int | None = Field(default=None, ge=0)
    low_stock_threshold: int | None = Field(default=None, ge=0)
    reorder_point: int | None = Field(default=None, ge=0)
    reorder_quantity: int | None = Field(default=None, gt=0)
    is_service: bool | None = None
    service_duration: int | None = Field(default=None, gt=0)
    service_unit: TimeUnit | None = None
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class ProductRead(CRMRead):
    sku: str
    name: str
    description: str | None = None
    product_type: ProductType
    status: ProductStatus
    category: str | None = None
    base_price: Decimal
    cost_price: Decimal | str | None = None
    tax_rate: Decimal | None = None
    currency: Currency
    stock_quantity: int | None = None
    low_stock_threshold: int | None = None
    reorder_point: int | None = None
    reorder_quantity: int | None = None
    is_digital: bool
    is_service: bool
    service_duration: int | None = None
    service_unit: TimeUnit | None = None
    view_count: int
    purchase_count: int
    rating_average: Decimal | None = None
    review_count: int
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = _metadata("product_metadata")


# pipelines


class PipelineCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    pipeline_type: PipelineType = PipelineType.SALES
    stages: list[PipelineStage] | None = None
    owner_id: UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PipelineUpdate(VersionedRequest):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: PipelineStatus | None = None
    stages: list[PipelineStage] | None = None
    owner_id: UUID | None = None
    metadata: dict[str, Any] | None = None


class PipelineRead(CRMRead):
    code: str
    name: str
    description: str | None = None
    pipeline_type: PipelineType
    status: PipelineStatus
    stages: list[PipelineStage]
    is_default: bool
    owner_id: UUID | None = None
    metadata: dict[str, Any] = _metadata("pipeline_metadata")


# communications


class CommunicationCreate(BaseModel):
    subject: str | None = Field(default=None, max_length=255)
    body: str | None = None
    communication_type: CommunicationType
    status: CommunicationStatus = CommunicationStatus.PENDING
    priority: PriorityLevel = PriorityLevel.NORMAL
    entity_type: str = Field(min_length=1, max_length=50)
    entity_id: UUID
    direction: CommunicationDirection
    channel: CommunicationChannel | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    from_contact_id: UUID | None = None
    to_contacts: list[UUID] = Field(default_factory=list)
    assigned_to: UUID | None = None
    requires_followup: bool = False
    followup_date: datetime | None = None
    sentiment_score: Decimal | None = Field(default=None, ge=-1, le=1)
    response_time: int | None = Field(default=None, ge=0)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CommunicationUpdate(VersionedRequest):
    subject: str | None = Field(default=None, max_length=255)
    body: str | None = None
    status: CommunicationStatus | None = None
    priority: PriorityLevel | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    assigned_to: UUID | None = None
    requires_followup: bool | None = None
    followup_date: datetime | None = None
    sentiment_score: Decimal | None = Field(default=None, ge=-1, le=1)
    response_time: int | None = Field(default=None, ge=0)
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class CommunicationRead(CRMRead):
    communication_number: str
    subject: str | None = None
    body: str | None = None
    communication_type: CommunicationType
    status: CommunicationStatus
    priority: PriorityLevel
    entity_type: str
    entity_id: UUID
    direction: CommunicationDirection
    channel: CommunicationChannel | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = None
    from_contact_id: UUID | None = None
    to_contacts: list[UUID] = Field(default_factory=list)
    assigned_to: UUID | None = None
    requires_followup: bool
    followup_date: datetime | None = None
    sentiment_score: Decimal | None = None
    response_time: int | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = _metadata("communication_metadata")


# documents


class DocumentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    document_type: DocumentType = DocumentType.OTHER
    status: DocumentStatus = DocumentStatus.DRAFT
    file_name: str | None = Field(default=None, max_length=255)
    file_type: str | None = Field(default=None, max_length=100)
    file_size: int | None = Field(default=None, ge=0)
    file_url: str | None = Field(default=None, pattern=URL_PATTERN)
    storage_path: str | None = None
    page_count: int | None = Field(default=None, ge=0)
    entity_type: str | None = Field(default=None, max_length=50)
    entity_id: UUID | None = None
    access_level: AccessLevel = AccessLevel.PRIVATE
    owner_id: UUID | None = None
    shared_with: list[UUID] = Field(default_factory=list)
    retention_start_date: date | None = None
    expiry_date: date | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class DocumentUpdate(VersionedRequest):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    document_type: DocumentType | None = None
    status: DocumentStatus | None = None
    access_level: AccessLevel | None = None
    owner_id: UUID | None = None
    shared_with: list[UUID] | None = None
    retention_start_date: date | None = None
    expiry_date: date | None = None
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class DocumentRead(CRMRead):
    document_number: str
    title: str
    description: str | None = None
    document_type: DocumentType
    status: DocumentStatus
    file_name: str | None = None
    file_type: str | None = None
    file_size: int | None = None
    file_url: str | None = None
    storage_path: str | None = None
    page_count: int | None = None
    parent_version_id: UUID | None = None
    version_number: int | None = None
    is_latest_version: bool
    entity_type: str | None = None
    entity_id: UUID | None = None
    access_level: AccessLevel
    owner_id: UUID | None = None
    shared_with: list[UUID] = Field(default_factory=list)
    retention_start_date: date | None = None
    expiry_date: date | None = None
    view_count: int
    download_count: int
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = _metadata("document_metadata")


class DocumentVersionCreate(BaseModel):
    """A new file revision of an existing document."""

    file_name: str | None = Field(default=None, max_length=255)
    file_type: str | None = Field(default=None, max_length=100)
    file_size: int | None = Field(default=None, ge=0)
    file_url: str | None = Field(default=None, pattern=URL_PATTERN)
    storage_path: str | None = None
    page_count: int | None = Field(default=None, ge=0)
    description: str | None = None
    version: int


# relationships


class RelationshipCreate(BaseModel):
    entity1_type: str = Field(min_length=1, max_length=50)
    entity1_id: UUID
    entity2_type: str = Field(min_length=1, max_length=50)
    entity2_id: UUID
    relationship_type: str = Field(min_length=1, max_length=50)
    description: str | None = None
    status: RelationshipStatus = RelationshipStatus.ACTIVE
    strength: RelationshipStrength | None = None
    direction: RelationshipDirection = RelationshipDirection.BIDIRECTIONAL
    start_date: date | None = None
    end_date: date | None = None
    relationship_score: int | None = Field(default=None, ge=0, le=100)
    assigned_to: UUID | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class RelationshipUpdate(VersionedRequest):
    relationship_type: str | None = Field(default=None, min_length=1, max_length=50)
    description: str | None = None
    status: RelationshipStatus | None = None
    strength: RelationshipStrength | None = None
    direction: RelationshipDirection | None = None
    start_date: date | None = None
    end_date: date | None = None
    interaction_count: int | None = Field(default=None, ge=0)
    last_interaction_at: datetime | None = None
    relationship_score: int | None = Field(default=None, ge=0, le=100)
    assigned_to: UUID | None = None
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class RelationshipRead(CRMRead):
    relationship_number: str
    entity1_type: str
    entity1_id: UUID
    entity2_type: str
    entity2_id: UUID
    relationship_type: str
    description: str | None = None
    status: RelationshipStatus
    strength: RelationshipStrength | None = None
    direction: RelationshipDirection
    start_date: date | None = None
    end_date: date | None = None
    interaction_count: int
    last_interaction_at: datetime | None = None
    relationship_score: int | None = None
    assigned_to: UUID | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = _metadata("relationship_metadata")


# notes


class NoteCreate(BaseModel):
    entity_type: NoteEntityType
    entity_id: UUID
    title: str | None = Field(default=None, max_length=255)
    content: str = Field(min_length=1)
    content_format: ContentFormat = ContentFormat.PLAIN_TEXT
    is_private: bool = False
    priority: int | None = Field(default=None, ge=1, le=5)
    access_level: AccessLevel = AccessLevel.INTERNAL
    shared_with: list[UUID] = Field(default_factory=list)
    parent_note_id: UUID | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class NoteUpdate(VersionedRequest):
    title: str | None = Field(default=None, max_length=255)
    content: str | None = Field(default=None, min_length=1)
    content_format: ContentFormat | None = None
    is_private: bool | None = None
    priority: int | None = Field(default=None, ge=1, le=5)
    access_level: AccessLevel | None = None
    shared_with: list[UUID] | None = None
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class NoteRead(CRMRead):
    note_number: str
    entity_type: str
    entity_id: UUID
    title: str | None = None
    content: str
    content_format: ContentFormat
    is_private: bool
    is_pinned: bool
    is_archived: bool
    priority: int | None = None
    access_level: AccessLevel
    shared_with: list[UUID] = Field(default_factory=list)
    parent_note_id: UUID | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = _metadata("note_metadata")


class NoteFlagRequest(BaseModel):
    value: bool = True
    version: int


# search


class SearchHit(BaseModel):
    resource: str
    id: UUID
    title: str | None = None
    rank: float


class SearchResponse(BaseModel):
    query: str
    hits: list[SearchHit]


LeadConversionRead.model_rebuild()
