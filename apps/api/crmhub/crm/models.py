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
from sqlalchemy.orm import Mapped, mapped_column

from crmhub.core.database import Base
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
    db_enum,
)
from crmhub.platform.persistence import (
    AuditedMixin,
    JSONDocument,
    PydanticJSON,
    audited_table_args,
    live_index,
    live_unique_index,
    pg_check,
)


NOTE_ENTITY_TYPES = ("contact", "company", "opportunity", "lead", "product", "quote", "job")

MONEY = Numeric(15, 2)


class CRMContact(AuditedMixin, Base):
    """A person or company the business deals with."""

    __tablename__ = "crm_contacts"
    __audit_sensitivity__ = "confidential"
    __search_fields__ = {"A": ("full_name", "company_name"), "B": ("job_title", "industry"), "C": ("notes",)}

    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    full_name: Mapped[str | None] = mapped_column(
        String(255),
        Computed(
            "CASE WHEN first_name IS NULL AND last_name IS NULL THEN NULL "
            "WHEN first_name IS NULL THEN last_name "
            "WHEN last_name IS NULL THEN first_name "
            "ELSE first_name || ' ' || last_name END",
            persisted=True,
        ),
    )
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    industry: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_type: Mapped[CustomerType] = mapped_column(
        db_enum(CustomerType),
        nullable=False,
        default=CustomerType.PROSPECT,
    )
    customer_status: Mapped[CustomerStatus] = mapped_column(
        db_enum(CustomerStatus),
        nullable=False,
        default=CustomerStatus.ACTIVE,
    )
    customer_segment: Mapped[CustomerSegment | None] = mapped_column(db_enum(CustomerSegment), nullable=True)
    lead_source: Mapped[LeadSource | None] = mapped_column(db_enum(LeadSource), nullable=True)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    account_manager: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    parent_company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_contacts.id"),
        nullable=True,
    )
    preferred_contact_method: Mapped[CommunicationChannel | None] = mapped_column(
        db_enum(CommunicationChannel),
        nullable=True,
    )
    first_contact_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_contact_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_follow_up_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    linkedin_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    twitter_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    website_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_revenue: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True, default=Decimal("0"))
    lifetime_value: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True, default=Decimal("0"))
    credit_limit: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    payment_terms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("first_name IS NOT NULL OR last_name IS NOT NULL", name="valid_name"),
        CheckConstraint(
            "(first_contact_date IS NULL OR last_contact_date IS NULL OR first_contact_date <= last_contact_date) AND "
            "(last_contact_date IS NULL OR next_follow_up_date IS NULL OR last_contact_date <= next_follow_up_date)",
            name="valid_dates",
        ),
        CheckConstraint(
            "(total_revenue IS NULL OR total_revenue >= 0) AND (lifetime_value IS NULL OR lifetime_value >= 0) AND "
            "(credit_limit IS NULL OR credit_limit >= 0) AND (payment_terms IS NULL OR payment_terms >= 0)",
            name="valid_metrics",
        ),
        pg_check("linkedin_url IS NULL OR linkedin_url ~* '^https?://'", name="valid_linkedin_url"),
        pg_check("website_url IS NULL OR website_url ~* '^https?://'", name="valid_website_url"),
        live_index("idx_crm_contacts_assigned_to", "assigned_to"),
        live_index("idx_crm_contacts_account_manager", "account_manager"),
        live_index("idx_crm_contacts_company", "company_name"),
        live_index("idx_crm_contacts_status", "customer_status"),
        live_index("idx_crm_contacts_follow_up", "next_follow_up_date"),
    )


class CRMLead(AuditedMixin, Base):
    __tablename__ = "crm_leads"
    __search_fields__ = {"A": ("title",), "B": ("description",), "C": ("notes",)}

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_contacts.id"), nullable=True)
    lead_status: Mapped[LeadStatus] = mapped_column(db_enum(LeadStatus), nullable=False, default=LeadStatus.NEW)
    lead_source: Mapped[LeadSource | None] = mapped_column(db_enum(LeadSource), nullable=True)
    lead_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    inquiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    qualification_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_contact_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_follow_up_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expected_close_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_value: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    currency: Mapped[Currency] = mapped_column(db_enum(Currency), nullable=False, default=Currency.USD)
    utm_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_converted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    converted_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    converted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    converted_to_opportunity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    conversion_value: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    lead_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("lead_score IS NULL OR (lead_score >= 0 AND lead_score <= 100)", name="valid_lead_score"),
        CheckConstraint(
            "(inquiry_date IS NULL OR qualification_date IS NULL OR inquiry_date <= qualification_date) AND "
            "(last_contact_date IS NULL OR next_follow_up_date IS NULL OR last_contact_date <= next_follow_up_date) AND "
            "(inquiry_date IS NULL OR expected_close_date IS NULL OR inquiry_date <= expected_close_date)",
            name="valid_dates",
        ),
        CheckConstraint(
            "NOT is_converted OR (converted_date IS NOT NULL AND converted_by IS NOT NULL)",
            name="valid_conversion",
        ),
        CheckConstraint("estimated_value IS NULL OR estimated_value >= 0", name="valid_estimated_value"),
        live_index("idx_crm_leads_assigned_to", "assigned_to"),
        live_index("idx_crm_leads_status", "lead_status"),
        live_index("idx_crm_leads_contact", "contact_id"),
        live_index("idx_crm_leads_follow_up", "next_follow_up_date"),
    )


class CRMOpportunity(AuditedMixin, Base):
    __tablename__ = "crm_opportunities"
    __search_fields__ = {"A": ("name",), "B": ("description",), "C": ("notes",)}

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_contacts.id"), nullable=False)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_leads.id"), nullable=True)
    pipeline_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_pipelines.id"),
        nullable=True,
    )
    stage_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    opportunity_status: Mapped[OpportunityStatus] = mapped_column(
        db_enum(OpportunityStatus),
        nullable=False,
        default=OpportunityStatus.PROSPECTING,
    )
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    win_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    loss_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    competitor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    currency: Mapped[Currency] = mapped_column(db_enum(Currency), nullable=False, default=Currency.USD)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    expected_revenue: Mapped[Decimal | None] = mapped_column(
        MONEY,
        Computed("amount * probability / 100.0", persisted=True),
    )
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_activity_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_step: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_step_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    products: Mapped[list[dict]] = mapped_column(JSONDocument, nullable=False, default=list)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    opportunity_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("probability >= 0 AND probability <= 100", name="valid_probability"),
        CheckConstraint("amount >= 0", name="valid_amount"),
        CheckConstraint(
            "(start_date IS NULL OR close_date IS NULL OR start_date <= close_date) AND "
            "(last_activity_date IS NULL OR next_step_date IS NULL OR last_activity_date <= next_step_date)",
            name="valid_dates",
        ),
        CheckConstraint(
            "(opportunity_status != 'won' OR win_reason IS NOT NULL) AND "
            "(opportunity_status != 'lost' OR loss_reason IS NOT NULL)",
            name="valid_status_reason",
        ),
        live_index("idx_crm_opportunities_assigned_to", "assigned_to"),
        live_index("idx_crm_opportunities_contact", "contact_id"),
        live_index("idx_crm_opportunities_status", "opportunity_status"),
        live_index("idx_crm_opportunities_close_date", "close_date"),
    )


class CRMQuote(AuditedMixin, Base):
    __tablename__ = "crm_quotes"
    __search_fields__ = {"A": ("quote_number", "title"), "B": ("description",), "C": ("notes",)}

    quote_number: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_contacts.id"), nullable=False)
    opportunity_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_opportunities.id"),
        nullable=True,
    )
    quote_status: Mapped[QuoteStatus] = mapped_column(db_enum(QuoteStatus), nullable=False, default=QuoteStatus.DRAFT)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    parent_quote_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_quotes.id"),
        nullable=True,
    )
    currency: Mapped[Currency] = mapped_column(db_enum(Currency), nullable=False, default=Currency.USD)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True, default=Decimal("0"))
    tax_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True, default=Decimal("0"))
    total_amount: Mapped[Decimal | None] = mapped_column(
        MONEY,
        Computed("subtotal - COALESCE(discount_amount, 0) + COALESCE(tax_amount, 0)", persisted=True),
    )
    line_items: Mapped[list[dict]] = mapped_column(JSONDocument, nullable=False, default=list)
    payment_terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivery_terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    validity_period: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    issue_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acceptance_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    quote_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "subtotal >= 0 AND (discount_amount IS NULL OR discount_amount >= 0) AND "
            "(tax_amount IS NULL OR tax_amount >= 0)",
            name="valid_amounts",
        ),
        CheckConstraint("version_number > 0", name="valid_version_number"),
        CheckConstraint("validity_period IS NULL OR validity_period > 0", name="valid_validity_period"),
        CheckConstraint(
            "(issue_date IS NULL OR expiry_date IS NULL OR issue_date <= expiry_date) AND "
            "(issue_date IS NULL OR acceptance_date IS NULL OR issue_date <= acceptance_date) AND "
            "(issue_date IS NULL OR rejection_date IS NULL OR issue_date <= rejection_date)",
            name="valid_dates",
        ),
        CheckConstraint(
            "(quote_status != 'accepted' OR acceptance_date IS NOT NULL) AND "
            "(quote_status != 'rejected' OR rejection_date IS NOT NULL)",
            name="valid_status_dates",
        ),
        live_unique_index("idx_crm_quotes_number", "quote_number"),
        live_index("idx_crm_quotes_contact", "contact_id"),
        live_index("idx_crm_quotes_opportunity", "opportunity_id"),
        live_index("idx_crm_quotes_status", "quote_status"),
    )


class CRMJob(AuditedMixin, Base):
    __tablename__ = "crm_jobs"
    __search_fields__ = {"A": ("job_number", "title"), "B": ("description",), "C": ("notes",)}
    __duration_columns__ = (("actual_start", "scheduled_start"), ("actual_end", "scheduled_end"))

    job_number: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_contacts.id"), nullable=False)
    opportunity_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_opportunities.id"),
        nullable=True,
    )
    quote_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_quotes.id"), nullable=True)
    status: Mapped[JobStatus] = mapped_column(db_enum(JobStatus), nullable=False, default=JobStatus.SCHEDULED)
    priority: Mapped[JobPriority] = mapped_column(db_enum(JobPriority), nullable=False, default=JobPriority.MEDIUM)
    scheduled_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scheduled_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actual_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    location: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    team_members: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    estimated_cost: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    actual_cost: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    currency: Mapped[Currency] = mapped_column(db_enum(Currency), nullable=False, default=Currency.USD)
    billing_status: Mapped[BillingStatus] = mapped_column(
        db_enum(BillingStatus),
        nullable=False,
        default=BillingStatus.PENDING,
    )
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    checklist: Mapped[list[dict]] = mapped_column(JSONDocument, nullable=False, default=list)
    milestones: Mapped[list[dict]] = mapped_column(JSONDocument, nullable=False, default=list)
    time_unit: Mapped[TimeUnit] = mapped_column(db_enum(TimeUnit), nullable=False, default=TimeUnit.HOURS)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("scheduled_end > scheduled_start", name="valid_schedule"),
        CheckConstraint(
            "actual_end IS NULL OR (actual_start IS NOT NULL AND actual_end > actual_start)",
            name="valid_actual_time",
        ),
        CheckConstraint("completion_percentage BETWEEN 0 AND 100", name="valid_completion"),
        CheckConstraint(
            "(estimated_cost IS NULL OR estimated_cost >= 0) AND (actual_cost IS NULL OR actual_cost >= 0)",
            name="valid_costs",
        ),
        pg_check("job_number ~ '^JOB-[0-9]{6}$'", name="valid_job_number"),
        live_unique_index("idx_crm_jobs_number", "job_number"),
        live_index("idx_crm_jobs_assigned_to", "assigned_to"),
        live_index("idx_crm_jobs_contact", "contact_id"),
        live_index("idx_crm_jobs_schedule", "scheduled_start", "scheduled_end"),
        live_index("idx_crm_jobs_status", "status"),
    )


class CRMReferral(AuditedMixin, Base):
    __tablename__ = "crm_referrals"
    __search_fields__ = {"A": ("referral_number",), "B": ("referral_type",), "C": ("notes",)}

    referral_number: Mapped[str] = mapped_column(String(20), nullable=False)
    referrer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_contacts.id"), nullable=False)
    referee_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_contacts.id"), nullable=False)
    opportunity_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_opportunities.id"),
        nullable=True,
    )
    referral_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[ReferralStatus] = mapped_column(db_enum(ReferralStatus), nullable=False, default=ReferralStatus.PENDING)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        db_enum(ApprovalStatus),
        nullable=False,
        default=ApprovalStatus.NOT_REQUIRED,
    )
    reward_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reward_value: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    reward_status: Mapped[RewardStatus] = mapped_column(db_enum(RewardStatus), nullable=False, default=RewardStatus.PENDING)
    is_converted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    converted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    conversion_value: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    parent_referral_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_referrals.id"),
        nullable=True,
    )
    referral_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    referral_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("referrer_id != referee_id", name="valid_referral"),
        CheckConstraint(
            "NOT is_converted OR (converted_at IS NOT NULL AND converted_by IS NOT NULL)",
            name="valid_conversion",
        ),
        CheckConstraint(
            "(reward_value IS NULL OR reward_value >= 0) AND (conversion_value IS NULL OR conversion_value >= 0)",
            name="valid_values",
        ),
        CheckConstraint("referral_level > 0", name="valid_referral_level"),
        pg_check("referral_number ~ '^REF-[0-9]{6}$'", name="valid_referral_number"),
        live_unique_index("idx_crm_referrals_number", "referral_number"),
        live_index("idx_crm_referrals_referrer", "referrer_id"),
        live_index("idx_crm_referrals_referee", "referee_id"),
        live_index("idx_crm_referrals_status", "status"),
    )


class CRMProduct(AuditedMixin, Base):
    __tablename__ = "crm_products"
    __audit_sensitivity__ = "public"
    __search_fields__ = {"A": ("name", "sku"), "B": ("description",), "C": ("tags",)}

    sku: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_type: Mapped[ProductType] = mapped_column(db_enum(ProductType), nullable=False, default=ProductType.PHYSICAL)
    status: Mapped[ProductStatus] = mapped_column(db_enum(ProductStatus), nullable=False, default=ProductStatus.DRAFT)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    base_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    cost_price: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    currency: Mapped[Currency] = mapped_column(db_enum(Currency), nullable=False, default=Currency.USD)
    stock_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    low_stock_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reorder_point: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reorder_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_digital: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_service: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    service_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    service_unit: Mapped[TimeUnit | None] = mapped_column(db_enum(TimeUnit), nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchase_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating_average: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    product_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "base_price >= 0 AND (cost_price IS NULL OR cost_price >= 0) AND (tax_rate IS NULL OR tax_rate >= 0)",
            name="valid_prices",
        ),
        CheckConstraint(
            "(stock_quantity IS NULL OR stock_quantity >= 0) AND "
            "(low_stock_threshold IS NULL OR low_stock_threshold >= 0) AND "
            "(reorder_point IS NULL OR reorder_point >= 0) AND "
            "(reorder_quantity IS NULL OR reorder_quantity > 0)",
            name="valid_inventory",
        ),
        CheckConstraint(
            "NOT is_service OR (service_duration IS NOT NULL AND service_unit IS NOT NULL)",
            name="valid_service",
        ),
        CheckConstraint(
            "view_count >= 0 AND purchase_count >= 0 AND review_count >= 0 AND "
            "(rating_average IS NULL OR (rating_average >= 0 AND rating_average <= 5))",
            name="valid_metrics",
        ),
        pg_check("sku ~ '^PRD-[0-9A-Z]{8}$'", name="valid_sku"),
        live_unique_index("idx_crm_products_sku", "sku"),
        live_index("idx_crm_products_status", "status"),
        live_index("idx_crm_products_category", "category"),
    )


class CRMPipeline(AuditedMixin, Base):
    __tablename__ = "crm_pipelines"
    __search_fields__ = {"A": ("name", "code"), "B": ("description",), "C": ()}

    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    pipeline_type: Mapped[PipelineType] = mapped_column(db_enum(PipelineType), nullable=False, default=PipelineType.SALES)
    status: Mapped[PipelineStatus] = mapped_column(db_enum(PipelineStatus), nullable=False, default=PipelineStatus.ACTIVE)
    stages: Mapped[list[PipelineStage]] = mapped_column(PydanticJSON(PipelineStage, many=True), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    pipeline_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("NOT (is_default AND deleted_at IS NOT NULL)", name="unique_default_pipeline"),
        pg_check("jsonb_array_length(stages) > 0", name="valid_stages"),
        pg_check("code ~ '^PIP-[0-9]{6}$'", name="valid_pipeline_code"),
        live_unique_index("idx_crm_pipelines_code", "code"),
        live_unique_index("idx_crm_pipelines_default", "pipeline_type", where="is_default"),
        live_index("idx_crm_pipelines_status", "status"),
    )


class CRMCommunication(AuditedMixin, Base):
    __tablename__ = "crm_communications"
    __audit_sensitivity__ = "confidential"
    __search_fields__ = {"A": ("subject",), "B": ("body",), "C": ("communication_number",)}

    communication_number: Mapped[str] = mapped_column(String(20), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    communication_type: Mapped[CommunicationType] = mapped_column(db_enum(CommunicationType), nullable=False)
    status: Mapped[CommunicationStatus] = mapped_column(
        db_enum(CommunicationStatus),
        nullable=False,
        default=CommunicationStatus.PENDING,
    )
    priority: Mapped[PriorityLevel] = mapped_column(db_enum(PriorityLevel), nullable=False, default=PriorityLevel.NORMAL)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    direction: Mapped[CommunicationDirection] = mapped_column(db_enum(CommunicationDirection), nullable=False)
    channel: Mapped[CommunicationChannel | None] = mapped_column(db_enum(CommunicationChannel), nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    from_contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_contacts.id"),
        nullable=True,
    )
    to_contacts: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    requires_followup: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    followup_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sentiment_score: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    response_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    communication_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("duration IS NULL OR duration >= 0", name="valid_duration"),
        CheckConstraint("start_time IS NULL OR end_time IS NULL OR end_time >= start_time", name="valid_dates"),
        CheckConstraint(
            "sentiment_score IS NULL OR (sentiment_score >= -1 AND sentiment_score <= 1)",
            name="valid_sentiment",
        ),
        CheckConstraint("response_time IS NULL OR response_time >= 0", name="valid_response_time"),
        CheckConstraint("NOT requires_followup OR followup_date IS NOT NULL", name="valid_followup"),
        live_unique_index("idx_crm_communications_number", "communication_number"),
        live_index("idx_crm_communications_entity", "entity_id", "entity_type"),
        live_index("idx_crm_communications_assigned_to", "assigned_to"),
        live_index("idx_crm_communications_followup", "followup_date"),
    )


class CRMDocument(AuditedMixin, Base):
    __tablename__ = "crm_documents"
    __audit_sensitivity__ = "confidential"
    __search_fields__ = {"A": ("title", "document_number"), "B": ("description",), "C": ("file_name",)}

    document_number: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_type: Mapped[DocumentType] = mapped_column(db_enum(DocumentType), nullable=False, default=DocumentType.OTHER)
    status: Mapped[DocumentStatus] = mapped_column(db_enum(DocumentStatus), nullable=False, default=DocumentStatus.DRAFT)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    storage_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parent_version_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_documents.id"),
        nullable=True,
    )
    version_number: Mapped[int | None] = mapped_column(Integer, nullable=True, default=1)
    is_latest_version: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    access_level: Mapped[AccessLevel] = mapped_column(db_enum(AccessLevel), nullable=False, default=AccessLevel.PRIVATE)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    shared_with: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    retention_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    document_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("file_size IS NULL OR file_size >= 0", name="valid_file_size"),
        CheckConstraint("page_count IS NULL OR page_count >= 0", name="valid_page_count"),
        CheckConstraint("view_count >= 0 AND download_count >= 0", name="valid_counts"),
        CheckConstraint(
            "retention_start_date IS NULL OR expiry_date IS NULL OR expiry_date >= retention_start_date",
            name="valid_dates",
        ),
        CheckConstraint("parent_version_id IS NULL OR version_number IS NOT NULL", name="valid_version"),
        live_unique_index("idx_crm_documents_number", "document_number"),
        live_index("idx_crm_documents_entity", "entity_id", "entity_type"),
        live_index("idx_crm_documents_owner", "owner_id"),
        live_index("idx_crm_documents_parent", "parent_version_id"),
    )


class CRMRelationship(AuditedMixin, Base):
    __tablename__ = "crm_relationships"
    __search_fields__ = {"A": ("relationship_number",), "B": ("relationship_type",), "C": ("description",)}

    relationship_number: Mapped[str] = mapped_column(String(10), nullable=False)
    entity1_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity1_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    entity2_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity2_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    relationship_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[RelationshipStatus] = mapped_column(
        db_enum(RelationshipStatus),
        nullable=False,
        default=RelationshipStatus.ACTIVE,
    )
    strength: Mapped[RelationshipStrength | None] = mapped_column(db_enum(RelationshipStrength), nullable=True)
    direction: Mapped[RelationshipDirection] = mapped_column(
        db_enum(RelationshipDirection),
        nullable=False,
        default=RelationshipDirection.BIDIRECTIONAL,
    )
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    interaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_interaction_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    relationship_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    relationship_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "entity1_type != entity2_type OR entity1_id != entity2_id",
            name="different_entities",
        ),
        CheckConstraint(
            "relationship_score IS NULL OR (relationship_score >= 0 AND relationship_score <= 100)",
            name="valid_relationship_score",
        ),
        CheckConstraint("interaction_count >= 0", name="valid_interaction_count"),
        CheckConstraint("start_date IS NULL OR end_date IS NULL OR end_date >= start_date", name="valid_dates"),
        pg_check("relationship_number ~ '^REL-[0-9]{6}$'", name="valid_relationship_number"),
        live_unique_index("idx_crm_relationships_number", "relationship_number"),
        live_index("idx_crm_relationships_entity1", "entity1_id", "entity1_type"),
        live_index("idx_crm_relationships_entity2", "entity2_id", "entity2_type"),
    )


class CRMNote(AuditedMixin, Base):
    __tablename__ = "crm_notes"
    __search_fields__ = {"A": ("title",), "B": ("content",), "C": ("note_number",)}

    note_number: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_format: Mapped[ContentFormat] = mapped_column(
        db_enum(ContentFormat),
        nullable=False,
        default=ContentFormat.PLAIN_TEXT,
    )
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    access_level: Mapped[AccessLevel] = mapped_column(db_enum(AccessLevel), nullable=False, default=AccessLevel.INTERNAL)
    shared_with: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    parent_note_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_notes.id"),
        nullable=True,
    )
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    note_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("priority IS NULL OR priority BETWEEN 1 AND 5", name="valid_priority"),
        CheckConstraint(
            "entity_type IN (" + ", ".join(f"'{value}'" for value in NOTE_ENTITY_TYPES) + ")",
            name="valid_entity_types",
        ),
        live_unique_index("idx_crm_notes_number", "note_number"),
        live_index("idx_crm_notes_entity", "entity_id", "entity_type"),
        live_index("idx_crm_notes_pinned", "is_pinned"),
    )
