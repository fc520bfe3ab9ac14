"""Shared vocabularies persisted as named Postgres enum types.

Every enum here is a ``StrEnum`` so values compare equal to their raw strings
and serialize cleanly through pydantic. ``db_enum`` builds the matching
SQLAlchemy column type; on SQLite it degrades to a VARCHAR.
"""

from __future__ import annotations

import re
from enum import StrEnum

from sqlalchemy import Enum


def _type_name(enum_cls: type[StrEnum]) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", enum_cls.__name__).lower()


def db_enum(enum_cls: type[StrEnum], name: str | None = None) -> Enum:
    return Enum(
        enum_cls,
        name=name or _type_name(enum_cls),
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class StatusType(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"
    EXPIRED = "expired"
    REVOKED = "revoked"


class Gender(StrEnum):
    MALE = "male"
    FEMALE = "female"
    NON_BINARY = "non_binary"
    OTHER = "other"
    PREFER_NOT_TO_SAY = "prefer_not_to_say"


class EntityType(StrEnum):
    USER_PROFILE = "user_profile"
    CRM_LEAD = "crm_lead"
    CRM_CONTACT = "crm_contact"
    CRM_OPPORTUNITY = "crm_opportunity"
    CRM_REFERRAL = "crm_referral"
    SYSTEM = "system"


class RoleType(StrEnum):
    SUPER_ADMIN = "super_admin"
    SYSTEM_ADMIN = "system_admin"
    SALES_DIRECTOR = "sales_director"
    MARKETING_DIRECTOR = "marketing_director"
    SALES_MANAGER = "sales_manager"
    MARKETING_MANAGER = "marketing_manager"
    SENIOR_SALES = "senior_sales"
    SENIOR_MARKETING = "senior_marketing"
    SALES_REP = "sales_rep"
    MARKETING_SPECIALIST = "marketing_specialist"
    ACCOUNT_MANAGER = "account_manager"
    SUPPORT_SPECIALIST = "support_specialist"
    STANDARD_USER = "standard_user"
    GUEST_USER = "guest_user"
    STANDARD = "standard"
    CUSTOM = "custom"


class OnboardingStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class SecurityLevel(StrEnum):
    STANDARD = "standard"
    HIGH = "high"
    CRITICAL = "critical"


class Theme(StrEnum):
    SYSTEM = "system"
    LIGHT = "light"
    DARK = "dark"


class DisplayDensity(StrEnum):
    COMPACT = "compact"
    COMFORTABLE = "comfortable"
    SPACIOUS = "spacious"


class DateFormat(StrEnum):
    ISO = "YYYY-MM-DD"
    US = "MM/DD/YYYY"
    EU = "DD/MM/YYYY"


class TimeFormat(StrEnum):
    H12 = "12h"
    H24 = "24h"


class NotificationFrequency(StrEnum):
    INSTANT = "instant"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class ProfileVisibility(StrEnum):
    PUBLIC = "public"
    PRIVATE = "private"
    CONTACTS = "contacts"


class TwoFactorMethod(StrEnum):
    AUTHENTICATOR = "authenticator"
    SMS = "sms"
    EMAIL = "email"


class EmailType(StrEnum):
    PERSONAL = "personal"
    WORK = "work"
    BACKUP = "backup"
    RECOVERY = "recovery"
    NOTIFICATION = "notification"
    OTHER = "other"


class EmailSubscriptionStatus(StrEnum):
    OPTED_IN = "opted_in"
    OPTED_OUT = "opted_out"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    UNSUBSCRIBED = "unsubscribed"


class BounceStatus(StrEnum):
    NONE = "none"
    SOFT = "soft"
    HARD = "hard"
    COMPLAINT = "complaint"


class PhoneType(StrEnum):
    MOBILE = "mobile"
    HOME = "home"
    WORK = "work"
    FAX = "fax"
    PAGER = "pager"
    OTHER = "other"


class ContactMethod(StrEnum):
    SMS = "sms"
    VOICE = "voice"
    WHATSAPP = "whatsapp"


class AddressType(StrEnum):
    RESIDENTIAL = "residential"
    BUSINESS = "business"
    SHIPPING = "shipping"
    BILLING = "billing"
    TEMPORARY = "temporary"
    OTHER = "other"


class AddressValidationStatus(StrEnum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    NEEDS_REVIEW = "needs_review"


class AssignmentType(StrEnum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    INHERITED = "inherited"
    TEMPORARY = "temporary"


class GrantType(StrEnum):
    EXPLICIT = "explicit"
    INHERITED = "inherited"
    TEMPORARY = "temporary"
    CONDITIONAL = "conditional"


class ConditionType(StrEnum):
    UNRESTRICTED = "unrestricted"
    TIME_BASED = "time_based"
    RESOURCE_BASED = "resource_based"
    CUSTOM = "custom"


class PermissionCategory(StrEnum):
    USER = "user"
    ROLE = "role"
    PERMISSION = "permission"
    AUDIT = "audit"
    SYSTEM = "system"
    SALES = "sales"
    MARKETING = "marketing"
    CUSTOMER = "customer"
    SUPPORT = "support"
    ANALYTICS = "analytics"
    TASKS = "tasks"
    INVENTORY = "inventory"
    ACCOUNTING = "accounting"


class DelegationStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class DelegationType(StrEnum):
    TEMPORARY = "temporary"
    PERMANENT = "permanent"
    EMERGENCY = "emergency"
    SCHEDULED = "scheduled"


class ComplianceStatus(StrEnum):
    COMPLIANT = "compliant"
    PENDING_REVIEW = "pending_review"
    NON_COMPLIANT = "non_compliant"
    EXPIRED = "expired"


class AuditAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SOFT_DELETE = "soft_delete"
    RESTORE = "restore"
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REVOKED = "role_revoked"
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_REVOKED = "permission_revoked"
    EXPORT = "export"
    OTHER = "other"


class AuditCategory(StrEnum):
    USER = "user"
    DATA = "data"
    SECURITY = "security"
    SYSTEM = "system"
    COMPLIANCE = "compliance"


class AuditStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DataSensitivity(StrEnum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"


class ActivityType(StrEnum):
    LOGIN = "login"
    LOGOUT = "logout"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SEARCH = "search"
    EXPORT = "export"
    OTHER = "other"


class SecuritySeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CustomerType(StrEnum):
    PROSPECT = "prospect"
    CUSTOMER = "customer"
    PARTNER = "partner"
    VENDOR = "vendor"
    COMPETITOR = "competitor"
    OTHER = "other"


class CustomerStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CHURNED = "churned"
    BLOCKED = "blocked"


class CustomerSegment(StrEnum):
    ENTERPRISE = "enterprise"
    MID_MARKET = "mid_market"
    SMB = "smb"
    CONSUMER = "consumer"


class CommunicationChannel(StrEnum):
    EMAIL = "email"
    PHONE = "phone"
    SMS = "sms"
    CHAT = "chat"
    IN_PERSON = "in_person"
    SOCIAL = "social"


class LeadStatus(StrEnum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    UNQUALIFIED = "unqualified"
    NURTURING = "nurturing"
    CONVERTED = "converted"
    LOST = "lost"


class LeadSource(StrEnum):
    WEBSITE = "website"
    REFERRAL = "referral"
    SOCIAL_MEDIA = "social_media"
    EMAIL_CAMPAIGN = "email_campaign"
    COLD_CALL = "cold_call"
    TRADE_SHOW = "trade_show"
    PARTNER = "partner"
    ADVERTISEMENT = "advertisement"
    OTHER = "other"


class OpportunityStatus(StrEnum):
    PROSPECTING = "prospecting"
    QUALIFICATION = "qualification"
    NEEDS_ANALYSIS = "needs_analysis"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    WON = "won"
    LOST = "lost"


class QuoteStatus(StrEnum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    REVISED = "revised"


class JobStatus(StrEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class JobPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class BillingStatus(StrEnum):
    PENDING = "pending"
    INVOICED = "invoiced"
    PAID = "paid"
    OVERDUE = "overdue"
    WRITTEN_OFF = "written_off"


class ReferralStatus(StrEnum):
    PENDING = "pending"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class RewardStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class ProductType(StrEnum):
    PHYSICAL = "physical"
    DIGITAL = "digital"
    SERVICE = "service"
    SUBSCRIPTION = "subscription"
    BUNDLE = "bundle"


class ProductStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    DISCONTINUED = "discontinued"


class TimeUnit(StrEnum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


class PipelineType(StrEnum):
    SALES = "sales"
    LEAD = "lead"
    SERVICE = "service"
    SUPPORT = "support"


class PipelineStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class CommunicationType(StrEnum):
    EMAIL = "email"
    CALL = "call"
    MEETING = "meeting"
    CHAT = "chat"
    NOTE = "note"
    SMS = "sms"
    SOCIAL = "social"


class CommunicationStatus(StrEnum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    SENT = "sent"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CommunicationDirection(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    INTERNAL = "internal"


class PriorityLevel(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class DocumentType(StrEnum):
    CONTRACT = "contract"
    PROPOSAL = "proposal"
    INVOICE = "invoice"
    QUOTE = "quote"
    REPORT = "report"
    PRESENTATION = "presentation"
    SPREADSHEET = "spreadsheet"
    IMAGE = "image"
    OTHER = "other"


class DocumentStatus(StrEnum):
    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class AccessLevel(StrEnum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"
    PRIVATE = "private"


class ApprovalStatus(StrEnum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RelationshipStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    ENDED = "ended"


class RelationshipStrength(StrEnum):
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


class RelationshipDirection(StrEnum):
    UNIDIRECTIONAL = "unidirectional"
    BIDIRECTIONAL = "bidirectional"


class ContentFormat(StrEnum):
    PLAIN_TEXT = "plain_text"
    MARKDOWN = "markdown"
    HTML = "html"
    RICH_TEXT = "rich_text"


class BoardType(StrEnum):
    KANBAN = "kanban"
    SCRUM = "scrum"
    PROJECT = "project"
    WORKFLOW = "workflow"
    TIMELINE = "timeline"
    CUSTOM = "custom"


class ListType(StrEnum):
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    ARCHIVE = "archive"
    CUSTOM = "custom"


class TaskType(StrEnum):
    STORY = "story"
    BUG = "bug"
    FEATURE = "feature"
    IMPROVEMENT = "improvement"
    MAINTENANCE = "maintenance"
    RESEARCH = "research"
    DOCUMENTATION = "documentation"
    REVIEW = "review"
    MEETING = "meeting"
    OTHER = "other"


class TaskPriority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class TaskStatus(StrEnum):
    BACKLOG = "backlog"
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    REVIEW = "review"
    TESTING = "testing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AssignmentRole(StrEnum):
    OWNER = "owner"
    ASSIGNEE = "assignee"
    REVIEWER = "reviewer"
    OBSERVER = "observer"
    CONTRIBUTOR = "contributor"


class DependencyType(StrEnum):
    FINISH_TO_START = "finish_to_start"
    START_TO_START = "start_to_start"
    FINISH_TO_FINISH = "finish_to_finish"
    START_TO_FINISH = "start_to_finish"
    BLOCKS = "blocks"
    IS_BLOCKED_BY = "is_blocked_by"


class LocationType(StrEnum):
    WAREHOUSE = "warehouse"
    STORE = "store"
    TRANSIT = "transit"
    SUPPLIER = "supplier"
    CUSTOMER = "customer"
    REPAIR = "repair"
    DISPOSAL = "disposal"


class InventoryTransactionType(StrEnum):
    PURCHASE = "purchase"
    SALE = "sale"
    TRANSFER = "transfer"
    RETURN = "return"
    ADJUSTMENT = "adjustment"
    SCRAP = "scrap"
    PRODUCTION = "production"


class QualityStatus(StrEnum):
    AVAILABLE = "available"
    QUARANTINE = "quarantine"
    DAMAGED = "damaged"
    EXPIRED = "expired"


class ValuationMethod(StrEnum):
    FIFO = "fifo"
    LIFO = "lifo"
    AVG_COST = "avg_cost"
    SPECIFIC = "specific"
    STANDARD = "standard"


class PurchaseOrderStatus(StrEnum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    ORDERED = "ordered"
    PARTIAL = "partial"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class AccountType(StrEnum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class JournalEntryType(StrEnum):
    STANDARD = "standard"
    ADJUSTMENT = "adjustment"
    CLOSING = "closing"
    REVERSING = "reversing"


class PostingStatus(StrEnum):
    DRAFT = "draft"
    POSTED = "posted"
    VOIDED = "voided"


class LineSide(StrEnum):
    DEBIT = "debit"
    CREDIT = "credit"


class PaymentMethod(StrEnum):
    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    ACH = "ach"
    WIRE = "wire"
    OTHER = "other"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Currency(StrEnum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"
    JPY = "JPY"
    INR = "INR"


class SyncStatus(StrEnum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncType(StrEnum):
    FULL = "full"
    INCREMENTAL = "incremental"
    MANUAL = "manual"


class ExternalSystem(StrEnum):
    XERO = "xero"
    QUICKBOOKS = "quickbooks"
    SAGE = "sage"
    NETSUITE = "netsuite"
