"""Row rules of the CRM tables, checked before a flush and reported as 422.

Each rule inspects the record as it would be written (after the caller's
changes are applied) and returns a message, or ``None`` when the row is valid.
The same rules exist as CHECK constraints on the tables.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from crmhub.enums import OpportunityStatus, QuoteStatus
from crmhub.platform.persistence import as_utc


Rule = Callable[[Any], str | None]


def _ordered(earlier: Any, later: Any, *, strict: bool = False) -> bool:
    if earlier is None or later is None:
        return True
    if isinstance(earlier, datetime):
        earlier, later = as_utc(earlier), as_utc(later)
    return earlier < later if strict else earlier <= later


def _non_negative(*values: Any) -> bool:
    return all(value is None or value >= 0 for value in values)


def contact_name(record: Any) -> str | None:
    if not record.first_name and not record.last_name:
        return "first_name or last_name is required"
    return None


def contact_dates(record: Any) -> str | None:
    if not _ordered(record.first_contact_date, record.last_contact_date):
        return "first_contact_date must not be after last_contact_date"
    if not _ordered(record.last_contact_date, record.next_follow_up_date):
        return "next_follow_up_date must not be before last_contact_date"
    return None


def lead_dates(record: Any) -> str | None:
    if not _ordered(record.inquiry_date, record.qualification_date):
        return "qualification_date must not be before inquiry_date"
    if not _ordered(record.last_contact_date, record.next_follow_up_date):
        return "next_follow_up_date must not be before last_contact_date"
    if not _ordered(record.inquiry_date, record.expected_close_date):
        return "expected_close_date must not be before inquiry_date"
    return None


def opportunity_dates(record: Any) -> str | None:
    if not _ordered(record.start_date, record.close_date):
        return "close_date must not be before start_date"
    if not _ordered(record.last_activity_date, record.next_step_date):
        return "next_step_date must not be before last_activity_date"
    return None


def opportunity_status_reason(record: Any) -> str | None:
    if record.opportunity_status == OpportunityStatus.WON and not record.win_reason:
        return "a won opportunity needs a win_reason"
    if record.opportunity_status == OpportunityStatus.LOST and not record.loss_reason:
        return "a lost opportunity needs a loss_reason"
    return None


def quote_dates(record: Any) -> str | None:
    for later, label in (
        (record.expiry_date, "expiry_date"),
        (record.acceptance_date, "acceptance_date"),
        (record.rejection_date, "rejection_date"),
    ):
        if not _ordered(record.issue_date, later):
            return f"{label} must not be before issue_date"
    if record.quote_status == QuoteStatus.ACCEPTED and record.acceptance_date is None:
        return "an accepted quote needs an acceptance_date"
    if record.quote_status == QuoteStatus.REJECTED and record.rejection_date is None:
        return "a rejected quote needs a rejection_date"
    return None


def job_schedule(record: Any) -> str | None:
    if not _ordered(record.scheduled_start, record.scheduled_end, strict=True):
        return "scheduled_end must be after scheduled_start"
    if record.actual_end is not None and (
        record.actual_start is None or not _ordered(record.actual_start, record.actual_end, strict=True)
    ):
        return "actual_end must be after actual_start"
    return None


def referral_parties(record: Any) -> str | None:
    if record.referrer_id == record.referee_id:
        return "a contact cannot refer themselves"
    return None


def product_service(record: Any) -> str | None:
    if record.is_service and (record.service_duration is None or record.service_unit is None):
        return "service products need service_duration and service_unit"
    if not _non_negative(record.base_price, record.cost_price, record.tax_rate):
        return "prices must not be negative"
    return None


def pipeline_stages(record: Any) -> str | None:
    if not record.stages:
        return "a pipeline needs at least one stage"
    if record.is_default and record.deleted_at is not None:
        return "a deleted pipeline cannot be the default"
    return None


def communication_times(record: Any) -> str | None:
    if not _ordered(record.start_time, record.end_time):
        return "end_time must not be before start_time"
    if record.sentiment_score is not None and not -1 <= record.sentiment_score <= 1:
        return "sentiment_score must be between -1 and 1"
    if record.requires_followup and record.followup_date is None:
        return "followup_date is required when a follow-up is requested"
    return None


def document_retention(record: Any) -> str | None:
    if not _ordered(record.retention_start_date, record.expiry_date):
        return "expiry_date must not be before retention_start_date"
    if record.parent_version_id is not None and record.version_number is None:
        return "a document version needs a version_number"
    return None


def relationship_endpoints(record: Any) -> str | None:
    if record.entity1_type == record.entity2_type and record.entity1_id == record.entity2_id:
        return "a relationship needs two different entities"
    if not _ordered(record.start_date, record.end_date):
        return "end_date must not be before start_date"
    return None


def note_priority(record: Any) -> str | None:
    if record.priority is not None and not 1 <= record.priority <= 5:
        return "priority must be between 1 and 5"
    return None


RULES: dict[str, tuple[Rule, ...]] = {
    "contacts": (contact_name, contact_dates),
    "leads": (lead_dates,),
    "opportunities": (opportunity_dates, opportunity_status_reason),
    "quotes": (quote_dates,),
    "jobs": (job_schedule,),
    "referrals": (referral_parties,),
    "products": (product_service,),
    "pipelines": (pipeline_stages,),
    "communications": (communication_times,),
    "documents": (document_retention,),
    "relationships": (relationship_endpoints,),
    "notes": (note_priority,),
}


def first_violation(resource: str, record: Any) -> str | None:
    for rule in RULES.get(resource, ()):
        message = rule(record)
        if message is not None:
            return message
    return None


def seconds_between(start: datetime | date | None, end: datetime | date | None) -> int | None:
    if not isinstance(start, datetime) or not isinstance(end, datetime):
        return None
    return int((as_utc(end) - as_utc(start)).total_seconds())  # type: ignore[operator]
