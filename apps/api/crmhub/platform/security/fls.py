from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from crmhub import audit
from crmhub.metrics import observe_fls_field_counts
from crmhub.platform.security.context import AuthContext
from crmhub.platform.security.errors import ForbiddenFieldError
from crmhub.platform.security.policies import FieldDecision, get_policy_backend


MASKED_FIELD_VALUE = "***"

_DECISIONS_KEY = "fls.decisions"


def _decision(resource: str, field_name: str, ctx: AuthContext) -> FieldDecision:
    decisions: dict[tuple[str, str], FieldDecision] = ctx._cache.setdefault(_DECISIONS_KEY, {})
    key = (resource, field_name)
    if key not in decisions:
        decisions[key] = get_policy_backend().evaluate_field_read(resource, field_name, ctx)
    return decisions[key]


def _filter(resource: str, record: dict[str, Any], ctx: AuthContext) -> tuple[dict[str, Any], set[str], set[str]]:
    output: dict[str, Any] = {}
    masked: set[str] = set()
    denied: set[str] = set()
    for field_name, value in record.items():
        decision = _decision(resource, field_name, ctx)
        if decision == FieldDecision.ALLOW:
            output[field_name] = value
        elif decision == FieldDecision.MASK:
            output[field_name] = MASKED_FIELD_VALUE if value is not None else None
            masked.add(field_name)
        else:
            denied.add(field_name)
    return output, masked, denied


def apply_fls_read(resource: str, record: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
    """Mask or drop the fields of one serialized row the caller may not read in clear."""

    output, masked, denied = _filter(resource, record, ctx)
    _note(resource, "read", ctx, str(record.get("id", "unknown")), masked, denied, rows=1)
    return output


def apply_fls_read_many(resource: str, records: Iterable[dict[str, Any]], ctx: AuthContext) -> list[dict[str, Any]]:
    """List variant of :func:`apply_fls_read`; one security note per call, not per row."""

    results: list[dict[str, Any]] = []
    masked: set[str] = set()
    denied: set[str] = set()
    for record in records:
        output, row_masked, row_denied = _filter(resource, record, ctx)
        results.append(output)
        masked |= row_masked
        denied |= row_denied
    _note(resource, "read", ctx, "batch", masked, denied, rows=len(results))
    return results


def validate_fls_write(resource: str, payload: dict[str, Any], ctx: AuthContext) -> None:
    """Refuse payloads that touch read-only columns or sensitive fields without an edit grant."""

    policy = get_policy_backend()
    denied = {field_name for field_name in payload if not policy.can_edit_field(resource, field_name, ctx)}
    if not denied:
        return
    _note(resource, "write", ctx, str(payload.get("id", "new")), set(), denied, rows=1)
    raise ForbiddenFieldError(resource=resource, fields=sorted(denied))


def _note(
    resource: str,
    operation: str,
    ctx: AuthContext,
    entity_id: str,
    masked: set[str],
    denied: set[str],
    *,
    rows: int,
) -> None:
    if not masked and not denied:
        return

    observe_fls_field_counts(resource=resource, operation=operation, masked_count=len(masked), denied_count=len(denied))
    audit.record(
        actor_user_id=ctx.user_id,
        entity_type="security.fls",
        entity_id=entity_id,
        action=f"fls.{operation}",
        before=None,
        after={
            "resource": resource,
            "rows": rows,
            "role_names": ctx._cache.get("authz.role_names", ctx.roles),
            "masked_fields": sorted(masked),
            "denied_fields": sorted(denied),
        },
        correlation_id=ctx.correlation_id,
    )
