"""Row-level security archetypes evaluated in the query layer.

Three read archetypes cover every table:

* ``owner_or_role``: rows whose owner columns name the acting user, or any row
  when the user holds one of the policy's roles;
* ``public_if``: rows matching a public predicate, plus the owner rule;
* ``team_assignment``: the owner rule, plus rows the user is assigned to
  through ``team_assignments``.

Administrators (``super_admin``/``system_admin``) bypass every policy. Write
checks (the ``WITH CHECK`` side) reuse the same rules against the row being
written. Physical deletes are refused by the persistence flush hooks.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Text, cast, false, or_, select, true
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement, Select

from crmhub import audit
from crmhub.metrics import observe_rls_denied_read, observe_rls_denied_write
from crmhub.platform.persistence import coerce_user_uuid
from crmhub.platform.security.context import AuthContext, is_admin_bypass
from crmhub.platform.security.errors import RowAccessDeniedError
from crmhub.rbac.models import TeamAssignment


OWNER_OR_ROLE = "owner_or_role"
PUBLIC_IF = "public_if"
TEAM_ASSIGNMENT = "team_assignment"


@dataclass(frozen=True)
class RowPolicy:
    archetype: str
    owner_columns: tuple[str, ...] = ()
    roles: frozenset[str] = field(default_factory=frozenset)
    public_predicate: Callable[[Any], ColumnElement[bool]] | None = None
    public_check: Callable[[Any], bool] | None = None
    team_entity_type: str | None = None
    shared_column: str | None = None


def owner_or_role(*owner_columns: str, roles: frozenset[str] | set[str] = frozenset()) -> RowPolicy:
    return RowPolicy(archetype=OWNER_OR_ROLE, owner_columns=owner_columns, roles=frozenset(roles))


def public_if(
    predicate: Callable[[Any], ColumnElement[bool]],
    check: Callable[[Any], bool],
    *owner_columns: str,
    roles: frozenset[str] | set[str] = frozenset(),
    shared_column: str | None = None,
) -> RowPolicy:
    return RowPolicy(
        archetype=PUBLIC_IF,
        owner_columns=owner_columns,
        roles=frozenset(roles),
        public_predicate=predicate,
        public_check=check,
        shared_column=shared_column,
    )


def team_assignment(
    entity_type: str,
    *owner_columns: str,
    roles: frozenset[str] | set[str] = frozenset(),
) -> RowPolicy:
    return RowPolicy(
        archetype=TEAM_ASSIGNMENT,
        owner_columns=owner_columns,
        roles=frozenset(roles),
        team_entity_type=entity_type,
    )


def shared_rows(*owner_columns: str) -> RowPolicy:
    """Every live row is readable; used by back-office tables gated by resource permissions alone."""

    return public_if(lambda model: true(), lambda record: True, *owner_columns)


def _actor_uuid(ctx: AuthContext) -> uuid.UUID:
    return coerce_user_uuid(ctx.user_id)  # type: ignore[return-value]


def _has_policy_role(policy: RowPolicy, ctx: AuthContext) -> bool:
    return bool(policy.roles) and ctx.has_any_role(policy.roles)


def _owner_clauses(model: Any, policy: RowPolicy, ctx: AuthContext) -> list[ColumnElement[bool]]:
    actor = _actor_uuid(ctx)
    clauses: list[ColumnElement[bool]] = [getattr(model, column) == actor for column in policy.owner_columns]
    if ctx.profile_id is not None:
        profile_id = uuid.UUID(ctx.profile_id)
        clauses.extend(getattr(model, column) == profile_id for column in policy.owner_columns if profile_id != actor)
    return clauses


def _actor_ids(ctx: AuthContext) -> set[uuid.UUID]:
    ids = {_actor_uuid(ctx)}
    if ctx.profile_id is not None:
        ids.add(uuid.UUID(ctx.profile_id))
    return ids


def _shared_clauses(model: Any, policy: RowPolicy, ctx: AuthContext) -> list[ColumnElement[bool]]:
    # JSON array of user or profile ids, matched as text
    column = cast(getattr(model, policy.shared_column), Text)  # type: ignore[arg-type]
    return [column.contains(str(actor_id)) for actor_id in _actor_ids(ctx)]


def _is_shared_with(record: Any, policy: RowPolicy, ctx: AuthContext) -> bool:
    shared = getattr(record, policy.shared_column or "", None) or []
    return any(str(actor_id) in {str(value) for value in shared} for actor_id in _actor_ids(ctx))


def _team_subquery(policy: RowPolicy, ctx: AuthContext) -> Select[Any]:
    profile_id = uuid.UUID(ctx.profile_id) if ctx.profile_id is not None else _actor_uuid(ctx)
    return select(TeamAssignment.entity_id).where(
        TeamAssignment.user_id == profile_id,
        TeamAssignment.entity_type == policy.team_entity_type,
        TeamAssignment.deleted_at.is_(None),
    )


def apply_rls_filter(query: Select[Any], model: Any, policy: RowPolicy, ctx: AuthContext) -> Select[Any]:
    """Narrow ``query`` to the rows ``policy`` lets the acting user read."""

    if is_admin_bypass(ctx) or _has_policy_role(policy, ctx):
        return query

    clauses = _owner_clauses(model, policy, ctx)
    if policy.archetype == PUBLIC_IF and policy.public_predicate is not None:
        clauses.append(policy.public_predicate(model))
    if policy.shared_column is not None:
        clauses.extend(_shared_clauses(model, policy, ctx))
    if policy.archetype == TEAM_ASSIGNMENT:
        clauses.append(model.id.in_(_team_subquery(policy, ctx)))

    if not clauses:
        return query.where(false())
    return query.where(or_(*clauses))


def _owns(record: Any, policy: RowPolicy, ctx: AuthContext) -> bool:
    candidates = _actor_ids(ctx)
    return any(getattr(record, column, None) in candidates for column in policy.owner_columns)


def _on_team(session: Session | None, record: Any, policy: RowPolicy, ctx: AuthContext) -> bool:
    if session is None or policy.team_entity_type is None:
        return False
    member = session.scalar(_team_subquery(policy, ctx).where(TeamAssignment.entity_id == record.id).limit(1))
    return member is not None


def can_read_row(
    resource: str,
    record: Any,
    policy: RowPolicy,
    ctx: AuthContext,
    *,
    session: Session | None = None,
) -> bool:
    """Python-side twin of :func:`apply_rls_filter` for rows already loaded."""

    if is_admin_bypass(ctx) or _has_policy_role(policy, ctx) or _owns(record, policy, ctx):
        return True
    if policy.archetype == PUBLIC_IF and policy.public_check is not None and policy.public_check(record):
        return True
    if policy.shared_column is not None and _is_shared_with(record, policy, ctx):
        return True
    if policy.archetype == TEAM_ASSIGNMENT and _on_team(session, record, policy, ctx):
        return True
    _emit_rls_denied(resource=resource, policy=policy.archetype, action="read", ctx=ctx, is_read=True, record=record)
    return False


def validate_rls_write(
    resource: str,
    policy: RowPolicy,
    ctx: AuthContext,
    *,
    payload: dict[str, Any] | None = None,
    record: Any = None,
    action: str = "write",
    session: Session | None = None,
) -> None:
    """Reject writes the row policy does not allow.

    Creates must name the acting user in at least one owner column (when the
    payload sets any); updates and deletes require ownership, a policy role
    or, for team-assigned rows, team membership.
    """

    if is_admin_bypass(ctx) or _has_policy_role(policy, ctx):
        return

    if record is None:
        owners = [payload.get(column) for column in policy.owner_columns] if payload else []
        supplied = [coerce_user_uuid(value) for value in owners if value is not None]
        actor_ids = {_actor_uuid(ctx)}
        if ctx.profile_id is not None:
            actor_ids.add(uuid.UUID(ctx.profile_id))
        if not supplied or any(value in actor_ids for value in supplied):
            return
    else:
        if _owns(record, policy, ctx):
            return
        if policy.archetype == TEAM_ASSIGNMENT and _on_team(session, record, policy, ctx):
            return

    _emit_rls_denied(resource=resource, policy=policy.archetype, action=action, ctx=ctx, is_read=False, record=record)
    record_id = str(record.id) if record is not None and getattr(record, "id", None) is not None else None
    raise RowAccessDeniedError(resource=resource, policy=policy.archetype, action=action, record_id=record_id)


def _emit_rls_denied(
    *,
    resource: str,
    policy: str,
    action: str,
    ctx: AuthContext,
    is_read: bool,
    record: Any = None,
) -> None:
    if is_read:
        observe_rls_denied_read(resource=resource, policy=policy)
    else:
        observe_rls_denied_write(resource=resource, policy=policy)

    audit.record(
        actor_user_id=ctx.user_id,
        entity_type="security.rls",
        entity_id=str(getattr(record, "id", None) or "scope"),
        action="rls.denied",
        before=None,
        after={
            "resource": resource,
            "action": action,
            "policy": policy,
            "correlation_id": ctx.correlation_id,
            "user_id": ctx.user_id,
        },
        correlation_id=ctx.correlation_id,
    )
