"""Session hooks that replace the row triggers of the relational schema.

* actor stamping of ``created_by``/``updated_by``/``deleted_by``
* refusal of physical deletes on soft-deletable rows
* derived interval columns (``duration_minutes``)
* one ``audit_logs`` row per insert, update, soft delete and restore
* append-only guard on ``audit_logs``
* actor settings for the Postgres row level security policies
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Connection, event, inspect, text
from sqlalchemy.orm import Session

from crmhub.context import get_actor_id, get_correlation_id
from crmhub.core.config import get_settings
from crmhub.metrics import observe_audit_rows_written, observe_soft_delete
from crmhub.platform.persistence.errors import AuditLogImmutableError, HardDeleteForbiddenError
from crmhub.platform.persistence.mixins import (
    SYSTEM_ACTOR_ID,
    AuditedMixin,
    as_utc,
    coerce_user_uuid,
    to_jsonable,
    utcnow,
)


logger = logging.getLogger("crmhub.persistence")

ACTOR_INFO_KEY = "crmhub.actor_id"
SKIP_AUDIT_INFO_KEY = "crmhub.skip_audit"
AUDIT_PURGE_INFO_KEY = "crmhub.audit_purge"
ADMIN_INFO_KEY = "crmhub.actor_is_admin"
ROLES_INFO_KEY = "crmhub.actor_roles"


def bind_actor(
    session: Session,
    actor_id: str | uuid.UUID | None,
    *,
    is_admin: bool = False,
    roles: Iterable[str] = (),
) -> uuid.UUID | None:
    """Attach the acting user to a session so flush hooks can stamp rows.

    On Postgres the actor is also published as transaction-local settings
    (``crmhub.actor_id``, ``crmhub.is_admin``, ``crmhub.roles``) read by the row level security policies.
    """

    resolved = coerce_user_uuid(actor_id)
    session.info[ACTOR_INFO_KEY] = resolved
    session.info[ADMIN_INFO_KEY] = is_admin
    session.info[ROLES_INFO_KEY] = ",".join(sorted(roles))
    if session.in_transaction() and session.get_bind().dialect.name == "postgresql":
        _publish_actor_settings(session, session.connection())
    return resolved


def resolve_actor(session: Session) -> uuid.UUID | None:
    actor = session.info.get(ACTOR_INFO_KEY)
    if isinstance(actor, uuid.UUID):
        return actor
    return coerce_user_uuid(get_actor_id())


def _publish_actor_settings(session: Session, connection: Connection) -> None:
    if connection.dialect.name != "postgresql":
        return
    actor = resolve_actor(session)
    connection.execute(
        text(
            "SELECT set_config('crmhub.actor_id', :actor_id, true), "
            "set_config('crmhub.is_admin', :is_admin, true), "
            "set_config('crmhub.roles', :roles, true)"
        ),
        {
            "actor_id": str(actor) if actor else "",
            "is_admin": "on" if session.info.get(ADMIN_INFO_KEY) else "off",
            "roles": session.info.get(ROLES_INFO_KEY, ""),
        },
    )


@event.listens_for(Session, "after_begin")
def _on_transaction_begin(session: Session, _transaction: Any, connection: Connection) -> None:
    _publish_actor_settings(session, connection)


def _is_audit_row(instance: Any) -> bool:
    return getattr(instance, "__tablename__", None) == "audit_logs"


def _changed_fields(instance: AuditedMixin) -> dict[str, tuple[Any, Any]]:
    state = inspect(instance)
    changes: dict[str, tuple[Any, Any]] = {}
    for attr in state.mapper.column_attrs:
        if attr.key in {"version", "updated_at", "updated_by"}:
            continue
        history = state.attrs[attr.key].history
        if not history.has_changes():
            continue
        old_value = history.deleted[0] if history.deleted else None
        new_value = history.added[0] if history.added else None
        if old_value == new_value:
            continue
        changes[attr.key] = (old_value, new_value)
    return changes


def _classify(changes: dict[str, tuple[Any, Any]]) -> str:
    deleted_change = changes.get("deleted_at")
    if deleted_change is not None:
        old_value, new_value = deleted_change
        if old_value is None and new_value is not None:
            return "soft_delete"
        if old_value is not None and new_value is None:
            return "restore"
    return "update"


def _build_audit_row(
    instance: AuditedMixin,
    *,
    action: str,
    actor: uuid.UUID | None,
    old_data: dict[str, Any] | None,
    new_data: dict[str, Any] | None,
    changed_fields: list[str],
    now: datetime,
) -> Any:
    from crmhub.models.audit import AuditLog

    return AuditLog(
        id=uuid.uuid4(),
        table_name=instance.__tablename__,  # type: ignore[attr-defined]
        record_id=instance.id,
        action=action,
        category="data",
        status="completed",
        old_data=old_data,
        new_data=new_data,
        changed_fields=changed_fields,
        data_sensitivity=instance.__audit_sensitivity__,
        performed_by=actor or SYSTEM_ACTOR_ID,
        performed_at=now,
        correlation_id=get_correlation_id(),
        expires_at=now + timedelta(days=get_settings().audit_retention_days),
        created_at=now,
    )


@event.listens_for(Session, "before_flush")
def _stamp_and_audit(session: Session, _flush_context: Any, _instances: Any) -> None:
    actor = resolve_actor(session)
    now = utcnow()
    skip_audit = bool(session.info.get(SKIP_AUDIT_INFO_KEY))
    audit_rows: list[Any] = []

    for instance in list(session.deleted):
        if _is_audit_row(instance):
            if not session.info.get(AUDIT_PURGE_INFO_KEY):
                raise AuditLogImmutableError(record_id=str(instance.id), operation="delete")
            continue
        if isinstance(instance, AuditedMixin):
            raise HardDeleteForbiddenError(table_name=instance.__tablename__, record_id=str(instance.id))  # type: ignore[attr-defined]

    for instance in list(session.new):
        if not isinstance(instance, AuditedMixin):
            continue
        if instance.id is None:
            instance.id = uuid.uuid4()
        if instance.created_by is None:
            instance.created_by = actor
        if instance.updated_by is None:
            instance.updated_by = actor
        if instance.deleted_at is not None and instance.deleted_by is None:
            instance.deleted_by = actor or SYSTEM_ACTOR_ID
        _derive_duration(instance)
        if not skip_audit:
            created = instance.snapshot()
            audit_rows.append(
                _build_audit_row(
                    instance,
                    action="create",
                    actor=actor,
                    old_data=None,
                    new_data=created,
                    changed_fields=sorted(created.keys()),
                    now=now,
                )
            )

    for instance in list(session.dirty):
        if _is_audit_row(instance) and session.is_modified(instance, include_collections=False):
            raise AuditLogImmutableError(record_id=str(instance.id), operation="update")
        if not isinstance(instance, AuditedMixin):
            continue
        if not session.is_modified(instance, include_collections=False):
            continue

        changes = _changed_fields(instance)
        if not changes:
            continue
        action = _classify(changes)
        if action == "soft_delete":
            if instance.deleted_by is None:
                instance.deleted_by = actor or SYSTEM_ACTOR_ID
            observe_soft_delete(instance.__tablename__)  # type: ignore[attr-defined]
        elif action == "restore":
            instance.deleted_by = None
        instance.updated_by = actor
        duration_columns = getattr(instance, "__duration_columns__", None)
        if duration_columns and any(key in changes for key in (*duration_columns[0], *duration_columns[1])):
            _derive_duration(instance)

        if skip_audit:
            continue
        new_data = instance.snapshot()
        old_data = dict(new_data)
        for key, (old_value, _new_value) in changes.items():
            old_data[key] = to_jsonable(old_value)
        audit_rows.append(
            _build_audit_row(
                instance,
                action=action,
                actor=actor,
                old_data=old_data,
                new_data=new_data,
                changed_fields=sorted(changes.keys()),
                now=now,
            )
        )

    if audit_rows:
        session.add_all(audit_rows)
        observe_audit_rows_written(len(audit_rows))
        logger.debug("audit.rows_buffered", extra={"count": len(audit_rows)})


def _derive_duration(instance: Any) -> None:
    """Keep ``duration_minutes`` consistent with the model's ``__duration_columns__``.

    Each side lists candidate columns; the first non-null one wins, like a SQL ``COALESCE``.
    """

    duration_columns = getattr(instance, "__duration_columns__", None)
    if not duration_columns:
        return
    start_keys, end_keys = duration_columns
    started = next((as_utc(getattr(instance, key)) for key in start_keys if getattr(instance, key) is not None), None)
    ended = next((as_utc(getattr(instance, key)) for key in end_keys if getattr(instance, key) is not None), None)
    if started is None or ended is None:
        instance.duration_minutes = None
        return
    instance.duration_minutes = int((ended - started).total_seconds() // 60)
