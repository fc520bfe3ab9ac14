"""Helpers shared by the domain services: commits, version checks and security error mapping."""

from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from crmhub import events
from crmhub.metrics import observe_optimistic_lock_conflict
from crmhub.platform.persistence import HardDeleteForbiddenError, VersionConflictError, bind_actor
from crmhub.platform.security.actor import ActorUser
from crmhub.platform.security.errors import AuthorizationError, ForbiddenFieldError, RowAccessDeniedError


# sqlite names CHECK constraints, and the columns of UNIQUE ones
_SQLITE_VIOLATION = re.compile(r"(?:CHECK|UNIQUE|NOT NULL|FOREIGN KEY) constraint failed(?::\s*(?P<name>[^\n]+))?")


class ConflictError(HTTPException):
    """409 whose ``context`` (violated constraint, row versions) becomes the error envelope details."""

    def __init__(self, detail: str, **context: Any) -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)
        self.context = {key: value for key, value in context.items() if value is not None}


def violated_constraint(exc: IntegrityError) -> str | None:
    diag = getattr(exc.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return name
    match = _SQLITE_VIOLATION.search(str(exc.orig))
    if match is not None and match.group("name"):
        return match.group("name").strip()
    return None


def bind(session: Session, actor_user: ActorUser) -> None:
    bind_actor(session, actor_user.user_id, is_admin=actor_user.is_admin, roles=actor_user.roles)


def commit_or_conflict(session: Session, detail: str) -> None:
    """Commit, mapping unique/check violations and stale versions to 409."""

    try:
        session.commit()
    except StaleDataError:
        session.rollback()
        raise ConflictError("version conflict")
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(detail, constraint=violated_constraint(exc)) from exc


def flush_or_conflict(session: Session, detail: str) -> None:
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(detail, constraint=violated_constraint(exc)) from exc


def check_version(record: Any, expected: int | None, resource: str) -> None:
    if expected is None:
        return
    try:
        record.check_version(expected)
    except VersionConflictError as exc:
        observe_optimistic_lock_conflict(resource)
        raise ConflictError("version conflict", record_id=exc.record_id, expected=exc.expected, actual=exc.actual) from exc


def not_found(resource: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource} not found")


def unprocessable(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


@contextmanager
def security_errors_as_http() -> Iterator[None]:
    try:
        yield
    except ForbiddenFieldError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"forbidden_fields": exc.fields})
    except RowAccessDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    except AuthorizationError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    except HardDeleteForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def publish(event_type: str, actor_user: ActorUser, payload: dict[str, Any]) -> None:
    event = events.envelope(event_type, actor_user.user_id, payload)
    if actor_user.correlation_id:
        event["correlation_id"] = actor_user.correlation_id
    events.publish(event)


def next_sequence_number(session: Session, model: Any, column: Any, prefix: str) -> str:
    """Next free ``PREFIX-000001`` style number among the live rows of ``model``."""

    sequence = session.scalar(select(func.count()).select_from(model)) or 0
    while True:
        sequence += 1
        candidate = f"{prefix}-{sequence:06d}"
        taken = session.scalar(select(model.id).where(column == candidate, model.deleted_at.is_(None)))
        if taken is None:
            return candidate
