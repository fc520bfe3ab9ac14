from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Uuid, inspect, text
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from crmhub.platform.persistence.errors import VersionConflictError


LIVE_ROW_PREDICATE = "deleted_at IS NULL"
SYSTEM_ACTOR_ID = uuid.UUID(int=0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize datetimes loaded from drivers that drop the offset (SQLite) to aware UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_user_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(value)
    except ValueError:
        return uuid.uuid5(uuid.NAMESPACE_URL, f"crmhub-actor:{value}")


def live_unique_index(name: str, *columns: str, where: str | None = None) -> Index:
    predicate = LIVE_ROW_PREDICATE if where is None else f"{where} AND {LIVE_ROW_PREDICATE}"
    return Index(
        name,
        *columns,
        unique=True,
        postgresql_where=text(predicate),
        sqlite_where=text(predicate),
    )


def live_index(name: str, *columns: str) -> Index:
    return Index(
        name,
        *columns,
        postgresql_where=text(LIVE_ROW_PREDICATE),
        sqlite_where=text(LIVE_ROW_PREDICATE),
    )


def audited_table_args(*args: Any) -> tuple[Any, ...]:
    """Table args shared by every soft-deletable table plus the table's own constraints."""

    return (
        CheckConstraint("version > 0", name="valid_version"),
        CheckConstraint(
            "(deleted_at IS NULL AND deleted_by IS NULL) OR (deleted_at IS NOT NULL AND deleted_by IS NOT NULL)",
            name="valid_deletion",
        ),
        CheckConstraint("updated_at >= created_at", name="valid_update"),
        *args,
    )


def to_jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)) and not isinstance(value, Enum):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(item) for item in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return str(value)


class AuditedMixin:
    """Identity, optimistic-lock counter and actor-stamped lifecycle columns.

    ``version`` is registered as the mapper's version counter, so every ORM
    UPDATE is issued as ``... WHERE id = :id AND version = :loaded`` and bumps
    the counter; a concurrent writer surfaces as ``StaleDataError``.
    """

    __audit_sensitivity__: ClassVar[str] = "internal"
    __search_fields__: ClassVar[dict[str, tuple[str, ...]]] = {}

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    @declared_attr.directive
    def __mapper_args__(cls) -> dict[str, Any]:
        return {"version_id_col": cls.version}

    def soft_delete(self, actor_id: uuid.UUID | None = None, *, at: datetime | None = None) -> None:
        self.deleted_at = at or utcnow()
        if actor_id is not None:
            self.deleted_by = actor_id

    def restore(self) -> None:
        self.deleted_at = None
        self.deleted_by = None

    def check_version(self, expected: int) -> None:
        if self.version != expected:
            raise VersionConflictError(
                table_name=self.__tablename__,  # type: ignore[attr-defined]
                record_id=str(self.id),
                expected=expected,
                actual=self.version,
            )

    def snapshot(self) -> dict[str, Any]:
        """Loaded column values as JSON-safe data; unloaded (expired, computed) columns are skipped."""

        state = inspect(self)
        payload: dict[str, Any] = {}
        for attr in state.mapper.column_attrs:
            if attr.key in state.dict:
                payload[attr.key] = to_jsonable(state.dict[attr.key])
        return payload


def pg_check(sqltext: str, name: str) -> CheckConstraint:
    """CHECK emitted only on Postgres (regex and other dialect-specific predicates)."""

    return CheckConstraint(sqltext, name=name).ddl_if(dialect="postgresql")
