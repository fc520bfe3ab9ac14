from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from crmhub.platform.security.context import AuthContext
from crmhub.platform.security.fls import apply_fls_read, apply_fls_read_many, validate_fls_write
from crmhub.platform.security.policies import register_field_rules
from crmhub.platform.security.rls import (
    RowPolicy,
    apply_rls_filter,
    owner_or_role,
    shared_rows,
    validate_rls_write,
)


class BaseRepository:
    resource = ""
    model: Any = None
    policy: RowPolicy = owner_or_role("created_by")
    sensitive_fields: frozenset[str] = frozenset()
    read_only_fields: frozenset[str] = frozenset()

    def __init__(self) -> None:
        register_field_rules(self.resource, sensitive=self.sensitive_fields, read_only=self.read_only_fields)

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        return apply_rls_filter(query, self.model, self.policy, ctx)

    def apply_read_security(self, record: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
        return apply_fls_read(self.resource, record, ctx)

    def apply_read_security_many(self, records: list[dict[str, Any]], ctx: AuthContext) -> list[dict[str, Any]]:
        return apply_fls_read_many(self.resource, records, ctx)

    def validate_write_security(
        self,
        payload: dict[str, Any],
        ctx: AuthContext,
        *,
        record: Any = None,
        action: str = "write",
        session: Session | None = None,
    ) -> None:
        validate_rls_write(self.resource, self.policy, ctx, payload=payload, record=record, action=action, session=session)
        validate_fls_write(self.resource, self._normalize_write_payload(payload), ctx)

    @staticmethod
    def _normalize_write_payload(payload: dict[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in payload.items() if key != "version"}


class PermissionGatedRepository(BaseRepository):
    """Repository for back-office tables: row writes are gated by resource permissions, fields by FLS."""

    policy = shared_rows("created_by")

    def validate_write_security(
        self,
        payload: dict[str, Any],
        ctx: AuthContext,
        *,
        record: Any = None,
        action: str = "write",
        session: Session | None = None,
    ) -> None:
        validate_fls_write(self.resource, self._normalize_write_payload(payload), ctx)
