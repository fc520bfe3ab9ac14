from __future__ import annotations

import uuid
from enum import StrEnum
from threading import Lock
from typing import Any, Protocol

from sqlalchemy.orm import Session, sessionmaker

from crmhub.core.database import SessionLocal
from crmhub.metrics import observe_authz_policy_cache_hit, observe_authz_policy_cache_miss
from crmhub.platform.security.context import AuthContext, is_admin_bypass
from crmhub.rbac.resolver import EffectivePermissionResolver, effective_permission_resolver


class ResourceAction(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class FieldAction(StrEnum):
    READ = "field.read"
    MASK = "field.mask"
    EDIT = "field.edit"


class FieldDecision(StrEnum):
    ALLOW = "ALLOW"
    MASK = "MASK"
    DENY = "DENY"


# resource -> fields readable only with an explicit ``<resource>.field.read:<field>`` grant
_SENSITIVE_FIELDS: dict[str, frozenset[str]] = {}
# resource -> fields no caller may write (generated or system-maintained columns)
_READ_ONLY_FIELDS: dict[str, frozenset[str]] = {}


def register_field_rules(resource: str, *, sensitive: frozenset[str], read_only: frozenset[str]) -> None:
    _SENSITIVE_FIELDS[resource] = sensitive
    _READ_ONLY_FIELDS[resource] = read_only


def sensitive_fields(resource: str) -> frozenset[str]:
    return _SENSITIVE_FIELDS.get(resource, frozenset())


def read_only_fields(resource: str) -> frozenset[str]:
    return _READ_ONLY_FIELDS.get(resource, frozenset())


def grant_matches(grant: str, required: str) -> bool:
    if grant in {"*", required}:
        return True

    if grant.endswith(".*"):
        return required.startswith(grant[:-1])

    if ":" in grant and grant.endswith(":*"):
        return required.startswith(grant[:-1])

    return False


class PolicyBackend(Protocol):
    """Pluggable policy backend interface for RBAC/policy checks."""

    def is_resource_allowed(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        ...

    def evaluate_field_read(self, resource: str, field: str, ctx: AuthContext) -> FieldDecision:
        ...

    def can_edit_field(self, resource: str, field: str, ctx: AuthContext) -> bool:
        ...


class _GrantPolicy:
    """Field/resource decisions shared by the backends; subclasses supply the grant set."""

    def __init__(self, *, default_allow: bool) -> None:
        self._default_allow = default_allow

    def _grants(self, ctx: AuthContext) -> set[str]:
        raise NotImplementedError

    def _has_permission(self, required: str, ctx: AuthContext) -> bool:
        return any(grant_matches(grant, required) for grant in self._grants(ctx))

    def is_resource_allowed(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        if is_admin_bypass(ctx):
            return True
        grants = self._grants(ctx)
        if not grants:
            return self._default_allow
        return self._has_permission(f"{resource}.{action.value}", ctx)

    def evaluate_field_read(self, resource: str, field: str, ctx: AuthContext) -> FieldDecision:
        if is_admin_bypass(ctx) or field not in sensitive_fields(resource):
            return FieldDecision.ALLOW
        if self._has_permission(f"{resource}.{FieldAction.READ.value}:{field}", ctx):
            return FieldDecision.ALLOW
        if self._has_permission(f"{resource}.{FieldAction.MASK.value}:{field}", ctx) or self._default_allow:
            return FieldDecision.MASK
        return FieldDecision.DENY

    def can_edit_field(self, resource: str, field: str, ctx: AuthContext) -> bool:
        if field in read_only_fields(resource):
            return False
        if is_admin_bypass(ctx) or field not in sensitive_fields(resource):
            return True
        return self._has_permission(f"{resource}.{FieldAction.EDIT.value}:{field}", ctx)


class InMemoryPolicyBackend(_GrantPolicy):
    """Role + direct-permission policy backend with wildcard support."""

    def __init__(self, role_permissions: dict[str, set[str]] | None = None, *, default_allow: bool = True) -> None:
        super().__init__(default_allow=default_allow)
        self._role_permissions = role_permissions or {}

    def _grants(self, ctx: AuthContext) -> set[str]:
        grants = set(ctx.permissions)
        for role in ctx.roles:
            grants.update(self._role_permissions.get(role, set()))
        return grants


class DbPolicyBackend(_GrantPolicy):
    """Policy backend that resolves effective permissions from the RBAC tables."""

    CACHE_KEY = "authz.db_policy"

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        default_allow: bool = True,
        resolver: EffectivePermissionResolver | None = None,
    ) -> None:
        super().__init__(default_allow=default_allow)
        self._session_factory = session_factory or SessionLocal
        self._resolver = resolver or effective_permission_resolver

    def _grants(self, ctx: AuthContext) -> set[str]:
        return self._load_grants(ctx)["permissions"]

    def _load_grants(self, ctx: AuthContext) -> dict[str, Any]:
        cache = ctx._cache.get(self.CACHE_KEY)
        if isinstance(cache, dict):
            observe_authz_policy_cache_hit()
            return cache

        observe_authz_policy_cache_miss()
        permissions: set[str] = set(ctx.permissions)
        role_types: list[str] = []
        role_ids: list[str] = []
        if ctx.profile_id is not None:
            with self._session_factory() as session:
                effective = self._resolver.resolve(session, uuid.UUID(ctx.profile_id))
            permissions.update(effective.permissions)
            role_types = sorted(effective.role_types)
            role_ids = sorted(str(role_id) for role_id in effective.role_ids)

        if role_types and not ctx.roles:
            ctx.roles = role_types
        ctx._cache["authz.role_names"] = role_types
        ctx._cache["authz.role_ids"] = role_ids

        payload: dict[str, Any] = {
            "permissions": permissions,
            "role_names": role_types,
            "role_ids": role_ids,
        }
        ctx._cache[self.CACHE_KEY] = payload
        return payload


_POLICY_BACKEND: PolicyBackend = InMemoryPolicyBackend(default_allow=True)
_POLICY_LOCK = Lock()


def get_policy_backend() -> PolicyBackend:
    """Get the active policy backend instance."""

    return _POLICY_BACKEND


def set_policy_backend(backend: PolicyBackend) -> None:
    """Set the active policy backend instance."""

    global _POLICY_BACKEND
    with _POLICY_LOCK:
        _POLICY_BACKEND = backend
