from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Any

from crmhub.enums import RoleType


# role types that see and write every row, mirroring the admin branch of each database policy
ADMIN_ROLE_TYPES = frozenset({RoleType.SUPER_ADMIN.value, RoleType.SYSTEM_ADMIN.value})


@dataclass(slots=True)
class AuthContext:
    """Who is asking, as seen by the row and field policies.

    ``roles`` holds role *types* (``sales_manager``), not role names; ``_cache``
    lives as long as the owning ``ActorUser`` and memoizes grant lookups.
    """

    user_id: str
    profile_id: str | None = None
    correlation_id: str | None = None
    is_super_admin: bool = False
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    _cache: dict[str, Any] = field(default_factory=dict, repr=False)

    def has_any_role(self, candidates: Collection[str]) -> bool:
        return any(role.lower() in candidates for role in self.roles)


def is_admin_bypass(ctx: AuthContext) -> bool:
    return ctx.is_super_admin or ctx.has_any_role(ADMIN_ROLE_TYPES)
