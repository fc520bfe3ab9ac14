from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from crmhub.platform.persistence import coerce_user_uuid
from crmhub.platform.security.context import ADMIN_ROLE_TYPES, AuthContext


@dataclass
class ActorUser:
    user_id: str
    permissions: set[str]
    roles: set[str] = field(default_factory=set)
    profile_id: uuid.UUID | None = None
    is_super_admin: bool = False
    correlation_id: str | None = None

    @property
    def actor_uuid(self) -> uuid.UUID:
        return coerce_user_uuid(self.user_id)  # type: ignore[return-value]

    @property
    def is_admin(self) -> bool:
        return self.is_super_admin or bool(self.roles & ADMIN_ROLE_TYPES)

    def can(self, permission: str) -> bool:
        return self.is_admin or permission in self.permissions


def to_auth_context(actor_user: ActorUser) -> AuthContext:
    cache_key = actor_user.correlation_id or "request"
    cached = getattr(actor_user, "_authz_cache", None)
    cached_key = getattr(actor_user, "_authz_cache_key", None)
    if not isinstance(cached, dict) or cached_key != cache_key:
        cached = {}
        setattr(actor_user, "_authz_cache", cached)
        setattr(actor_user, "_authz_cache_key", cache_key)

    return AuthContext(
        user_id=actor_user.user_id,
        profile_id=str(actor_user.profile_id) if actor_user.profile_id is not None else None,
        correlation_id=actor_user.correlation_id,
        is_super_admin=actor_user.is_super_admin,
        roles=sorted(actor_user.roles),
        permissions=sorted(actor_user.permissions),
        _cache=cached,
    )
