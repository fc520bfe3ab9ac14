"""Effective permission resolution.

A user's effective permission set at an instant is the union of:

* permissions granted through live, effective ``role_permissions`` rows on
  every role the user holds through effective ``user_roles`` rows, walking
  ``parent_role_id`` upwards while the child role has inheritance enabled;
* permissions of roles delegated to the user through effective
  ``role_delegations``, narrowed by the delegation's delegated/excluded lists.

Weekday/hour restrictions stored on grants are evaluated here, at check time.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from crmhub.metrics import observe_authz_db_queries_count, observe_effective_permission_evaluation
from crmhub.platform.persistence import as_utc, utcnow
from crmhub.rbac.models import Permission, Role, RoleDelegation, RolePermission, UserRole


logger = logging.getLogger("crmhub.rbac")

MAX_ROLE_DEPTH = 32


@dataclass(slots=True)
class EffectivePermissions:
    user_id: uuid.UUID
    at: datetime
    permissions: frozenset[str] = frozenset()
    role_ids: frozenset[uuid.UUID] = frozenset()
    role_types: frozenset[str] = frozenset()
    role_slugs: frozenset[str] = frozenset()
    sources: dict[str, list[str]] = field(default_factory=dict)

    def has(self, permission: str) -> bool:
        return permission in self.permissions


class EffectivePermissionResolver:
    def resolve(self, session: Session, user_id: uuid.UUID, at: datetime | None = None) -> EffectivePermissions:
        moment = as_utc(at) or utcnow()

        held: dict[uuid.UUID, str] = {}
        for assignment in session.scalars(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.deleted_at.is_(None))
        ):
            if assignment.is_effective(moment):
                held[assignment.role_id] = "user_role"

        delegations = [
            delegation
            for delegation in session.scalars(
                select(RoleDelegation).where(
                    RoleDelegation.delegate_id == user_id,
                    RoleDelegation.deleted_at.is_(None),
                )
            )
            if delegation.is_effective(moment)
        ]
        observe_authz_db_queries_count(2)

        roles: dict[uuid.UUID, Role] = {}
        direct_roles = self.expand(session, held.keys(), roles)
        sources: dict[str, list[str]] = {}
        permissions: set[str] = set()

        for role_id in direct_roles:
            for name in self._role_permission_names(session, role_id, moment):
                permissions.add(name)
                sources.setdefault(name, []).append(f"role:{roles[role_id].slug}")

        delegated_roles: set[uuid.UUID] = set()
        for delegation in delegations:
            chain = self.expand(session, [delegation.role_id], roles)
            delegated_roles.update(chain)
            for role_id in chain:
                for name in self._role_permission_names(session, role_id, moment):
                    if not delegation.covers(name):
                        continue
                    permissions.add(name)
                    sources.setdefault(name, []).append(f"delegation:{delegation.id}")

        all_roles = direct_roles | delegated_roles
        result = EffectivePermissions(
            user_id=user_id,
            at=moment,
            permissions=frozenset(permissions),
            role_ids=frozenset(all_roles),
            role_types=frozenset(str(roles[role_id].role_type) for role_id in all_roles),
            role_slugs=frozenset(roles[role_id].slug for role_id in all_roles),
            sources=sources,
        )
        observe_effective_permission_evaluation("granted" if permissions else "empty")
        logger.debug(
            "rbac.effective_permissions",
            extra={"user_id": str(user_id), "permission_count": len(permissions), "role_count": len(all_roles)},
        )
        return result

    def expand(self, session: Session, role_ids: Iterable[uuid.UUID], cache: dict[uuid.UUID, Role]) -> set[uuid.UUID]:
        """Held roles plus the ancestors they inherit from; inactive or deleted roles contribute nothing."""

        expanded: set[uuid.UUID] = set()
        for start in role_ids:
            current_id: uuid.UUID | None = start
            depth = 0
            while current_id is not None and current_id not in expanded and depth < MAX_ROLE_DEPTH:
                role = cache.get(current_id) or session.get(Role, current_id)
                if role is None or role.deleted_at is not None or not role.is_active:
                    break
                cache[current_id] = role
                expanded.add(current_id)
                if not role.inheritance_enabled:
                    break
                current_id = role.parent_role_id
                depth += 1
        return expanded

    def _role_permission_names(self, session: Session, role_id: uuid.UUID, at: datetime) -> list[str]:
        rows = session.execute(
            select(RolePermission, Permission)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(
                RolePermission.role_id == role_id,
                RolePermission.deleted_at.is_(None),
                Permission.deleted_at.is_(None),
                Permission.is_active.is_(True),
            )
        ).all()
        observe_authz_db_queries_count(1)
        return [
            permission.name
            for grant, permission in rows
            if grant.is_effective(at) and permission.time_restrictions.allows(at)
        ]


effective_permission_resolver = EffectivePermissionResolver()
