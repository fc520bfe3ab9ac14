from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from crmhub.documents import TimeRestriction
from crmhub.enums import GrantType, RoleType
from crmhub.platform.persistence import SYSTEM_ACTOR_ID, bind_actor
from crmhub.rbac.models import Permission, Role, RolePermission


logger = logging.getLogger("crmhub.rbac")


@dataclass(frozen=True)
class RoleSeed:
    name: str
    role_type: RoleType
    description: str
    parent: RoleType | None = None
    priority: int = 0


DEFAULT_ROLES: tuple[RoleSeed, ...] = (
    RoleSeed("Super Admin", RoleType.SUPER_ADMIN, "Complete system access with all permissions", priority=100),
    RoleSeed("System Admin", RoleType.SYSTEM_ADMIN, "System administration and configuration", priority=90),
    RoleSeed("Guest User", RoleType.GUEST_USER, "Limited access for temporary users", priority=0),
    RoleSeed("Standard User", RoleType.STANDARD_USER, "Regular user with basic permissions", RoleType.GUEST_USER, 10),
    RoleSeed("Sales Representative", RoleType.SALES_REP, "Sales team member", RoleType.STANDARD_USER, 20),
    RoleSeed("Senior Sales", RoleType.SENIOR_SALES, "Senior sales representative", RoleType.SALES_REP, 30),
    RoleSeed("Sales Manager", RoleType.SALES_MANAGER, "Manages sales team and operations", RoleType.SENIOR_SALES, 40),
    RoleSeed(
        "Sales Director",
        RoleType.SALES_DIRECTOR,
        "Oversees all sales operations and strategy",
        RoleType.SALES_MANAGER,
        50,
    ),
    RoleSeed("Marketing Specialist", RoleType.MARKETING_SPECIALIST, "Marketing team member", RoleType.STANDARD_USER, 20),
    RoleSeed(
        "Senior Marketing",
        RoleType.SENIOR_MARKETING,
        "Senior marketing specialist",
        RoleType.MARKETING_SPECIALIST,
        30,
    ),
    RoleSeed(
        "Marketing Manager",
        RoleType.MARKETING_MANAGER,
        "Manages marketing team and campaigns",
        RoleType.SENIOR_MARKETING,
        40,
    ),
    RoleSeed(
        "Marketing Director",
        RoleType.MARKETING_DIRECTOR,
        "Oversees all marketing operations and strategy",
        RoleType.MARKETING_MANAGER,
        50,
    ),
    RoleSeed("Account Manager", RoleType.ACCOUNT_MANAGER, "Manages client relationships", RoleType.STANDARD_USER, 25),
    RoleSeed(
        "Support Specialist",
        RoleType.SUPPORT_SPECIALIST,
        "Customer support team member",
        RoleType.STANDARD_USER,
        20,
    ),
)

# (name, description, category)
DEFAULT_PERMISSIONS: tuple[tuple[str, str, str], ...] = (
    ("user.create", "Create new users", "user"),
    ("user.read", "View user profiles", "user"),
    ("user.update", "Update user profiles", "user"),
    ("user.delete", "Delete users", "user"),
    ("user.restore", "Restore deleted users", "user"),
    ("role.create", "Create new roles", "role"),
    ("role.read", "View roles", "role"),
    ("role.update", "Update roles", "role"),
    ("role.delete", "Delete roles", "role"),
    ("role.assign", "Assign roles to users", "role"),
    ("role.approve", "Approve pending role assignments and delegations", "role"),
    ("role.delegate", "Delegate held roles to other users", "role"),
    ("permission.create", "Create new permissions", "permission"),
    ("permission.read", "View permissions", "permission"),
    ("permission.update", "Update permissions", "permission"),
    ("permission.delete", "Delete permissions", "permission"),
    ("permission.assign", "Assign permissions to roles", "permission"),
    ("audit.read", "View audit logs", "audit"),
    ("audit.export", "Export audit logs", "audit"),
    ("system.config", "Manage system configuration", "system"),
    ("system.monitor", "Monitor system status", "system"),
    ("system.backup", "Manage system backups", "system"),
    ("system.maintenance", "Run maintenance sweeps and seeding", "system"),
    ("system.metrics.read", "Read service metrics", "system"),
    ("sales.create", "Create sales records", "sales"),
    ("sales.read", "View sales records", "sales"),
    ("sales.update", "Update sales records", "sales"),
    ("sales.delete", "Delete sales records", "sales"),
    ("sales.approve", "Approve sales deals", "sales"),
    ("sales.report", "Generate sales reports", "sales"),
    ("marketing.create", "Create marketing campaigns", "marketing"),
    ("marketing.read", "View marketing campaigns", "marketing"),
    ("marketing.update", "Update marketing campaigns", "marketing"),
    ("marketing.delete", "Delete marketing campaigns", "marketing"),
    ("marketing.approve", "Approve marketing campaigns", "marketing"),
    ("marketing.report", "Generate marketing reports", "marketing"),
    ("customer.create", "Create customer records", "customer"),
    ("customer.read", "View customer records", "customer"),
    ("customer.update", "Update customer records", "customer"),
    ("customer.delete", "Delete customer records", "customer"),
    ("support.create", "Create support tickets", "support"),
    ("support.read", "View support tickets", "support"),
    ("support.update", "Update support tickets", "support"),
    ("support.delete", "Delete support tickets", "support"),
    ("support.resolve", "Resolve support tickets", "support"),
    ("analytics.sales", "Access sales analytics", "analytics"),
    ("analytics.marketing", "Access marketing analytics", "analytics"),
    ("analytics.customer", "Access customer analytics", "analytics"),
    ("analytics.support", "Access support analytics", "analytics"),
    ("tasks.create", "Create boards, lists and tasks", "tasks"),
    ("tasks.read", "View boards and tasks", "tasks"),
    ("tasks.update", "Update, move and assign tasks", "tasks"),
    ("tasks.delete", "Delete boards, lists and tasks", "tasks"),
    ("inventory.create", "Create locations and purchase orders", "inventory"),
    ("inventory.read", "View stock and purchase orders", "inventory"),
    ("inventory.update", "Move, reserve and adjust stock", "inventory"),
    ("inventory.approve", "Approve purchase orders", "inventory"),
    ("inventory.delete", "Delete empty locations", "inventory"),
    ("accounting.create", "Create accounts, entries and payments", "accounting"),
    ("accounting.read", "View ledgers and payments", "accounting"),
    ("accounting.update", "Update accounts and mappings", "accounting"),
    ("accounting.post", "Post and void journal entries", "accounting"),
    ("accounting.delete", "Delete unused accounts", "accounting"),
)

_TASKS_BASIC = ("tasks.create", "tasks.read", "tasks.update")

# Direct grants only; roles also inherit their parent's grants.
DEFAULT_ROLE_PERMISSIONS: dict[RoleType, tuple[str, ...]] = {
    RoleType.SYSTEM_ADMIN: (
        "user.read",
        "user.update",
        "role.read",
        "role.update",
        "permission.read",
        "system.config",
        "system.monitor",
        "system.backup",
        "system.maintenance",
        "system.metrics.read",
        "role.approve",
        "analytics.sales",
        "analytics.marketing",
        "analytics.customer",
        "analytics.support",
        "audit.read",
        "accounting.read",
        "accounting.create",
        "accounting.update",
        "accounting.post",
        "accounting.delete",
    ),
    RoleType.SALES_DIRECTOR: (
        "sales.create",
        "sales.read",
        "sales.update",
        "sales.delete",
        "sales.approve",
        "sales.report",
        "customer.read",
        "customer.update",
        "analytics.sales",
        "analytics.customer",
        "user.read",
        "tasks.delete",
        "inventory.read",
        "inventory.approve",
        "inventory.delete",
        "accounting.read",
    ),
    RoleType.MARKETING_DIRECTOR: (
        "marketing.create",
        "marketing.read",
        "marketing.update",
        "marketing.delete",
        "marketing.approve",
        "marketing.report",
        "customer.read",
        "analytics.marketing",
        "analytics.customer",
        "user.read",
        "tasks.delete",
    ),
    RoleType.SALES_MANAGER: (
        "sales.create",
        "sales.read",
        "sales.update",
        "sales.report",
        "role.delegate",
        "customer.read",
        "customer.update",
        "analytics.sales",
        "user.read",
        "inventory.read",
        "inventory.create",
        "inventory.update",
    ),
    RoleType.MARKETING_MANAGER: (
        "marketing.create",
        "marketing.read",
        "marketing.update",
        "marketing.report",
        "role.delegate",
        "customer.read",
        "analytics.marketing",
        "user.read",
    ),
    RoleType.SENIOR_SALES: (
        "sales.create",
        "sales.read",
        "sales.update",
        "customer.create",
        "customer.read",
        "customer.update",
        "analytics.sales",
        "user.read",
    ),
    RoleType.SENIOR_MARKETING: (
        "marketing.create",
        "marketing.read",
        "marketing.update",
        "customer.read",
        "analytics.marketing",
        "user.read",
    ),
    RoleType.SALES_REP: (
        "sales.create",
        "sales.read",
        "customer.create",
        "customer.read",
        "customer.update",
        "user.read",
        *_TASKS_BASIC,
    ),
    RoleType.MARKETING_SPECIALIST: (
        "marketing.create",
        "marketing.read",
        "customer.read",
        "user.read",
        *_TASKS_BASIC,
    ),
    RoleType.ACCOUNT_MANAGER: (
        "customer.read",
        "customer.update",
        "support.read",
        "support.create",
        "sales.read",
        "user.read",
        "accounting.read",
        "accounting.create",
        *_TASKS_BASIC,
    ),
    RoleType.SUPPORT_SPECIALIST: (
        "support.create",
        "support.read",
        "support.update",
        "support.resolve",
        "customer.read",
        "user.read",
        *_TASKS_BASIC,
    ),
    RoleType.STANDARD_USER: ("user.read", "customer.read", "tasks.read"),
    RoleType.GUEST_USER: ("user.read",),
}


def role_permission_names(role_type: RoleType) -> tuple[str, ...]:
    if role_type == RoleType.SUPER_ADMIN:
        return tuple(name for name, _description, _category in DEFAULT_PERMISSIONS)
    return DEFAULT_ROLE_PERMISSIONS.get(role_type, ())


def initialize_default_roles(session: Session) -> dict[str, int]:
    """Create the default role tree, permission catalog and grants; existing rows are left untouched."""

    bind_actor(session, SYSTEM_ACTOR_ID, is_admin=True)
    created = {"roles": 0, "permissions": 0, "role_permissions": 0}

    permissions: dict[str, Permission] = {
        row.name: row for row in session.scalars(select(Permission).where(Permission.deleted_at.is_(None)))
    }
    for name, description, category in DEFAULT_PERMISSIONS:
        if name in permissions:
            continue
        resource, _, action = name.partition(".")
        permission = Permission(
            name=name,
            description=description,
            category=category,
            resource_type=resource,
            action_type=action,
            is_system=True,
            time_restrictions=TimeRestriction.unrestricted(),
        )
        session.add(permission)
        permissions[name] = permission
        created["permissions"] += 1

    roles: dict[RoleType, Role] = {
        row.role_type: row for row in session.scalars(select(Role).where(Role.deleted_at.is_(None)))
    }
    for seed in DEFAULT_ROLES:
        if seed.role_type in roles:
            continue
        role = Role(
            name=seed.name,
            description=seed.description,
            role_type=seed.role_type,
            is_system=True,
            is_active=True,
            priority=seed.priority,
        )
        session.add(role)
        roles[seed.role_type] = role
        created["roles"] += 1
    session.flush()

    for seed in DEFAULT_ROLES:
        role = roles[seed.role_type]
        if seed.parent is not None and role.parent_role_id is None:
            role.parent_role_id = roles[seed.parent].id

    existing_grants = {
        (row.role_id, row.permission_id)
        for row in session.scalars(select(RolePermission).where(RolePermission.deleted_at.is_(None)))
    }
    for seed in DEFAULT_ROLES:
        role = roles[seed.role_type]
        for name in role_permission_names(seed.role_type):
            permission = permissions[name]
            if (role.id, permission.id) in existing_grants:
                continue
            session.add(
                RolePermission(
                    role_id=role.id,
                    permission_id=permission.id,
                    grant_type=GrantType.EXPLICIT,
                    time_restriction=TimeRestriction.unrestricted(),
                )
            )
            existing_grants.add((role.id, permission.id))
            created["role_permissions"] += 1

    session.flush()
    logger.info("rbac.default_roles_initialized", extra=created)
    return created
