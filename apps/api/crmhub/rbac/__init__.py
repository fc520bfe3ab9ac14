from crmhub.rbac.models import Permission, Role, RoleDelegation, RolePermission, TeamAssignment, UserRole

__all__ = [
    "Role",
    "Permission",
    "RolePermission",
    "UserRole",
    "RoleDelegation",
    "TeamAssignment",
]
