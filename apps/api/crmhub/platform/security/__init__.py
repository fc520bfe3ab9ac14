from crmhub.platform.security.actor import ActorUser, to_auth_context
from crmhub.platform.security.context import ADMIN_ROLE_TYPES, AuthContext, is_admin_bypass
from crmhub.platform.security.errors import AuthorizationError, ForbiddenFieldError, RowAccessDeniedError
from crmhub.platform.security.fls import MASKED_FIELD_VALUE, apply_fls_read, apply_fls_read_many, validate_fls_write
from crmhub.platform.security.repository import BaseRepository
from crmhub.platform.security.rls import (
    RowPolicy,
    apply_rls_filter,
    can_read_row,
    owner_or_role,
    public_if,
    team_assignment,
    validate_rls_write,
)
from crmhub.platform.security.policies import (
    DbPolicyBackend,
    FieldDecision,
    InMemoryPolicyBackend,
    PolicyBackend,
    set_policy_backend,
    get_policy_backend,
)

__all__ = [
    "ADMIN_ROLE_TYPES",
    "ActorUser",
    "AuthContext",
    "AuthorizationError",
    "ForbiddenFieldError",
    "MASKED_FIELD_VALUE",
    "RowAccessDeniedError",
    "RowPolicy",
    "BaseRepository",
    "apply_rls_filter",
    "apply_fls_read",
    "apply_fls_read_many",
    "can_read_row",
    "is_admin_bypass",
    "owner_or_role",
    "public_if",
    "team_assignment",
    "to_auth_context",
    "validate_rls_write",
    "validate_fls_write",
    "FieldDecision",
    "PolicyBackend",
    "DbPolicyBackend",
    "InMemoryPolicyBackend",
    "set_policy_backend",
    "get_policy_backend",
]
