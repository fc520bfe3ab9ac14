from crmhub.platform.persistence.errors import (
    AuditLogImmutableError,
    HardDeleteForbiddenError,
    PersistenceError,
    VersionConflictError,
)
from crmhub.platform.persistence.listeners import (
    AUDIT_PURGE_INFO_KEY,
    SKIP_AUDIT_INFO_KEY,
    bind_actor,
    resolve_actor,
)
from crmhub.platform.persistence.types import JSONDocument, PydanticJSON
from crmhub.platform.persistence.mixins import (
    LIVE_ROW_PREDICATE,
    SYSTEM_ACTOR_ID,
    AuditedMixin,
    as_utc,
    audited_table_args,
    coerce_user_uuid,
    live_index,
    live_unique_index,
    pg_check,
    to_jsonable,
    utcnow,
)

__all__ = [
    "AUDIT_PURGE_INFO_KEY",
    "SKIP_AUDIT_INFO_KEY",
    "SYSTEM_ACTOR_ID",
    "AuditLogImmutableError",
    "AuditedMixin",
    "LIVE_ROW_PREDICATE",
    "HardDeleteForbiddenError",
    "JSONDocument",
    "PersistenceError",
    "PydanticJSON",
    "VersionConflictError",
    "as_utc",
    "audited_table_args",
    "bind_actor",
    "coerce_user_uuid",
    "live_index",
    "live_unique_index",
    "pg_check",
    "resolve_actor",
    "to_jsonable",
    "utcnow",
]
