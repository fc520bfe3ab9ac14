"""In-process sink for security and domain audit notes.

Row-level change history lives in the ``audit_logs`` table (written by the
persistence flush hooks). This sink carries the decisions that never touch a
row: RLS/FLS denials, login outcomes and permission evaluations.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from crmhub.context import get_correlation_id

logger = logging.getLogger("crmhub.audit")

audit_entries: deque[dict[str, Any]] = deque(maxlen=10_000)


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
    category: str = "security",
) -> dict[str, Any]:
    entry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "category": category,
        "before": before,
        "after": after,
        "correlation_id": correlation_id or get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.info("audit.record", extra={"action": action, "entity_type": entity_type, "entity_id": entity_id})
    return entry
