from __future__ import annotations

from typing import Any

from sqlalchemy import and_

from crmhub.enums import StatusType
from crmhub.identity.models import Profile
from crmhub.platform.persistence import coerce_user_uuid
from crmhub.platform.security.context import AuthContext
from crmhub.platform.security.repository import BaseRepository
from crmhub.platform.security.rls import public_if


def _publicly_visible(model: Any) -> Any:
    return and_(model.is_verified.is_(True), model.status == StatusType.ACTIVE)


def _is_publicly_visible(record: Any) -> bool:
    return bool(record.is_verified) and record.status == StatusType.ACTIVE


class ProfileRepository(BaseRepository):
    """Verified active profiles are public; everything else is owner-only."""

    resource = "profiles"
    model = Profile
    policy = public_if(_publicly_visible, _is_publicly_visible, "user_id", "id")
    sensitive_fields = frozenset({"birth_date", "gender"})
    read_only_fields = frozenset(
        {
            "user_id",
            "is_verified",
            "verification_level",
            "reputation_score",
            "trust_score",
            "followers_count",
            "following_count",
            "profile_views",
        }
    )

    def apply_read_security_for(self, record: Any, payload: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
        if record.user_id is not None and record.user_id == coerce_user_uuid(ctx.user_id):
            return payload
        return self.apply_read_security(payload, ctx)

