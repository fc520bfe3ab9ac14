from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crmhub.context import get_correlation_id
from crmhub.core.auth import ANONYMOUS_SUBJECT, bearer_token, decode_token
from crmhub.core.config import get_settings

logger = logging.getLogger("crmhub.request")

CRM_PREFIX = "/api/crm"
WINDOW_SECONDS = 60


@dataclass
class _BucketState:
    tokens: float
    last_refill: float


class TokenBucketLimiter:
    """Per ``(user, route group)`` buckets refilled continuously over the window."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _BucketState] = {}

    def take(self, user_id: str, route_group: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = time.monotonic()
        refill_rate = capacity / float(window_seconds)
        key = (user_id, route_group)

        with self._lock:
            bucket = self._buckets.setdefault(key, _BucketState(tokens=float(capacity), last_refill=now))
            elapsed = max(0.0, now - bucket.last_refill)
            bucket.tokens = min(float(capacity), bucket.tokens + elapsed * refill_rate)
            bucket.last_refill = now

            if bucket.tokens < 1.0:
                return False, max(1, math.ceil((1.0 - bucket.tokens) / refill_rate))

            bucket.tokens -= 1.0
            return True, 0

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = TokenBucketLimiter()


class CrmMutationRateLimitMiddleware(BaseHTTPMiddleware):
    """Throttles POST/PATCH/DELETE under ``/api/crm``; reads are never limited."""

    mutating_methods = {"POST", "PATCH", "DELETE"}

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        path = request.url.path
        if (
            settings.rate_limit_disabled
            or not path.startswith(CRM_PREFIX)
            or request.method.upper() not in self.mutating_methods
        ):
            return await call_next(request)

        user_id = _resolve_user_id(request)
        route_group = resolve_route_group(path)
        allowed, retry_after = _limiter.take(
            user_id=user_id,
            route_group=route_group,
            capacity=settings.rate_limit_crm_mutations_per_minute,
            window_seconds=WINDOW_SECONDS,
        )
        if allowed:
            return await call_next(request)

        correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None) or str(uuid.uuid4())
        logger.warning(
            "rate_limit.exceeded",
            extra={"user_id": user_id, "resource": route_group, "method": request.method, "path": path},
        )
        response = JSONResponse(
            status_code=429,
            content={
                "code": "RATE_LIMITED",
                "message": "Too many requests",
                "details": {"route_group": route_group, "retry_after": retry_after},
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["X-Correlation-Id"] = correlation_id
        return response


def resolve_route_group(path: str) -> str:
    """``/api/crm/contacts/<id>/restore`` -> ``contacts``."""

    parts = [part for part in path.split("/") if part]
    if len(parts) < 3:
        return "crm"
    return parts[2]


def _resolve_user_id(request: Request) -> str:
    token = bearer_token(request)
    if not token:
        return ANONYMOUS_SUBJECT
    try:
        return decode_token(token).sub
    except JWTError:
        return ANONYMOUS_SUBJECT


def reset_rate_limiter() -> None:
    _limiter.clear()
