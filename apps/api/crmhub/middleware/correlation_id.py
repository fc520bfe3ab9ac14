from __future__ import annotations

import re
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crmhub.context import reset_actor_id, reset_correlation_id, set_actor_id, set_correlation_id

CORRELATION_HEADER = "x-correlation-id"

# inbound ids end up in log lines, audit rows and response headers
_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")


def resolve_correlation_id(raw: str | None) -> str:
    if raw and _VALID_CORRELATION_ID.match(raw):
        return raw
    return str(uuid.uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the correlation id and a fresh actor slot to the request's context."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id
        correlation_token = set_correlation_id(correlation_id)
        actor_token = set_actor_id(None)
        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_actor_id(actor_token)
            reset_correlation_id(correlation_token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
