import uuid
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


@dataclass
class RequestContext:
    request_id: str
    correlation_id: str | None
    method: str
    path: str
    user_id: str | None = None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Hangs a ``RequestContext`` on ``request.state``; the auth dependency fills in ``user_id``."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None)
        request.state.context = RequestContext(
            request_id=str(uuid.uuid4()),
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
        )
        response = await call_next(request)
        response.headers["x-request-id"] = request.state.context.request_id
        return response
