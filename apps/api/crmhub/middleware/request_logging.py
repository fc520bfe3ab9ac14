from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crmhub.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("crmhub.request")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code in {401, 403, 429}:
        return logging.WARNING
    return logging.INFO


def _acting_user(request: Request) -> str | None:
    context = getattr(request.state, "context", None)
    return getattr(context, "user_id", None)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One ``http.request`` line and one histogram sample per request, labelled by route template."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method
        path = resolve_http_path_label(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            observe_http_request(method=method, path=path, status=500, duration=duration_ms / 1000)
            logger.error(
                "http.error",
                exc_info=True,
                extra={
                    "method": method,
                    "path": path,
                    "status_code": 500,
                    "duration_ms": duration_ms,
                    "user_id": _acting_user(request),
                },
            )
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        observe_http_request(method=method, path=path, status=response.status_code, duration=duration_ms / 1000)
        logger.log(
            _level_for(response.status_code),
            "http.request",
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "user_id": _acting_user(request),
            },
        )
        return response
