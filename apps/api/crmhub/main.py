from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from crmhub.api.routes import router as api_router
from crmhub.core.config import get_settings
from crmhub.core.context import RequestContextMiddleware
from crmhub.events import InternalEvent, event_bus
from crmhub.logging import configure_logging
from crmhub.middleware.correlation_id import CorrelationIdMiddleware
from crmhub.middleware.rate_limit import CrmMutationRateLimitMiddleware
from crmhub.middleware.request_logging import RequestLoggingMiddleware
from crmhub.otel import get_fastapi_server_request_hook, setup_otel
from crmhub.platform.security.policies import DbPolicyBackend, InMemoryPolicyBackend, set_policy_backend


configure_logging()
logger = logging.getLogger("crmhub.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(CrmMutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

backend_choice = settings.authz_policy_backend.lower()
if backend_choice == "auto":
    backend_choice = "db" if settings.app_env.lower() in {"prod", "production"} else "inmemory"

if backend_choice == "db":
    set_policy_backend(DbPolicyBackend(default_allow=settings.authz_default_allow))
else:
    set_policy_backend(InMemoryPolicyBackend(default_allow=settings.authz_default_allow))

if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
