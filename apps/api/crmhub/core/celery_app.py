import logging
from collections.abc import Callable
from typing import Any

from celery import Celery
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.orm import Session

from crmhub.core.config import get_settings
from crmhub.core.database import SessionLocal
from crmhub.metrics import observe_housekeeping_run
from crmhub.otel import get_tracer

settings = get_settings()
logger = logging.getLogger("crmhub.housekeeping")
tracer = get_tracer("crmhub.housekeeping")

celery_app = Celery("crmhub", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.beat_schedule = {
    "rbac-expire-lapsed-grants": {
        "task": "rbac.expire_lapsed_grants",
        "schedule": float(settings.role_expiry_sweep_seconds),
    },
    "audit-purge-expired": {
        "task": "audit.purge_expired",
        "schedule": 24 * 60 * 60.0,
    },
}


def _run_housekeeping(task: str, work: Callable[[Session], tuple[int, dict[str, Any]]]) -> dict[str, Any]:
    """Run ``work`` in its own session under a ``housekeeping.run`` span; ``work`` returns (rows, payload)."""

    with tracer.start_as_current_span("housekeeping.run") as span:
        span.set_attribute("task", task)
        try:
            with SessionLocal() as session:
                rows_affected, payload = work(session)
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))
            observe_housekeeping_run(task, "failure")
            logger.exception("housekeeping.failed", extra={"task": task})
            raise
        span.set_attribute("rows_affected", rows_affected)

    observe_housekeeping_run(task, "success", rows_affected)
    logger.info("housekeeping.finished", extra={"task": task, "rows_affected": rows_affected, **payload})
    return payload


@celery_app.task(name="ping")
def ping_task() -> str:
    return "pong"


@celery_app.task(name="rbac.expire_lapsed_grants")
def expire_lapsed_grants_task() -> dict[str, Any]:
    from crmhub.rbac.service import rbac_service

    def work(session: Session) -> tuple[int, dict[str, Any]]:
        result = rbac_service.expire_lapsed_grants(session)
        return result.user_roles_expired + result.delegations_expired, result.model_dump()

    return _run_housekeeping("rbac.expire_lapsed_grants", work)


@celery_app.task(name="audit.purge_expired")
def purge_expired_audit_logs_task() -> dict[str, Any]:
    from crmhub.auditing.service import audit_service

    def work(session: Session) -> tuple[int, dict[str, Any]]:
        result = audit_service.purge_expired_audit_logs(session)
        return result.purged, result.model_dump(mode="json")

    return _run_housekeeping("audit.purge_expired", work)
