from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

housekeeping_runs_total = Counter(
    "crmhub_housekeeping_runs_total",
    "Total housekeeping task runs by status",
    ["task", "status"],
)

housekeeping_rows_affected_total = Counter(
    "crmhub_housekeeping_rows_affected_total",
    "Rows touched by housekeeping tasks",
    ["task"],
)

fls_masked_fields_count = Counter(
    "fls_masked_fields_count",
    "Total FLS-masked fields",
    ["resource", "operation"],
)

fls_denied_fields_count = Counter(
    "fls_denied_fields_count",
    "Total FLS-denied fields",
    ["resource", "operation"],
)

authz_policy_cache_hit_total = Counter(
    "authz_policy_cache_hit_total",
    "Authorization policy cache hits",
)

authz_policy_cache_miss_total = Counter(
    "authz_policy_cache_miss_total",
    "Authorization policy cache misses",
)

authz_db_queries_count_total = Counter(
    "authz_db_queries_count_total",
    "Authorization DB query count",
)

authz_effective_permission_evaluations_total = Counter(
    "authz_effective_permission_evaluations_total",
    "Effective permission resolutions by outcome",
    ["outcome"],
)

rls_denied_reads_count = Counter(
    "rls_denied_reads_count",
    "Total denied reads by RLS",
    ["resource", "policy"],
)

rls_denied_writes_count = Counter(
    "rls_denied_writes_count",
    "Total denied writes by RLS",
    ["resource", "policy"],
)

optimistic_lock_conflicts_total = Counter(
    "optimistic_lock_conflicts_total",
    "Updates rejected because the stored version moved",
    ["resource"],
)

soft_deletes_total = Counter(
    "soft_deletes_total",
    "Rows soft deleted by table",
    ["table"],
)

audit_rows_written_total = Counter(
    "audit_rows_written_total",
    "Rows appended to audit_logs",
)

journal_entries_posted_count = Counter(
    "journal_entries_posted_count",
    "Total posted journal entries",
)

journal_post_failures_count = Counter(
    "journal_post_failures_count",
    "Total journal post failures by reason",
    ["reason"],
)

inventory_movements_total = Counter(
    "inventory_movements_total",
    "Inventory transactions recorded by type",
    ["transaction_type"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_housekeeping_run(task: str, status: str, rows_affected: int = 0) -> None:
    housekeeping_runs_total.labels(task=task, status=status).inc()
    if rows_affected > 0:
        housekeeping_rows_affected_total.labels(task=task).inc(rows_affected)


def observe_fls_field_counts(resource: str, operation: str, masked_count: int, denied_count: int) -> None:
    if masked_count > 0:
        fls_masked_fields_count.labels(resource=resource, operation=operation).inc(masked_count)
    if denied_count > 0:
        fls_denied_fields_count.labels(resource=resource, operation=operation).inc(denied_count)


def observe_authz_policy_cache_hit() -> None:
    authz_policy_cache_hit_total.inc()


def observe_authz_policy_cache_miss() -> None:
    authz_policy_cache_miss_total.inc()


def observe_authz_db_queries_count(count: int = 1) -> None:
    if count > 0:
        authz_db_queries_count_total.inc(count)


def observe_effective_permission_evaluation(outcome: str) -> None:
    authz_effective_permission_evaluations_total.labels(outcome=outcome).inc()


def observe_rls_denied_read(resource: str, policy: str) -> None:
    rls_denied_reads_count.labels(resource=resource, policy=policy).inc()


def observe_rls_denied_write(resource: str, policy: str) -> None:
    rls_denied_writes_count.labels(resource=resource, policy=policy).inc()


def observe_optimistic_lock_conflict(resource: str) -> None:
    optimistic_lock_conflicts_total.labels(resource=resource).inc()


def observe_soft_delete(table: str) -> None:
    soft_deletes_total.labels(table=table).inc()


def observe_audit_rows_written(count: int = 1) -> None:
    if count > 0:
        audit_rows_written_total.inc(count)


def observe_journal_entry_posted(count: int = 1) -> None:
    if count > 0:
        journal_entries_posted_count.inc(count)


def observe_journal_post_failure(reason: str) -> None:
    journal_post_failures_count.labels(reason=reason).inc()


def observe_inventory_movement(transaction_type: str) -> None:
    inventory_movements_total.labels(transaction_type=transaction_type).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
