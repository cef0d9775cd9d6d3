"""Prometheus metrics helpers and middleware."""

from __future__ import annotations

from time import perf_counter
from typing import TYPE_CHECKING, Optional

from fastapi import FastAPI, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from storybook_providers.base import ImageResponse
    from storybook_schemas import BatchReport


_HTTP_REQUEST_COUNT = Counter(
    "storybook_http_requests_total",
    "Total HTTP requests processed by service",
    labelnames=("service", "method", "route", "status"),
)

_HTTP_REQUEST_LATENCY = Histogram(
    "storybook_http_request_duration_seconds",
    "Latency of HTTP requests",
    labelnames=("service", "method", "route"),
)

_GENERATION_DURATION = Histogram(
    "storybook_generation_duration_seconds",
    "Duration of single illustration/sketch generation jobs",
    labelnames=("service", "kind"),
    buckets=(1, 5, 10, 20, 30, 45, 60, 90, 120, 180, 300),
)

_GENERATION_COUNTER = Counter(
    "storybook_generation_jobs_total",
    "Count of generation jobs by outcome",
    labelnames=("service", "kind", "outcome"),
)

_GENERATION_ERRORS = Counter(
    "storybook_generation_errors_total",
    "Classified generation failures",
    labelnames=("service", "error_kind"),
)

_BATCH_COUNTER = Counter(
    "storybook_batches_total",
    "Finished batch runs by terminal state",
    labelnames=("service", "state"),
)

_BATCH_ITEMS = Counter(
    "storybook_batch_items_total",
    "Batch items by outcome",
    labelnames=("service", "outcome"),
)

_RUNNING_JOBS = Gauge(
    "storybook_generation_jobs_running",
    "Generation jobs currently in flight",
    labelnames=("service",),
)

_PROVIDER_COST = Counter(
    "storybook_provider_cost_usd_total",
    "Aggregated image provider cost in USD",
    labelnames=("service", "kind", "provider"),
)

_PROVIDER_LATENCY = Histogram(
    "storybook_provider_latency_seconds",
    "Latency of image provider calls",
    labelnames=("service", "kind", "provider"),
)

_STATUS_TRANSITIONS = Counter(
    "storybook_status_transitions_total",
    "Project status transitions",
    labelnames=("service", "from_status", "to_status"),
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect request metrics for FastAPI services."""

    def __init__(self, app: FastAPI, service_name: str) -> None:
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        response = await call_next(request)
        elapsed = perf_counter() - start

        route_template = request.url.path
        route = request.scope.get("route")
        if route and getattr(route, "path", None):
            route_template = route.path  # type: ignore[assignment]

        method = request.method
        status = getattr(response, "status_code", 500)

        _HTTP_REQUEST_COUNT.labels(self.service_name, method, route_template, str(status)).inc()
        _HTTP_REQUEST_LATENCY.labels(self.service_name, method, route_template).observe(elapsed)
        return response


def setup_fastapi_metrics(app: FastAPI, service_name: str, endpoint: str = "/metrics") -> None:
    """Register Prometheus middleware and metrics endpoint for a FastAPI app."""

    if getattr(app.state, "metrics_configured", False):
        return

    app.add_middleware(PrometheusMiddleware, service_name=service_name)

    @app.get(endpoint, include_in_schema=False)
    async def _metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.state.metrics_configured = True


def observe_generation(
    kind: str,
    outcome: str,
    duration_seconds: float,
    *,
    service_name: str,
    error_kind: Optional[str] = None,
) -> None:
    """Record one generation job (``kind`` is ``illustration``, ``sketch`` or ``character``)."""

    _GENERATION_DURATION.labels(service_name, kind).observe(max(duration_seconds, 0.0))
    _GENERATION_COUNTER.labels(service_name, kind, outcome).inc()
    if error_kind:
        _GENERATION_ERRORS.labels(service_name, error_kind).inc()


def track_running_jobs(service_name: str, delta: int) -> None:
    if delta >= 0:
        _RUNNING_JOBS.labels(service_name).inc(delta)
    else:
        _RUNNING_JOBS.labels(service_name).dec(-delta)


def observe_batch(report: "BatchReport", *, service_name: str) -> None:
    state = "cancelled" if report.cancelled else "finished"
    _BATCH_COUNTER.labels(service_name, state).inc()
    _BATCH_ITEMS.labels(service_name, "completed").inc(report.completed)
    _BATCH_ITEMS.labels(service_name, "failed").inc(report.failed)
    _BATCH_ITEMS.labels(service_name, "not_started").inc(max(report.not_started, 0))


def observe_provider_response(
    *,
    kind: str,
    provider: str,
    service_name: str,
    response: Optional["ImageResponse"],
) -> None:
    """Capture latency and cost from provider responses."""

    if response is None:
        return

    latency_ms = getattr(response, "latency_ms", None)
    if isinstance(latency_ms, (int, float)) and latency_ms >= 0:
        _PROVIDER_LATENCY.labels(service_name, kind, provider).observe(latency_ms / 1000)

    cost_usd = getattr(response, "cost_usd", None)
    if isinstance(cost_usd, (int, float)) and cost_usd >= 0:
        _PROVIDER_COST.labels(service_name, kind, provider).inc(cost_usd)


def record_status_transition(from_status: str, to_status: str, *, service_name: str) -> None:
    _STATUS_TRANSITIONS.labels(service_name, from_status, to_status).inc()
