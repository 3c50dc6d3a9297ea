from __future__ import annotations

import contextvars
import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


SERVICE_NAME = "price-service"

_request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
_correlation_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)
_query_drug_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("query_drug", default="")

# probes are scraped constantly; keep them out of the access log
_QUIET_PATHS = frozenset({"/health", "/metrics"})
_LOG_FIELDS = (
    "endpoint",
    "duration_ms",
    "status",
    "method",
    "rows",
    "attempted",
    "provider",
    "outcome",
    "bucket",
)


REQUEST_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "endpoint", "method", "status"],
)
REQUEST_ERRORS_TOTAL = Counter(
    "http_request_errors_total",
    "Total HTTP error responses",
    ["service", "endpoint", "method", "status"],
)
REQUEST_DURATION_MS = Histogram(
    "http_request_duration_ms",
    "HTTP request latency in milliseconds",
    ["service", "endpoint", "method"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 15000),
)
PROVIDER_CALLS_TOTAL = Counter(
    "provider_calls_total",
    "Price provider calls by outcome",
    ["service", "provider", "outcome"],
)
PROVIDER_DURATION_MS = Histogram(
    "provider_call_duration_ms",
    "Price provider call latency in milliseconds, cache hits included",
    ["service", "provider"],
    buckets=(1, 5, 25, 100, 250, 500, 1000, 2500, 5000, 12000),
)
CACHE_LOOKUPS_TOTAL = Counter(
    "cache_lookups_total",
    "Upstream response cache lookups",
    ["service", "bucket", "result"],
)
RATE_LIMIT_REJECTIONS_TOTAL = Counter(
    "rate_limit_rejections_total",
    "Requests or provider calls refused by the rate limiter",
    ["service", "scope"],
)


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get("")
        record.correlation_id = _correlation_id_ctx.get("")
        if not getattr(record, "drug", ""):
            record.drug = _query_drug_ctx.get("")
        record.service = SERVICE_NAME
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": getattr(record, "service", SERVICE_NAME),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", ""),
            "correlation_id": getattr(record, "correlation_id", ""),
        }
        drug = getattr(record, "drug", "")
        if drug:
            payload["drug"] = drug
        for field in _LOG_FIELDS:
            if hasattr(record, field):
                payload[field] = getattr(record, field)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(service_name: str = SERVICE_NAME) -> None:
    global SERVICE_NAME
    SERVICE_NAME = service_name
    root_logger = logging.getLogger()
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    root_logger.setLevel(level)

    formatter = _JsonFormatter()
    if not root_logger.handlers:
        root_logger.addHandler(logging.StreamHandler())
    for handler in root_logger.handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_ContextFilter())


def set_query_drug(drug: str | None) -> None:
    _query_drug_ctx.set(drug or "")


def observe_provider_call(provider: str, outcome: str, duration_ms: float) -> None:
    PROVIDER_CALLS_TOTAL.labels(service=SERVICE_NAME, provider=provider, outcome=outcome).inc()
    PROVIDER_DURATION_MS.labels(service=SERVICE_NAME, provider=provider).observe(duration_ms)


def observe_cache_lookup(bucket: str, hit: bool) -> None:
    CACHE_LOOKUPS_TOTAL.labels(
        service=SERVICE_NAME, bucket=bucket, result="hit" if hit else "miss"
    ).inc()


def observe_rate_limited(scope: str) -> None:
    RATE_LIMIT_REJECTIONS_TOTAL.labels(service=SERVICE_NAME, scope=scope).inc()


def _endpoint_label(request: Request) -> str:
    # route templates keep label cardinality bounded; unmatched paths share one label
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def _record_request(endpoint: str, method: str, status_code: int, duration_ms: int) -> None:
    REQUEST_TOTAL.labels(
        service=SERVICE_NAME, endpoint=endpoint, method=method, status=str(status_code)
    ).inc()
    REQUEST_DURATION_MS.labels(
        service=SERVICE_NAME, endpoint=endpoint, method=method
    ).observe(duration_ms)
    if status_code >= 400:
        REQUEST_ERRORS_TOTAL.labels(
            service=SERVICE_NAME, endpoint=endpoint, method=method, status=str(status_code)
        ).inc()


async def observability_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    correlation_id = request.headers.get("X-Correlation-ID") or request_id
    request.state.request_id = request_id
    _request_id_ctx.set(request_id)
    _correlation_id_ctx.set(correlation_id)
    set_query_drug(None)

    started = time.perf_counter()
    status_code = 500
    response: Response | None = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = int((time.perf_counter() - started) * 1000)
        endpoint = _endpoint_label(request)
        _record_request(endpoint, request.method, status_code, duration_ms)
        if request.url.path not in _QUIET_PATHS:
            logging.getLogger("observability").info(
                "request_completed",
                extra={
                    "endpoint": endpoint,
                    "duration_ms": duration_ms,
                    "status": status_code,
                    "method": request.method,
                },
            )
        if response is not None:
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Correlation-ID"] = correlation_id


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
