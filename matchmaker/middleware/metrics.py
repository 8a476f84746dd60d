"""
Prometheus Metrics for the matching service

HTTP side:
- Request latency and count per route template and status
- In-flight requests per route template

Matching engine side:
- Job lifecycle events (started, reused, completed, failed)
- Candidate scores calculated
- Embeddings regenerated, and how long the provider took

Usage:
    from matchmaker.middleware.metrics import setup_metrics

    app = FastAPI()
    setup_metrics(app)    # adds the middleware and GET /metrics

The engine helpers (record_*) are plain counters, so the Celery worker
can call them without an app.
"""

import time
import logging
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CONTENT_TYPE_LATEST,
    generate_latest,
    REGISTRY,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

logger = logging.getLogger(__name__)

NAMESPACE = "matchmaker"

# Not worth timing: scraped or polled by infrastructure
UNTRACKED_PATHS = frozenset({"/metrics", "/health"})

# ==================== HTTP ====================

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Latency of API requests",
    ["method", "route", "status"],
    namespace=NAMESPACE,
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

REQUEST_COUNT = Counter(
    "http_requests_total",
    "API requests served",
    ["method", "route", "status"],
    namespace=NAMESPACE,
)

ACTIVE_REQUESTS = Gauge(
    "http_requests_in_flight",
    "API requests currently being served",
    ["method", "route"],
    namespace=NAMESPACE,
)

# ==================== Matching engine ====================

EMBEDDING_LATENCY = Histogram(
    "embedding_seconds",
    "Time the embedding provider took per call (one text or one batch)",
    ["provider"],
    namespace=NAMESPACE,
    buckets=[0.0005, 0.001, 0.01, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

MATCHING_JOBS = Counter(
    "matching_jobs_total",
    "Matching job lifecycle events",
    ["outcome"],  # started, reused, completed, failed
    namespace=NAMESPACE,
)

SCORES_CALCULATED = Counter(
    "candidate_scores_total",
    "Candidate scores calculated across all runs",
    namespace=NAMESPACE,
)

EMBEDDINGS_GENERATED = Counter(
    "embeddings_regenerated_total",
    "Embeddings regenerated and written back to the profile",
    ["owner"],  # requester, candidate
    namespace=NAMESPACE,
)


def route_template(request: Request) -> str:
    """
    Route pattern that served the request, e.g. /matching/status/{job_id}.

    Falls back to the raw path for unmatched requests (404s).
    """
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return request.url.path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Times every API request and counts it by route template and status."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in UNTRACKED_PATHS:
            return await call_next(request)

        method = request.method
        route = route_template(request)
        in_flight = ACTIVE_REQUESTS.labels(method=method, route=route)

        in_flight.inc()
        started = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        except Exception:
            logger.exception(f"Unhandled error serving {method} {route}")
            raise
        finally:
            elapsed = time.perf_counter() - started
            REQUEST_LATENCY.labels(method=method, route=route, status=status).observe(elapsed)
            REQUEST_COUNT.labels(method=method, route=route, status=status).inc()
            in_flight.dec()


def metrics_endpoint(request: Request) -> Response:
    """Prometheus scrape target."""
    return PlainTextResponse(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


def setup_metrics(app: FastAPI) -> None:
    """Install the request middleware and expose GET /metrics on the app."""
    app.add_middleware(PrometheusMiddleware)
    app.add_route("/metrics", metrics_endpoint, methods=["GET"])
    logger.info("Prometheus metrics enabled at /metrics")


# ==================== Engine helpers ====================

def record_embedding_latency(provider: str, duration: float) -> None:
    EMBEDDING_LATENCY.labels(provider=provider).observe(duration)


def record_job_outcome(outcome: str) -> None:
    """Count a matching job lifecycle event."""
    MATCHING_JOBS.labels(outcome=outcome).inc()


def record_score_calculated() -> None:
    SCORES_CALCULATED.inc()


def record_embedding_generated(owner: str) -> None:
    """Count an embedding regenerated for a requester or a candidate."""
    EMBEDDINGS_GENERATED.labels(owner=owner).inc()
