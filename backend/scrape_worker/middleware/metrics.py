"""
Prometheus Metrics

Provides HTTP request metrics for the worker's API surface and counters
for the enrichment pipeline:
- HTTP request latency and count by endpoint and status
- Jobs processed by outcome and end-to-end job duration
- Page extraction attempts
- Stale jobs reset by the reaper
- Dispatch queue depth

Usage:
    from scrape_worker.middleware.metrics import setup_metrics

    # In main.py
    app = FastAPI()
    setup_metrics(app)

Metrics Endpoint:
    GET /metrics - Prometheus-format metrics
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

# ==================== Prometheus Metrics ====================

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint", "status"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

# Enrichment pipeline
JOBS_PROCESSED = Counter(
    "jobs_processed_total",
    "Jobs handled by the processor",
    ["outcome"]  # finalized, error, skipped
)

JOB_DURATION = Histogram(
    "job_processing_seconds",
    "Wall-clock time from claim to terminal status",
    ["outcome"],
    buckets=[1.0, 5.0, 10.0, 20.0, 30.0, 60.0, 90.0, 120.0, 180.0]
)

SCRAPE_ATTEMPTS = Histogram(
    "page_extraction_attempt_seconds",
    "Duration of single page extraction attempts",
    ["result"],  # success, failure
    buckets=[1.0, 2.5, 5.0, 7.5, 10.0, 15.0, 30.0, 60.0]
)

STALE_JOBS_REAPED = Counter(
    "stale_jobs_reaped_total",
    "Jobs reset from processing to error by the reaper"
)

QUEUE_DEPTH = Gauge(
    "dispatch_queue_depth",
    "Job ids waiting in the dispatch queue"
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for Prometheus metrics collection.

    Records request latency and request count by status code.
    """

    def __init__(self, app: FastAPI, app_name: str = "scrape_worker"):
        super().__init__(app)
        self.app_name = app_name

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        """Process request and record metrics."""
        endpoint = self._get_endpoint(request)
        method = request.method

        # Skip metrics endpoint
        if endpoint == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            status = str(response.status_code)
        except Exception as e:
            status = "500"
            logger.error(f"Request error: {e}")
            raise
        finally:
            duration = time.perf_counter() - start_time

            REQUEST_LATENCY.labels(
                method=method,
                endpoint=endpoint,
                status=status
            ).observe(duration)

            REQUEST_COUNT.labels(
                method=method,
                endpoint=endpoint,
                status=status
            ).inc()

        return response

    def _get_endpoint(self, request: Request) -> str:
        """
        Get normalized endpoint path from request.

        Uses the route pattern instead of the actual path to avoid high
        cardinality.
        """
        for route in request.app.routes:
            match, _ = route.matches(request.scope)
            if match == Match.FULL:
                return route.path

        return request.url.path


def metrics_endpoint(request: Request) -> Response:
    """Endpoint handler for Prometheus metrics scraping."""
    return PlainTextResponse(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST
    )


def setup_metrics(app: FastAPI) -> None:
    """
    Configure Prometheus metrics for FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(PrometheusMiddleware, app_name="scrape_worker")
    app.add_route("/metrics", metrics_endpoint, methods=["GET"])

    logger.info("Prometheus metrics configured")


# ==================== Helper Functions ====================

def record_job_outcome(outcome: str, duration: float) -> None:
    """Record a processed job and how long it took."""
    JOBS_PROCESSED.labels(outcome=outcome).inc()
    JOB_DURATION.labels(outcome=outcome).observe(duration)


def record_scrape_attempt(result: str, duration: float) -> None:
    """Record one page extraction attempt."""
    SCRAPE_ATTEMPTS.labels(result=result).observe(duration)


def record_stale_jobs(count: int) -> None:
    STALE_JOBS_REAPED.inc(count)


def update_queue_depth(depth: int) -> None:
    QUEUE_DEPTH.set(depth)
