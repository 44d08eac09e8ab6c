"""
Middleware Package

Contains FastAPI middleware and pipeline metrics for:
- Prometheus metrics collection
- Job processing and extraction monitoring
"""

from scrape_worker.middleware.metrics import (
    PrometheusMiddleware,
    setup_metrics,
    REQUEST_LATENCY,
    REQUEST_COUNT,
    JOBS_PROCESSED,
    JOB_DURATION,
    STALE_JOBS_REAPED,
)

__all__ = [
    "PrometheusMiddleware",
    "setup_metrics",
    "REQUEST_LATENCY",
    "REQUEST_COUNT",
    "JOBS_PROCESSED",
    "JOB_DURATION",
    "STALE_JOBS_REAPED",
]
