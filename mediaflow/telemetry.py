"""Prometheus metrics for the job queues."""

from __future__ import annotations

import threading

from prometheus_client import Counter, Histogram, start_http_server

from .core.config import Settings

JOB_COUNTER = Counter(
    "mediaflow_jobs_total",
    "Job executions grouped by queue and outcome",
    labelnames=("queue", "status"),
)
JOB_LATENCY = Histogram(
    "mediaflow_job_duration_seconds",
    "Duration of job executions",
    labelnames=("queue",),
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, 900, 1800),
)

_lock = threading.Lock()
_server_started = False


def configure_worker_telemetry(settings: Settings) -> None:
    """Expose the metrics endpoint once per process when a port is configured."""

    global _server_started
    with _lock:
        if _server_started or settings.worker_prometheus_port is None:
            return
        start_http_server(
            port=settings.worker_prometheus_port,
            addr=settings.worker_prometheus_host,
        )
        _server_started = True


def record_job_started(queue: str) -> None:
    JOB_COUNTER.labels(queue=queue, status="started").inc()


def record_job_finished(queue: str, status: str, duration: float | None) -> None:
    """``status`` is one of succeeded, retried or failed."""

    JOB_COUNTER.labels(queue=queue, status=status).inc()
    if duration is not None:
        JOB_LATENCY.labels(queue=queue).observe(max(0.0, duration))
