"""Prometheus metrics for docsync."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import CollectorRegistry

# Custom registry so docsync metrics never collide with the default one
docsync_registry = CollectorRegistry()

fetch_requests = Counter(
    'docsync_fetch_requests_total',
    'Documentation fetches by final outcome',
    ['outcome'],
    registry=docsync_registry
)

fetch_retries = Counter(
    'docsync_fetch_retries_total',
    'Fetch attempts that were retried after a transient failure',
    registry=docsync_registry
)

fetch_duration = Histogram(
    'docsync_fetch_duration_seconds',
    'Time spent fetching a URL, retries included',
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=docsync_registry
)

indexing_outcomes = Counter(
    'docsync_indexing_outcomes_total',
    'Per-document indexing outcomes',
    ['outcome'],
    registry=docsync_registry
)

job_runs = Counter(
    'docsync_job_runs_total',
    'Scheduled job executions by final state',
    ['job', 'state'],
    registry=docsync_registry
)

job_duration = Histogram(
    'docsync_job_duration_seconds',
    'Job execution time in seconds',
    ['job'],
    buckets=[1, 5, 15, 60, 300, 900, 1800, 3600, 7200],
    registry=docsync_registry
)

job_running = Gauge(
    'docsync_job_running',
    'Whether a job is currently running (1) or not (0)',
    ['job'],
    registry=docsync_registry
)


def record_fetch(outcome: str, duration_s: float) -> None:
    fetch_requests.labels(outcome=outcome).inc()
    fetch_duration.observe(duration_s)


def record_indexing_outcome(outcome: str) -> None:
    indexing_outcomes.labels(outcome=outcome).inc()


def record_job_run(job: str, state: str, duration_s: float) -> None:
    job_runs.labels(job=job, state=state).inc()
    job_duration.labels(job=job).observe(duration_s)


def get_metrics_text() -> bytes:
    """Render all docsync metrics in the Prometheus exposition format."""
    return generate_latest(docsync_registry)


__all__ = [
    'CONTENT_TYPE_LATEST',
    'docsync_registry',
    'fetch_requests',
    'fetch_retries',
    'indexing_outcomes',
    'job_runs',
    'job_running',
    'record_fetch',
    'record_indexing_outcome',
    'record_job_run',
    'get_metrics_text',
]
