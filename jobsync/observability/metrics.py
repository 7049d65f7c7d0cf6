"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobsync.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_CLEANED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FINISHED,
    METRIC_JOBS_REQUEUED,
    METRIC_QUEUE_DEPTH,
    METRIC_SYNC_DELIVERED,
    METRIC_SYNC_DROPPED,
    METRIC_SYNC_STORED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue and sync log.

    Collects metrics for:
    - Queue depth
    - Job enqueues, claims and outcomes
    - Job execution duration
    - Stale job recovery and retention cleanup
    - Sync actions stored, dropped and delivered
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of pending jobs",
            ["tenant_id"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed for processing",
            ["worker_id"],
            registry=self._registry,
        )

        # status is completed, retrying or failed
        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of job attempts finished",
            ["job_type", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["job_type", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        self.jobs_cleaned = Counter(
            METRIC_JOBS_CLEANED,
            "Total number of terminal jobs deleted by retention cleanup",
            registry=self._registry,
        )

        self.jobs_requeued = Counter(
            METRIC_JOBS_REQUEUED,
            "Total number of stale processing jobs recovered",
            ["outcome"],
            registry=self._registry,
        )

        self.sync_stored = Counter(
            METRIC_SYNC_STORED,
            "Total number of sync actions appended to the log",
            ["module"],
            registry=self._registry,
        )

        self.sync_dropped = Counter(
            METRIC_SYNC_DROPPED,
            "Total number of sync actions that could not be stored",
            ["module"],
            registry=self._registry,
        )

        self.sync_delivered = Counter(
            METRIC_SYNC_DELIVERED,
            "Total number of sync actions delivered to subscribers",
            registry=self._registry,
        )

    def record_job_enqueued(self, job_type: str, count: int = 1) -> None:
        """Record enqueued jobs."""
        self.jobs_enqueued.labels(job_type=job_type).inc(count)

    def record_jobs_claimed(self, worker_id: str, count: int = 1) -> None:
        """Record claimed jobs."""
        self.jobs_claimed.labels(worker_id=worker_id).inc(count)

    def record_job_finished(
        self,
        job_type: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record the outcome of a job attempt."""
        self.jobs_finished.labels(job_type=job_type, status=status).inc()
        self.job_duration.labels(job_type=job_type, status=status).observe(
            duration_seconds
        )

    def record_jobs_cleaned(self, count: int) -> None:
        self.jobs_cleaned.inc(count)

    def record_jobs_requeued(self, requeued: int, failed: int) -> None:
        self.jobs_requeued.labels(outcome="requeued").inc(requeued)
        self.jobs_requeued.labels(outcome="failed").inc(failed)

    def record_sync_stored(self, module: str) -> None:
        self.sync_stored.labels(module=module).inc()

    def record_sync_dropped(self, module: str) -> None:
        self.sync_dropped.labels(module=module).inc()

    def record_sync_delivered(self, count: int = 1) -> None:
        self.sync_delivered.inc(count)

    def update_queue_depth(self, tenant_id: str, depth: int) -> None:
        """Update queue depth for a tenant."""
        self.queue_depth.labels(tenant_id=tenant_id).set(depth)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
