"""
Logging, Prometheus metrics and OpenTelemetry tracing shared by the api,
dispatcher and reaper processes.
"""

from jobsync.observability.logging import bind_context, setup_logging
from jobsync.observability.metrics import MetricsCollector, get_metrics, setup_metrics
from jobsync.observability.tracing import (
    get_tracer,
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
    shutdown_tracing,
)

__all__ = [
    "MetricsCollector",
    "bind_context",
    "get_metrics",
    "get_tracer",
    "instrument_fastapi",
    "instrument_sqlalchemy",
    "setup_logging",
    "setup_metrics",
    "setup_tracing",
    "shutdown_tracing",
]
