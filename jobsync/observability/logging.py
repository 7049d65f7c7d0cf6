"""
Structured logging setup using structlog.

All three processes (api, dispatcher, reaper) log through the standard
library; structlog renders the records, adding the process role, the bound
context (worker_id, tenant_id, ...) and the active trace ids.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

from jobsync.config import Settings, get_settings

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "redis", "websockets")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach trace_id/span_id of the recording span, if any."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _service_context(service: str, role: str):
    def add_service_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict.setdefault("service", service)
        event_dict.setdefault("role", role)
        return event_dict

    return add_service_context


def _renderers(settings: Settings) -> list[Any]:
    if settings.log_format == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def setup_logging(role: str = "api") -> None:
    """
    Configure structured logging for one jobsync process.

    Args:
        role: Process role added to every record: api, dispatcher or reaper.
    """
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _service_context(settings.otel_service_name, role),
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        # logger.info(..., extra={...}) fields
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_renderers(settings),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs: Any) -> None:
    """Bind key-value pairs to every later record in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)
