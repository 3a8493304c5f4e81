"""
Structured logging for webhook deliveries.

Console output in development, JSON everywhere else. Each entry carries
the ``trace_id``, ``call_id`` and ``tenant_id`` of the delivery it was
logged under.

Usage:
    from intake.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("lead_created", lead_id="...")
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any

import structlog

from intake.config import get_settings

trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")
call_id_var: ContextVar[str] = ContextVar("call_id", default="")
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")

_CORRELATION_VARS = (
    ("trace_id", trace_id_var),
    ("call_id", call_id_var),
    ("tenant_id", tenant_id_var),
)


def _add_correlation_ids(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    # Explicit keyword arguments win over the delivery's context.
    for key, var in _CORRELATION_VARS:
        value = var.get("")
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def generate_trace_id() -> str:
    return uuid.uuid4().hex[:12]


def setup_logging() -> None:
    """Configure structlog and route stdlib loggers (uvicorn, httpx, postgrest) through it."""
    settings = get_settings()

    shared_processors: list[structlog.types.Processor] = [
        _add_correlation_ids,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_development:
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    for noisy in ("httpx", "httpcore", "hpack", "postgrest"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
