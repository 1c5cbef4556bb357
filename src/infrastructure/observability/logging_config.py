"""
Structured logging configuration using structlog.

Analytics services log through structlog with bound item/branch/vendor
context; adapters log through stdlib ``logging``. Both end up on the same
root handler, rendered as JSON lines (or a console layout for local runs).
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

SERVICE_NAME: str = "procurement-analytics"


def add_service_name(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Inject the service name into every log event."""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def drop_unset_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Remove ``None`` context values such as an absent ``branch_id``."""
    return {key: value for key, value in event_dict.items() if value is not None}


def setup_logging(log_level: str = "INFO", *, json_output: bool = True) -> None:
    """
    Configure structlog and the stdlib logging bridge.

    Call once at process start (worker boot or container creation).

    Parameters
    ----------
    log_level:
        Minimum severity as a string (``DEBUG``, ``INFO``, ...).
    json_output:
        Render JSON lines when true, a human-readable console layout otherwise.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_name,  # type: ignore[list-item]
        drop_unset_context,  # type: ignore[list-item]
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """
    Return a structlog logger for *name*, optionally pre-bound with context::

        log = get_logger("analytics.jobs", job="analyze-purchase-patterns")
        log.info("Batch finished", processed=50)
    """
    logger = structlog.get_logger(name)
    return logger.bind(**context) if context else logger  # type: ignore[no-any-return]
