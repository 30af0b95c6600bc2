"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from .settings import settings

# Identifier of the current pipeline run (set by entry points)
run_id_ctx: ContextVar[str] = ContextVar("run_id", default="")


def add_run_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the pipeline run id to every log entry when one is active."""
    run_id = run_id_ctx.get("")
    if run_id:
        event_dict["run_id"] = run_id
    return event_dict


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = "chs-spots-pipeline"
    event_dict["environment"] = settings.ENVIRONMENT
    return event_dict


def drop_color_message_key(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Remove the 'color_message' key from the event dict.

    Structlog's ConsoleRenderer adds a 'color_message' key which is redundant in JSON output.
    """
    event_dict.pop("color_message", None)
    return event_dict


def configure_structlog(json_logs: bool | None = None, level: int = logging.INFO) -> None:
    """
    Configure structlog for pipeline scripts.

    Args:
        json_logs: Force JSON (True) or console (False) output. Defaults to JSON unless
                   DEBUG is set, or when LOG_JSON is set explicitly.
        level: Root log level for the standard library bridge.
    """
    if json_logs is None:
        json_logs = settings.LOG_JSON or not settings.DEBUG

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_run_id,
        add_app_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
    ]
    if json_logs:
        processors: list[Processor] = [
            *shared,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            drop_color_message_key,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    # Set log levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("spot_created", venue_id=venue_id, type=spot_type)
    """
    return structlog.get_logger(name)


__all__ = ["configure_structlog", "get_logger", "run_id_ctx"]
