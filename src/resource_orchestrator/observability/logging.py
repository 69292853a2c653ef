"""structlog configuration for the CLI and library users."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from resource_orchestrator.config.models import LoggingConfig


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Install structlog processors: console output, or JSON lines."""
    cfg = config or LoggingConfig()
    level = logging.getLevelName(cfg.level.upper())

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if cfg.json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
