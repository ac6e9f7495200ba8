"""Structured logging utilities for the compliance engine."""

from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog

from compliance_engine.core.config import LoggingConfig

_LOGGER_NAME = "compliance_engine"


def get_logger(component: Optional[str] = None) -> "structlog.stdlib.BoundLogger":
    """Return a lazily configured structlog logger bound to the engine namespace."""
    if component:
        return structlog.get_logger(_LOGGER_NAME, component=component)
    return structlog.get_logger(_LOGGER_NAME)


def ensure_stdlib_handler(level: int = logging.INFO) -> None:
    """Ensure a standard logging handler exists for the engine namespace."""
    root_logger = logging.getLogger(_LOGGER_NAME)
    if root_logger.handlers:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.setLevel(level)
    root_logger.addHandler(handler)


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Route structlog through stdlib logging with a JSON or console renderer."""
    config = config or LoggingConfig()
    level = getattr(logging, config.log_level)
    ensure_stdlib_handler(level)
    logging.getLogger(_LOGGER_NAME).setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.enable_structured_logging
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


__all__ = ["get_logger", "ensure_stdlib_handler", "configure_logging"]
