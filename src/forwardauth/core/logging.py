"""structlog setup."""

from __future__ import annotations

import logging

import structlog


def setup_logging(level: str = "info", json_logs: bool = False) -> None:
    """Configure structlog for the process.

    Args:
        level: Minimum level name (debug, info, warning, error, critical).
        json_logs: Render one JSON object per line instead of console output.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
    )
