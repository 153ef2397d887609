"""
structlog setup for the tracker.

Events are snake_case names with keyword context. The driver binds ``user_id``
through contextvars for the length of a run, so every event emitted by the
reconciler and adapters during that run carries it.
"""

import logging
import sys
from typing import Optional

import structlog


def _renderer(json_output: bool):
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer(sort_keys=True)]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog through stdlib logging on stderr; stdout is kept for
    the run summaries printed by the CLI."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *_renderer(json_output),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def run_context(**values):
    """Context manager binding ``values`` to every event logged inside it."""
    return structlog.contextvars.bound_contextvars(**values)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
