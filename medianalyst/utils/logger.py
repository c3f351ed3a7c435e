"""
Structured logging for MediAnalyst.

structlog renders JSON lines in production and coloured console output
in debug mode. Values bound with ``log_context`` (a wizard run id, a
request id) are merged into every line logged inside the block, so
engine and chat logs can be traced back to the run that caused them.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.types import Processor

from medianalyst.config import settings

_SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def _renderers(json_format: bool) -> list[Processor]:
    if json_format:
        # Non-ASCII text is written as-is
        return [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    return [structlog.dev.ConsoleRenderer(colors=True)]


def configure_logging(
    log_level: Optional[str] = None,
    json_format: bool = True
) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        log_level: Override log level (defaults to settings.log_level)
        json_format: JSON lines when True, console output otherwise
    """
    numeric_level = logging.getLevelName((log_level or settings.log_level).upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=_SHARED_PROCESSORS + _renderers(json_format),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn and httpx log through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )


def get_logger(name: str = "medianalyst") -> structlog.BoundLogger:
    """
    Get a structured logger tagged with a component name.

    Args:
        name: Component emitting the logs, e.g. "analysis_pipeline"
    """
    # Keyword arguments become initial context; the logger stays lazy so a
    # later configure_logging() still applies to it
    return structlog.get_logger(component=name)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind values to every log line emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


configure_logging(
    log_level=settings.log_level,
    json_format=not settings.debug
)
