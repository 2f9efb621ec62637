"""
Structured logging configuration using structlog.

Development gets a colored console renderer, production gets one JSON
object per line so feed events (fallbacks, duplicate swipes, stale
responses) can be queried by key.

Usage:
    from core.logging import configure_logging, get_logger

    configure_logging(json_logs=False)
    logger = get_logger(__name__)
    logger.info("Feed snapshot built", viewer_id="u1", candidates=42)
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor


def configure_logging(
    json_logs: bool = False,
    log_level: str = "INFO",
    include_timestamp: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        json_logs: If True, output JSON format (for production).
                   If False, output colored console format (for development).
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_timestamp: Whether to include timestamp in logs
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        ))

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    # Supabase talks through httpx; its request lines drown out feed events
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__). If None, returns root logger.
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all subsequent logs in the current context.

    The request middleware binds request_id and the feed_id taken from the
    path; the feed routes add viewer_id once the caller is authenticated.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables (end of request)."""
    structlog.contextvars.clear_contextvars()


class LoggerMixin:
    """
    Mixin class that provides a logger property named after the class.

    Subclasses override log_context() to bind identifying fields (a feed's
    viewer_id and feed_id) to every line they log.

    Usage:
        class SupabaseSwipeLedger(LoggerMixin):
            async def record_swipe(self, ...):
                self.logger.info("Swipe recorded", listing_id=listing_id)
    """

    def log_context(self) -> Dict[str, Any]:
        return {}

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        logger = get_logger(self.__class__.__name__)
        context = self.log_context()
        return logger.bind(**context) if context else logger
