"""
Core module for cross-cutting concerns.

This module provides:
- Structured logging configuration
- Request tracing middleware
- Authentication utilities
- Common utilities
"""

from core.logging import configure_logging, get_logger
from core.auth import require_auth, AuthenticatedViewer
from core.utils import parse_timestamp, utc_now

__all__ = [
    "configure_logging",
    "get_logger",
    "require_auth",
    "AuthenticatedViewer",
    "parse_timestamp",
    "utc_now",
]
