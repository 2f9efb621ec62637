"""
Request tracing middleware.

Every request gets a short request id; requests against a feed also get
that feed's id. Both are bound into the structlog context, so the request
line and everything logged while serving it can be joined per feed.
"""

import re
import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import bind_context, clear_context, get_logger


logger = get_logger(__name__)

FEED_PATH = re.compile(r"^/api/feed/(?P<feed_id>[^/]+)")
QUIET_PATHS = frozenset({"/live", "/ready", "/health"})


def feed_id_from_path(path: str) -> Optional[str]:
    """`/api/feed/<id>/...` -> `<id>`; the open endpoint has no id yet."""
    match = FEED_PATH.match(path)
    if match is None or match.group("feed_id") == "open":
        return None
    return match.group("feed_id")


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """
    Binds request_id (X-Request-ID, generated when absent), method, path
    and feed_id, and logs one line per request with its duration. Health-check
    endpoints log at debug level.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        path = request.url.path

        clear_context()
        bind_context(request_id=request_id, method=request.method, path=path)
        feed_id = feed_id_from_path(path)
        if feed_id is not None:
            bind_context(feed_id=feed_id)

        log = logger.debug if path in QUIET_PATHS else logger.info
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            clear_context()
            raise

        if response.status_code >= 500:
            log = logger.warning
        log(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        clear_context()
        return response
