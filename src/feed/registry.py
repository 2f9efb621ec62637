"""
Feed session registry.

Holds the live FeedEngine for each (viewer, feed id) pair between HTTP
requests. A viewer may have several feeds open at once (two tabs); each
gets its own cursor, while the swipe ledger underneath stays shared.

In production this would need sticky routing or an external store for
horizontal scaling; a single process keeps everything in memory.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from core.logging import LoggerMixin
from core.utils import utc_now
from feed.engine import FeedEngine


FeedKey = Tuple[str, str]


@dataclass
class FeedEntry:
    """A registered engine with access metadata."""

    engine: FeedEngine
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    ttl_seconds: int = 3600

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Idle longer than the TTL."""
        now = now or utc_now()
        return now > self.updated_at + timedelta(seconds=self.ttl_seconds)

    def touch(self) -> None:
        self.updated_at = utc_now()


class FeedSessionRegistry(LoggerMixin):
    """
    Thread-safe in-memory registry of open feeds.

    Usage:
        registry = FeedSessionRegistry(ttl_seconds=3600)
        registry.register(engine)
        engine = registry.get(viewer_id, feed_id)
        registry.remove(viewer_id, feed_id)
    """

    def __init__(self, ttl_seconds: int = 3600):
        self._ttl_seconds = ttl_seconds
        self._lock = threading.RLock()
        self._feeds: Dict[FeedKey, FeedEntry] = {}

    def register(self, engine: FeedEngine) -> None:
        """Add a feed; idle feeds are swept first."""
        self.clear_expired()
        key = (engine.viewer_id, engine.feed_id)
        with self._lock:
            self._feeds[key] = FeedEntry(engine=engine, ttl_seconds=self._ttl_seconds)
        self.logger.debug("Feed registered", viewer_id=engine.viewer_id, feed_id=engine.feed_id)

    def get(self, viewer_id: str, feed_id: str) -> Optional[FeedEngine]:
        """
        Look up a viewer's feed.

        Feeds are keyed by viewer, so one viewer can never reach another's
        cursor by guessing a feed id.
        """
        with self._lock:
            entry = self._feeds.get((viewer_id, feed_id))
            if entry is None:
                return None
            if entry.is_expired():
                del self._feeds[(viewer_id, feed_id)]
                return None
            entry.touch()
            return entry.engine

    def remove(self, viewer_id: str, feed_id: str) -> Optional[FeedEngine]:
        with self._lock:
            entry = self._feeds.pop((viewer_id, feed_id), None)
        return entry.engine if entry is not None else None

    def feeds_for(self, viewer_id: str) -> List[FeedEngine]:
        with self._lock:
            return [
                entry.engine
                for (vid, _), entry in self._feeds.items()
                if vid == viewer_id and not entry.is_expired()
            ]

    def clear_expired(self) -> int:
        """
        Drop feeds idle past the TTL.

        Returns:
            Number of feeds cleared
        """
        with self._lock:
            expired = [key for key, entry in self._feeds.items() if entry.is_expired()]
            for key in expired:
                del self._feeds[key]

        if expired:
            self.logger.info("Cleared expired feeds", count=len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._feeds.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._feeds)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "feeds": len(self._feeds),
                "viewers": len({vid for vid, _ in self._feeds}),
            }


_registry: Optional[FeedSessionRegistry] = None


def get_feed_registry() -> FeedSessionRegistry:
    """Get the process-wide feed registry singleton."""
    global _registry
    if _registry is None:
        from config.settings import get_settings
        _registry = FeedSessionRegistry(ttl_seconds=get_settings().feed_session_ttl_seconds)
    return _registry
