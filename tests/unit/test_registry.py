"""
Tests for the in-memory feed session registry.
"""

from datetime import timedelta

import pytest

from feed.candidate_store import InMemoryCandidateStore
from feed.engine import FeedEngine
from feed.registry import FeedSessionRegistry


@pytest.fixture
def engine_for(memory_ledger, context_provider):
    def build(viewer_id, feed_id=None):
        return FeedEngine(
            viewer_id,
            store=InMemoryCandidateStore(),
            context_provider=context_provider,
            ledger=memory_ledger,
            feed_id=feed_id,
        )
    return build


class TestFeedSessionRegistry:

    def test_register_and_get(self, engine_for):
        registry = FeedSessionRegistry()
        engine = engine_for("v1", "feed_a")
        registry.register(engine)

        assert registry.get("v1", "feed_a") is engine
        assert len(registry) == 1

    def test_feeds_are_scoped_to_their_viewer(self, engine_for):
        registry = FeedSessionRegistry()
        registry.register(engine_for("v1", "feed_a"))

        assert registry.get("v2", "feed_a") is None

    def test_two_tabs_get_independent_feeds(self, engine_for):
        registry = FeedSessionRegistry()
        tab1 = engine_for("v1")
        tab2 = engine_for("v1")
        registry.register(tab1)
        registry.register(tab2)

        assert tab1.feed_id != tab2.feed_id
        assert tab1.feed_id.startswith("feed_")
        assert set(registry.feeds_for("v1")) == {tab1, tab2}
        assert registry.get_stats() == {"feeds": 2, "viewers": 1}

    def test_idle_feeds_expire(self, engine_for):
        registry = FeedSessionRegistry(ttl_seconds=60)
        registry.register(engine_for("v1", "old"))
        registry.register(engine_for("v1", "fresh"))
        registry._feeds[("v1", "old")].updated_at -= timedelta(seconds=120)

        assert registry.clear_expired() == 1
        assert registry.get("v1", "old") is None
        assert registry.get("v1", "fresh") is not None

    def test_expired_feed_dropped_on_lookup(self, engine_for):
        registry = FeedSessionRegistry(ttl_seconds=60)
        registry.register(engine_for("v1", "old"))
        registry._feeds[("v1", "old")].updated_at -= timedelta(seconds=61)

        assert registry.get("v1", "old") is None
        assert len(registry) == 0

    def test_remove(self, engine_for):
        registry = FeedSessionRegistry()
        engine = engine_for("v1", "feed_a")
        registry.register(engine)

        assert registry.remove("v1", "feed_a") is engine
        assert registry.remove("v1", "feed_a") is None

    def test_register_sweeps_idle_feeds(self, engine_for):
        registry = FeedSessionRegistry(ttl_seconds=60)
        registry.register(engine_for("v1", "old"))
        registry._feeds[("v1", "old")].updated_at -= timedelta(seconds=120)

        registry.register(engine_for("v2", "new"))

        assert ("v1", "old") not in registry._feeds
        assert len(registry) == 1
        assert registry.get_stats() == {"feeds": 1, "viewers": 1}
