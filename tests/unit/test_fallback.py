"""
Tests for the fallback widener.
"""

import asyncio

import pytest

from feed.candidate_store import InMemoryCandidateStore
from feed.fallback import FallbackWidener
from feed.models import FilterSpec, KindFilter, SortOrder


@pytest.fixture
def crowded_store(listing_factory):
    """30 good listings in 'books' plus a few that differ by kind/location/price."""
    listings = [
        listing_factory(f"book-{i:02d}", category="books", age_minutes=i, location="Santiago")
        for i in range(30)
    ]
    listings += [
        listing_factory("svc", kind="service", category="classes", location="Santiago"),
        listing_factory("elsewhere", category="books", location="Concepción"),
        listing_factory("too-expensive", category="books", price=4000, location="Santiago"),
    ]
    return InMemoryCandidateStore(listings)


class TestShouldWiden:

    def test_empty_with_category_restriction(self):
        assert FallbackWidener.should_widen([], FilterSpec(categories=["electronics"]))

    def test_empty_with_kind_restriction(self):
        assert FallbackWidener.should_widen([], FilterSpec(kind=KindFilter.GOOD))

    def test_empty_default_feed_is_just_exhausted(self):
        assert not FallbackWidener.should_widen([], FilterSpec())

    def test_not_empty(self, listing_factory):
        assert not FallbackWidener.should_widen([listing_factory("a")], FilterSpec(categories=["x"]))


class TestWiden:

    def test_relaxed_query_keeps_kind_price_location(self, crowded_store, viewer_id):
        widener = FallbackWidener(crowded_store, max_count=50)
        spec = FilterSpec(
            categories=["electronics"],
            kind=KindFilter.GOOD,
            location="Santiago",
            max_price=1000,
            query="nothing matches this",
            sort_order=SortOrder.PRICE_DESC,
        )

        batch = asyncio.run(widener.widen(spec, viewer_id))

        found = {l.id for l in batch.listings}
        assert batch.is_fallback
        assert "svc" not in found
        assert "elsewhere" not in found
        assert "too-expensive" not in found
        assert len(found) == 30

    def test_bounded_to_max_count_newest_first(self, crowded_store, viewer_id):
        widener = FallbackWidener(crowded_store, max_count=20)

        batch = asyncio.run(widener.widen(FilterSpec(categories=["electronics"]), viewer_id))

        assert len(batch.listings) == 20
        created = [l.created_at for l in batch.listings]
        assert created == sorted(created, reverse=True)

    def test_never_returns_decided_listings(self, crowded_store, viewer_id):
        widener = FallbackWidener(crowded_store)
        decided = {f"book-{i:02d}" for i in range(10)}

        batch = asyncio.run(widener.widen(FilterSpec(categories=["electronics"]), viewer_id, exclude_ids=decided))

        assert not decided & {l.id for l in batch.listings}
        assert len(batch.listings) <= 20

    def test_still_empty_is_not_an_error(self, viewer_id):
        widener = FallbackWidener(InMemoryCandidateStore())
        batch = asyncio.run(widener.widen(FilterSpec(kind=KindFilter.SERVICE), viewer_id))
        assert batch.is_empty
        assert batch.is_fallback

    def test_max_count_must_be_positive(self):
        with pytest.raises(ValueError):
            FallbackWidener(InMemoryCandidateStore(), max_count=0)
