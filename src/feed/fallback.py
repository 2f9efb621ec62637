"""
Fallback Widener

Keeps the swipe screen from going blank when strict filters starve it.
Fires only when the primary list is empty AND the viewer had narrowed the
feed by category or kind. The relaxed query drops category, condition and
free-text terms but keeps kind, price band and location, is capped at a
fixed count, and is ordered by recency only: the personalization tiers
assume the default feed, so they are not applied here.
"""

from dataclasses import dataclass
from typing import AbstractSet, List, Optional

from core.logging import get_logger
from feed.candidate_store import CandidateStore, exclude_decided
from feed.models import FilterSpec, Listing
from feed.ranker import dedupe_listings


logger = get_logger(__name__)


@dataclass(frozen=True)
class CandidateBatch:
    """A ranked candidate list and whether it came from the fallback query."""
    listings: List[Listing]
    is_fallback: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.listings


class FallbackWidener:
    """Relaxed-constraint requery, bounded to `max_count` listings."""

    def __init__(self, store: CandidateStore, max_count: int = 20):
        if max_count < 1:
            raise ValueError("max_count must be positive")
        self.store = store
        self.max_count = max_count

    @staticmethod
    def should_widen(primary: List[Listing], spec: FilterSpec) -> bool:
        return not primary and (spec.has_category_restriction or spec.has_kind_restriction)

    async def widen(
        self,
        spec: FilterSpec,
        viewer_id: str,
        exclude_ids: Optional[AbstractSet[str]] = None,
    ) -> CandidateBatch:
        relaxed = spec.relaxed()
        excluded = set(exclude_ids or ())
        listings = await self.store.fetch_candidates(
            relaxed,
            viewer_id,
            exclude_ids=excluded,
            limit=self.max_count,
        )
        listings = dedupe_listings(exclude_decided(listings, excluded))
        listings.sort(key=lambda l: l.created_at, reverse=True)
        listings = listings[: self.max_count]

        logger.info(
            "Fallback feed built",
            viewer_id=viewer_id,
            filters=spec.fingerprint(),
            relaxed_filters=relaxed.fingerprint(),
            candidates=len(listings),
        )
        return CandidateBatch(listings=listings, is_fallback=True)
