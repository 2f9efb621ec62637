"""
Tiered Ranker for the Swipe Feed.

Orders a candidate slice for presentation. Tiers apply in strict
precedence; each one only breaks ties left by the tiers above it:

1. Favorite-category affinity  (only without an explicit category filter)
   favorites first, lower priority index first, the rest keep their order
2. Featured priority            (only on the default feed)
   live featured entries first, higher priority first, expired = unfeatured
3. Premium visibility boost     (only on the default feed)
   higher owner multiplier first, missing owner = 1
4. Account-kind affinity        (only on the default feed)
   companies see services first, persons see goods first
5. Residual: the store's sort order (Python's sort is stable)

Tiers 2-4 demote, they never exclude. Tiers 1 and 4 are soft
personalization and must never override an explicit category or kind the
viewer picked, hence the guards.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from feed.models import FilterSpec, Listing, RankingContext
from core.utils import utc_now


@dataclass(frozen=True)
class ActiveTiers:
    """Which personalization tiers a FilterSpec allows."""
    favorite_affinity: bool
    featured: bool
    visibility_boost: bool
    account_kind: bool

    @classmethod
    def for_filter(cls, spec: FilterSpec) -> "ActiveTiers":
        default_feed = spec.is_default_feed
        return cls(
            favorite_affinity=not spec.has_category_restriction,
            featured=default_feed,
            visibility_boost=default_feed,
            # Same guard as featured/boost: both category and kind at defaults
            account_kind=default_feed,
        )

    @property
    def any(self) -> bool:
        return self.favorite_affinity or self.featured or self.visibility_boost or self.account_kind


RankKey = Tuple[Tuple[int, int], Tuple[int, int], float, int]


def dedupe_listings(listings: List[Listing]) -> List[Listing]:
    """Drop repeated listing ids, keeping the first occurrence."""
    seen = set()
    unique: List[Listing] = []
    for listing in listings:
        if listing.id in seen:
            continue
        seen.add(listing.id)
        unique.append(listing)
    return unique


class FeedRanker:
    """
    Pure ranking function over (candidates, FilterSpec, RankingContext).

    No I/O, no mutation of inputs, never raises for well-formed listings.
    """

    def rank(
        self,
        candidates: List[Listing],
        spec: FilterSpec,
        context: RankingContext,
        now: Optional[datetime] = None,
    ) -> List[Listing]:
        unique = dedupe_listings(candidates)
        tiers = ActiveTiers.for_filter(spec)
        if not tiers.any:
            return unique
        return sorted(unique, key=self.key_function(tiers, context, now or utc_now()))

    def key_function(
        self,
        tiers: ActiveTiers,
        context: RankingContext,
        now: datetime,
    ) -> Callable[[Listing], RankKey]:
        use_favorites = tiers.favorite_affinity and bool(context.favorite_categories)
        preferred_kind = context.account_kind.preferred_kind

        def key(listing: Listing) -> RankKey:
            # Tier 1
            favorite = (0, 0)
            if use_favorites:
                index = context.favorite_index(listing.category)
                favorite = (0, index) if index is not None else (1, 0)

            # Tier 2
            featured = (0, 0)
            if tiers.featured:
                priority = context.featured_priority(listing.id, now)
                featured = (0, -priority) if priority is not None else (1, 0)

            # Tier 3
            boost = -context.boost_for(listing.owner_id) if tiers.visibility_boost else 0.0

            # Tier 4
            kind = 0
            if tiers.account_kind:
                kind = 0 if listing.kind is preferred_kind else 1

            return (favorite, featured, boost, kind)

        return key
