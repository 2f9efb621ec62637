"""
Pydantic models for the swipe candidate feed.

Models cover:
- Listings as read from the store (goods and services offered for barter)
- The viewer's filter selection (FilterSpec)
- Durable swipe decisions
- Per-request ranking signals (featured entries, visibility boosts,
  favorite categories, account kind)
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.utils import utc_now


DEFAULT_PRICE_CEILING = 5000.0


# =============================================================================
# Enums
# =============================================================================

class ListingKind(str, Enum):
    """What a listing offers."""
    GOOD = "good"
    SERVICE = "service"


class KindFilter(str, Enum):
    """Listing-kind restriction selected by the viewer."""
    ALL = "all"
    GOOD = "good"
    SERVICE = "service"

    def as_kind(self) -> Optional[ListingKind]:
        if self is KindFilter.ALL:
            return None
        return ListingKind(self.value)


class SortOrder(str, Enum):
    """Residual ordering applied by the store before ranking."""
    NEWEST = "newest"
    OLDEST = "oldest"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"


class SwipeAction(str, Enum):
    """A viewer's decision on a listing."""
    LIKE = "like"
    DISLIKE = "dislike"


class AccountKind(str, Enum):
    """Viewer account type; drives the account-kind affinity tier."""
    PERSON = "person"
    COMPANY = "company"

    @property
    def preferred_kind(self) -> ListingKind:
        return ListingKind.SERVICE if self is AccountKind.COMPANY else ListingKind.GOOD


class ListingStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class FeedState(str, Enum):
    """Swipe session lifecycle."""
    LOADING = "loading"
    READY = "ready"
    EXHAUSTED = "exhausted"


# =============================================================================
# Listings
# =============================================================================

class OwnerProfile(BaseModel):
    """Public profile bits shown on the swipe card."""
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


class Listing(BaseModel):
    """A tradeable good or service. Read-only to the feed."""
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    kind: ListingKind = ListingKind.GOOD
    category: str
    title: str = ""
    description: Optional[str] = None
    condition: Optional[str] = None  # None for services
    price: float = 0.0
    additional_price: Optional[float] = None
    location: Optional[str] = None
    images: Tuple[str, ...] = ()
    status: str = ListingStatus.ACTIVE.value
    created_at: datetime = Field(default_factory=utc_now)
    owner_profile: Optional[OwnerProfile] = None

    @property
    def is_active(self) -> bool:
        return self.status == ListingStatus.ACTIVE.value


# =============================================================================
# Filter Selection
# =============================================================================

class FilterSpec(BaseModel):
    """
    Normalized query the viewer has selected.

    Immutable for the lifetime of one feed snapshot; changing any field
    means building a new FilterSpec and a new snapshot. Price bounds at
    their defaults (0 and the ceiling) are treated as unset.
    """
    model_config = ConfigDict(frozen=True)

    location: Optional[str] = None
    min_price: float = Field(default=0.0, ge=0)
    max_price: float = Field(default=DEFAULT_PRICE_CEILING, ge=0)
    price_ceiling: float = Field(default=DEFAULT_PRICE_CEILING, ge=0)
    categories: Tuple[str, ...] = ()
    conditions: Tuple[str, ...] = ()
    kind: KindFilter = KindFilter.ALL
    query: str = ""
    sort_order: SortOrder = SortOrder.NEWEST

    @field_validator("categories", "conditions", mode="before")
    @classmethod
    def _dedupe_terms(cls, v):
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        seen: List[str] = []
        for term in v:
            term = (term or "").strip()
            if term and term not in seen:
                seen.append(term)
        return tuple(seen)

    @field_validator("location", mode="before")
    @classmethod
    def _blank_location_is_unset(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("query", mode="before")
    @classmethod
    def _strip_query(cls, v):
        return (v or "").strip()

    # -------------------------------------------------------------------------
    # Restriction checks (these guard the personalization tiers)
    # -------------------------------------------------------------------------

    @property
    def has_category_restriction(self) -> bool:
        return len(self.categories) > 0

    @property
    def has_kind_restriction(self) -> bool:
        return self.kind is not KindFilter.ALL

    @property
    def is_default_feed(self) -> bool:
        """No explicit category and no explicit kind: the general feed."""
        return not self.has_category_restriction and not self.has_kind_restriction

    @property
    def min_price_is_set(self) -> bool:
        return self.min_price > 0

    @property
    def max_price_is_set(self) -> bool:
        return self.max_price < self.price_ceiling

    def relaxed(self) -> "FilterSpec":
        """
        Copy used by the fallback query: category, condition and free-text
        terms dropped; kind, price band and location kept; newest first.
        """
        return self.model_copy(update={
            "categories": (),
            "conditions": (),
            "query": "",
            "sort_order": SortOrder.NEWEST,
        })

    def fingerprint(self) -> str:
        """Short stable hash identifying this selection (for logs and staleness checks)."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.md5(payload.encode()).hexdigest()[:16]


# =============================================================================
# Swipe Decisions
# =============================================================================

class SwipeDecision(BaseModel):
    """
    One durable row in the swipe ledger.

    At most one decision exists per (viewer_id, listing_id); undo deletes
    the row instead of superseding it.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    viewer_id: str
    listing_id: str
    action: SwipeAction
    counter_offer_listing_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Ranking Signals
# =============================================================================

class FeaturedEntry(BaseModel):
    """Paid or admin-granted priority on a single listing."""
    model_config = ConfigDict(frozen=True)

    listing_id: str
    priority: int = 1
    expires_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


class RankingContext(BaseModel):
    """
    Immutable per-request ranking signals.

    A missing entry for a listing or owner always means "no boost".
    `boosts_complete` is False when the boost fetch timed out and every
    owner is being ranked with the neutral multiplier.
    """
    model_config = ConfigDict(frozen=True)

    featured: Dict[str, FeaturedEntry] = Field(default_factory=dict)
    boosts: Dict[str, float] = Field(default_factory=dict)
    favorite_categories: Tuple[str, ...] = ()
    account_kind: AccountKind = AccountKind.PERSON
    boosts_complete: bool = True
    built_at: datetime = Field(default_factory=utc_now)

    def featured_priority(self, listing_id: str, now: datetime) -> Optional[int]:
        """Priority of a live featured entry, or None (absent or expired)."""
        entry = self.featured.get(listing_id)
        if entry is None or not entry.is_live(now):
            return None
        return entry.priority

    def boost_for(self, owner_id: str) -> float:
        boost = self.boosts.get(owner_id)
        if boost is None or boost < 1:
            return 1.0
        return float(boost)

    def favorite_index(self, category: str) -> Optional[int]:
        try:
            return self.favorite_categories.index(category)
        except ValueError:
            return None

    def with_boosts(self, boosts: Dict[str, float]) -> "RankingContext":
        """Copy with a late-arriving boost map filled in."""
        return self.model_copy(update={"boosts": dict(boosts), "boosts_complete": True})


# =============================================================================
# API Schemas
# =============================================================================

class FilterRequest(BaseModel):
    """Filter selection as posted by the client."""
    location: Optional[str] = None
    min_price: float = Field(default=0.0, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    categories: List[str] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)
    kind: KindFilter = KindFilter.ALL
    query: str = ""
    sort_order: SortOrder = SortOrder.NEWEST

    def to_filter_spec(self, price_ceiling: float) -> FilterSpec:
        return FilterSpec(
            location=self.location,
            min_price=self.min_price,
            max_price=self.max_price if self.max_price is not None else price_ceiling,
            price_ceiling=price_ceiling,
            categories=self.categories,
            conditions=self.conditions,
            kind=self.kind,
            query=self.query,
            sort_order=self.sort_order,
        )


class FeedStatus(BaseModel):
    """What the swipe screen needs to render."""
    feed_id: str
    state: FeedState
    current: Optional[Listing] = None
    has_more: bool = False
    showing_fallback: bool = False
    can_undo: bool = False
    is_stale: bool = False
    remaining: int = 0
    total: int = 0
