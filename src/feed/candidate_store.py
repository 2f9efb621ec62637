"""
Candidate Store

Translates a FilterSpec + viewer into a bounded candidate fetch.

Query construction:
1. Always: not the viewer's own listings, status = active
2. Category IN (...) only when the viewer picked categories
3. Kind only when restricted (goods are stored as product_type='product')
4. Location exact match; price as an inclusive range where the default
   bounds (0 and the ceiling) are left out of the predicate entirely
5. Swipe-history exclusion pushed to the store when the list is small,
   always re-applied in Python
6. ORDER BY the viewer's sort order, LIMIT the configured bound

Free-text search is NOT pushed to the store (no full-text index on
products); it runs as a case-insensitive substring post-filter over
title and description after the fetch.

Two backends:
1. SupabaseCandidateStore: hosted Postgres via PostgREST (production)
2. InMemoryCandidateStore: same predicates in Python (development/testing)
"""

import asyncio
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

import httpx
from postgrest.exceptions import APIError

from core.logging import get_logger
from core.utils import parse_timestamp
from feed.errors import TransientFetchError
from feed.models import (
    FilterSpec,
    Listing,
    ListingKind,
    ListingStatus,
    OwnerProfile,
    SortOrder,
)


logger = get_logger(__name__)


# =============================================================================
# Column Mapping
# =============================================================================

LISTINGS_TABLE = "products"
PROFILES_TABLE = "profiles"

# SortOrder -> (column, descending)
SORT_COLUMNS: Dict[SortOrder, Tuple[str, bool]] = {
    SortOrder.NEWEST: ("created_at", True),
    SortOrder.OLDEST: ("created_at", False),
    SortOrder.PRICE_ASC: ("estimated_value", False),
    SortOrder.PRICE_DESC: ("estimated_value", True),
}

KIND_COLUMN_VALUES: Dict[ListingKind, str] = {
    ListingKind.GOOD: "product",
    ListingKind.SERVICE: "service",
}


def listing_from_row(row: Dict[str, Any]) -> Listing:
    """Convert a `products` row into a Listing."""
    kind = ListingKind.SERVICE if row.get("product_type") == "service" else ListingKind.GOOD
    additional = row.get("additional_value")
    created_at = parse_timestamp(row.get("created_at"))
    fields: Dict[str, Any] = dict(
        id=str(row["id"]),
        owner_id=str(row["user_id"]),
        kind=kind,
        category=row.get("category") or "",
        title=row.get("title") or "",
        description=row.get("description"),
        condition=row.get("condition"),
        price=float(row.get("estimated_value") or 0),
        additional_price=float(additional) if additional is not None else None,
        location=row.get("location"),
        images=tuple(row.get("images") or ()),
        status=row.get("status") or ListingStatus.ACTIVE.value,
    )
    if created_at is not None:
        fields["created_at"] = created_at
    return Listing(**fields)


# =============================================================================
# Shared Predicates
# =============================================================================

def matches_text_query(listing: Listing, query: str) -> bool:
    """Case-insensitive substring match over title and description."""
    if not query:
        return True
    needle = query.lower()
    if needle in (listing.title or "").lower():
        return True
    return needle in (listing.description or "").lower()


def apply_text_query(listings: List[Listing], query: str) -> List[Listing]:
    if not query:
        return listings
    return [l for l in listings if matches_text_query(l, query)]


def exclude_decided(listings: Iterable[Listing], exclude_ids: Optional[Set[str]]) -> List[Listing]:
    if not exclude_ids:
        return list(listings)
    return [l for l in listings if l.id not in exclude_ids]


def matches_hard_filters(listing: Listing, spec: FilterSpec, viewer_id: str) -> bool:
    """Store-side predicate (everything except free text), evaluated in Python."""
    if listing.owner_id == viewer_id or not listing.is_active:
        return False
    if spec.has_category_restriction and listing.category not in spec.categories:
        return False
    kind = spec.kind.as_kind()
    if kind is not None and listing.kind is not kind:
        return False
    if spec.location and listing.location != spec.location:
        return False
    if spec.min_price_is_set and listing.price < spec.min_price:
        return False
    if spec.max_price_is_set and listing.price > spec.max_price:
        return False
    if spec.conditions and listing.condition not in spec.conditions:
        return False
    return True


def sort_listings(listings: List[Listing], sort_order: SortOrder) -> List[Listing]:
    """Python equivalent of the store ORDER BY."""
    if sort_order in (SortOrder.PRICE_ASC, SortOrder.PRICE_DESC):
        return sorted(listings, key=lambda l: l.price, reverse=sort_order is SortOrder.PRICE_DESC)
    return sorted(listings, key=lambda l: l.created_at, reverse=sort_order is SortOrder.NEWEST)


# =============================================================================
# Store Interface
# =============================================================================

class CandidateStore(Protocol):
    async def fetch_candidates(
        self,
        spec: FilterSpec,
        viewer_id: str,
        exclude_ids: Optional[Set[str]] = None,
        limit: int = 200,
    ) -> List[Listing]:
        ...


# =============================================================================
# Supabase Backend
# =============================================================================

class SupabaseCandidateStore:
    """
    Candidate fetches against the hosted `products` table.

    The supabase client is synchronous; each request runs in a worker
    thread so the awaiting task stays cancelable.

    Filtering that cannot be pushed into the query (free text, exclusion
    lists over `max_store_exclusions`) happens after the fetch, so those
    fetches page through the ordered result until `limit` rows survive or
    the table runs dry, up to `max_pages` pages.
    """

    def __init__(self, client: Any, max_store_exclusions: int = 500, max_pages: int = 10):
        self.client = client
        self.max_store_exclusions = max_store_exclusions
        self.max_pages = max(1, max_pages)

    def pushes_exclusions(self, exclude_ids: Optional[Set[str]]) -> bool:
        return bool(exclude_ids) and len(exclude_ids) <= self.max_store_exclusions

    def build_query(
        self,
        spec: FilterSpec,
        viewer_id: str,
        exclude_ids: Optional[Set[str]] = None,
        limit: int = 200,
        offset: int = 0,
    ):
        """Build the PostgREST query for a FilterSpec (free text excluded)."""
        query = (
            self.client.table(LISTINGS_TABLE)
            .select("*")
            .neq("user_id", viewer_id)
            .eq("status", ListingStatus.ACTIVE.value)
        )

        if spec.has_category_restriction:
            query = query.in_("category", list(spec.categories))

        kind = spec.kind.as_kind()
        if kind is not None:
            query = query.eq("product_type", KIND_COLUMN_VALUES[kind])

        if spec.location:
            query = query.eq("location", spec.location)
        if spec.min_price_is_set:
            query = query.gte("estimated_value", spec.min_price)
        if spec.max_price_is_set:
            query = query.lte("estimated_value", spec.max_price)

        if spec.conditions:
            query = query.in_("condition", list(spec.conditions))

        if self.pushes_exclusions(exclude_ids):
            query = query.not_.in_("id", sorted(exclude_ids))

        column, desc = SORT_COLUMNS[spec.sort_order]
        query = query.order(column, desc=desc)
        if offset:
            return query.range(offset, offset + limit - 1)
        return query.limit(limit)

    async def fetch_candidates(
        self,
        spec: FilterSpec,
        viewer_id: str,
        exclude_ids: Optional[Set[str]] = None,
        limit: int = 200,
    ) -> List[Listing]:
        post_filtered = bool(spec.query) or (bool(exclude_ids) and not self.pushes_exclusions(exclude_ids))
        max_pages = self.max_pages if post_filtered else 1

        listings: List[Listing] = []
        seen: Set[str] = set()
        fetched = 0
        pages = 0
        while pages < max_pages and len(listings) < limit:
            query = self.build_query(spec, viewer_id, exclude_ids, limit, offset=pages * limit)
            result = await self._execute(query, "candidate fetch")
            rows = result.data or []
            pages += 1
            fetched += len(rows)

            page: List[Listing] = []
            for row in rows:
                try:
                    listing = listing_from_row(row)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("Skipping malformed listing row", row_id=row.get("id"), error=str(e))
                    continue
                if listing.id not in seen:
                    seen.add(listing.id)
                    page.append(listing)

            page = apply_text_query(exclude_decided(page, exclude_ids), spec.query)
            listings.extend(page)
            if len(rows) < limit:
                break

        listings = listings[:limit]

        logger.debug(
            "Candidates fetched",
            viewer_id=viewer_id,
            filters=spec.fingerprint(),
            pages=pages,
            fetched=fetched,
            returned=len(listings),
        )

        return await self._attach_owner_profiles(listings)

    async def _attach_owner_profiles(self, listings: List[Listing]) -> List[Listing]:
        """Batch-load display name / avatar for each distinct owner."""
        if not listings:
            return listings
        owner_ids = sorted({l.owner_id for l in listings})
        query = (
            self.client.table(PROFILES_TABLE)
            .select("user_id, display_name, avatar_url")
            .in_("user_id", owner_ids)
        )
        try:
            result = await self._execute(query, "owner profile fetch")
        except TransientFetchError as e:
            # Cards render without owner info rather than failing the feed
            logger.warning("Owner profiles unavailable", error=str(e))
            return listings

        profiles = {
            str(p["user_id"]): OwnerProfile(
                display_name=p.get("display_name"),
                avatar_url=p.get("avatar_url"),
            )
            for p in (result.data or [])
            if p.get("user_id")
        }
        return [
            l.model_copy(update={"owner_profile": profiles.get(l.owner_id)})
            for l in listings
        ]

    async def _execute(self, query: Any, what: str):
        try:
            return await asyncio.to_thread(query.execute)
        except (APIError, httpx.HTTPError, OSError) as e:
            raise TransientFetchError(f"{what} failed: {e}") from e


# =============================================================================
# In-Memory Backend
# =============================================================================

class InMemoryCandidateStore:
    """
    Candidate store over a Python list.

    Applies exactly the same predicates as the Supabase query so engine
    behaviour can be exercised without a database.
    """

    def __init__(self, listings: Optional[Iterable[Listing]] = None):
        self._listings: Dict[str, Listing] = {}
        self._lock = Lock()
        self.fetch_count = 0
        for listing in listings or ():
            self.add(listing)

    def add(self, listing: Listing) -> None:
        with self._lock:
            self._listings[listing.id] = listing

    async def fetch_candidates(
        self,
        spec: FilterSpec,
        viewer_id: str,
        exclude_ids: Optional[Set[str]] = None,
        limit: int = 200,
    ) -> List[Listing]:
        with self._lock:
            self.fetch_count += 1
            pool = [
                l for l in self._listings.values()
                if matches_hard_filters(l, spec, viewer_id)
            ]
        pool = exclude_decided(pool, exclude_ids)
        pool = sort_listings(pool, spec.sort_order)[:limit]
        return apply_text_query(pool, spec.query)
