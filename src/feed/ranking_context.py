"""
Ranking Context Provider

Builds the immutable RankingContext handed to the ranker for one request:
- featured entries (global, only non-expired rows are fetched)
- visibility boosts by owner (global, from active premium subscriptions)
- the viewer's favorite categories, in priority order
- the viewer's account kind (person/company)

Signals are cached per provider with a short TTL instead of living in
module-level state. A failing signal degrades to "no signal"; the feed
never fails because ranking metadata is missing.

The boost fetch is the slow one (it joins subscriptions to plans). It is
awaited with a timeout; when the timeout fires the context is built with
neutral boosts and the still-running fetch is returned so the caller can
re-rank once it lands.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, Tuple, TypeVar

import httpx
from postgrest.exceptions import APIError

from core.logging import LoggerMixin
from core.utils import parse_timestamp, safe_get, utc_now
from feed.candidate_store import PROFILES_TABLE
from feed.errors import TransientFetchError
from feed.models import AccountKind, FeaturedEntry, RankingContext


T = TypeVar("T")

FEATURED_TABLE = "featured_products"
SUBSCRIPTIONS_TABLE = "user_subscriptions"
FAVORITES_TABLE = "user_favorite_categories"


class RankingSignalSource(Protocol):
    async def fetch_featured_entries(self, now: datetime) -> Dict[str, FeaturedEntry]:
        ...

    async def fetch_active_boosts(self) -> Dict[str, float]:
        ...

    async def fetch_favorite_categories(self, viewer_id: str) -> List[str]:
        ...

    async def fetch_account_kind(self, viewer_id: str) -> AccountKind:
        ...


def merge_featured(entries: List[FeaturedEntry]) -> Dict[str, FeaturedEntry]:
    """One entry per listing; the highest priority wins."""
    merged: Dict[str, FeaturedEntry] = {}
    for entry in entries:
        current = merged.get(entry.listing_id)
        if current is None or entry.priority > current.priority:
            merged[entry.listing_id] = entry
    return merged


# =============================================================================
# Supabase Signals
# =============================================================================

class SupabaseRankingSignalSource:
    """Reads ranking signals from the premium / profile tables."""

    def __init__(self, client: Any):
        self.client = client

    async def fetch_featured_entries(self, now: datetime) -> Dict[str, FeaturedEntry]:
        cutoff = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        query = (
            self.client.table(FEATURED_TABLE)
            .select("product_id, priority, featured_until")
            .or_(f"featured_until.is.null,featured_until.gt.{cutoff}")
        )
        result = await self._execute(query, "featured fetch")
        entries = [
            FeaturedEntry(
                listing_id=str(row["product_id"]),
                priority=int(row.get("priority") or 0),
                expires_at=parse_timestamp(row.get("featured_until")),
            )
            for row in (result.data or [])
            if row.get("product_id")
        ]
        return merge_featured(entries)

    async def fetch_active_boosts(self) -> Dict[str, float]:
        query = (
            self.client.table(SUBSCRIPTIONS_TABLE)
            .select("user_id, plan:premium_plans(visibility_boost)")
            .eq("status", "active")
        )
        result = await self._execute(query, "visibility boost fetch")
        boosts: Dict[str, float] = {}
        for row in result.data or []:
            owner_id = row.get("user_id")
            if not owner_id:
                continue
            plan = row.get("plan")
            if isinstance(plan, list):
                plan = plan[0] if plan else None
            boost = float(safe_get(plan, "visibility_boost", default=1) or 1)
            boosts[str(owner_id)] = max(boost, boosts.get(str(owner_id), 1.0))
        return boosts

    async def fetch_favorite_categories(self, viewer_id: str) -> List[str]:
        query = (
            self.client.table(FAVORITES_TABLE)
            .select("category")
            .eq("user_id", viewer_id)
            .order("priority", desc=False)
        )
        result = await self._execute(query, "favorite category fetch")
        categories: List[str] = []
        for row in result.data or []:
            category = row.get("category")
            if category and category not in categories:
                categories.append(category)
        return categories

    async def fetch_account_kind(self, viewer_id: str) -> AccountKind:
        query = (
            self.client.table(PROFILES_TABLE)
            .select("user_type")
            .eq("user_id", viewer_id)
            .limit(1)
        )
        result = await self._execute(query, "account kind fetch")
        if not result.data:
            return AccountKind.PERSON
        try:
            return AccountKind(result.data[0].get("user_type") or AccountKind.PERSON.value)
        except ValueError:
            return AccountKind.PERSON

    async def _execute(self, query: Any, what: str):
        try:
            return await asyncio.to_thread(query.execute)
        except (APIError, httpx.HTTPError, OSError) as e:
            raise TransientFetchError(f"{what} failed: {e}") from e


# =============================================================================
# In-Memory Signals
# =============================================================================

class InMemoryRankingSignalSource:
    """Ranking signals held in dicts (development/testing)."""

    def __init__(
        self,
        featured: Optional[List[FeaturedEntry]] = None,
        boosts: Optional[Dict[str, float]] = None,
        favorites: Optional[Dict[str, List[str]]] = None,
        account_kinds: Optional[Dict[str, AccountKind]] = None,
    ):
        self.featured = list(featured or [])
        self.boosts = dict(boosts or {})
        self.favorites = dict(favorites or {})
        self.account_kinds = dict(account_kinds or {})
        self.calls: Dict[str, int] = {"featured": 0, "boosts": 0, "favorites": 0, "account_kind": 0}

    async def fetch_featured_entries(self, now: datetime) -> Dict[str, FeaturedEntry]:
        self.calls["featured"] += 1
        return merge_featured([e for e in self.featured if e.is_live(now)])

    async def fetch_active_boosts(self) -> Dict[str, float]:
        self.calls["boosts"] += 1
        return dict(self.boosts)

    async def fetch_favorite_categories(self, viewer_id: str) -> List[str]:
        self.calls["favorites"] += 1
        return list(self.favorites.get(viewer_id, []))

    async def fetch_account_kind(self, viewer_id: str) -> AccountKind:
        self.calls["account_kind"] += 1
        return self.account_kinds.get(viewer_id, AccountKind.PERSON)


# =============================================================================
# Provider
# =============================================================================

@dataclass
class CachedSignal(Generic[T]):
    """A cached signal value with the monotonic time it was stored."""
    value: T
    stored_at: float

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        return now - self.stored_at >= ttl_seconds


@dataclass
class ContextBuild:
    """A built context plus the boost fetch still in flight, if it timed out."""
    context: RankingContext
    pending_boosts: Optional["asyncio.Task[Dict[str, float]]"] = None


class RankingContextProvider(LoggerMixin):
    """
    Request-scoped RankingContext factory with TTL-bounded caches.

    Featured entries and boosts are shared by all viewers; favorite
    categories and account kind are cached per viewer.
    """

    def __init__(
        self,
        source: RankingSignalSource,
        ttl_seconds: float = 60,
        boost_timeout_seconds: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.ttl_seconds = ttl_seconds
        self.boost_timeout_seconds = boost_timeout_seconds
        self._clock = clock
        self._featured: Optional[CachedSignal[Dict[str, FeaturedEntry]]] = None
        self._boosts: Optional[CachedSignal[Dict[str, float]]] = None
        self._favorites: Dict[str, CachedSignal[Tuple[str, ...]]] = {}
        self._account_kinds: Dict[str, CachedSignal[AccountKind]] = {}
        self._boosts_task: Optional["asyncio.Task[Dict[str, float]]"] = None

    def invalidate(self, viewer_id: Optional[str] = None) -> None:
        """Drop cached signals (all of them, or one viewer's)."""
        if viewer_id is None:
            self._featured = None
            self._boosts = None
            self._favorites.clear()
            self._account_kinds.clear()
        else:
            self._favorites.pop(viewer_id, None)
            self._account_kinds.pop(viewer_id, None)

    async def build(self, viewer_id: str) -> ContextBuild:
        now = utc_now()
        featured, favorites, account_kind = await asyncio.gather(
            self._get_featured(now),
            self._get_favorites(viewer_id),
            self._get_account_kind(viewer_id),
        )

        boosts, pending = await self._get_boosts()

        context = RankingContext(
            featured=featured,
            boosts=boosts,
            favorite_categories=favorites,
            account_kind=account_kind,
            boosts_complete=pending is None,
            built_at=now,
        )
        return ContextBuild(context=context, pending_boosts=pending)

    # =========================================================
    # Cached Signals
    # =========================================================

    async def _get_featured(self, now: datetime) -> Dict[str, FeaturedEntry]:
        cached = self._featured
        if cached is not None and not cached.is_expired(self.ttl_seconds, self._clock()):
            return cached.value
        try:
            value = await self.source.fetch_featured_entries(now)
        except TransientFetchError as e:
            self.logger.warning("Featured entries unavailable, ranking without them", error=str(e))
            return cached.value if cached is not None else {}
        self._featured = CachedSignal(value=value, stored_at=self._clock())
        return value

    async def _get_favorites(self, viewer_id: str) -> Tuple[str, ...]:
        cached = self._favorites.get(viewer_id)
        if cached is not None and not cached.is_expired(self.ttl_seconds, self._clock()):
            return cached.value
        try:
            value = tuple(await self.source.fetch_favorite_categories(viewer_id))
        except TransientFetchError as e:
            self.logger.warning("Favorite categories unavailable", viewer_id=viewer_id, error=str(e))
            return cached.value if cached is not None else ()
        self._store_for_viewer(self._favorites, viewer_id, value)
        return value

    async def _get_account_kind(self, viewer_id: str) -> AccountKind:
        cached = self._account_kinds.get(viewer_id)
        if cached is not None and not cached.is_expired(self.ttl_seconds, self._clock()):
            return cached.value
        try:
            value = await self.source.fetch_account_kind(viewer_id)
        except TransientFetchError as e:
            self.logger.warning("Account kind unavailable, assuming person", viewer_id=viewer_id, error=str(e))
            return cached.value if cached is not None else AccountKind.PERSON
        self._store_for_viewer(self._account_kinds, viewer_id, value)
        return value

    def _store_for_viewer(self, cache: Dict[str, CachedSignal[T]], viewer_id: str, value: T) -> None:
        # Expired entries of other viewers are evicted on every write
        now = self._clock()
        for key in [k for k, c in cache.items() if c.is_expired(self.ttl_seconds, now)]:
            del cache[key]
        cache[viewer_id] = CachedSignal(value=value, stored_at=now)

    async def _get_boosts(self) -> Tuple[Dict[str, float], Optional["asyncio.Task[Dict[str, float]]"]]:
        cached = self._boosts
        if cached is not None and not cached.is_expired(self.ttl_seconds, self._clock()):
            return cached.value, None

        task = self._boosts_task
        if task is None or task.done() or task.get_loop() is not asyncio.get_running_loop():
            task = asyncio.create_task(self._load_boosts())
            self._boosts_task = task

        try:
            value = await asyncio.wait_for(asyncio.shield(task), timeout=self.boost_timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.info(
                "Boost fetch slow, ranking with neutral boosts",
                timeout_seconds=self.boost_timeout_seconds,
            )
            return {}, task
        return value, None

    async def _load_boosts(self) -> Dict[str, float]:
        try:
            value = await self.source.fetch_active_boosts()
        except TransientFetchError as e:
            self.logger.warning("Visibility boosts unavailable, ranking without them", error=str(e))
            return self._boosts.value if self._boosts is not None else {}
        self._boosts = CachedSignal(value=value, stored_at=self._clock())
        return value
