"""
Feed Engine

Orchestrates one viewer's swipe feed:

    FilterSpec
      -> SwipeHistory (re-read from the ledger on every rebuild)
      -> CandidateStore (primary, SwipeHistory excluded)   } concurrently
      -> RankingContextProvider                            }
      -> FeedRanker
      -> FallbackWidener (only if the ranked list is empty)
      -> SwipeSession (one card at a time, decisions -> ledger)

Correctness guarantees:
A. Stale responses never clobber a newer snapshot (request generations;
   the superseded fetch is cancelled)
B. Transient fetch errors are retried with exponential backoff; when retries
   run out the last good cursor stays on screen and the feed is marked stale
C. A slow boost fetch never blocks presenting candidates; boosts default to 1
   and the unseen remainder is re-ranked when they arrive
D. Decided listings never come back, including ones decided from another
   feed of the same viewer (history re-synced, excluded at fetch and at load)
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import Settings
from core.logging import LoggerMixin
from feed.candidate_store import CandidateStore, exclude_decided
from feed.errors import SessionNotReadyError, TransientFetchError
from feed.fallback import CandidateBatch, FallbackWidener
from feed.models import (
    FeedState,
    FeedStatus,
    FilterSpec,
    Listing,
    RankingContext,
    SwipeAction,
    SwipeDecision,
)
from feed.ranker import FeedRanker
from feed.ranking_context import ContextBuild, RankingContextProvider
from feed.session import SwipeSession
from feed.swipe_history import SwipeHistory
from feed.swipe_ledger import SwipeLedger


T = TypeVar("T")


@dataclass
class EngineConfig:
    """Tunable limits for one engine."""
    candidate_limit: int = 200
    fallback_limit: int = 20
    retry_attempts: int = 3
    retry_min_wait_seconds: float = 0.2
    retry_max_wait_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            candidate_limit=settings.feed_candidate_limit,
            fallback_limit=settings.feed_fallback_limit,
            retry_attempts=settings.fetch_retry_attempts,
            retry_min_wait_seconds=settings.fetch_retry_min_wait_seconds,
            retry_max_wait_seconds=settings.fetch_retry_max_wait_seconds,
        )


@dataclass
class FeedSnapshot:
    """Everything one fetch cycle produced for a FilterSpec."""
    spec: FilterSpec
    batch: CandidateBatch
    context_build: ContextBuild


def generate_feed_id() -> str:
    return f"feed_{uuid.uuid4().hex[:12]}"


class FeedEngine(LoggerMixin):
    """
    "Next candidate" contract for one (viewer, feed instance).

    Presentation surface: current_candidate(), like(), dislike(), undo(),
    has_more(), is_showing_fallback(), set_filter().
    """

    def __init__(
        self,
        viewer_id: str,
        store: CandidateStore,
        context_provider: RankingContextProvider,
        ledger: SwipeLedger,
        config: Optional[EngineConfig] = None,
        ranker: Optional[FeedRanker] = None,
        feed_id: Optional[str] = None,
    ):
        self.viewer_id = viewer_id
        self.feed_id = feed_id or generate_feed_id()
        self.store = store
        self.context_provider = context_provider
        self.ledger = ledger
        self.config = config or EngineConfig()
        self.ranker = ranker or FeedRanker()
        self.widener = FallbackWidener(store, max_count=self.config.fallback_limit)

        self.history = SwipeHistory(viewer_id)
        self.session = SwipeSession(viewer_id, ledger, history=self.history, feed_id=self.feed_id)

        self._filter: FilterSpec = FilterSpec()
        self._context: Optional[RankingContext] = None
        self._generation = 0
        self._inflight: Optional["asyncio.Task[FeedSnapshot]"] = None
        self._pending_boosts: Optional["asyncio.Task[Dict[str, float]]"] = None
        self._stale = False

    def log_context(self) -> Dict[str, str]:
        return {"viewer_id": self.viewer_id, "feed_id": self.feed_id}

    # =========================================================
    # Feed Lifecycle
    # =========================================================

    async def open(self, spec: Optional[FilterSpec] = None) -> bool:
        """Build the first snapshot (or rebuild it on reopen)."""
        return await self.set_filter(spec or self._filter)

    async def set_filter(self, spec: FilterSpec) -> bool:
        """
        Rebuild the feed for a new FilterSpec.

        Returns True when a fresh snapshot was loaded, False when the fetch
        failed (feed marked stale, previous cursor kept) or was superseded
        by a newer call.
        """
        self._generation += 1
        generation = self._generation

        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

        task = asyncio.create_task(self._build_snapshot(spec))
        self._inflight = task

        try:
            snapshot = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                self.logger.debug("Feed fetch superseded", generation=generation)
                return False
            raise
        except TransientFetchError as e:
            if generation == self._generation:
                self._stale = True
                self.logger.warning(
                    "Feed refresh failed, keeping last cursor",
                    filters=spec.fingerprint(),
                    error=str(e),
                )
            return False

        if generation != self._generation:
            self.logger.info("Discarding stale feed snapshot", generation=generation)
            return False

        self._apply_snapshot(snapshot, generation)
        return True

    async def close(self) -> None:
        """Cancel any in-flight fetch; the engine is discarded afterwards."""
        self._generation += 1
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            try:
                await self._inflight
            except (asyncio.CancelledError, TransientFetchError):
                pass
        self._inflight = None

    async def _sync_history(self) -> None:
        # Other feeds of the same viewer write to the same ledger
        decided = await self._with_retry(lambda: self.ledger.fetch_decided_ids(self.viewer_id))
        self.history.replace(decided)

    async def _build_snapshot(self, spec: FilterSpec) -> FeedSnapshot:
        await self._sync_history()
        excluded = self.history.snapshot()

        primary, context_build = await asyncio.gather(
            self._with_retry(
                lambda: self.store.fetch_candidates(
                    spec,
                    self.viewer_id,
                    exclude_ids=set(excluded),
                    limit=self.config.candidate_limit,
                )
            ),
            self.context_provider.build(self.viewer_id),
        )

        ranked = self.ranker.rank(exclude_decided(primary, excluded), spec, context_build.context)

        if FallbackWidener.should_widen(ranked, spec):
            batch = await self._with_retry(
                lambda: self.widener.widen(spec, self.viewer_id, exclude_ids=excluded)
            )
        else:
            batch = CandidateBatch(listings=ranked, is_fallback=False)

        return FeedSnapshot(spec=spec, batch=batch, context_build=context_build)

    def _apply_snapshot(self, snapshot: FeedSnapshot, generation: int) -> None:
        # Swipes recorded elsewhere while the fetch ran
        listings = [l for l in snapshot.batch.listings if l.id not in self.history]
        self.session.load(listings, is_fallback=snapshot.batch.is_fallback)
        self._filter = snapshot.spec
        self._context = snapshot.context_build.context
        self._stale = False

        pending = snapshot.context_build.pending_boosts
        self._pending_boosts = pending
        if pending is not None:
            pending.add_done_callback(lambda task: self._on_boosts_ready(task, generation))

        self.logger.info(
            "Feed snapshot loaded",
            filters=snapshot.spec.fingerprint(),
            candidates=len(listings),
            fallback=snapshot.batch.is_fallback,
            boosts_complete=pending is None,
        )

    # =========================================================
    # Late Ranking Signals
    # =========================================================

    def _on_boosts_ready(self, task: "asyncio.Task[Dict[str, float]]", generation: int) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        if generation != self._generation:
            return
        self._apply_boosts(task.result())

    def _apply_boosts(self, boosts: Dict[str, float]) -> None:
        context = self._context
        if context is None or context.boosts_complete:
            return
        context = context.with_boosts(boosts)
        self._context = context
        self._pending_boosts = None
        if self.session.is_fallback:
            return
        spec = self._filter
        self.session.reorder_remaining(lambda tail: self.ranker.rank(tail, spec, context))
        self.logger.debug("Remaining candidates re-ranked with boosts")

    async def refresh_context(self) -> bool:
        """
        Wait for a boost fetch that outlived its timeout and re-rank.

        Returns True once late boosts are in effect for the current snapshot.
        """
        pending = self._pending_boosts
        if pending is None:
            return False
        generation = self._generation
        try:
            boosts = await pending
        except asyncio.CancelledError:
            return False
        if generation != self._generation:
            return False
        # No-op when the completion callback already applied them
        self._apply_boosts(boosts)
        return True

    # =========================================================
    # Retry
    # =========================================================

    async def _with_retry(self, fetch: Callable[[], Awaitable[T]]) -> T:
        cfg = self.config
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(cfg.retry_attempts),
            wait=wait_exponential(
                multiplier=cfg.retry_min_wait_seconds,
                min=cfg.retry_min_wait_seconds,
                max=cfg.retry_max_wait_seconds,
            ),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return await fetch()
        raise AssertionError("unreachable")

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        self.logger.warning(
            "Feed fetch failed, retrying",
            attempt=retry_state.attempt_number,
            error=str(outcome.exception()) if outcome is not None else None,
        )

    # =========================================================
    # Presentation Surface
    # =========================================================

    @property
    def filter_spec(self) -> FilterSpec:
        return self._filter

    @property
    def context(self) -> Optional[RankingContext]:
        return self._context

    @property
    def is_loading(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def is_stale(self) -> bool:
        return self._stale

    @property
    def state(self) -> FeedState:
        if self.is_loading:
            return FeedState.LOADING
        return self.session.state

    @property
    def can_undo(self) -> bool:
        return not self.is_loading and self.session.can_undo

    def current_candidate(self) -> Optional[Listing]:
        if self.is_loading:
            return None
        return self.session.current()

    def has_more(self) -> bool:
        return self.state is FeedState.READY

    def is_showing_fallback(self) -> bool:
        return self.session.is_fallback

    def candidates(self) -> List[Listing]:
        return self.session.candidates

    async def like(self, counter_offer_listing_id: Optional[str] = None) -> Optional[SwipeDecision]:
        return await self._advance(SwipeAction.LIKE, counter_offer_listing_id)

    async def dislike(self) -> Optional[SwipeDecision]:
        return await self._advance(SwipeAction.DISLIKE, None)

    async def undo(self) -> bool:
        if self.is_loading:
            return False
        return await self.session.undo()

    async def _advance(
        self,
        action: SwipeAction,
        counter_offer_listing_id: Optional[str],
    ) -> Optional[SwipeDecision]:
        if self.is_loading:
            raise SessionNotReadyError("Feed is loading, nothing to swipe")
        return await self.session.advance(action, counter_offer_listing_id)

    def status(self) -> FeedStatus:
        return FeedStatus(
            feed_id=self.feed_id,
            state=self.state,
            current=self.current_candidate(),
            has_more=self.has_more(),
            showing_fallback=self.is_showing_fallback(),
            can_undo=self.can_undo,
            is_stale=self.is_stale,
            remaining=self.session.remaining if self.session.state is not FeedState.LOADING else 0,
            total=len(self.session.candidates),
        )
