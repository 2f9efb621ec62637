"""
Swipe Session

Cursor over one ranked candidate snapshot for one viewer and feed instance.

States:
    LOADING    no snapshot yet (first fetch in flight)
    READY      position < len(candidates); current() is the card on screen
    EXHAUSTED  position == len(candidates); current() is None

advance() is the only operation that writes to the durable ledger. It is
serialized per session, and a failed write leaves the cursor where it was
so the same card can be retried. Only the most recent dislike can be
undone, once; any later swipe clears it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from core.logging import LoggerMixin
from feed.errors import (
    DuplicateDecisionError,
    InvalidUndoError,
    LedgerWriteError,
    OwnershipError,
    SessionNotReadyError,
)
from feed.models import FeedState, Listing, SwipeAction, SwipeDecision
from feed.ranker import dedupe_listings
from feed.swipe_history import SwipeHistory
from feed.swipe_ledger import SwipeLedger


@dataclass(frozen=True)
class UndoCandidate:
    """The single dislike that may still be taken back."""
    listing_id: str
    decision_id: str


class SwipeSession(LoggerMixin):
    """
    In-memory cursor state for a feed instance.

    The session never fetches; FeedEngine hands it snapshots via load().
    """

    def __init__(
        self,
        viewer_id: str,
        ledger: SwipeLedger,
        history: Optional[SwipeHistory] = None,
        feed_id: Optional[str] = None,
    ):
        self.viewer_id = viewer_id
        self.feed_id = feed_id
        self.ledger = ledger
        self.history = history if history is not None else SwipeHistory(viewer_id)

        self._candidates: List[Listing] = []
        self._position = 0
        self._loaded = False
        self._is_fallback = False
        self._undo: Optional[UndoCandidate] = None
        self._lock = asyncio.Lock()

    def log_context(self) -> Dict[str, Any]:
        return {"viewer_id": self.viewer_id, "feed_id": self.feed_id}

    # =========================================================
    # Snapshot
    # =========================================================

    def load(self, candidates: List[Listing], is_fallback: bool = False) -> None:
        """Replace the snapshot; resets the cursor and the undo slot."""
        self._candidates = dedupe_listings(candidates)
        self._position = 0
        self._loaded = True
        self._is_fallback = is_fallback
        self._undo = None

    def reorder_remaining(self, order: Callable[[List[Listing]], List[Listing]]) -> None:
        """
        Re-rank the cards not yet presented.

        Cards before the cursor (and the current card) keep their slots so
        the position and the undo slot stay valid.
        """
        if not self._loaded:
            return
        head = self._candidates[: self._position + 1]
        tail = self._candidates[self._position + 1:]
        if len(tail) < 2:
            return
        reordered = order(list(tail))
        if sorted(l.id for l in reordered) != sorted(l.id for l in tail):
            raise ValueError("reorder must be a permutation of the remaining candidates")
        self._candidates = head + reordered

    # =========================================================
    # State
    # =========================================================

    @property
    def state(self) -> FeedState:
        if not self._loaded:
            return FeedState.LOADING
        if self._position < len(self._candidates):
            return FeedState.READY
        return FeedState.EXHAUSTED

    @property
    def position(self) -> int:
        return self._position

    @property
    def candidates(self) -> List[Listing]:
        return list(self._candidates)

    @property
    def is_fallback(self) -> bool:
        return self._is_fallback

    @property
    def can_undo(self) -> bool:
        return self._undo is not None

    @property
    def remaining(self) -> int:
        return len(self._candidates) - self._position

    def current(self) -> Optional[Listing]:
        if self.state is not FeedState.READY:
            return None
        return self._candidates[self._position]

    def has_more(self) -> bool:
        return self.state is FeedState.READY

    # =========================================================
    # Transitions
    # =========================================================

    async def advance(
        self,
        action: SwipeAction,
        counter_offer_listing_id: Optional[str] = None,
    ) -> Optional[SwipeDecision]:
        """
        Decide on the current card and move to the next one.

        Returns the persisted decision, or None when the listing had
        already been decided elsewhere (treated as success).

        Raises:
            SessionNotReadyError: nothing to swipe
            LedgerWriteError: the decision was not persisted; cursor unchanged
        """
        async with self._lock:
            listing = self.current()
            if listing is None:
                raise SessionNotReadyError(f"Feed is {self.state.value}, nothing to swipe")

            try:
                decision = await self.ledger.record_swipe(
                    self.viewer_id,
                    listing.id,
                    action,
                    counter_offer_listing_id,
                )
            except DuplicateDecisionError:
                self.logger.warning(
                    "Listing already decided, skipping",
                    listing_id=listing.id,
                    action=action.value,
                )
                self.history.add(listing.id)
                self._position += 1
                self._undo = None
                return None

            self.history.add(listing.id)
            self._position += 1
            if action is SwipeAction.DISLIKE:
                self._undo = UndoCandidate(listing_id=listing.id, decision_id=decision.id)
            else:
                self._undo = None
            return decision

    async def undo(self) -> bool:
        """
        Take back the most recent dislike.

        Returns False when there is nothing to undo or the delete did not
        go through (the slot is kept so the viewer can try again).

        Raises:
            OwnershipError: the decision belongs to another viewer
        """
        async with self._lock:
            candidate = self._undo
            if candidate is None:
                self.logger.debug("Undo unavailable")
                return False

            try:
                await self.ledger.delete_swipe(candidate.decision_id, self.viewer_id)
            except InvalidUndoError as e:
                # Row already gone (e.g. undone from another tab)
                self.logger.warning("Undo target missing", decision_id=candidate.decision_id, error=str(e))
                self._undo = None
                return False
            except OwnershipError:
                self._undo = None
                raise
            except LedgerWriteError as e:
                self.logger.warning("Undo not persisted", decision_id=candidate.decision_id, error=str(e))
                return False

            self.history.discard(candidate.listing_id)
            self._position = max(0, self._position - 1)
            self._undo = None
            self.logger.info(
                "Dislike undone",
                listing_id=candidate.listing_id,
            )
            return True
