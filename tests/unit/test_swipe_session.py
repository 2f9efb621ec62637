"""
Tests for the swipe session state machine.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from feed.errors import (
    InvalidUndoError,
    LedgerWriteError,
    OwnershipError,
    SessionNotReadyError,
)
from feed.models import FeedState, SwipeAction
from feed.session import SwipeSession
from feed.swipe_ledger import InMemorySwipeLedger


class FailingDeleteLedger(InMemorySwipeLedger):
    """Records swipes normally, fails every delete with `error`."""

    def __init__(self, error):
        super().__init__()
        self.error = error

    async def delete_swipe(self, decision_id, viewer_id):
        raise self.error


@pytest.fixture
def cards(listing_factory):
    return [listing_factory(f"L{i}") for i in range(1, 4)]


@pytest.fixture
def session(viewer_id, memory_ledger, cards):
    s = SwipeSession(viewer_id, memory_ledger, feed_id="feed_test")
    s.load(cards)
    return s


class TestStates:

    def test_loading_until_first_snapshot(self, viewer_id, memory_ledger):
        s = SwipeSession(viewer_id, memory_ledger)
        assert s.state is FeedState.LOADING
        assert s.current() is None
        with pytest.raises(SessionNotReadyError):
            asyncio.run(s.advance(SwipeAction.LIKE))

    def test_ready_then_exhausted(self, session):
        async def swipe_all():
            for _ in range(3):
                await session.advance(SwipeAction.LIKE)

        assert session.state is FeedState.READY
        assert session.current().id == "L1"
        asyncio.run(swipe_all())
        assert session.state is FeedState.EXHAUSTED
        assert session.current() is None
        assert session.position == 3
        assert not session.has_more()

    def test_empty_snapshot_is_exhausted(self, viewer_id, memory_ledger):
        s = SwipeSession(viewer_id, memory_ledger)
        s.load([])
        assert s.state is FeedState.EXHAUSTED

    def test_load_dedupes(self, viewer_id, memory_ledger, listing_factory):
        s = SwipeSession(viewer_id, memory_ledger)
        a = listing_factory("a")
        s.load([a, a, listing_factory("b")])
        assert [l.id for l in s.candidates] == ["a", "b"]


class TestAdvance:

    def test_writes_ledger_and_history(self, session, memory_ledger, viewer_id):
        decision = asyncio.run(session.advance(SwipeAction.LIKE, "my-offer"))

        assert decision.listing_id == "L1"
        assert decision.counter_offer_listing_id == "my-offer"
        assert "L1" in session.history
        assert session.current().id == "L2"
        assert [d.listing_id for d in memory_ledger.decisions_for(viewer_id)] == ["L1"]

    def test_duplicate_is_a_no_op_success(self, session, memory_ledger, viewer_id):
        async def scenario():
            # Another tab already decided L1
            await memory_ledger.record_swipe(viewer_id, "L1", SwipeAction.DISLIKE)
            return await session.advance(SwipeAction.LIKE)

        result = asyncio.run(scenario())

        assert result is None
        assert session.current().id == "L2"
        assert "L1" in session.history
        assert not session.can_undo
        assert len(memory_ledger.decisions_for(viewer_id)) == 1

    def test_ledger_failure_does_not_advance(self, viewer_id, cards):
        ledger = AsyncMock()
        ledger.record_swipe.side_effect = LedgerWriteError("insert failed", listing_id="L1")
        s = SwipeSession(viewer_id, ledger)
        s.load(cards)

        with pytest.raises(LedgerWriteError):
            asyncio.run(s.advance(SwipeAction.DISLIKE))

        assert s.current().id == "L1"
        assert "L1" not in s.history
        assert not s.can_undo

    def test_concurrent_advances_are_serialized(self, session, memory_ledger, viewer_id):
        async def scenario():
            return await asyncio.gather(
                session.advance(SwipeAction.LIKE),
                session.advance(SwipeAction.LIKE),
            )

        results = asyncio.run(scenario())

        assert {d.listing_id for d in results} == {"L1", "L2"}
        assert session.position == 2


class TestUndo:

    def test_single_level_undo(self, session, memory_ledger, viewer_id):
        """dislike(L1), dislike(L2), undo() restores L2 only; a second undo is a no-op."""
        async def scenario():
            await session.advance(SwipeAction.DISLIKE)
            await session.advance(SwipeAction.DISLIKE)
            first = await session.undo()
            second = await session.undo()
            return first, second

        first, second = asyncio.run(scenario())

        assert first is True
        assert second is False
        assert session.current().id == "L2"
        assert "L2" not in session.history
        assert "L1" in session.history
        assert [d.listing_id for d in memory_ledger.decisions_for(viewer_id)] == ["L1"]

    def test_like_cannot_be_undone(self, session):
        async def scenario():
            await session.advance(SwipeAction.LIKE)
            return await session.undo()

        assert asyncio.run(scenario()) is False
        assert session.position == 1

    def test_later_like_clears_undo(self, session):
        async def scenario():
            await session.advance(SwipeAction.DISLIKE)
            await session.advance(SwipeAction.LIKE)
            return await session.undo()

        assert asyncio.run(scenario()) is False
        assert session.position == 2

    def test_undo_after_exhaustion_reopens_last_card(self, viewer_id, memory_ledger, listing_factory):
        s = SwipeSession(viewer_id, memory_ledger)
        s.load([listing_factory("only")])

        async def scenario():
            await s.advance(SwipeAction.DISLIKE)
            assert s.state is FeedState.EXHAUSTED
            return await s.undo()

        assert asyncio.run(scenario()) is True
        assert s.state is FeedState.READY
        assert s.current().id == "only"

    def test_missing_row_disables_undo(self, viewer_id, cards):
        session = SwipeSession(viewer_id, FailingDeleteLedger(InvalidUndoError("gone")))
        session.load(cards)

        async def scenario():
            await session.advance(SwipeAction.DISLIKE)
            return await session.undo()

        assert asyncio.run(scenario()) is False
        assert not session.can_undo
        assert session.position == 1

    def test_ownership_error_propagates(self, viewer_id, cards):
        session = SwipeSession(viewer_id, FailingDeleteLedger(OwnershipError("d1", "someone")))
        session.load(cards)

        async def scenario():
            await session.advance(SwipeAction.DISLIKE)
            await session.undo()

        with pytest.raises(OwnershipError):
            asyncio.run(scenario())
        assert not session.can_undo

    def test_failed_delete_keeps_undo_available(self, viewer_id, cards):
        session = SwipeSession(viewer_id, FailingDeleteLedger(LedgerWriteError("delete failed")))
        session.load(cards)

        async def scenario():
            await session.advance(SwipeAction.DISLIKE)
            return await session.undo()

        assert asyncio.run(scenario()) is False
        assert session.can_undo
        assert session.position == 1


class TestReorderRemaining:

    def test_only_unseen_tail_moves(self, session):
        session.reorder_remaining(lambda tail: list(reversed(tail)))
        assert [l.id for l in session.candidates] == ["L1", "L3", "L2"]

    def test_rejects_non_permutation(self, session):
        with pytest.raises(ValueError):
            session.reorder_remaining(lambda tail: tail[:1])
