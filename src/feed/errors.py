"""
Error taxonomy for the candidate feed.

Store adapters translate PostgREST / transport failures into these types so
the engine and the HTTP layer never have to know which backend produced them.
"""

from typing import Optional


class FeedError(Exception):
    """Base class for all feed errors."""
    pass


class TransientFetchError(FeedError):
    """Store unreachable or timed out. Retried with backoff, then the feed goes stale."""
    pass


class DuplicateDecisionError(FeedError):
    """The viewer already has an active decision on this listing."""

    def __init__(self, viewer_id: str, listing_id: str):
        self.viewer_id = viewer_id
        self.listing_id = listing_id
        super().__init__(f"Viewer {viewer_id} already decided on listing {listing_id}")


class InvalidUndoError(FeedError):
    """Undo requested with no eligible dislike."""
    pass


class OwnershipError(FeedError):
    """A decision was targeted by someone other than the viewer who made it."""

    def __init__(self, decision_id: str, viewer_id: str):
        self.decision_id = decision_id
        self.viewer_id = viewer_id
        super().__init__(f"Decision {decision_id} is not owned by viewer {viewer_id}")


class LedgerWriteError(FeedError):
    """A swipe could not be persisted (or deleted) for a non-duplicate reason."""

    def __init__(self, message: str, listing_id: Optional[str] = None):
        self.listing_id = listing_id
        super().__init__(message)


class SessionNotReadyError(FeedError):
    """A swipe was attempted while the session was loading or exhausted."""
    pass
