"""
Swipe candidate feed.

Candidate selection, tiered ranking, fallback widening and the swipe
session state machine for the barter marketplace.
"""

from feed.candidate_store import (
    CandidateStore,
    InMemoryCandidateStore,
    SupabaseCandidateStore,
)
from feed.engine import EngineConfig, FeedEngine, generate_feed_id
from feed.errors import (
    DuplicateDecisionError,
    FeedError,
    InvalidUndoError,
    LedgerWriteError,
    OwnershipError,
    SessionNotReadyError,
    TransientFetchError,
)
from feed.fallback import CandidateBatch, FallbackWidener
from feed.models import (
    AccountKind,
    FeedState,
    FeedStatus,
    FilterRequest,
    FilterSpec,
    KindFilter,
    Listing,
    ListingKind,
    RankingContext,
    SortOrder,
    SwipeAction,
    SwipeDecision,
)
from feed.ranker import FeedRanker
from feed.ranking_context import (
    InMemoryRankingSignalSource,
    RankingContextProvider,
    SupabaseRankingSignalSource,
)
from feed.registry import FeedSessionRegistry, get_feed_registry
from feed.session import SwipeSession
from feed.swipe_history import SwipeHistory
from feed.swipe_ledger import InMemorySwipeLedger, SupabaseSwipeLedger, SwipeLedger

__all__ = [
    "AccountKind",
    "CandidateBatch",
    "CandidateStore",
    "DuplicateDecisionError",
    "EngineConfig",
    "FallbackWidener",
    "FeedEngine",
    "FeedError",
    "FeedRanker",
    "FeedSessionRegistry",
    "FeedState",
    "FeedStatus",
    "FilterRequest",
    "FilterSpec",
    "InMemoryCandidateStore",
    "InMemoryRankingSignalSource",
    "InMemorySwipeLedger",
    "InvalidUndoError",
    "KindFilter",
    "LedgerWriteError",
    "Listing",
    "ListingKind",
    "OwnershipError",
    "RankingContext",
    "RankingContextProvider",
    "SessionNotReadyError",
    "SortOrder",
    "SupabaseCandidateStore",
    "SupabaseRankingSignalSource",
    "SupabaseSwipeLedger",
    "SwipeAction",
    "SwipeDecision",
    "SwipeHistory",
    "SwipeLedger",
    "SwipeSession",
    "TransientFetchError",
    "generate_feed_id",
    "get_feed_registry",
]
