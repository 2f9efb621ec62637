"""
Swipe Feed Routes.

One feed instance per (viewer, feed_id): the client opens a feed, then
swipes through it one card at a time. The viewer is always the caller
identified by the JWT.

All endpoints require JWT authentication.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from config.database import get_supabase_client
from config.settings import Settings, get_settings
from core.auth import AuthenticatedViewer, require_auth
from core.logging import bind_context, get_logger
from feed.candidate_store import CandidateStore, SupabaseCandidateStore
from feed.engine import EngineConfig, FeedEngine
from feed.errors import (
    FeedError,
    LedgerWriteError,
    OwnershipError,
    SessionNotReadyError,
    TransientFetchError,
)
from feed.models import FeedStatus, FilterRequest, SwipeDecision
from feed.ranking_context import RankingContextProvider, SupabaseRankingSignalSource
from feed.registry import FeedSessionRegistry, get_feed_registry
from feed.swipe_ledger import SupabaseSwipeLedger, SwipeLedger


logger = get_logger(__name__)

router = APIRouter(prefix="/api/feed", tags=["Swipe Feed"])


# =============================================================================
# Backend Wiring
# =============================================================================

@dataclass
class FeedBackend:
    """Store adapters shared by every feed in the process."""
    store: CandidateStore
    ledger: SwipeLedger
    context_provider: RankingContextProvider


_backend: Optional[FeedBackend] = None


def get_feed_backend() -> FeedBackend:
    """Get the Supabase-backed feed backend singleton."""
    global _backend
    if _backend is None:
        settings = get_settings()
        client = get_supabase_client()
        _backend = FeedBackend(
            store=SupabaseCandidateStore(
                client,
                max_store_exclusions=settings.feed_max_store_exclusions,
                max_pages=settings.feed_max_candidate_pages,
            ),
            ledger=SupabaseSwipeLedger(client),
            context_provider=RankingContextProvider(
                SupabaseRankingSignalSource(client),
                ttl_seconds=settings.ranking_context_ttl_seconds,
                boost_timeout_seconds=settings.boost_fetch_timeout_seconds,
            ),
        )
    return _backend


# =============================================================================
# Request/Response Models
# =============================================================================

class OpenFeedRequest(BaseModel):
    """Open (or reopen) a feed instance."""
    feed_id: Optional[str] = Field(
        default=None,
        description="Client-chosen feed id; generated when omitted"
    )
    filters: FilterRequest = Field(default_factory=FilterRequest)


class LikeRequest(BaseModel):
    counter_offer_listing_id: Optional[str] = Field(
        default=None,
        description="One of the viewer's own listings offered in exchange"
    )


class SwipeResponse(FeedStatus):
    """Feed status after a swipe, plus the recorded decision."""
    decision: Optional[SwipeDecision] = None
    already_decided: bool = False


class UndoResponse(FeedStatus):
    undone: bool = False


# =============================================================================
# Helpers
# =============================================================================

def _require_feed(registry: FeedSessionRegistry, viewer_id: str, feed_id: str) -> FeedEngine:
    bind_context(viewer_id=viewer_id, feed_id=feed_id)
    engine = registry.get(viewer_id, feed_id)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Feed {feed_id} not found. Call /api/feed/open first."
        )
    return engine


def _log_swipe(action: str, decision: Optional[SwipeDecision]) -> None:
    if decision is None:
        logger.info("Card already decided", action=action)
    else:
        logger.info("Card swiped", action=action, listing_id=decision.listing_id)


def _http_error(e: FeedError) -> HTTPException:
    if isinstance(e, OwnershipError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, SessionNotReadyError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, (LedgerWriteError, TransientFetchError)):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/open", response_model=FeedStatus, summary="Open a swipe feed")
async def open_feed(
    request: OpenFeedRequest,
    viewer: AuthenticatedViewer = Depends(require_auth),
    backend: FeedBackend = Depends(get_feed_backend),
    registry: FeedSessionRegistry = Depends(get_feed_registry),
    settings: Settings = Depends(get_settings),
) -> FeedStatus:
    """
    Load the viewer's swipe history and build the first candidate snapshot.

    Reopening an existing feed id re-applies the filters to that feed.
    """
    spec = request.filters.to_filter_spec(settings.feed_price_ceiling)

    engine = registry.get(viewer.id, request.feed_id) if request.feed_id else None
    if engine is None:
        engine = FeedEngine(
            viewer.id,
            store=backend.store,
            context_provider=backend.context_provider,
            ledger=backend.ledger,
            config=EngineConfig.from_settings(settings),
            feed_id=request.feed_id,
        )
        registry.register(engine)

    bind_context(viewer_id=viewer.id, feed_id=engine.feed_id)
    await engine.open(spec)
    logger.info("Feed opened", state=engine.state.value)
    return engine.status()


@router.put("/{feed_id}/filters", response_model=FeedStatus, summary="Change feed filters")
async def set_filters(
    feed_id: str,
    request: FilterRequest,
    viewer: AuthenticatedViewer = Depends(require_auth),
    registry: FeedSessionRegistry = Depends(get_feed_registry),
    settings: Settings = Depends(get_settings),
) -> FeedStatus:
    """Discard the cursor and rebuild the feed for the new filters."""
    engine = _require_feed(registry, viewer.id, feed_id)
    await engine.set_filter(request.to_filter_spec(settings.feed_price_ceiling))
    return engine.status()


@router.get("/{feed_id}", response_model=FeedStatus, summary="Current card and feed state")
async def get_feed(
    feed_id: str,
    viewer: AuthenticatedViewer = Depends(require_auth),
    registry: FeedSessionRegistry = Depends(get_feed_registry),
) -> FeedStatus:
    engine = _require_feed(registry, viewer.id, feed_id)
    return engine.status()


@router.post("/{feed_id}/refresh", response_model=FeedStatus, summary="Apply late ranking signals")
async def refresh_feed(
    feed_id: str,
    viewer: AuthenticatedViewer = Depends(require_auth),
    registry: FeedSessionRegistry = Depends(get_feed_registry),
) -> FeedStatus:
    """Wait for a slow boost fetch and re-rank the cards not yet shown."""
    engine = _require_feed(registry, viewer.id, feed_id)
    await engine.refresh_context()
    return engine.status()


@router.post("/{feed_id}/like", response_model=SwipeResponse, summary="Like the current card")
async def like(
    feed_id: str,
    request: Optional[LikeRequest] = None,
    viewer: AuthenticatedViewer = Depends(require_auth),
    registry: FeedSessionRegistry = Depends(get_feed_registry),
) -> SwipeResponse:
    engine = _require_feed(registry, viewer.id, feed_id)
    counter_offer = request.counter_offer_listing_id if request else None
    try:
        decision = await engine.like(counter_offer)
    except FeedError as e:
        raise _http_error(e)
    _log_swipe("like", decision)
    return SwipeResponse(
        **engine.status().model_dump(),
        decision=decision,
        already_decided=decision is None,
    )


@router.post("/{feed_id}/dislike", response_model=SwipeResponse, summary="Dislike the current card")
async def dislike(
    feed_id: str,
    viewer: AuthenticatedViewer = Depends(require_auth),
    registry: FeedSessionRegistry = Depends(get_feed_registry),
) -> SwipeResponse:
    engine = _require_feed(registry, viewer.id, feed_id)
    try:
        decision = await engine.dislike()
    except FeedError as e:
        raise _http_error(e)
    _log_swipe("dislike", decision)
    return SwipeResponse(
        **engine.status().model_dump(),
        decision=decision,
        already_decided=decision is None,
    )


@router.post("/{feed_id}/undo", response_model=UndoResponse, summary="Undo the last dislike")
async def undo(
    feed_id: str,
    viewer: AuthenticatedViewer = Depends(require_auth),
    registry: FeedSessionRegistry = Depends(get_feed_registry),
) -> UndoResponse:
    engine = _require_feed(registry, viewer.id, feed_id)
    try:
        undone = await engine.undo()
    except FeedError as e:
        raise _http_error(e)
    return UndoResponse(**engine.status().model_dump(), undone=undone)


@router.delete("/{feed_id}", summary="Close a feed")
async def close_feed(
    feed_id: str,
    viewer: AuthenticatedViewer = Depends(require_auth),
    registry: FeedSessionRegistry = Depends(get_feed_registry),
):
    engine = registry.remove(viewer.id, feed_id)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Feed {feed_id} not found")
    await engine.close()
    return {"status": "closed", "feed_id": feed_id}
