"""
Swipe Ledger

Durable, append-only record of swipe decisions (the `swipes` table).

Invariant: at most one active decision per (viewer, listing). The Supabase
backend relies on the unique index from sql/001_swipes_unique_decision.sql,
so two tabs racing on the same card end up with exactly one row; the
loser gets DuplicateDecisionError. Undo deletes the row, and only the
viewer who made the decision may delete it.
"""

import asyncio
import uuid
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

import httpx
from postgrest.exceptions import APIError

from core.logging import LoggerMixin
from core.utils import parse_timestamp
from feed.errors import (
    DuplicateDecisionError,
    InvalidUndoError,
    LedgerWriteError,
    OwnershipError,
    TransientFetchError,
)
from feed.models import SwipeAction, SwipeDecision


SWIPES_TABLE = "swipes"
UNIQUE_VIOLATION = "23505"


class SwipeLedger(Protocol):
    async def record_swipe(
        self,
        viewer_id: str,
        listing_id: str,
        action: SwipeAction,
        counter_offer_listing_id: Optional[str] = None,
    ) -> SwipeDecision:
        ...

    async def delete_swipe(self, decision_id: str, viewer_id: str) -> None:
        ...

    async def fetch_decided_ids(self, viewer_id: str) -> Set[str]:
        ...


def decision_from_row(row: Dict[str, Any]) -> SwipeDecision:
    fields: Dict[str, Any] = dict(
        id=str(row["id"]),
        viewer_id=str(row["user_id"]),
        listing_id=str(row["product_id"]),
        action=SwipeAction(row["action"]),
        counter_offer_listing_id=row.get("offered_product_id"),
    )
    created_at = parse_timestamp(row.get("created_at"))
    if created_at is not None:
        fields["created_at"] = created_at
    return SwipeDecision(**fields)


# =============================================================================
# Supabase Backend
# =============================================================================

class SupabaseSwipeLedger(LoggerMixin):
    """Swipe ledger stored in the hosted `swipes` table."""

    def __init__(self, client: Any):
        self.client = client

    async def record_swipe(
        self,
        viewer_id: str,
        listing_id: str,
        action: SwipeAction,
        counter_offer_listing_id: Optional[str] = None,
    ) -> SwipeDecision:
        payload = {
            "user_id": viewer_id,
            "product_id": listing_id,
            "action": action.value,
            "offered_product_id": counter_offer_listing_id,
        }
        query = self.client.table(SWIPES_TABLE).insert(payload)
        try:
            result = await asyncio.to_thread(query.execute)
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateDecisionError(viewer_id, listing_id) from e
            raise LedgerWriteError(f"Swipe insert rejected: {e}", listing_id=listing_id) from e
        except (httpx.HTTPError, OSError) as e:
            raise LedgerWriteError(f"Swipe insert failed: {e}", listing_id=listing_id) from e

        if not result.data:
            raise LedgerWriteError("Swipe insert returned no row", listing_id=listing_id)

        decision = decision_from_row(result.data[0])
        self.logger.info(
            "Swipe recorded",
            viewer_id=viewer_id,
            listing_id=listing_id,
            action=action.value,
            decision_id=decision.id,
        )
        return decision

    async def delete_swipe(self, decision_id: str, viewer_id: str) -> None:
        query = (
            self.client.table(SWIPES_TABLE)
            .delete()
            .eq("id", decision_id)
            .eq("user_id", viewer_id)
        )
        try:
            result = await asyncio.to_thread(query.execute)
        except (APIError, httpx.HTTPError, OSError) as e:
            raise LedgerWriteError(f"Swipe delete failed: {e}") from e

        if result.data:
            self.logger.info("Swipe deleted", viewer_id=viewer_id, decision_id=decision_id)
            return

        # Nothing deleted: either someone else's decision or already gone
        owner = await self._decision_owner(decision_id)
        if owner is not None and owner != viewer_id:
            raise OwnershipError(decision_id, viewer_id)
        raise InvalidUndoError(f"Decision {decision_id} no longer exists")

    async def fetch_decided_ids(self, viewer_id: str) -> Set[str]:
        query = (
            self.client.table(SWIPES_TABLE)
            .select("product_id")
            .eq("user_id", viewer_id)
        )
        try:
            result = await asyncio.to_thread(query.execute)
        except (APIError, httpx.HTTPError, OSError) as e:
            raise TransientFetchError(f"Swipe history fetch failed: {e}") from e
        return {str(row["product_id"]) for row in (result.data or []) if row.get("product_id")}

    async def _decision_owner(self, decision_id: str) -> Optional[str]:
        query = self.client.table(SWIPES_TABLE).select("id, user_id").eq("id", decision_id)
        try:
            result = await asyncio.to_thread(query.execute)
        except (APIError, httpx.HTTPError, OSError) as e:
            raise LedgerWriteError(f"Swipe ownership check failed: {e}") from e
        if not result.data:
            return None
        return str(result.data[0]["user_id"])


# =============================================================================
# In-Memory Backend
# =============================================================================

class InMemorySwipeLedger(LoggerMixin):
    """
    Thread-safe in-memory ledger for development/testing.

    Enforces the same one-decision-per-pair and ownership rules as the
    database.
    """

    def __init__(self):
        self._lock = Lock()
        self._decisions: Dict[str, SwipeDecision] = {}
        self._by_pair: Dict[Tuple[str, str], str] = {}

    async def record_swipe(
        self,
        viewer_id: str,
        listing_id: str,
        action: SwipeAction,
        counter_offer_listing_id: Optional[str] = None,
    ) -> SwipeDecision:
        with self._lock:
            if (viewer_id, listing_id) in self._by_pair:
                raise DuplicateDecisionError(viewer_id, listing_id)
            decision = SwipeDecision(
                id=str(uuid.uuid4()),
                viewer_id=viewer_id,
                listing_id=listing_id,
                action=action,
                counter_offer_listing_id=counter_offer_listing_id,
            )
            self._decisions[decision.id] = decision
            self._by_pair[(viewer_id, listing_id)] = decision.id
        return decision

    async def delete_swipe(self, decision_id: str, viewer_id: str) -> None:
        with self._lock:
            decision = self._decisions.get(decision_id)
            if decision is None:
                raise InvalidUndoError(f"Decision {decision_id} no longer exists")
            if decision.viewer_id != viewer_id:
                raise OwnershipError(decision_id, viewer_id)
            del self._decisions[decision_id]
            del self._by_pair[(decision.viewer_id, decision.listing_id)]

    async def fetch_decided_ids(self, viewer_id: str) -> Set[str]:
        with self._lock:
            return {lid for (vid, lid) in self._by_pair if vid == viewer_id}

    def decisions_for(self, viewer_id: str) -> List[SwipeDecision]:
        with self._lock:
            return [d for d in self._decisions.values() if d.viewer_id == viewer_id]
