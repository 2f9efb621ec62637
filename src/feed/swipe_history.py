"""
Per-viewer set of already-decided listing ids.

Seeded from the durable ledger when a feed opens, then kept in step by the
swipe session (add on advance, discard on undo). Every candidate fetch
excludes it.
"""

from typing import FrozenSet, Iterable, Optional, Set


class SwipeHistory:
    """Decided listing ids for one viewer."""

    def __init__(self, viewer_id: str, listing_ids: Optional[Iterable[str]] = None):
        self.viewer_id = viewer_id
        self._ids: Set[str] = set(listing_ids or ())

    def __contains__(self, listing_id: str) -> bool:
        return listing_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, listing_id: str) -> None:
        self._ids.add(listing_id)

    def discard(self, listing_id: str) -> None:
        self._ids.discard(listing_id)

    def replace(self, listing_ids: Iterable[str]) -> None:
        self._ids = set(listing_ids)

    def snapshot(self) -> FrozenSet[str]:
        """Immutable copy handed to fetches running concurrently with swipes."""
        return frozenset(self._ids)
