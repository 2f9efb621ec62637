"""
Tests for the swipe feed HTTP routes.
"""

import logging
import re

import httpx
import pytest
from fastapi.testclient import TestClient

from api.routes.feed import FeedBackend, get_feed_backend
from feed.candidate_store import InMemoryCandidateStore
from feed.errors import LedgerWriteError, OwnershipError
from feed.registry import FeedSessionRegistry, get_feed_registry
from feed.swipe_ledger import InMemorySwipeLedger


ANSI = re.compile(r"\x1b\[[0-9;]*m")
VIEWER = re.compile(r"viewer_id\W+viewer-001")
FEED = re.compile(r"feed_id\W+tab-log")


class BrokenLedger(InMemorySwipeLedger):
    """Ledger whose writes fail with the configured errors."""

    def __init__(self, record_error=None, delete_error=None):
        super().__init__()
        self.record_error = record_error
        self.delete_error = delete_error

    async def record_swipe(self, viewer_id, listing_id, action, counter_offer_listing_id=None):
        if self.record_error is not None:
            raise self.record_error
        return await super().record_swipe(viewer_id, listing_id, action, counter_offer_listing_id)

    async def delete_swipe(self, decision_id, viewer_id):
        if self.delete_error is not None:
            raise self.delete_error
        return await super().delete_swipe(decision_id, viewer_id)


@pytest.fixture
def catalog(listing_factory):
    return [
        listing_factory("book-1", category="books", age_minutes=1),
        listing_factory("book-2", category="books", age_minutes=2),
        listing_factory("tool-1", category="tools", age_minutes=3),
    ]


@pytest.fixture
def make_client(catalog, context_provider):
    """Build a TestClient over in-memory backends."""
    clients = []

    def build(ledger=None):
        from api.app import create_app

        app = create_app()
        backend = FeedBackend(
            store=InMemoryCandidateStore(catalog),
            ledger=ledger or InMemorySwipeLedger(),
            context_provider=context_provider,
        )
        registry = FeedSessionRegistry()
        app.dependency_overrides[get_feed_backend] = lambda: backend
        app.dependency_overrides[get_feed_registry] = lambda: registry
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield build

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


def open_feed(client, headers, **body):
    response = client.post("/api/feed/open", json=body, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


class TestAuth:

    def test_requires_token(self, client):
        response = client.post("/api/feed/open", json={})
        assert response.status_code == 401

    def test_rejects_bad_token(self, client):
        response = client.post("/api/feed/open", json={}, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401


class TestFeedFlow:

    def test_open_returns_first_card(self, client, auth_headers):
        body = open_feed(client, auth_headers)

        assert body["feed_id"].startswith("feed_")
        assert body["state"] == "ready"
        assert body["current"]["id"] == "book-1"
        assert body["has_more"] is True
        assert body["showing_fallback"] is False
        assert body["total"] == 3

    def test_client_supplied_feed_id(self, client, auth_headers):
        body = open_feed(client, auth_headers, feed_id="tab-1")
        assert body["feed_id"] == "tab-1"

    def test_dislike_then_undo(self, client, auth_headers):
        feed_id = open_feed(client, auth_headers)["feed_id"]

        swiped = client.post(f"/api/feed/{feed_id}/dislike", headers=auth_headers)
        assert swiped.status_code == 200
        assert swiped.json()["decision"]["listing_id"] == "book-1"
        assert swiped.json()["current"]["id"] == "book-2"
        assert swiped.json()["can_undo"] is True

        undone = client.post(f"/api/feed/{feed_id}/undo", headers=auth_headers)
        assert undone.status_code == 200
        assert undone.json()["undone"] is True
        assert undone.json()["current"]["id"] == "book-1"

        again = client.post(f"/api/feed/{feed_id}/undo", headers=auth_headers)
        assert again.json()["undone"] is False

    def test_like_with_counter_offer(self, client, auth_headers):
        feed_id = open_feed(client, auth_headers)["feed_id"]

        response = client.post(
            f"/api/feed/{feed_id}/like",
            json={"counter_offer_listing_id": "my-guitar"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["decision"]["counter_offer_listing_id"] == "my-guitar"
        assert response.json()["can_undo"] is False

    def test_swiping_an_exhausted_feed_conflicts(self, client, auth_headers):
        feed_id = open_feed(client, auth_headers)["feed_id"]
        for _ in range(3):
            assert client.post(f"/api/feed/{feed_id}/like", headers=auth_headers).status_code == 200

        status = client.get(f"/api/feed/{feed_id}", headers=auth_headers).json()
        assert status["state"] == "exhausted"
        assert status["current"] is None

        response = client.post(f"/api/feed/{feed_id}/like", headers=auth_headers)
        assert response.status_code == 409

    def test_filters_can_trigger_fallback(self, client, auth_headers):
        feed_id = open_feed(client, auth_headers)["feed_id"]

        response = client.put(
            f"/api/feed/{feed_id}/filters",
            json={"categories": ["electronics"]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["showing_fallback"] is True
        assert response.json()["total"] == 3

    def test_feeds_are_private(self, client, auth_headers, auth_headers_for):
        feed_id = open_feed(client, auth_headers)["feed_id"]

        response = client.get(f"/api/feed/{feed_id}", headers=auth_headers_for("someone-else"))

        assert response.status_code == 404

    def test_close_feed(self, client, auth_headers):
        feed_id = open_feed(client, auth_headers)["feed_id"]

        assert client.delete(f"/api/feed/{feed_id}", headers=auth_headers).status_code == 200
        assert client.get(f"/api/feed/{feed_id}", headers=auth_headers).status_code == 404

    def test_refresh_endpoint(self, client, auth_headers):
        feed_id = open_feed(client, auth_headers)["feed_id"]

        response = client.post(f"/api/feed/{feed_id}/refresh", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["current"]["id"] == "book-1"


class TestErrorMapping:

    def test_ledger_failure_is_retryable(self, make_client, auth_headers):
        client = make_client(BrokenLedger(record_error=LedgerWriteError("insert failed")))
        feed_id = open_feed(client, auth_headers)["feed_id"]

        response = client.post(f"/api/feed/{feed_id}/dislike", headers=auth_headers)
        assert response.status_code == 503

        # The same card is still on screen
        status = client.get(f"/api/feed/{feed_id}", headers=auth_headers).json()
        assert status["current"]["id"] == "book-1"

    def test_ownership_error_is_forbidden(self, make_client, auth_headers):
        client = make_client(BrokenLedger(delete_error=OwnershipError("dec-1", "viewer-001")))
        feed_id = open_feed(client, auth_headers)["feed_id"]
        client.post(f"/api/feed/{feed_id}/dislike", headers=auth_headers)

        response = client.post(f"/api/feed/{feed_id}/undo", headers=auth_headers)

        assert response.status_code == 403


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_live(self, client):
        assert client.get("/live").json() == {"status": "alive"}

    def test_detailed_degraded_when_signal_table_unreadable(
        self, client, client_factory, query_factory, monkeypatch
    ):
        supabase = client_factory({"featured_products": query_factory(error=httpx.ConnectError("down"))})
        monkeypatch.setattr("api.routes.health.get_supabase_client_optional", lambda: supabase)

        body = client.get("/health/detailed").json()

        assert body["status"] == "degraded"
        assert body["checks"]["supabase"] == "configured"
        assert body["checks"]["tables"]["featured_products"] == "down"
        assert body["checks"]["tables"]["products"] == "ok"

    def test_detailed_unhealthy_without_ledger(self, client, client_factory, query_factory, monkeypatch):
        supabase = client_factory({"swipes": query_factory(error=OSError("refused"))})
        monkeypatch.setattr("api.routes.health.get_supabase_client_optional", lambda: supabase)

        assert client.get("/health/detailed").json()["status"] == "unhealthy"

    def test_detailed_unhealthy_without_client(self, client, monkeypatch):
        monkeypatch.setattr("api.routes.health.get_supabase_client_optional", lambda: None)

        body = client.get("/health/detailed").json()

        assert body["status"] == "unhealthy"
        assert body["checks"]["supabase"] == "not_configured"
        assert body["checks"]["tables"] == {}


class TestCheckTables:

    def test_reports_each_table(self, client_factory, query_factory):
        from config.database import check_tables

        supabase = client_factory({"swipes": query_factory(error=OSError("refused"))})

        assert check_tables(supabase, ["products", "swipes"]) == {"products": None, "swipes": "refused"}
        assert supabase.tables["products"].called_with("limit") == [(1,)]

    def test_unexpected_errors_propagate(self, client_factory, query_factory):
        from config.database import check_tables

        supabase = client_factory({"products": query_factory(error=KeyError("bug"))})

        with pytest.raises(KeyError):
            check_tables(supabase, ["products"])


class TestRequestLogging:

    def test_feed_lines_carry_viewer_and_feed_ids(self, client, auth_headers, caplog):
        caplog.set_level(logging.INFO)

        open_feed(client, auth_headers, feed_id="tab-log")
        client.post("/api/feed/tab-log/dislike", headers=auth_headers)

        lines = [ANSI.sub("", r.getMessage()) for r in caplog.records]
        for event in ("Feed opened", "Feed snapshot loaded", "Card swiped"):
            matching = [line for line in lines if event in line]
            assert matching, event
            assert all(VIEWER.search(line) and FEED.search(line) for line in matching)

        completed = [line for line in lines if "Request completed" in line and "/dislike" in line]
        assert completed and FEED.search(completed[0])

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


class TestFeedIdFromPath:

    @pytest.mark.parametrize("path,expected", [
        ("/api/feed/tab-1", "tab-1"),
        ("/api/feed/tab-1/dislike", "tab-1"),
        ("/api/feed/open", None),
        ("/health", None),
    ])
    def test_feed_id_from_path(self, path, expected):
        from core.middleware import feed_id_from_path

        assert feed_id_from_path(path) == expected
