"""
Pytest configuration and shared fixtures for the swipe feed tests.
"""
import os
import sys
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

# Settings are read from the environment; unit tests never talk to Supabase
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-for-unit-tests-only")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("FETCH_RETRY_MIN_WAIT_SECONDS", "0")
os.environ.setdefault("FETCH_RETRY_MAX_WAIT_SECONDS", "0")


VIEWER_ID = "viewer-001"
OTHER_VIEWER_ID = "viewer-002"
BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Fixtures: Test Data Factories
# ============================================================================

def make_listing(
    listing_id: str,
    owner_id: str = "owner-a",
    category: str = "electronics",
    kind: str = "good",
    price: float = 100.0,
    age_minutes: int = 0,
    **overrides: Any,
):
    """Build a Listing; larger age_minutes means older."""
    from feed.models import Listing, ListingKind

    fields: Dict[str, Any] = dict(
        id=listing_id,
        owner_id=owner_id,
        kind=ListingKind(kind),
        category=category,
        title=f"Listing {listing_id}",
        price=price,
        condition="used" if kind == "good" else None,
        created_at=BASE_TIME - timedelta(minutes=age_minutes),
    )
    fields.update(overrides)
    return Listing(**fields)


@pytest.fixture
def listing_factory():
    return make_listing


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def sample_listing_row() -> dict:
    """A `products` row as returned by PostgREST."""
    return {
        "id": "prod-001",
        "user_id": "owner-a",
        "title": "Bicicleta de montaña",
        "description": "Rodado 29, poco uso",
        "estimated_value": 350,
        "additional_value": None,
        "images": ["https://cdn.example.com/p1.jpg"],
        "location": "Santiago",
        "category": "sports",
        "condition": "used",
        "product_type": "product",
        "status": "active",
        "created_at": "2025-03-01T12:00:00.123456789Z",
    }


# ============================================================================
# Fixtures: In-Memory Collaborators
# ============================================================================

@pytest.fixture
def viewer_id() -> str:
    return VIEWER_ID


@pytest.fixture
def memory_ledger():
    from feed.swipe_ledger import InMemorySwipeLedger
    return InMemorySwipeLedger()


@pytest.fixture
def signal_source():
    from feed.ranking_context import InMemoryRankingSignalSource
    return InMemoryRankingSignalSource()


@pytest.fixture
def context_provider(signal_source):
    from feed.ranking_context import RankingContextProvider
    return RankingContextProvider(signal_source, ttl_seconds=60, boost_timeout_seconds=1.0)


@pytest.fixture
def engine_config():
    from feed.engine import EngineConfig
    return EngineConfig(retry_attempts=3, retry_min_wait_seconds=0.0, retry_max_wait_seconds=0.0)


# ============================================================================
# Fixtures: Mock Supabase
# ============================================================================

class RecordingQuery:
    """
    Stand-in for a PostgREST request builder.

    Every builder call is recorded and returns the builder itself, so tests
    can assert on the exact filter chain. execute() returns `data` or raises
    `error`.
    """

    def __init__(self, data: Optional[List[dict]] = None, error: Optional[Exception] = None):
        self.calls: List[tuple] = []
        self.data = data if data is not None else []
        self.error = error
        self.executed = 0

    @property
    def not_(self) -> "RecordingQuery":
        self.calls.append(("not_", (), {}))
        return self

    def __getattr__(self, name: str):
        if name.startswith("__"):
            raise AttributeError(name)

        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return method

    def execute(self):
        self.executed += 1
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.data)

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def called_with(self, name: str) -> List[tuple]:
        return [c[1] for c in self.calls if c[0] == name]


class RecordingClient:
    """Supabase client whose tables hand out RecordingQuery builders."""

    def __init__(self, tables: Optional[Dict[str, RecordingQuery]] = None):
        self.tables = dict(tables or {})
        self.table_calls: List[str] = []

    def table(self, name: str) -> RecordingQuery:
        self.table_calls.append(name)
        if name not in self.tables:
            self.tables[name] = RecordingQuery()
        return self.tables[name]


@pytest.fixture
def recording_client() -> RecordingClient:
    return RecordingClient()


@pytest.fixture
def query_factory():
    return RecordingQuery


@pytest.fixture
def client_factory():
    return RecordingClient


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "supabase: marks tests that require Supabase")


def pytest_collection_modifyitems(config, items):
    """Skip live Supabase tests unless RUN_SUPABASE_TESTS is set."""
    if os.environ.get("RUN_SUPABASE_TESTS"):
        return
    skip_live = pytest.mark.skip(reason="set RUN_SUPABASE_TESTS=1 to run against a live project")
    for item in items:
        if "supabase" in item.keywords:
            item.add_marker(skip_live)


# ============================================================================
# JWT Token Generation
# ============================================================================

def generate_test_jwt(user_id: str = VIEWER_ID, exp_hours: int = 24) -> str:
    """
    Generate a Supabase-style JWT signed with the test secret.

    Args:
        user_id: The user ID to include in the token
        exp_hours: Hours until token expires (default 24)
    """
    import jwt

    now = int(time.time())
    payload = {
        "sub": user_id,
        "aud": "authenticated",
        "role": "authenticated",
        "email": f"{user_id}@test.com",
        "exp": now + (exp_hours * 3600),
        "iat": now,
    }
    return jwt.encode(payload, os.environ["SUPABASE_JWT_SECRET"], algorithm="HS256")


@pytest.fixture
def auth_headers() -> dict:
    """Auth headers with a Bearer token for VIEWER_ID."""
    return {"Authorization": f"Bearer {generate_test_jwt()}"}


@pytest.fixture
def auth_headers_for():
    """Build auth headers for an arbitrary viewer."""
    def build(user_id: str) -> dict:
        return {"Authorization": f"Bearer {generate_test_jwt(user_id)}"}
    return build
