"""
Supabase client and table checks.

The listing, swipe and premium tables all live in the hosted Supabase
Postgres; every store adapter in the feed package talks to it through the
single client returned here. The health routes use check_tables() to report
which of those tables the service key can actually read.
"""

from functools import lru_cache
from typing import Any, Dict, Iterable, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from config.settings import get_settings
from core.logging import get_logger


logger = get_logger(__name__)


class SupabaseClientError(Exception):
    """Raised when Supabase client cannot be created."""


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Get the singleton Supabase client (service role).

    Raises:
        SupabaseClientError: missing or malformed credentials
    """
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_service_key:
        raise SupabaseClientError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
    try:
        client = create_client(settings.supabase_url, settings.supabase_service_key)
    except Exception as e:
        raise SupabaseClientError(f"Failed to create Supabase client: {e}") from e
    logger.info("Supabase client created", url=settings.supabase_url)
    return client


def get_supabase_client_optional() -> Optional[Client]:
    """Like get_supabase_client(), but None when the client cannot be built."""
    try:
        return get_supabase_client()
    except SupabaseClientError as e:
        logger.warning("Supabase not configured", error=str(e))
        return None


def check_tables(client: Any, tables: Iterable[str]) -> Dict[str, Optional[str]]:
    """
    Read one row from each table.

    Returns:
        table name -> None when readable, else the error message
    """
    results: Dict[str, Optional[str]] = {}
    for table in tables:
        try:
            client.table(table).select("*").limit(1).execute()
            results[table] = None
        except (APIError, httpx.HTTPError, OSError) as e:
            results[table] = str(e) or type(e).__name__
    return results
