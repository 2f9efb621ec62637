"""
Centralized settings management using pydantic-settings.

All environment variables and configuration values for the swipe feed
service are defined here. Use get_settings() to access the singleton
settings instance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Required environment variables:
        - SUPABASE_URL: Supabase project URL
        - SUPABASE_SERVICE_KEY: Supabase service role key

    Optional environment variables:
        - SUPABASE_JWT_SECRET: Secret used to verify viewer tokens
        - HOST / PORT: Server bind address
        - ENVIRONMENT: Environment name (development, staging, production)
        - FEED_*: Candidate feed tuning (limits, price ceiling, session TTL)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    # ==========================================================================
    # Server Configuration
    # ==========================================================================
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "capacitor://localhost",
        ],
        description="Allowed CORS origins"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # ==========================================================================
    # Supabase Configuration
    # ==========================================================================
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_service_key: str = Field(..., description="Supabase service role key")
    supabase_jwt_secret: str = Field(
        default="",
        description="JWT secret for token verification (from Supabase dashboard)"
    )

    # ==========================================================================
    # Candidate Feed
    # ==========================================================================
    feed_price_ceiling: float = Field(
        default=5000.0,
        description="Upper price bound treated as 'unset' by the candidate query"
    )
    feed_candidate_limit: int = Field(
        default=200,
        ge=1,
        description="Maximum rows fetched for the primary candidate set"
    )
    feed_fallback_limit: int = Field(
        default=20,
        ge=1,
        description="Maximum rows returned by the relaxed fallback query"
    )
    feed_max_store_exclusions: int = Field(
        default=500,
        ge=0,
        description="Largest swipe-history exclusion list pushed into the store predicate"
    )
    feed_max_candidate_pages: int = Field(
        default=10,
        ge=1,
        description="Pages scanned when filters applied after the fetch thin out a candidate page"
    )
    feed_session_ttl_seconds: int = Field(
        default=3600,
        description="Idle lifetime of an in-memory feed session"
    )

    # ==========================================================================
    # Ranking Context
    # ==========================================================================
    ranking_context_ttl_seconds: int = Field(
        default=60,
        description="TTL for cached featured/boost/favorite-category signals"
    )
    boost_fetch_timeout_seconds: float = Field(
        default=1.5,
        description="How long ranking waits for visibility boosts before defaulting them to 1"
    )

    # ==========================================================================
    # Retry / Backoff
    # ==========================================================================
    fetch_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a candidate fetch before the feed is marked stale"
    )
    fetch_retry_min_wait_seconds: float = Field(default=0.2, description="Initial backoff")
    fetch_retry_max_wait_seconds: float = Field(default=2.0, description="Backoff ceiling")


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses lru_cache to ensure only one instance is created.
    Settings are loaded from environment variables and .env file.

    Returns:
        Settings: The application settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    env_file = Path(__file__).parent.parent.parent / ".env"
    if env_file.exists():
        os.environ.setdefault("ENV_FILE", str(env_file))

    return Settings(_env_file=env_file if env_file.exists() else None)


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a settings instance for testing with optional overrides.

    This bypasses the cache to allow different settings in tests.

    Args:
        **overrides: Setting values to override

    Returns:
        Settings: A new settings instance with overrides applied
    """
    test_defaults = {
        "supabase_url": "https://test.supabase.co",
        "supabase_service_key": "test-key",
        "supabase_jwt_secret": "test-jwt-secret-for-unit-tests-only",
        "environment": "testing",
        "debug": True,
        "fetch_retry_min_wait_seconds": 0.0,
        "fetch_retry_max_wait_seconds": 0.0,
    }
    test_defaults.update(overrides)

    return Settings(_env_file=None, **test_defaults)
