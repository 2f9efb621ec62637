"""
Configuration module for the swipe feed service.

This module provides centralized configuration management using pydantic-settings.
All environment variables and configuration values should be accessed through this module.

Usage:
    from config import get_settings

    settings = get_settings()
    limit = settings.feed_fallback_limit
"""

from config.settings import Settings, get_settings, get_settings_for_testing

__all__ = ["Settings", "get_settings", "get_settings_for_testing"]
