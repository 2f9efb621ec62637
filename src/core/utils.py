"""
Core Utility Functions.

Common utilities used across the application.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a Postgres/PostgREST timestamp into an aware datetime.

    PostgREST returns ISO-8601 strings, sometimes with a trailing 'Z' and
    sometimes with more than six fractional digits. Naive values are
    assumed to be UTC.

    Examples:
        >>> parse_timestamp("2025-01-31T10:00:00Z").isoformat()
        '2025-01-31T10:00:00+00:00'
        >>> parse_timestamp(None) is None
        True
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        # Trim fractional seconds to microseconds
        if "." in text:
            head, _, tail = text.partition(".")
            digits = ""
            rest = ""
            for i, ch in enumerate(tail):
                if ch.isdigit():
                    digits += ch
                else:
                    rest = tail[i:]
                    break
            text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def safe_get(obj: Any, *keys: str, default: Any = None) -> Any:
    """
    Safely get nested dictionary values.

    Example:
        >>> safe_get({'plan': {'visibility_boost': 2}}, 'plan', 'visibility_boost')
        2
        >>> safe_get({'plan': None}, 'plan', 'visibility_boost', default=1)
        1
    """
    current = obj
    for key in keys:
        if isinstance(current, dict):
            current = current.get(key)
        elif hasattr(current, key):
            current = getattr(current, key)
        else:
            return default
        if current is None:
            return default
    return current
