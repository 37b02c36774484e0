"""
Helper Utility Module

This module provides various helper functions used throughout the social client.
"""

import random
import time
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime
from typing import Optional, Dict, Any
from urllib.parse import urlparse

import jwt


def is_valid_url(url: str) -> bool:
    """
    Check if a URL is a usable http(s) service endpoint.

    Args:
        url: The URL to validate

    Returns:
        bool: True if the URL is valid, False otherwise
    """
    try:
        result = urlparse(url)
        return result.scheme in ("http", "https") and bool(result.netloc)
    except (TypeError, ValueError, AttributeError):
        return False


def normalize_service(url: str) -> str:
    """Strip trailing slashes so endpoints compare equal."""
    return url.rstrip("/")


def backoff_delay(attempt: int, base: float, cap: float,
                  factor: float = 2.0, rng: Optional[random.Random] = None) -> float:
    """
    Exponential backoff with jitter for the given attempt number.

    Args:
        attempt: The attempt that just failed, starting at 1
        base: Delay after the first failure in seconds
        cap: Maximum delay in seconds
        factor: Multiplier for the delay between attempts
        rng: Random source, injectable for tests

    Returns:
        float: Seconds to wait before the next attempt
    """
    rng = rng or random
    wait_time = min(cap, base * (factor ** (attempt - 1)))
    # Equal jitter: at least half the computed delay
    return wait_time / 2 + rng.uniform(0, wait_time / 2)


def parse_retry_after(headers: Dict[str, str], now: Optional[float] = None) -> Optional[float]:
    """
    Read a server-provided retry hint from response headers.

    Understands ``Retry-After`` (delta seconds or HTTP-date) and the
    ``RateLimit-Reset`` epoch seconds header used by atproto services.

    Args:
        headers: Response headers (case-insensitive mapping)
        now: Current epoch seconds, injectable for tests

    Returns:
        Optional[float]: Seconds to wait, or None if no usable hint is present
    """
    now = time.time() if now is None else now

    retry_after = headers.get("retry-after")
    if retry_after:
        retry_after = retry_after.strip()
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(retry_after)
            return max(0.0, when.timestamp() - now)
        except (TypeError, ValueError):
            pass

    reset = headers.get("ratelimit-reset")
    if reset:
        try:
            return max(0.0, float(reset) - now)
        except ValueError:
            pass

    return None


def token_expiry(token: str, default_ttl: int, now: Optional[datetime] = None) -> datetime:
    """
    Determine when an access token expires.

    The token is decoded without verifying its signature; only the ``exp``
    claim is read. Opaque or undecodable tokens fall back to ``default_ttl``.

    Args:
        token: The access token
        default_ttl: Lifetime in seconds assumed when no exp claim is available
        now: Current time, injectable for tests

    Returns:
        datetime: Timezone-aware UTC expiry
    """
    now = now or datetime.now(timezone.utc)
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError:
        return now + timedelta(seconds=default_ttl)

    exp = claims.get("exp")
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    return now + timedelta(seconds=default_ttl)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp as sent by atproto services.

    Args:
        value: The raw wire value

    Returns:
        Optional[datetime]: Timezone-aware datetime, or None if unparsable
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def safe_get(data: Dict[str, Any], *keys, default: Any = None) -> Any:
    """
    Safely get a value from a nested dictionary.

    Args:
        data: The dictionary to search
        *keys: The keys to follow
        default: Default value if key doesn't exist

    Returns:
        The value at the specified keys or the default value
    """
    for key in keys:
        try:
            data = data[key]
        except (KeyError, TypeError, IndexError):
            return default
    return data


def truncate_text(text: str, max_length: int = 100, add_ellipsis: bool = True) -> str:
    """
    Truncate text to a maximum length.

    Args:
        text: The text to truncate
        max_length: Maximum length
        add_ellipsis: Whether to add an ellipsis if text is truncated

    Returns:
        str: Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    truncated = text[:max_length].rstrip()
    if add_ellipsis:
        truncated += "..."

    return truncated
