"""
Configuration Validation for the Social Client

This module contains configuration validation logic.
Extracted from settings.py for better separation of concerns.
"""

from urllib.parse import urlparse

from utils.exceptions import ConfigurationError


def validate_settings():
    """
    Validate that all required settings are properly configured.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    # Import settings here to avoid circular imports
    from config import settings

    errors = []

    parsed = urlparse(settings.DEFAULT_SERVICE or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        errors.append(f"DEFAULT_SERVICE must be an http(s) URL, got {settings.DEFAULT_SERVICE!r}")

    if settings.ALLOW_PUBLIC_TIMELINE and not (settings.PUBLIC_TIMELINE_FEED or "").startswith("at://"):
        errors.append("ALLOW_PUBLIC_TIMELINE is true but PUBLIC_TIMELINE_FEED is not an at:// URI")

    # Validate numeric settings are within reasonable bounds
    numeric_validations = [
        ("MAX_ATTEMPTS", settings.MAX_ATTEMPTS, 1, 10),
        ("POST_CHARACTER_LIMIT", settings.POST_CHARACTER_LIMIT, 1, 10000),
        ("MAX_POST_IMAGES", settings.MAX_POST_IMAGES, 0, 10),
        ("TIMELINE_PAGE_SIZE", settings.TIMELINE_PAGE_SIZE, 1, settings.MAX_PAGE_SIZE),
        ("REPLIES_PAGE_SIZE", settings.REPLIES_PAGE_SIZE, 1, settings.MAX_PAGE_SIZE),
        ("TOKEN_EXPIRY_SKEW", settings.TOKEN_EXPIRY_SKEW, 0, 3600),
    ]

    for name, value, min_val, max_val in numeric_validations:
        if value < min_val or value > max_val:
            errors.append(f"{name} must be between {min_val} and {max_val}, got {value}")

    # Validate timeout values are positive
    timeout_settings = [
        ("REQUEST_TIMEOUT", settings.REQUEST_TIMEOUT),
        ("BACKOFF_BASE", settings.BACKOFF_BASE),
        ("BACKOFF_MAX", settings.BACKOFF_MAX),
        ("RETRY_AFTER_MAX", settings.RETRY_AFTER_MAX),
        ("ACCESS_TOKEN_TTL", settings.ACCESS_TOKEN_TTL),
    ]

    for name, value in timeout_settings:
        if value <= 0:
            errors.append(f"{name} must be positive, got {value}")

    if settings.BACKOFF_BASE > settings.BACKOFF_MAX:
        errors.append(f"BACKOFF_BASE ({settings.BACKOFF_BASE}) must not exceed BACKOFF_MAX ({settings.BACKOFF_MAX})")

    # Raise all errors at once
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)

    return True


def get_config_summary() -> dict:
    """
    Returns a summary of current configuration (without sensitive values).
    Useful for logging startup state.
    """
    # Import settings here to avoid circular imports
    from config import settings

    return {
        "service": settings.DEFAULT_SERVICE,
        "credentials_configured": bool(settings.AT_PROTOCOL_USERNAME and settings.AT_PROTOCOL_PASSWORD),
        "transport": {
            "timeout": settings.REQUEST_TIMEOUT,
            "max_attempts": settings.MAX_ATTEMPTS,
            "backoff": f"{settings.BACKOFF_BASE}s..{settings.BACKOFF_MAX}s",
        },
        "timeline": {
            "page_size": settings.TIMELINE_PAGE_SIZE,
            "public_fallback": settings.ALLOW_PUBLIC_TIMELINE,
        },
        "content": {
            "post_char_limit": settings.POST_CHARACTER_LIMIT,
        },
    }
