"""
Configuration Settings for the Social Client

This module centralizes all configuration settings for the social client core,
including environment variables, credentials for the command line driver, and
transport/pagination constants.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Determine the application root directory
APP_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(APP_ROOT, '.env'))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# AT Protocol (BlueSky) Authentication, used by the CLI only
AT_PROTOCOL_USERNAME = os.getenv("AT_PROTOCOL_USERNAME")
AT_PROTOCOL_PASSWORD = os.getenv("AT_PROTOCOL_PASSWORD")

# Default service endpoint (PDS / entryway)
DEFAULT_SERVICE = os.getenv("DEFAULT_SERVICE", "https://bsky.social")

# =============================================================================
# Transport Settings
# =============================================================================

REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10"))    # Seconds per attempt
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", "3"))             # Attempts per request, first one included
BACKOFF_BASE = float(os.getenv("BACKOFF_BASE", "0.5"))         # Seconds before the second attempt
BACKOFF_MAX = float(os.getenv("BACKOFF_MAX", "8"))             # Ceiling for computed backoff
RETRY_AFTER_MAX = float(os.getenv("RETRY_AFTER_MAX", "60"))    # Ceiling for server-provided retry hints

# =============================================================================
# Session Settings
# =============================================================================

ACCESS_TOKEN_TTL = int(os.getenv("ACCESS_TOKEN_TTL", "7200"))  # Used when the JWT carries no exp claim
TOKEN_EXPIRY_SKEW = int(os.getenv("TOKEN_EXPIRY_SKEW", "30"))  # Refresh this many seconds before expiry

# =============================================================================
# Content Settings
# =============================================================================

POST_CHARACTER_LIMIT = 300           # BlueSky post length limit
MAX_POST_IMAGES = 4                  # Images kept per post

# =============================================================================
# Pagination Settings
# =============================================================================

TIMELINE_PAGE_SIZE = int(os.getenv("TIMELINE_PAGE_SIZE", "50"))
REPLIES_PAGE_SIZE = int(os.getenv("REPLIES_PAGE_SIZE", "25"))
MAX_PAGE_SIZE = 100                  # Server-side limit for feed endpoints
MAX_PAGES = 1000                     # Safety bound for full pagination walks

# Unauthenticated timeline: fetch a public feed generator instead of failing
ALLOW_PUBLIC_TIMELINE = _env_bool("ALLOW_PUBLIC_TIMELINE", True)
PUBLIC_TIMELINE_FEED = os.getenv(
    "PUBLIC_TIMELINE_FEED",
    "at://did:plc:z72i7hdynmk6r22z27h6tvur/app.bsky.feed.generator/whats-hot"
)

# =============================================================================
# HTTP Settings
# =============================================================================

USER_AGENT = 'social-client-core/1.0 (+https://atproto.com)'
REQUEST_HEADERS = {
    'User-Agent': USER_AGENT,
    'Accept': 'application/json',
}

# =============================================================================
# Logging Settings
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "")
