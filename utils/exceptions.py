"""
Custom Exception Classes for the Social Client

This module defines the typed error taxonomy surfaced to callers. Every class
carries a stable ``kind`` string so the shell can branch on the failure
without inspecting messages.
"""

from typing import Optional


class SocialClientError(Exception):
    """Base exception for all social client errors."""
    kind = "error"


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(SocialClientError):
    """Raised when configuration validation fails or required settings are missing."""
    kind = "configuration_error"


# =============================================================================
# Client-side Errors
# =============================================================================

class ValidationError(SocialClientError):
    """Raised when caller input is rejected locally, before any network call."""
    kind = "validation_error"


class MalformedResponseError(SocialClientError):
    """Raised when a response lacks required fields or has the wrong shape."""
    kind = "malformed_response"


# =============================================================================
# HTTP / Service Errors
# =============================================================================

class ServiceError(SocialClientError):
    """Base exception for errors reported by the remote service."""

    def __init__(self, message: str = "", status_code: Optional[int] = None,
                 error: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class ClientError(ServiceError):
    """Raised for 4xx responses other than authentication and rate limiting."""
    kind = "client_error"


class NotFoundError(ClientError):
    """Raised when the service reports that the requested record does not exist."""
    kind = "not_found"


# =============================================================================
# Transient Errors
# =============================================================================

class TransientError(ServiceError):
    """Base exception for failures that are retried before being surfaced."""


class NetworkError(TransientError):
    """Raised when the request could not be completed (connect, read, timeout)."""
    kind = "network_error"


class ServerError(TransientError):
    """Raised for a single 5xx response."""
    kind = "server_error"


class ServiceUnavailableError(TransientError):
    """Raised when retries against a failing service are exhausted."""
    kind = "service_unavailable"


class RateLimitError(TransientError):
    """Raised when the service keeps rate limiting after backoff is exhausted."""
    kind = "rate_limited"

    def __init__(self, message: str = "", status_code: Optional[int] = 429,
                 error: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, status_code=status_code, error=error)
        self.retry_after = retry_after


# =============================================================================
# Authentication Errors
# =============================================================================

class AuthenticationError(ServiceError):
    """Base exception for authentication and session errors."""


class AuthExpiredError(AuthenticationError):
    """Raised when the service rejects the access token; the caller should refresh."""
    kind = "auth_expired"


class InvalidCredentialsError(AuthenticationError):
    """Raised when login is rejected by the service."""
    kind = "invalid_credentials"


class SessionExpiredError(AuthenticationError):
    """Raised when a session can no longer be refreshed; a new login is required."""
    kind = "session_expired"


class AuthRequiredError(AuthenticationError):
    """Raised when an operation needs a session and none was provided."""
    kind = "auth_required"
