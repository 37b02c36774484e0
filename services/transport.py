"""
Transport Module

This module executes XRPC requests against an atproto service over HTTPS.
It applies a per-attempt timeout, retries transient failures with backoff,
and classifies every failure into the client's error taxonomy so that no raw
``httpx`` exception reaches callers.
"""

import asyncio
import random
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any, Callable, Awaitable

import httpx

from config import settings
from utils.logger import get_logger
from utils.helpers import backoff_delay, parse_retry_after, normalize_service
from utils.exceptions import (
    NetworkError, ServerError, ServiceUnavailableError, RateLimitError,
    AuthExpiredError, ClientError, NotFoundError, MalformedResponseError,
    TransientError,
)

logger = get_logger(__name__)

# XRPC error names that mean the bearer token is no longer accepted
AUTH_EXPIRED_ERRORS = {"ExpiredToken", "InvalidToken"}

# XRPC error names that mean the requested record does not exist
NOT_FOUND_ERRORS = {"NotFound", "RecordNotFound", "PostNotFound"}


@dataclass(frozen=True)
class ApiRequest:
    """A single XRPC call."""
    service: str                                   # Base endpoint, e.g. https://bsky.social
    method: str                                    # GET or POST
    nsid: str                                      # e.g. app.bsky.feed.getTimeline
    params: Dict[str, Any] = field(default_factory=dict)
    json_body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    idempotent: bool = True                        # False: replaying may duplicate a write

    @property
    def url(self) -> str:
        return f"{normalize_service(self.service)}/xrpc/{self.nsid}"

    def with_bearer(self, token: str) -> "ApiRequest":
        return replace(self, headers={**self.headers, "Authorization": f"Bearer {token}"})


@dataclass(frozen=True)
class ApiResponse:
    """A successful (2xx) XRPC response."""
    status_code: int
    data: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


class Transport:
    """Stateless HTTP executor with timeout, retry and error classification."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 timeout: Optional[float] = None,
                 max_attempts: Optional[int] = None,
                 backoff_base: Optional[float] = None,
                 backoff_max: Optional[float] = None,
                 retry_after_max: Optional[float] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 rng: Optional[random.Random] = None):
        """
        Args:
            client: HTTP client to use; one is created when omitted.
            timeout: Seconds per attempt.
            max_attempts: Total attempts per request, the first one included.
            backoff_base: Delay after the first failed attempt.
            backoff_max: Ceiling for computed backoff.
            retry_after_max: Ceiling for server-provided retry hints.
            sleep: Coroutine used to wait between attempts.
            rng: Random source for jitter.
        """
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.MAX_ATTEMPTS)
        self.backoff_base = backoff_base if backoff_base is not None else settings.BACKOFF_BASE
        self.backoff_max = backoff_max if backoff_max is not None else settings.BACKOFF_MAX
        self.retry_after_max = retry_after_max if retry_after_max is not None else settings.RETRY_AFTER_MAX
        self._sleep = sleep
        self._rng = rng
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(headers=settings.REQUEST_HEADERS)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def execute(self, request: ApiRequest) -> ApiResponse:
        """
        Execute a request, retrying transient failures.

        Args:
            request: The XRPC call to make.

        Returns:
            ApiResponse: The decoded 2xx response.

        Raises:
            NetworkError: Connection or timeout failures after all attempts.
            RateLimitError: Still rate limited after all attempts.
            ServiceUnavailableError: 5xx responses after all attempts.
            AuthExpiredError: The bearer token was rejected (never retried here).
            NotFoundError: The service reports the record does not exist.
            ClientError: Any other 4xx response.
            MalformedResponseError: A 2xx body that is not a JSON object.
        """
        last_error: Optional[TransientError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._attempt(request)
            except TransientError as e:
                last_error = e
                if attempt >= self.max_attempts or not self._may_retry(request, e):
                    break
                delay = self._retry_delay(e, attempt)
                logger.warning(
                    f"Retrying {request.method} {request.nsid} after {e.kind} "
                    f"(attempt {attempt}/{self.max_attempts}) in {delay:.2f}s"
                )
                await self._sleep(delay)

        if isinstance(last_error, ServerError):
            raise ServiceUnavailableError(
                f"{request.nsid} failed after {attempt} attempt(s): {last_error}",
                status_code=last_error.status_code,
                error=last_error.error,
            ) from last_error
        logger.error(f"Giving up on {request.method} {request.nsid}: {last_error}")
        raise last_error

    async def _attempt(self, request: ApiRequest) -> ApiResponse:
        try:
            resp = await self._client.request(
                request.method,
                request.url,
                params=request.params or None,
                json=request.json_body,
                headers=request.headers or None,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timed out calling {request.nsid}: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error calling {request.nsid}: {e}") from e

        if resp.status_code >= 400:
            raise self._classify(resp)

        if not resp.content:
            return ApiResponse(resp.status_code, {}, dict(resp.headers))
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"{request.nsid} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{request.nsid} returned {type(data).__name__}, expected an object")
        return ApiResponse(resp.status_code, data, dict(resp.headers))

    def _classify(self, resp: httpx.Response) -> Exception:
        """Map an HTTP error response to the client's error taxonomy."""
        status = resp.status_code
        error, message = _xrpc_error(resp)
        text = f"HTTP {status}" + (f" {error}" if error else "") + (f": {message}" if message else "")

        if status == 429:
            return RateLimitError(text, status_code=status, error=error,
                                  retry_after=parse_retry_after(resp.headers))
        if status >= 500:
            return ServerError(text, status_code=status, error=error)
        if status == 401 or error in AUTH_EXPIRED_ERRORS:
            return AuthExpiredError(text, status_code=status, error=error)
        if status == 404 or error in NOT_FOUND_ERRORS:
            return NotFoundError(text, status_code=status, error=error)
        return ClientError(text, status_code=status, error=error)

    @staticmethod
    def _may_retry(request: ApiRequest, error: TransientError) -> bool:
        """Writes are only replayed when the first attempt cannot have reached the server."""
        if request.idempotent:
            return True
        if isinstance(error, RateLimitError):
            return True
        return (isinstance(error, NetworkError)
                and isinstance(error.__cause__, (httpx.ConnectError, httpx.ConnectTimeout)))

    def _retry_delay(self, error: TransientError, attempt: int) -> float:
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(error.retry_after, self.retry_after_max)
        return backoff_delay(attempt, self.backoff_base, self.backoff_max, rng=self._rng)


def _xrpc_error(resp: httpx.Response):
    """Extract the XRPC ``error`` and ``message`` fields from an error body."""
    try:
        body = resp.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    error = body.get("error") if isinstance(body.get("error"), str) else None
    message = body.get("message") if isinstance(body.get("message"), str) else None
    return error, message
