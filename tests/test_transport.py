"""
Tests for the Transport - request execution, retry and error classification

Tests cover success decoding, retry of network/5xx/429 failures with backoff
and Retry-After, classification of 4xx responses, and exhaustion behaviour.
"""

import asyncio
import pytest
import httpx
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import SERVICE, xrpc_error, bearer
from services.transport import ApiRequest, Transport
from utils.exceptions import (
    NetworkError, ServiceUnavailableError, RateLimitError, AuthExpiredError,
    ClientError, NotFoundError, MalformedResponseError, SocialClientError,
)

NSID = "app.bsky.feed.getTimeline"


def _request(**kwargs) -> ApiRequest:
    return ApiRequest(SERVICE, "GET", NSID, **kwargs)


# =============================================================================
# Success Tests
# =============================================================================

class TestSuccess:
    """Tests for successful request execution."""

    def test_returns_decoded_json(self, fake_service, transport):
        """A 200 JSON object is returned as ApiResponse.data."""
        fake_service.route(NSID, lambda r: {"feed": [], "cursor": "abc"})

        resp = asyncio.run(transport.execute(_request()))

        assert resp.status_code == 200
        assert resp.data == {"feed": [], "cursor": "abc"}

    def test_builds_xrpc_url_and_params(self, fake_service, transport):
        """Requests go to {service}/xrpc/{nsid} with query params and headers."""
        fake_service.route(NSID, lambda r: {})

        request = ApiRequest(SERVICE + "/", "GET", NSID, params={"limit": 5}).with_bearer("tok")
        asyncio.run(transport.execute(request))

        sent = fake_service.calls[0]
        assert str(sent.url) == f"{SERVICE}/xrpc/{NSID}?limit=5"
        assert bearer(sent) == "tok"

    def test_empty_body_is_empty_dict(self, fake_service, transport):
        """A 200 without a body maps to an empty dict."""
        fake_service.route(NSID, lambda r: httpx.Response(200))

        resp = asyncio.run(transport.execute(_request()))

        assert resp.data == {}

    def test_non_json_body_is_malformed(self, fake_service, transport):
        """A 200 with a non-JSON body raises MalformedResponseError without retry."""
        fake_service.route(NSID, lambda r: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(MalformedResponseError):
            asyncio.run(transport.execute(_request()))
        assert fake_service.count(NSID) == 1

    def test_json_array_is_malformed(self, fake_service, transport):
        """A JSON body that is not an object raises MalformedResponseError."""
        fake_service.route(NSID, lambda r: httpx.Response(200, json=[1, 2]))

        with pytest.raises(MalformedResponseError):
            asyncio.run(transport.execute(_request()))


# =============================================================================
# Retry Tests
# =============================================================================

class TestRetry:
    """Tests for retry of transient failures."""

    def test_retries_server_error_then_succeeds(self, fake_service, transport, sleeps):
        """5xx responses are retried and a later success is returned."""
        responses = iter([xrpc_error(502, "UpstreamFailure"), xrpc_error(503, "Unavailable"), {"ok": True}])
        fake_service.route(NSID, lambda r: next(responses))

        resp = asyncio.run(transport.execute(_request()))

        assert resp.data == {"ok": True}
        assert fake_service.count(NSID) == 3
        assert len(sleeps) == 2

    def test_server_error_exhaustion_is_service_unavailable(self, fake_service, transport):
        """Exhausted 5xx retries surface as ServiceUnavailableError."""
        fake_service.route(NSID, lambda r: xrpc_error(500, "InternalServerError"))

        with pytest.raises(ServiceUnavailableError) as exc_info:
            asyncio.run(transport.execute(_request()))

        assert fake_service.count(NSID) == 3
        assert exc_info.value.kind == "service_unavailable"
        assert exc_info.value.status_code == 500

    def test_network_error_retried_then_surfaces(self, fake_service, transport):
        """Connection failures are retried and surface as NetworkError."""
        def _handler(request):
            raise httpx.ConnectError("connection refused", request=request)
        fake_service.route(NSID, _handler)

        with pytest.raises(NetworkError) as exc_info:
            asyncio.run(transport.execute(_request()))

        assert fake_service.count(NSID) == 3
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_timeout_is_network_error(self, fake_service, transport):
        """Timeouts are classified as NetworkError."""
        def _handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)
        fake_service.route(NSID, _handler)

        with pytest.raises(NetworkError):
            asyncio.run(transport.execute(_request()))

    def test_backoff_grows_and_is_capped(self, fake_service, sleeps):
        """Computed backoff grows exponentially, stays within the cap and keeps jitter bounds."""
        fake_service.route(NSID, lambda r: xrpc_error(500, "InternalServerError"))

        async def _sleep(delay):
            sleeps.append(delay)

        client = httpx.AsyncClient(transport=httpx.MockTransport(fake_service))
        transport = Transport(client=client, max_attempts=5, backoff_base=1, backoff_max=4, sleep=_sleep)

        with pytest.raises(ServiceUnavailableError):
            asyncio.run(transport.execute(_request()))

        ceilings = [1, 2, 4, 4]
        assert len(sleeps) == 4
        for delay, ceiling in zip(sleeps, ceilings):
            assert ceiling / 2 <= delay <= ceiling

    def test_rate_limit_honours_retry_after(self, fake_service, transport, sleeps):
        """429 with Retry-After waits the server-provided delay."""
        responses = iter([xrpc_error(429, "RateLimitExceeded", headers={"Retry-After": "7"}), {"ok": True}])
        fake_service.route(NSID, lambda r: next(responses))

        resp = asyncio.run(transport.execute(_request()))

        assert resp.data == {"ok": True}
        assert sleeps == [7.0]

    def test_rate_limit_retry_after_is_capped(self, fake_service, transport, sleeps):
        """Server retry hints above the ceiling are capped."""
        responses = iter([xrpc_error(429, "RateLimitExceeded", headers={"Retry-After": "3600"}), {"ok": True}])
        fake_service.route(NSID, lambda r: next(responses))

        asyncio.run(transport.execute(_request()))

        assert sleeps == [60]

    def test_rate_limit_without_hint_uses_backoff(self, fake_service, transport, sleeps):
        """429 without hints falls back to jittered exponential backoff."""
        responses = iter([xrpc_error(429, "RateLimitExceeded"), {"ok": True}])
        fake_service.route(NSID, lambda r: next(responses))

        asyncio.run(transport.execute(_request()))

        assert len(sleeps) == 1
        assert 0.25 <= sleeps[0] <= 0.5

    def test_rate_limit_exhaustion(self, fake_service, transport):
        """Persistent 429 surfaces as RateLimitError carrying the last hint."""
        fake_service.route(NSID, lambda r: xrpc_error(429, "RateLimitExceeded", headers={"Retry-After": "2"}))

        with pytest.raises(RateLimitError) as exc_info:
            asyncio.run(transport.execute(_request()))

        assert fake_service.count(NSID) == 3
        assert exc_info.value.retry_after == 2.0
        assert exc_info.value.kind == "rate_limited"


class TestNonIdempotentRetry:
    """Tests for writes that must not be replayed after they may have landed."""

    def _write(self) -> ApiRequest:
        return ApiRequest(SERVICE, "POST", "com.atproto.repo.createRecord",
                          json_body={"repo": "did:plc:alice123"}, idempotent=False)

    def test_server_error_not_retried(self, fake_service, transport, sleeps):
        """A 5xx on a write is reported after a single attempt."""
        fake_service.route("com.atproto.repo.createRecord", lambda r: xrpc_error(502, "UpstreamFailure"))

        with pytest.raises(ServiceUnavailableError):
            asyncio.run(transport.execute(self._write()))

        assert fake_service.count("com.atproto.repo.createRecord") == 1
        assert sleeps == []

    def test_read_timeout_not_retried(self, fake_service, transport):
        """A timeout after sending a write is not replayed."""
        def _handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)
        fake_service.route("com.atproto.repo.createRecord", _handler)

        with pytest.raises(NetworkError):
            asyncio.run(transport.execute(self._write()))

        assert fake_service.count("com.atproto.repo.createRecord") == 1

    def test_connect_error_retried(self, fake_service, transport):
        """A write that never connected is safe to retry."""
        def _handler(request):
            if fake_service.count("com.atproto.repo.createRecord") == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return {"uri": "at://x", "cid": "bafy"}
        fake_service.route("com.atproto.repo.createRecord", _handler)

        resp = asyncio.run(transport.execute(self._write()))

        assert resp.data["uri"] == "at://x"
        assert fake_service.count("com.atproto.repo.createRecord") == 2

    def test_rate_limit_retried(self, fake_service, transport, sleeps):
        """A 429 means the write was not processed, so it is retried."""
        responses = iter([xrpc_error(429, "RateLimitExceeded", headers={"Retry-After": "1"}), {"uri": "at://x"}])
        fake_service.route("com.atproto.repo.createRecord", lambda r: next(responses))

        asyncio.run(transport.execute(self._write()))

        assert fake_service.count("com.atproto.repo.createRecord") == 2
        assert sleeps == [1.0]

    def test_flag_survives_bearer(self):
        assert self._write().with_bearer("tok").idempotent is False


# =============================================================================
# Classification Tests
# =============================================================================

class TestClassification:
    """Tests for classification of non-retryable responses."""

    @pytest.mark.parametrize("status,error", [
        (401, "AuthenticationRequired"),
        (400, "ExpiredToken"),
        (400, "InvalidToken"),
    ])
    def test_auth_expired(self, fake_service, transport, status, error):
        """Rejected tokens raise AuthExpiredError and are not retried."""
        fake_service.route(NSID, lambda r: xrpc_error(status, error))

        with pytest.raises(AuthExpiredError) as exc_info:
            asyncio.run(transport.execute(_request()))

        assert fake_service.count(NSID) == 1
        assert exc_info.value.error == error

    @pytest.mark.parametrize("status,error", [(404, None), (400, "NotFound"), (400, "RecordNotFound")])
    def test_not_found(self, fake_service, transport, status, error):
        """Absence is reported as NotFoundError, a ClientError."""
        fake_service.route(NSID, lambda r: xrpc_error(status, error) if error else httpx.Response(status))

        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(transport.execute(_request()))

        assert isinstance(exc_info.value, ClientError)
        assert fake_service.count(NSID) == 1

    def test_other_client_error(self, fake_service, transport):
        """Other 4xx responses raise ClientError with the XRPC error and message."""
        fake_service.route(NSID, lambda r: xrpc_error(400, "InvalidRequest", "limit must be <= 100"))

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.execute(_request()))

        error = exc_info.value
        assert type(error) is ClientError
        assert error.status_code == 400
        assert error.error == "InvalidRequest"
        assert "limit must be <= 100" in str(error)
        assert fake_service.count(NSID) == 1

    def test_errors_are_typed(self, fake_service, transport):
        """No raw httpx exception escapes the transport."""
        def _handler(request):
            raise httpx.RemoteProtocolError("bad framing", request=request)
        fake_service.route(NSID, _handler)

        with pytest.raises(SocialClientError):
            asyncio.run(transport.execute(_request()))


class TestLifecycle:
    """Tests for client ownership."""

    def test_injected_client_is_not_closed(self, fake_service):
        """aclose leaves an injected HTTP client open."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(fake_service))
        transport = Transport(client=client)

        asyncio.run(transport.aclose())

        assert not client.is_closed
