"""
Shared Test Fixtures for the Social Client

This module provides common fixtures used across all test modules.
Fixtures include a fake XRPC service served through httpx.MockTransport,
token and session factories, wire-record factories and log capture.
"""

import pytest
import inspect
import json
import random
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List, Callable
from unittest.mock import patch
import sys
import os

import httpx
import jwt

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data.models import Session
from services.transport import Transport

SERVICE = "https://example.social"


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def mock_settings():
    """
    Mock the settings seen by the command line driver with test values.

    Prevents tests from picking up real credentials from the environment.

    Usage:
        def test_something(mock_settings):
            mock_settings.AT_PROTOCOL_USERNAME = ""
    """
    with patch('main.settings') as mock_settings_module:
        mock_settings_module.AT_PROTOCOL_USERNAME = "test-bsky-user"
        mock_settings_module.AT_PROTOCOL_PASSWORD = "test-bsky-password"
        mock_settings_module.DEFAULT_SERVICE = SERVICE
        mock_settings_module.LOG_LEVEL = "INFO"
        mock_settings_module.LOG_FILE = ""
        yield mock_settings_module


# =============================================================================
# Fake XRPC Service
# =============================================================================

class FakeXrpc:
    """
    In-memory XRPC service used as an httpx.MockTransport handler.

    Routes map an NSID to a handler taking the httpx.Request. A handler may
    return an httpx.Response, a dict (sent as a 200 JSON body) or a coroutine
    producing either. Unrouted NSIDs answer 501.
    """

    def __init__(self):
        self.routes: Dict[str, Callable] = {}
        self.calls: List[httpx.Request] = []

    def route(self, nsid: str, handler: Callable) -> None:
        self.routes[nsid] = handler

    def count(self, nsid: str) -> int:
        return sum(1 for request in self.calls if nsid_of(request) == nsid)

    def requests(self, nsid: str) -> List[httpx.Request]:
        return [request for request in self.calls if nsid_of(request) == nsid]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get(nsid_of(request))
        if handler is None:
            return httpx.Response(501, json={"error": "MethodNotImplemented"})
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)


def nsid_of(request: httpx.Request) -> str:
    return request.url.path.split("/xrpc/", 1)[-1]


def bearer(request: httpx.Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    return header[len("Bearer "):] if header.startswith("Bearer ") else None


def body(request: httpx.Request) -> Dict[str, Any]:
    return json.loads(request.content)


def xrpc_error(status: int, error: str, message: str = "", headers: Optional[Dict[str, str]] = None):
    return httpx.Response(status, json={"error": error, "message": message}, headers=headers)


@pytest.fixture
def fake_service():
    """An empty fake XRPC service; tests add the routes they need."""
    return FakeXrpc()


@pytest.fixture
def sleeps():
    """Delays requested by the transport, in order."""
    return []


@pytest.fixture
def transport(fake_service, sleeps):
    """
    Transport wired to the fake service.

    Backoff waits are recorded in ``sleeps`` instead of slept.
    """
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_service))
    return Transport(client=client, timeout=10, max_attempts=3, backoff_base=0.5,
                     backoff_max=8, retry_after_max=60, sleep=_sleep, rng=random.Random(7))


# =============================================================================
# Token / Session Factories
# =============================================================================

def make_token(name: str, expires_in: int = 3600) -> str:
    """A signed JWT carrying ``name`` as subject-ish marker and an exp claim."""
    exp = int((datetime.now(timezone.utc) + timedelta(seconds=expires_in)).timestamp())
    return jwt.encode({"scope": "com.atproto.access", "jti": name, "exp": exp}, "test-secret", algorithm="HS256")


@pytest.fixture
def token_factory():
    return make_token


@pytest.fixture
def session_factory():
    """
    Factory fixture for creating Session test objects.

    Usage:
        def test_something(session_factory):
            session = session_factory(access_token="expired", expires_in=-10)
    """
    def _create_session(
        service: str = SERVICE,
        identifier: str = "alice",
        did: str = "did:plc:alice123",
        handle: str = "alice.example.social",
        access_token: str = "access-1",
        refresh_token: str = "refresh-1",
        expires_in: int = 3600,
    ) -> Session:
        return Session(
            service_endpoint=service,
            account_identifier=identifier,
            did=did,
            handle=handle,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )

    return _create_session


# =============================================================================
# Wire Record Factories
# =============================================================================

@pytest.fixture
def post_view_factory():
    """
    Factory fixture for ``app.bsky.feed.defs#postView`` wire objects.

    Usage:
        def test_mapping(post_view_factory):
            view = post_view_factory(rkey="abc", text="hello", like_count=3)
    """
    def _create_post_view(
        rkey: str = "3kpost1",
        did: str = "did:plc:bob456",
        handle: str = "bob.example.social",
        text: str = "Test post content for unit testing.",
        created_at: str = "2024-01-15T10:00:00.000Z",
        like_count: int = 0,
        repost_count: int = 0,
        reply_count: int = 0,
        images: Optional[List[str]] = None,
        viewer_like: Optional[str] = None,
        avatar: Optional[str] = "https://cdn.example.social/avatar/bob.jpg",
        reply: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        view = {
            "uri": f"at://{did}/app.bsky.feed.post/{rkey}",
            "cid": f"bafy{rkey}",
            "author": {"did": did, "handle": handle, "displayName": handle.split(".")[0].title()},
            "record": {"$type": "app.bsky.feed.post", "text": text, "createdAt": created_at},
            "likeCount": like_count,
            "repostCount": repost_count,
            "replyCount": reply_count,
            "indexedAt": created_at,
            "viewer": {},
        }
        if avatar:
            view["author"]["avatar"] = avatar
        if images:
            view["embed"] = {
                "$type": "app.bsky.embed.images#view",
                "images": [{"thumb": url + "@thumb", "fullsize": url, "alt": ""} for url in images],
            }
        if viewer_like:
            view["viewer"]["like"] = viewer_like
        if reply:
            view["record"]["reply"] = reply
        return view

    return _create_post_view


@pytest.fixture
def timeline_dataset(post_view_factory):
    """A static reverse-chronological dataset of 23 posts."""
    return [
        post_view_factory(rkey=f"3k{i:03d}", text=f"post {i}",
                          created_at=f"2024-01-15T10:{59 - i:02d}:00.000Z")
        for i in range(23)
    ]


def serve_feed(dataset: List[Dict[str, Any]]):
    """Handler serving ``dataset`` as a cursor-paginated getTimeline/getFeed."""
    def _handler(request: httpx.Request):
        limit = int(request.url.params.get("limit", 50))
        start = int(request.url.params.get("cursor", "0"))
        chunk = dataset[start:start + limit]
        result = {"feed": [{"post": view} for view in chunk]}
        if start + limit < len(dataset):
            result["cursor"] = str(start + limit)
        return result
    return _handler


# =============================================================================
# Logging Fixtures
# =============================================================================

@pytest.fixture
def capture_logs():
    """
    Capture log messages for assertion in tests.

    Returns:
        list: A list that will contain captured log records.
    """
    import logging

    class LogCapture(logging.Handler):
        def __init__(self):
            super().__init__()
            self.records = []

        def emit(self, record):
            self.records.append(record)

    handler = LogCapture()
    handler.setLevel(logging.DEBUG)

    root_logger = logging.getLogger()
    original_level = root_logger.level
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(handler)

    yield handler.records

    root_logger.removeHandler(handler)
    root_logger.setLevel(original_level)
