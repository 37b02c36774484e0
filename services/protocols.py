"""
Service Protocol Definitions

This module defines typing.Protocol interfaces for the client core. These
protocols enable loose coupling, dependency injection, and easier testing.

Protocols defined:
- TransportProtocol: Interface for executing XRPC requests
- SessionProvider: Interface for session lifecycle and authenticated requests
- SocialClientProtocol: Interface consumed by the shell
"""

from typing import Protocol, Optional

from data.models import Page, Post, Session, SessionState
from services.transport import ApiRequest, ApiResponse


class TransportProtocol(Protocol):
    """Protocol defining the interface for request execution.

    Implementations must classify failures into the client error taxonomy
    and never let raw HTTP library exceptions escape.
    """

    async def execute(self, request: ApiRequest) -> ApiResponse:
        """Execute a request, retrying transient failures.

        Args:
            request: The XRPC call to make.

        Returns:
            The decoded 2xx response.
        """
        ...

    async def aclose(self) -> None:
        ...


class SessionProvider(Protocol):
    """Protocol defining the interface for session management."""

    transport: TransportProtocol

    async def login(self, service: str, identifier: str, secret: str) -> Session:
        ...

    async def logout(self, session: Session) -> None:
        ...

    async def refresh(self, session: Session) -> Session:
        """Obtain new tokens; concurrent calls for one session share a single refresh."""
        ...

    async def authenticated_request(self, session: Session, request: ApiRequest) -> ApiResponse:
        """Execute a request with the session's token, refreshing once on rejection."""
        ...

    def current(self, session: Session) -> Session:
        ...

    def state(self, session: Optional[Session]) -> SessionState:
        ...


class SocialClientProtocol(Protocol):
    """Protocol defining the operations the shell invokes.

    Every operation either returns a domain value or raises a
    SocialClientError subclass whose ``kind`` the shell can branch on.
    """

    async def login(self, service: str, identifier: str, secret: str) -> Session:
        ...

    async def get_timeline(self, service: str, session: Optional[Session] = None,
                           cursor: Optional[str] = None,
                           limit: Optional[int] = None) -> Page[Post]:
        ...

    async def create_post(self, service: str, session: Optional[Session], text: str) -> str:
        ...

    async def like_post(self, service: str, session: Optional[Session], post_uri: str) -> bool:
        ...

    async def get_post_detail(self, service: str, session: Optional[Session], post_uri: str) -> Post:
        ...

    async def get_post_replies(self, service: str, session: Optional[Session], post_uri: str,
                               cursor: Optional[str] = None,
                               limit: Optional[int] = None) -> Page[Post]:
        ...
