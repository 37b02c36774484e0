"""
Session Service Module

This module owns the credential lifecycle for atproto accounts: login,
token refresh, authenticated request execution and logout.

Sessions handed to callers are immutable values. The manager keeps the newest
token pair for every session lineage (identified by ``Session.session_id``) so
that a caller holding an older value transparently uses the refreshed tokens.
Refresh is single-flight per lineage: concurrent callers that need a refresh
await the same in-flight task.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Dict, Callable, Set

from config import settings
from data.models import Session, SessionState
from services.transport import Transport, ApiRequest, ApiResponse
from utils.logger import get_logger
from utils.helpers import is_valid_url, normalize_service, token_expiry
from utils.exceptions import (
    AuthExpiredError, ClientError, InvalidCredentialsError, MalformedResponseError,
    NetworkError, ServiceUnavailableError, SessionExpiredError, SocialClientError,
    ValidationError,
)

logger = get_logger(__name__)

CREATE_SESSION = "com.atproto.server.createSession"
REFRESH_SESSION = "com.atproto.server.refreshSession"
DELETE_SESSION = "com.atproto.server.deleteSession"


class SessionManager:
    """Sole owner and writer of session tokens."""

    def __init__(self, transport: Transport,
                 on_refresh: Optional[Callable[[Session], None]] = None,
                 expiry_skew: Optional[int] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        """
        Args:
            transport: Transport used for every call.
            on_refresh: Called with the new session after each successful refresh,
                so the shell can persist the new credentials.
            expiry_skew: Seconds before expiry at which a token counts as expired.
            clock: Returns the current UTC time.
        """
        self.transport = transport
        self.on_refresh = on_refresh
        self.expiry_skew = expiry_skew if expiry_skew is not None else settings.TOKEN_EXPIRY_SKEW
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._states: Dict[str, SessionState] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._invalidated: Set[str] = set()

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    async def login(self, service: str, identifier: str, secret: str) -> Session:
        """
        Exchange account credentials for a token pair.

        Args:
            service: Service base endpoint.
            identifier: Handle, DID or email.
            secret: Account or app password.

        Returns:
            Session: A new authenticated session.

        Raises:
            ValidationError: Missing credentials or malformed endpoint (no network call).
            InvalidCredentialsError: The service rejected the credentials.
            ServiceUnavailableError: Repeated 5xx or network failures.
            RateLimitError: Still rate limited after backoff.
            MalformedResponseError: The response lacks the token pair.
        """
        if not is_valid_url(service):
            raise ValidationError(f"Invalid service endpoint: {service!r}")
        if not identifier or not identifier.strip():
            raise ValidationError("Identifier is required")
        if not secret:
            raise ValidationError("Password is required")

        service = normalize_service(service)
        identifier = identifier.strip()
        request = ApiRequest(service, "POST", CREATE_SESSION,
                             json_body={"identifier": identifier, "password": secret})

        try:
            resp = await self.transport.execute(request)
        except (AuthExpiredError, ClientError) as e:
            logger.error(f"Login rejected for {identifier} on {service}: {e}")
            raise InvalidCredentialsError(str(e), status_code=e.status_code, error=e.error) from e
        except NetworkError as e:
            raise ServiceUnavailableError(f"Could not reach {service}: {e}") from e

        session = self._session_from_response(resp, service=service, identifier=identifier)
        self._store(session, SessionState.AUTHENTICATED)
        logger.info(f"Successfully logged in to {service} as {session.handle}")
        return session

    async def logout(self, session: Session) -> None:
        """
        End a session on the service and forget it locally.

        The remote call is best effort; the lineage is invalidated even when
        the service cannot be reached.
        """
        current = self.current(session)
        request = ApiRequest(current.service_endpoint, "POST", DELETE_SESSION).with_bearer(current.refresh_token)
        try:
            await self.transport.execute(request)
        except SocialClientError as e:
            logger.warning(f"deleteSession failed for {current.handle}, forgetting session locally: {e}")
        self.invalidate(session)
        logger.info(f"Logged out {current.handle}")

    def invalidate(self, session: Session) -> None:
        """
        Forget a session lineage without contacting the service.

        The lineage can never be used again. A refresh already in flight is
        left to finish; its waiters get SessionExpiredError.
        """
        self._invalidated.add(session.session_id)
        self._sessions.pop(session.session_id, None)
        self._states[session.session_id] = SessionState.UNAUTHENTICATED

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def state(self, session: Optional[Session]) -> SessionState:
        """Current lifecycle state of the session's lineage."""
        if session is None:
            return SessionState.UNAUTHENTICATED
        return self._states.get(session.session_id, SessionState.UNAUTHENTICATED)

    def current(self, session: Session) -> Session:
        """Newest known value of the session's lineage (the session itself if unknown)."""
        return self._sessions.get(session.session_id, session)

    def _check_usable(self, session: Session) -> None:
        if session.session_id in self._invalidated:
            raise SessionExpiredError("Session was logged out, login required")
        if self._states.get(session.session_id) == SessionState.EXPIRED:
            raise SessionExpiredError("Session expired, login required")

    def _store(self, session: Session, state: SessionState) -> None:
        self._sessions[session.session_id] = session
        self._states[session.session_id] = state

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, session: Session) -> Session:
        """
        Obtain a new token pair for the session.

        Idempotent: if the lineage already holds newer tokens than ``session``
        they are returned without a network call. Concurrent calls for the same
        lineage share a single in-flight refresh; a cancelled caller detaches
        from it without aborting it.

        Raises:
            SessionExpiredError: The refresh token was rejected; login again.
            NetworkError, ServiceUnavailableError, RateLimitError: The refresh
                could not be completed; the session stays usable for a retry.
        """
        lineage = session.session_id
        self._check_usable(session)

        latest = self._sessions.get(lineage)
        if latest is not None and latest.access_token != session.access_token:
            return latest

        task = self._inflight.get(lineage)
        if task is None:
            task = asyncio.ensure_future(self._refresh(latest or session))
            self._inflight[lineage] = task
            task.add_done_callback(lambda t: self._refresh_done(lineage, t))
        return await asyncio.shield(task)

    def _refresh_done(self, lineage: str, task: asyncio.Task) -> None:
        if self._inflight.get(lineage) is task:
            del self._inflight[lineage]
        # Mark the exception retrieved; waiters (if any) re-raise it themselves
        if not task.cancelled():
            task.exception()

    async def _refresh(self, session: Session) -> Session:
        lineage = session.session_id
        self._states[lineage] = SessionState.REFRESHING
        logger.info(f"Refreshing session for {session.handle}")

        request = ApiRequest(session.service_endpoint, "POST", REFRESH_SESSION).with_bearer(session.refresh_token)
        try:
            resp = await self.transport.execute(request)
        except (AuthExpiredError, ClientError) as e:
            if lineage not in self._invalidated:
                self._states[lineage] = SessionState.EXPIRED
            logger.error(f"Refresh rejected for {session.handle}, session expired: {e}")
            raise SessionExpiredError(str(e), status_code=e.status_code, error=e.error) from e
        except BaseException as e:
            # Transient failure or cancellation: the old tokens stay in place
            if self._states.get(lineage) == SessionState.REFRESHING:
                self._states[lineage] = SessionState.AUTHENTICATED
            if lineage in self._invalidated and isinstance(e, Exception):
                raise SessionExpiredError("Session was invalidated during refresh") from e
            raise

        try:
            refreshed = self._session_from_response(resp, previous=session)
        except MalformedResponseError:
            if self._states.get(lineage) == SessionState.REFRESHING:
                self._states[lineage] = SessionState.AUTHENTICATED
            raise

        if lineage in self._invalidated or self._states.get(lineage) != SessionState.REFRESHING:
            # Invalidated while the refresh was in flight
            raise SessionExpiredError("Session was invalidated during refresh")

        self._store(refreshed, SessionState.AUTHENTICATED)
        logger.info(f"Successfully refreshed session for {refreshed.handle}")
        if self.on_refresh is not None:
            self.on_refresh(refreshed)
        return refreshed

    # ------------------------------------------------------------------
    # Authenticated requests
    # ------------------------------------------------------------------

    async def authenticated_request(self, session: Session, request: ApiRequest) -> ApiResponse:
        """
        Execute a request with the session's access token.

        An expired token is refreshed before use. If the service rejects the
        token, exactly one refresh is attempted and the request is retried
        once. Login is never retried automatically.

        Raises:
            SessionExpiredError: The session cannot be refreshed or was rejected
                again after a refresh.
        """
        self._check_usable(session)

        current = self.current(session)
        if current.is_expired(self._clock(), self.expiry_skew):
            current = await self.refresh(current)

        try:
            return await self.transport.execute(request.with_bearer(current.access_token))
        except AuthExpiredError:
            logger.info(f"Access token rejected for {current.handle} on {request.nsid}, refreshing")

        current = await self.refresh(current)
        try:
            return await self.transport.execute(request.with_bearer(current.access_token))
        except AuthExpiredError as e:
            self._states[current.session_id] = SessionState.EXPIRED
            raise SessionExpiredError(f"Token rejected after refresh: {e}",
                                      status_code=e.status_code, error=e.error) from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _session_from_response(self, resp: ApiResponse, service: Optional[str] = None,
                               identifier: Optional[str] = None,
                               previous: Optional[Session] = None) -> Session:
        data = resp.data
        access = data.get("accessJwt")
        refresh = data.get("refreshJwt")
        if not isinstance(access, str) or not access or not isinstance(refresh, str) or not refresh:
            raise MalformedResponseError("Session response is missing accessJwt/refreshJwt")

        expires_at = token_expiry(access, settings.ACCESS_TOKEN_TTL, now=self._clock())

        if previous is not None:
            did = data.get("did") if isinstance(data.get("did"), str) and data.get("did") else previous.did
            handle = data.get("handle") if isinstance(data.get("handle"), str) and data.get("handle") else previous.handle
            return replace(previous, did=did, handle=handle, access_token=access,
                           refresh_token=refresh, expires_at=expires_at)

        did = data.get("did")
        if not isinstance(did, str) or not did:
            raise MalformedResponseError("Session response is missing did")
        handle = data.get("handle") if isinstance(data.get("handle"), str) and data.get("handle") else identifier

        return Session(
            service_endpoint=service,
            account_identifier=identifier,
            did=did,
            handle=handle,
            access_token=access,
            refresh_token=refresh,
            expires_at=expires_at,
        )
