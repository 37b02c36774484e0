"""
Social Service Module

This module is the public face of the client core for the AT Protocol
(BlueSky). It provides login, timeline retrieval, posting, liking, replying
and post/thread fetches. Each operation is an independent coroutine composed
from the session manager, the transport, the resource mappers and the feed
paginator, and returns domain objects or raises a typed SocialClientError.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable

from atproto import AtUri
from atproto.exceptions import InvalidAtUriError

from config import settings
from data.models import Page, Post, Session, SessionState
from services.mappers import feed_items, posts_list, thread_root, thread_replies, to_post
from services.paginator import FeedEndpoint, FeedPaginator
from services.protocols import SessionProvider, TransportProtocol
from services.session_service import SessionManager
from services.transport import Transport, ApiRequest
from utils.logger import get_logger
from utils.helpers import is_valid_url, normalize_service, truncate_text
from utils.exceptions import AuthRequiredError, MalformedResponseError, NotFoundError, ValidationError

logger = get_logger(__name__)

POST_COLLECTION = "app.bsky.feed.post"
LIKE_COLLECTION = "app.bsky.feed.like"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SocialService:
    """Client facade for an atproto service."""

    def __init__(self, transport: Optional[TransportProtocol] = None,
                 sessions: Optional[SessionProvider] = None,
                 allow_public_timeline: Optional[bool] = None,
                 public_timeline_feed: Optional[str] = None,
                 post_character_limit: Optional[int] = None,
                 on_refresh: Optional[Callable[[Session], None]] = None):
        """
        Args:
            transport: Transport to use; a default one is created when omitted.
            sessions: Session manager; created over the transport when omitted.
            allow_public_timeline: Serve a public feed to unauthenticated timeline calls.
            public_timeline_feed: at:// URI of the feed generator used for that.
            post_character_limit: Maximum post length.
            on_refresh: Called with every refreshed session.
        """
        self.transport = transport or Transport()
        self.sessions = sessions or SessionManager(self.transport, on_refresh=on_refresh)
        self.paginator = FeedPaginator(self.sessions)
        self.allow_public_timeline = (settings.ALLOW_PUBLIC_TIMELINE
                                      if allow_public_timeline is None else allow_public_timeline)
        self.public_timeline_feed = public_timeline_feed or settings.PUBLIC_TIMELINE_FEED
        self.post_character_limit = post_character_limit or settings.POST_CHARACTER_LIMIT

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "SocialService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    async def login(self, service: str, identifier: str, secret: str) -> Session:
        """
        Log in to a service.

        Args:
            service: Service base endpoint, e.g. https://bsky.social.
            identifier: Handle, DID or email.
            secret: Account or app password.

        Returns:
            Session: The authenticated session.
        """
        return await self.sessions.login(service, identifier, secret)

    async def logout(self, session: Session) -> None:
        """End the session on the service and forget it locally."""
        await self.sessions.logout(session)

    def current_session(self, session: Session) -> Session:
        """Newest credentials for the session, after any refreshes."""
        return self.sessions.current(session)

    def session_state(self, session: Optional[Session]) -> SessionState:
        return self.sessions.state(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_timeline(self, service: str, session: Optional[Session] = None,
                           cursor: Optional[str] = None,
                           limit: Optional[int] = None) -> Page[Post]:
        """
        Fetch one page of the home timeline.

        Without a session, the configured public feed is returned instead when
        public timelines are allowed.

        Args:
            service: Service base endpoint.
            session: Session of the viewer, or None.
            cursor: Cursor of the previous page.
            limit: Page size.

        Returns:
            Page[Post]: Posts in reverse-chronological server order.

        Raises:
            AuthRequiredError: No session and public timelines are disabled.
        """
        service = self._check_service(service, session)
        page_size = limit or settings.TIMELINE_PAGE_SIZE

        if session is None:
            if not self.allow_public_timeline:
                raise AuthRequiredError("Login required to view the timeline")
            endpoint = FeedEndpoint(service, "app.bsky.feed.getFeed", feed_items,
                                    params={"feed": self.public_timeline_feed})
        else:
            endpoint = FeedEndpoint(service, "app.bsky.feed.getTimeline", feed_items)

        page = await self.paginator.fetch_page(session, endpoint, cursor=cursor, page_size=page_size)
        logger.info(f"Retrieved {len(page.items)} timeline posts")
        return page

    async def get_post_detail(self, service: str, session: Optional[Session], post_uri: str) -> Post:
        """
        Fetch a single post.

        Raises:
            ValidationError: The URI is not a post URI.
            NotFoundError: The service reports the post as absent.
        """
        service = self._check_service(service, session)
        self._check_post_uri(post_uri)

        data = await self._call(session, ApiRequest(service, "GET", "app.bsky.feed.getPostThread",
                                                    params={"uri": post_uri, "depth": 0, "parentHeight": 0}))
        return to_post(thread_root(data)["post"])

    async def get_post_replies(self, service: str, session: Optional[Session], post_uri: str,
                               cursor: Optional[str] = None,
                               limit: Optional[int] = None) -> Page[Post]:
        """
        Fetch one page of direct replies to a post.

        Raises:
            ValidationError: The URI is not a post URI or the cursor is invalid.
            NotFoundError: The service reports the post as absent.
        """
        service = self._check_service(service, session)
        self._check_post_uri(post_uri)

        endpoint = FeedEndpoint(service, "app.bsky.feed.getPostThread", thread_replies,
                                params={"uri": post_uri, "depth": 1, "parentHeight": 0},
                                server_cursor=False)
        return await self.paginator.fetch_page(session, endpoint, cursor=cursor,
                                               page_size=limit or settings.REPLIES_PAGE_SIZE)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_post(self, service: str, session: Optional[Session], text: str) -> str:
        """
        Publish a text post.

        Args:
            service: Service base endpoint.
            session: Session of the author.
            text: Post text.

        Returns:
            str: The at:// URI of the new post.

        Raises:
            ValidationError: Empty or too long text (no network call is made).
            AuthRequiredError: No session.
        """
        self._check_text(text)
        service = self._require_session(service, session)

        record = {"$type": POST_COLLECTION, "text": text, "createdAt": _now_iso()}
        uri = await self._create_record(service, session, POST_COLLECTION, record)
        logger.info(f"Successfully posted: {truncate_text(text, 50)}")
        return uri

    async def reply_to_post(self, service: str, session: Optional[Session], post_uri: str, text: str) -> str:
        """
        Publish a reply to a post.

        Returns:
            str: The at:// URI of the reply.

        Raises:
            ValidationError: Empty or too long text, or a malformed post URI.
            AuthRequiredError: No session.
            NotFoundError: The parent post does not exist.
        """
        self._check_text(text)
        self._check_post_uri(post_uri)
        service = self._require_session(service, session)

        data = await self._call(session, ApiRequest(service, "GET", "app.bsky.feed.getPostThread",
                                                    params={"uri": post_uri, "depth": 0, "parentHeight": 0}))
        parent_view = thread_root(data)["post"]
        parent = to_post(parent_view)
        if not parent.cid:
            raise MalformedResponseError("Parent post has no cid")

        parent_ref = {"uri": parent.id, "cid": parent.cid}
        # Replies inherit the thread root of their parent
        parent_reply = parent_view["record"].get("reply")
        root_ref = parent_reply.get("root") if isinstance(parent_reply, dict) else None
        if not (isinstance(root_ref, dict) and isinstance(root_ref.get("uri"), str)
                and isinstance(root_ref.get("cid"), str)):
            root_ref = parent_ref

        record = {
            "$type": POST_COLLECTION,
            "text": text,
            "createdAt": _now_iso(),
            "reply": {"root": {"uri": root_ref["uri"], "cid": root_ref["cid"]}, "parent": parent_ref},
        }
        uri = await self._create_record(service, session, POST_COLLECTION, record)
        logger.info(f"Successfully replied to {post_uri}")
        return uri

    async def like_post(self, service: str, session: Optional[Session], post_uri: str) -> bool:
        """
        Like a post. Liking an already-liked post succeeds without a second like.

        Returns:
            bool: True once the post is liked by the viewer.

        Raises:
            ValidationError: Malformed post URI.
            AuthRequiredError: No session.
            NotFoundError: The post does not exist.
        """
        self._check_post_uri(post_uri)
        service = self._require_session(service, session)

        data = await self._call(session, ApiRequest(service, "GET", "app.bsky.feed.getPosts",
                                                    params={"uris": [post_uri]}))
        views = posts_list(data)
        if not views:
            raise NotFoundError(f"Post not found: {post_uri}", error="NotFound")
        post = to_post(views[0])

        if post.viewer_like:
            logger.info(f"Post already liked: {post_uri}")
            return True
        if not post.cid:
            raise MalformedResponseError("Post has no cid")

        record = {
            "$type": LIKE_COLLECTION,
            "subject": {"uri": post.id, "cid": post.cid},
            "createdAt": _now_iso(),
        }
        await self._create_record(service, session, LIKE_COLLECTION, record)
        logger.info(f"Successfully liked {post_uri}")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _create_record(self, service: str, session: Session, collection: str,
                             record: Dict[str, Any]) -> str:
        current = self.sessions.current(session)
        data = await self._call(session, ApiRequest(service, "POST", "com.atproto.repo.createRecord",
                                                    json_body={"repo": current.did,
                                                               "collection": collection,
                                                               "record": record},
                                                    idempotent=False))
        uri = data.get("uri")
        if not isinstance(uri, str) or not uri:
            raise MalformedResponseError("createRecord response has no uri")
        return uri

    async def _call(self, session: Optional[Session], request: ApiRequest) -> Dict[str, Any]:
        if session is None:
            resp = await self.transport.execute(request)
        else:
            resp = await self.sessions.authenticated_request(session, request)
        return resp.data

    def _check_service(self, service: str, session: Optional[Session]) -> str:
        if not is_valid_url(service):
            raise ValidationError(f"Invalid service endpoint: {service!r}")
        service = normalize_service(service)
        if session is not None and normalize_service(session.service_endpoint) != service:
            raise ValidationError(f"Session belongs to {session.service_endpoint}, not {service}")
        return service

    def _require_session(self, service: str, session: Optional[Session]) -> str:
        service = self._check_service(service, session)
        if session is None:
            raise AuthRequiredError("Login required")
        return service

    def _check_text(self, text: str) -> None:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Post text must not be empty")
        if len(text) > self.post_character_limit:
            raise ValidationError(
                f"Post text is {len(text)} characters, limit is {self.post_character_limit}"
            )

    @staticmethod
    def _check_post_uri(post_uri: str) -> None:
        if not isinstance(post_uri, str) or not post_uri.startswith("at://"):
            raise ValidationError(f"Invalid post URI: {post_uri!r}")
        try:
            uri = AtUri.from_str(post_uri)
        except (InvalidAtUriError, ValueError) as e:
            raise ValidationError(f"Invalid post URI: {post_uri!r}") from e
        if uri.collection != POST_COLLECTION or not uri.rkey:
            raise ValidationError(f"Not a post URI: {post_uri!r}")
