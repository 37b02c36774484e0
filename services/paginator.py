"""
Feed Paginator

Cursor-driven pagination shared by timeline, public feed and thread-reply
fetches. Callers receive immutable Page objects and pass the returned cursor
back verbatim; a page without a cursor means the listing is exhausted.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from config import settings
from data.models import Page, Post, Session
from services.mappers import to_post
from services.session_service import SessionManager
from services.transport import ApiRequest
from utils.logger import get_logger
from utils.exceptions import MalformedResponseError, ValidationError

logger = get_logger(__name__)


@dataclass(frozen=True)
class FeedEndpoint:
    """Describes one paginated listing."""
    service: str
    nsid: str
    extract: Callable[[Dict[str, Any]], List[Any]]   # Wire records of a response, in order
    params: Dict[str, Any] = field(default_factory=dict)
    mapper: Callable[[Any], Post] = to_post
    server_cursor: bool = True                       # False: service returns everything at once


def _encode_offset(offset: int) -> str:
    return base64.urlsafe_b64encode(f"o:{offset}".encode()).decode()


def _decode_offset(cursor: str) -> int:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode()).decode()
        prefix, value = raw.split(":", 1)
        offset = int(value)
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValidationError(f"Invalid cursor: {cursor!r}") from e
    if prefix != "o" or offset < 0:
        raise ValidationError(f"Invalid cursor: {cursor!r}")
    return offset


class FeedPaginator:
    """Fetches pages of posts, authenticated or public."""

    def __init__(self, sessions: SessionManager):
        self.sessions = sessions

    async def fetch_page(self, session: Optional[Session], endpoint: FeedEndpoint,
                         cursor: Optional[str] = None,
                         page_size: int = settings.TIMELINE_PAGE_SIZE) -> Page[Post]:
        """
        Fetch one page of a listing.

        Args:
            session: Session for authenticated listings, or None for public ones.
            endpoint: The listing to fetch.
            cursor: Cursor from the previous page, None for the first page.
            page_size: Requested number of items, clamped to the service limit.

        Returns:
            Page[Post]: Items in server order and the cursor of the next page.
        """
        page_size = max(1, min(page_size, settings.MAX_PAGE_SIZE))

        if endpoint.server_cursor:
            params = {**endpoint.params, "limit": page_size}
            if cursor:
                params["cursor"] = cursor
            data = await self._call(session, endpoint, params)
            items = self._map(endpoint, endpoint.extract(data))
            next_cursor = data.get("cursor")
            if not isinstance(next_cursor, str) or not next_cursor:
                next_cursor = None
            return Page(items=items, cursor=next_cursor)

        offset = _decode_offset(cursor) if cursor else 0
        data = await self._call(session, endpoint, dict(endpoint.params))
        records = endpoint.extract(data)
        window = records[offset:offset + page_size]
        items = self._map(endpoint, window)
        end = offset + page_size
        next_cursor = _encode_offset(end) if end < len(records) else None
        return Page(items=items, cursor=next_cursor)

    async def iter_pages(self, session: Optional[Session], endpoint: FeedEndpoint,
                         page_size: int = settings.TIMELINE_PAGE_SIZE,
                         max_pages: int = settings.MAX_PAGES) -> AsyncIterator[Page[Post]]:
        """
        Walk a listing from the start until it is exhausted.

        Stops early if the service hands back a cursor it already returned,
        or after ``max_pages`` pages.
        """
        cursor = None
        seen = set()
        for _ in range(max_pages):
            page = await self.fetch_page(session, endpoint, cursor=cursor, page_size=page_size)
            yield page
            if page.cursor is None:
                return
            if page.cursor in seen:
                logger.warning(f"{endpoint.nsid} repeated cursor {page.cursor!r}, stopping")
                return
            seen.add(page.cursor)
            cursor = page.cursor
        logger.warning(f"{endpoint.nsid} still has pages after {max_pages}, stopping")

    async def _call(self, session: Optional[Session], endpoint: FeedEndpoint,
                    params: Dict[str, Any]) -> Dict[str, Any]:
        request = ApiRequest(endpoint.service, "GET", endpoint.nsid, params=params)
        if session is None:
            resp = await self.sessions.transport.execute(request)
        else:
            resp = await self.sessions.authenticated_request(session, request)
        return resp.data

    @staticmethod
    def _map(endpoint: FeedEndpoint, records: List[Any]) -> tuple:
        try:
            return tuple(endpoint.mapper(record) for record in records)
        except MalformedResponseError as e:
            logger.error(f"Malformed item in {endpoint.nsid} response: {e}")
            raise
