"""
Resource Mappers

Pure functions translating atproto wire JSON (``app.bsky.*`` views) into the
client's Post and Author models. Required fields are validated and mapping
fails closed with MalformedResponseError; optional fields default to absent
and unknown fields are ignored.
"""

from typing import Any, Dict, List, Optional, Tuple

from config import settings
from data.models import Author, Post
from utils.helpers import parse_timestamp, safe_get
from utils.exceptions import MalformedResponseError, NotFoundError

IMAGES_VIEW = "app.bsky.embed.images#view"
RECORD_WITH_MEDIA_VIEW = "app.bsky.embed.recordWithMedia#view"
THREAD_VIEW_POST = "app.bsky.feed.defs#threadViewPost"
NOT_FOUND_POST = "app.bsky.feed.defs#notFoundPost"
BLOCKED_POST = "app.bsky.feed.defs#blockedPost"


def _require_str(record: Dict[str, Any], key: str, where: str) -> str:
    value = record.get(key)
    if not isinstance(value, str):
        raise MalformedResponseError(f"{where}.{key} is missing or not a string")
    return value


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(0, value)


def to_author(record: Any) -> Author:
    """
    Map an ``app.bsky.actor.defs#profileViewBasic`` object to an Author.

    Raises:
        MalformedResponseError: If the record is not an object or has no DID.
    """
    if not isinstance(record, dict):
        raise MalformedResponseError("author is missing or not an object")
    did = _require_str(record, "did", "author")
    if not did:
        raise MalformedResponseError("author.did is empty")

    handle = _optional_str(record.get("handle")) or did
    return Author(
        did=did,
        handle=handle,
        display_name=_optional_str(record.get("displayName")) or handle,
        avatar_url=_optional_str(record.get("avatar")),
    )


def _images(embed: Any) -> Tuple[str, ...]:
    if not isinstance(embed, dict):
        return ()
    if embed.get("$type") == RECORD_WITH_MEDIA_VIEW:
        embed = embed.get("media")
        if not isinstance(embed, dict):
            return ()
    if embed.get("$type") != IMAGES_VIEW or not isinstance(embed.get("images"), list):
        return ()

    urls = []
    for image in embed["images"]:
        if not isinstance(image, dict):
            continue
        url = _optional_str(image.get("fullsize")) or _optional_str(image.get("thumb"))
        if url:
            urls.append(url)
    return tuple(urls[:settings.MAX_POST_IMAGES])


def to_post(record: Any) -> Post:
    """
    Map an ``app.bsky.feed.defs#postView`` object to a Post.

    Args:
        record: The decoded postView.

    Returns:
        Post: The mapped post.

    Raises:
        MalformedResponseError: If uri, author.did or record.text are absent
            or of the wrong type.
    """
    if not isinstance(record, dict):
        raise MalformedResponseError("post is missing or not an object")

    uri = _require_str(record, "uri", "post")
    if not uri:
        raise MalformedResponseError("post.uri is empty")
    author = to_author(record.get("author"))

    body = record.get("record")
    if not isinstance(body, dict):
        raise MalformedResponseError("post.record is missing or not an object")
    text = _require_str(body, "text", "post.record")

    created_at = parse_timestamp(body.get("createdAt")) or parse_timestamp(record.get("indexedAt"))

    return Post(
        id=uri,
        author=author,
        text=text,
        created_at=created_at,
        images=_images(record.get("embed")),
        likes_count=_count(record.get("likeCount")),
        reposts_count=_count(record.get("repostCount")),
        replies_count=_count(record.get("replyCount")),
        cid=_optional_str(record.get("cid")),
        viewer_like=_optional_str(safe_get(record, "viewer", "like")),
    )


# =============================================================================
# Response envelope helpers
# =============================================================================

def feed_items(payload: Dict[str, Any]) -> List[Any]:
    """Post views of a ``getTimeline``/``getFeed`` response, in server order."""
    feed = payload.get("feed")
    if not isinstance(feed, list):
        raise MalformedResponseError("feed is missing or not a list")
    posts = []
    for item in feed:
        if not isinstance(item, dict):
            raise MalformedResponseError("feed item is not an object")
        posts.append(item.get("post"))
    return posts


def posts_list(payload: Dict[str, Any]) -> List[Any]:
    """Post views of a ``getPosts`` response."""
    posts = payload.get("posts")
    if not isinstance(posts, list):
        raise MalformedResponseError("posts is missing or not a list")
    return posts


def thread_root(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    The thread node of a ``getPostThread`` response.

    Raises:
        NotFoundError: The service reports the post as not found or blocked.
        MalformedResponseError: The thread is missing or not a post node.
    """
    thread = payload.get("thread")
    if not isinstance(thread, dict):
        raise MalformedResponseError("thread is missing or not an object")
    kind = thread.get("$type")
    if kind in (NOT_FOUND_POST, BLOCKED_POST) or thread.get("notFound") is True:
        raise NotFoundError(f"Post not available: {thread.get('uri')}", error="NotFound")
    if kind not in (None, THREAD_VIEW_POST) or not isinstance(thread.get("post"), dict):
        raise MalformedResponseError(f"Unexpected thread node type: {kind}")
    return thread


def thread_replies(payload: Dict[str, Any]) -> List[Any]:
    """Post views of the direct replies in a ``getPostThread`` response.

    Reply nodes that are not posts (deleted, blocked) are skipped.
    """
    replies = thread_root(payload).get("replies") or []
    if not isinstance(replies, list):
        raise MalformedResponseError("thread.replies is not a list")
    posts = []
    for node in replies:
        if not isinstance(node, dict):
            continue
        if node.get("$type", THREAD_VIEW_POST) != THREAD_VIEW_POST:
            continue
        posts.append(node.get("post"))
    return posts
