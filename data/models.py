"""
Data Models for the Social Client

This module contains the data classes shared by the session manager, the
resource mappers, the paginator and the client facade. All of them are
immutable; a new value is produced whenever something changes.
"""

import json
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Optional, Tuple, Generic, TypeVar

T = TypeVar("T")


class SessionState(Enum):
    """Lifecycle of a session lineage inside the session manager."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Session:
    """Credentials for one logged-in account on one service."""
    service_endpoint: str              # Base URL, no trailing slash
    account_identifier: str            # Handle or email used at login
    did: str                           # Account DID, used as repo for writes
    handle: str
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_at: datetime               # Access token expiry (UTC)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)  # Stable across refreshes

    def is_expired(self, now: Optional[datetime] = None, skew: int = 0) -> bool:
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=skew) >= self.expires_at

    def to_json(self) -> str:
        """Serialize for storage by the shell."""
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat()
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "Session":
        """Restore a session previously produced by ``to_json``.

        Raises:
            ValueError: If the payload is not a serialized session.
        """
        try:
            data = json.loads(raw)
            data["expires_at"] = datetime.fromisoformat(data["expires_at"])
            return cls(**data)
        except (TypeError, KeyError, json.JSONDecodeError) as e:
            raise ValueError(f"Invalid serialized session: {e}") from e


@dataclass(frozen=True)
class Author:
    """Snapshot of a post author. Identity is the DID; the handle may change."""
    did: str
    handle: str = field(compare=False)
    display_name: str = field(compare=False)
    avatar_url: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class Post:
    """A post as seen by the viewer at fetch time."""
    id: str                                         # at:// URI
    author: Author = field(compare=False)
    text: str = field(compare=False)
    created_at: Optional[datetime] = field(default=None, compare=False)
    images: Tuple[str, ...] = field(default=(), compare=False)
    likes_count: int = field(default=0, compare=False)
    reposts_count: int = field(default=0, compare=False)
    replies_count: int = field(default=0, compare=False)
    cid: Optional[str] = field(default=None, compare=False)
    viewer_like: Optional[str] = field(default=None, compare=False)  # URI of the viewer's like record

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["images"] = list(self.images)
        return data


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a cursor-paginated listing."""
    items: Tuple[T, ...]
    cursor: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.cursor is None
