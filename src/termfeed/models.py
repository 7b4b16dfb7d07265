"""Data models for termfeed."""

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_feed_id() -> str:
    """Generate a stable feed id at subscribe time."""
    return uuid.uuid4().hex


def make_item_id(feed_id: str, key: str) -> str:
    """Derive an item id from its feed and the entry's stable key."""
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
    return f"{feed_id}-{digest}"


@dataclass
class Feed:
    """Represents a subscribed RSS/Atom source."""

    url: str
    title: str
    category: str | None = None
    last_fetched_at: datetime | None = None
    last_error: str | None = None
    error_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_feed_id)


@dataclass
class Item:
    """Represents a single entry from a feed."""

    feed_id: str
    key: str
    title: str
    link: str | None = None
    summary: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    is_read: bool = False
    is_bookmarked: bool = False
    fetched_at: datetime = field(default_factory=utcnow)
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = make_item_id(self.feed_id, self.key)


@dataclass
class Category:
    """A user-defined label grouping feeds."""

    name: str
    expanded: bool = True
    id: str = field(default_factory=new_feed_id)


@dataclass
class RefreshTask:
    """A feed fetch scheduled not before a monotonic clock reading."""

    feed_id: str
    url: str
    host: str
    not_before: float


@dataclass
class StoredState:
    """Serialized form of the feed store."""

    feeds: list[Feed] = field(default_factory=list)
    items: list[Item] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
