"""In-memory feed store: the single owner of feeds, items and categories."""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime

from termfeed.errors import CategoryError, DuplicateUrl
from termfeed.feed_parser import ParsedFeed
from termfeed.models import Category, Feed, Item, StoredState, make_item_id, utcnow
from termfeed.throttle import extract_host

logger = logging.getLogger(__name__)

DEFAULT_DASHBOARD_LIMIT = 100


def newest_first(items) -> list[Item]:
    """Order items by publish time, newest first; undated items go last."""
    dated = sorted(
        (i for i in items if i.published_at is not None),
        key=lambda i: i.published_at,
        reverse=True,
    )
    return dated + [i for i in items if i.published_at is None]


@dataclass(frozen=True)
class StoreSnapshot:
    """Read-only copy of the store taken between mutations."""

    version: int
    feeds: tuple[Feed, ...]
    categories: tuple[Category, ...]
    items: dict[str, Item]
    feed_items: dict[str, tuple[str, ...]]

    def feed(self, feed_id: str) -> Feed | None:
        for feed in self.feeds:
            if feed.id == feed_id:
                return feed
        return None

    def item(self, item_id: str) -> Item | None:
        return self.items.get(item_id)

    def category(self, category_id: str) -> Category | None:
        for category in self.categories:
            if category.id == category_id:
                return category
        return None

    def items_for_feed(self, feed_id: str) -> list[Item]:
        ids = self.feed_items.get(feed_id, ())
        return newest_first([self.items[i] for i in ids])

    def unread_count(self, feed_id: str) -> int:
        return sum(1 for i in self.feed_items.get(feed_id, ()) if not self.items[i].is_read)

    def dashboard_items(self, limit: int = DEFAULT_DASHBOARD_LIMIT) -> list[Item]:
        """Items across all feeds, newest first, truncated to limit."""
        all_items = [self.items[i] for feed in self.feeds for i in self.feed_items[feed.id]]
        return newest_first(all_items)[:max(0, limit)]

    def search(self, query: str) -> list[Item]:
        """Case-insensitive substring search over item title and summary.

        A query matching a feed's title returns every item of that feed.
        """
        needle = query.strip().lower()
        if not needle:
            return []
        matches = []
        for feed in self.feeds:
            feed_match = needle in feed.title.lower()
            for item_id in self.feed_items[feed.id]:
                item = self.items[item_id]
                if (
                    feed_match
                    or needle in item.title.lower()
                    or (item.summary and needle in item.summary.lower())
                ):
                    matches.append(item)
        return newest_first(matches)


class FeedStore:
    """Feeds, items and categories keyed by opaque ids.

    Every mutation runs under one lock and bumps ``version``; readers take a
    ``snapshot()`` which is never observed mid-mutation.
    """

    def __init__(self):
        self._feeds: dict[str, Feed] = {}
        self._items: dict[str, Item] = {}
        self._feed_items: dict[str, list[str]] = {}
        self._categories: dict[str, Category] = {}
        self._lock = threading.RLock()
        self._version = 0
        self._snapshot: StoreSnapshot | None = None

    @property
    def version(self) -> int:
        return self._version

    def __contains__(self, feed_id: str) -> bool:
        with self._lock:
            return feed_id in self._feeds

    def _changed(self) -> None:
        self._version += 1

    # --- Feed operations ---

    def add_feed(self, url: str, category: str | None = None) -> str:
        """Subscribe to url and return the new feed id.

        Raises:
            InvalidUrl: If url is not an http(s) URL.
            DuplicateUrl: If url is already subscribed.
        """
        url = url.strip()
        extract_host(url)
        with self._lock:
            if any(f.url == url for f in self._feeds.values()):
                raise DuplicateUrl(f"Already subscribed to {url}")
            if category:
                self._ensure_category(category)
            feed = Feed(url=url, title=url, category=category or None)
            self._feeds[feed.id] = feed
            self._feed_items[feed.id] = []
            self._changed()
            logger.info("Subscribed to %s", url)
            return feed.id

    def remove_feed(self, feed_id: str) -> bool:
        """Delete a feed and all of its items. Returns True if deleted."""
        with self._lock:
            feed = self._feeds.pop(feed_id, None)
            if feed is None:
                return False
            for item_id in self._feed_items.pop(feed_id, []):
                self._items.pop(item_id, None)
            self._changed()
            logger.info("Unsubscribed from %s", feed.url)
            return True

    def merge_fetch_result(
        self, feed_id: str, parsed: ParsedFeed, fetched_at: datetime | None = None
    ) -> int:
        """Merge fetched entries into a feed. Returns count of new items.

        Known entries are updated in place keeping their read and bookmark
        flags; entries no longer present upstream are kept.
        """
        fetched_at = fetched_at or utcnow()
        with self._lock:
            feed = self._feeds[feed_id]
            inserted = 0
            for entry in parsed.entries:
                item_id = make_item_id(feed_id, entry.key)
                existing = self._items.get(item_id)
                if existing is not None:
                    existing.title = entry.title
                    existing.link = entry.link
                    existing.summary = entry.summary
                    existing.author = entry.author
                    existing.published_at = entry.published_at
                    continue
                self._items[item_id] = Item(
                    id=item_id,
                    feed_id=feed_id,
                    key=entry.key,
                    title=entry.title,
                    link=entry.link,
                    summary=entry.summary,
                    author=entry.author,
                    published_at=entry.published_at,
                    fetched_at=fetched_at,
                )
                self._feed_items[feed_id].append(item_id)
                inserted += 1

            if parsed.title:
                feed.title = parsed.title
            feed.last_fetched_at = fetched_at
            feed.last_error = None
            feed.error_count = 0
            self._changed()
            return inserted

    def record_fetch_error(self, feed_id: str, message: str) -> None:
        """Store the latest fetch error on a feed for display."""
        with self._lock:
            feed = self._feeds[feed_id]
            feed.last_error = message
            feed.error_count += 1
            self._changed()

    # --- Item flags ---

    def toggle_read(self, item_id: str) -> bool:
        with self._lock:
            item = self._items[item_id]
            item.is_read = not item.is_read
            self._changed()
            return item.is_read

    def mark_read(self, item_id: str) -> bool:
        """Mark an item read. Returns True if it was unread."""
        with self._lock:
            item = self._items[item_id]
            if item.is_read:
                return False
            item.is_read = True
            self._changed()
            return True

    def mark_feed_read(self, feed_id: str) -> int:
        """Mark all items in a feed as read. Returns count of affected items."""
        with self._lock:
            marked = 0
            for item_id in self._feed_items[feed_id]:
                item = self._items[item_id]
                if not item.is_read:
                    item.is_read = True
                    marked += 1
            if marked:
                self._changed()
            return marked

    def toggle_bookmark(self, item_id: str) -> bool:
        with self._lock:
            item = self._items[item_id]
            item.is_bookmarked = not item.is_bookmarked
            self._changed()
            return item.is_bookmarked

    # --- Category operations ---

    def create_category(self, name: str) -> str:
        name = self._valid_category_name(name)
        with self._lock:
            category = Category(name=name)
            self._categories[category.id] = category
            self._changed()
            return category.id

    def rename_category(self, category_id: str, name: str) -> None:
        name = self._valid_category_name(name, exclude=category_id)
        with self._lock:
            category = self._category(category_id)
            for feed in self._feeds.values():
                if feed.category == category.name:
                    feed.category = name
            category.name = name
            self._changed()

    def delete_category(self, category_id: str) -> None:
        with self._lock:
            category = self._category(category_id)
            del self._categories[category_id]
            for feed in self._feeds.values():
                if feed.category == category.name:
                    feed.category = None
            self._changed()

    def assign_category(self, feed_id: str, category_id: str | None) -> None:
        with self._lock:
            feed = self._feeds[feed_id]
            feed.category = self._category(category_id).name if category_id else None
            self._changed()

    def toggle_category_expanded(self, category_id: str) -> bool:
        with self._lock:
            category = self._category(category_id)
            category.expanded = not category.expanded
            self._changed()
            return category.expanded

    def _category(self, category_id: str) -> Category:
        try:
            return self._categories[category_id]
        except KeyError:
            raise CategoryError("Invalid category") from None

    def _ensure_category(self, name: str) -> None:
        if not any(c.name == name for c in self._categories.values()):
            category = Category(name=name)
            self._categories[category.id] = category

    def _valid_category_name(self, name: str, exclude: str | None = None) -> str:
        name = name.strip()
        if not name:
            raise CategoryError("Category name cannot be empty")
        with self._lock:
            if any(c.name == name and c.id != exclude for c in self._categories.values()):
                raise CategoryError("Category with this name already exists")
        return name

    # --- Reads ---

    def snapshot(self) -> StoreSnapshot:
        """Return an immutable copy of the current state."""
        with self._lock:
            if self._snapshot is None or self._snapshot.version != self._version:
                self._snapshot = StoreSnapshot(
                    version=self._version,
                    feeds=tuple(replace(f) for f in self._feeds.values()),
                    categories=tuple(replace(c) for c in self._categories.values()),
                    items={i: replace(item) for i, item in self._items.items()},
                    feed_items={f: tuple(ids) for f, ids in self._feed_items.items()},
                )
            return self._snapshot

    def dashboard_items(self, limit: int = DEFAULT_DASHBOARD_LIMIT) -> list[Item]:
        return self.snapshot().dashboard_items(limit)

    def search(self, query: str) -> list[Item]:
        return self.snapshot().search(query)

    # --- Persistence ---

    def to_state(self) -> StoredState:
        with self._lock:
            return StoredState(
                feeds=[replace(f) for f in self._feeds.values()],
                items=[
                    replace(self._items[i])
                    for ids in self._feed_items.values()
                    for i in ids
                ],
                categories=[replace(c) for c in self._categories.values()],
            )

    @classmethod
    def from_state(cls, state: StoredState) -> "FeedStore":
        store = cls()
        for feed in state.feeds:
            store._feeds[feed.id] = replace(feed)
            store._feed_items[feed.id] = []
        for item in state.items:
            if item.feed_id not in store._feeds:
                logger.warning("Dropping item %s of unknown feed %s", item.id, item.feed_id)
                continue
            store._items[item.id] = replace(item)
            store._feed_items[item.feed_id].append(item.id)
        for category in state.categories:
            store._categories[category.id] = replace(category)
        return store
