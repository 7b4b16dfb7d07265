"""SQLite persistence for the feed store."""

import logging
import os
import sqlite3
from datetime import datetime, timezone

from termfeed.errors import PersistenceFailure
from termfeed.models import Category, Feed, Item, StoredState, utcnow

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS feeds (
    id TEXT PRIMARY KEY,
    url TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    category TEXT,
    last_fetched_at TEXT,
    error_count INTEGER DEFAULT 0,
    last_error TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    guid TEXT NOT NULL,
    title TEXT NOT NULL,
    link TEXT,
    summary TEXT,
    author TEXT,
    published_at TEXT,
    is_read INTEGER DEFAULT 0,
    is_bookmarked INTEGER DEFAULT 0,
    fetched_at TEXT NOT NULL,
    UNIQUE(feed_id, guid)
);

CREATE INDEX IF NOT EXISTS idx_items_feed_id ON items(feed_id);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,
    expanded INTEGER DEFAULT 1
);
"""

# Columns that identify an unversioned rssfeed-agent database.
AGENT_FEED_COLUMNS = {"id", "url", "title", "is_active", "site_link", "last_fetched_at", "created_at"}
AGENT_ITEM_COLUMNS = {"id", "feed_id", "guid", "title", "link", "summary", "published_at", "is_read"}

AGENT_DROP_SQL = (
    "DROP TRIGGER IF EXISTS items_ai",
    "DROP TRIGGER IF EXISTS items_ad",
    "DROP TRIGGER IF EXISTS items_au",
    "DROP TABLE IF EXISTS items_fts",
    "DROP INDEX IF EXISTS idx_items_published_at",
    "DROP INDEX IF EXISTS idx_items_is_read",
    "DROP INDEX IF EXISTS idx_items_feed_id",
    "DROP TABLE items",
    "DROP TABLE feeds",
)


class Database:
    """SQLite storage for feeds, items and categories."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and bring the schema up to date.

        Raises:
            PersistenceFailure: If the file cannot be opened, has a layout this
                version does not know, or cannot be upgraded.
        """
        try:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.row_factory = sqlite3.Row
            self._migrate()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceFailure(f"Cannot open {self.db_path}: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @property
    def schema_version(self) -> int:
        return self.conn.execute("PRAGMA user_version").fetchone()[0]

    def _migrate(self) -> None:
        version = self.schema_version
        if version > SCHEMA_VERSION:
            raise PersistenceFailure(
                f"Database schema version {version} is newer than supported ({SCHEMA_VERSION})"
            )
        if version == SCHEMA_VERSION:
            return

        feed_columns = self._columns("feeds")
        if not feed_columns:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            self.conn.commit()
            return
        if not (AGENT_FEED_COLUMNS <= feed_columns and AGENT_ITEM_COLUMNS <= self._columns("items")):
            raise PersistenceFailure(f"Unrecognized database layout in {self.db_path}")
        self._import_agent_layout()

    def _columns(self, table: str) -> set[str]:
        return {row["name"] for row in self.conn.execute(f"PRAGMA table_info({table})")}

    def _import_agent_layout(self) -> None:
        """Rewrite an rssfeed-agent database into the current layout.

        Integer feed ids are replaced by fresh ids, item ids are derived again
        from the new feed id and the entry guid, and naive timestamps are read
        as UTC. Full-text tables, triggers and columns with no counterpart are
        dropped. The rewrite happens in one transaction.
        """
        logger.info("Importing rssfeed-agent database %s", self.db_path)
        try:
            feed_rows = self.conn.execute("SELECT * FROM feeds ORDER BY id").fetchall()
            item_rows = self.conn.execute("SELECT * FROM items ORDER BY id").fetchall()
            feed_ids = {}
            feeds = []
            for row in feed_rows:
                feed = Feed(
                    url=row["url"],
                    title=row["title"],
                    last_fetched_at=_str_to_dt(row["last_fetched_at"]),
                    error_count=row["error_count"] or 0,
                    last_error=row["last_error"],
                    created_at=_str_to_dt(row["created_at"]) or utcnow(),
                )
                feed_ids[row["id"]] = feed.id
                feeds.append(feed)
            items = [
                Item(
                    feed_id=feed_ids[row["feed_id"]],
                    key=row["guid"],
                    title=row["title"],
                    link=row["link"],
                    summary=row["summary"],
                    published_at=_str_to_dt(row["published_at"]),
                    is_read=bool(row["is_read"]),
                    fetched_at=_str_to_dt(row["fetched_at"]) or utcnow(),
                )
                for row in item_rows
                if row["feed_id"] in feed_ids
            ]
        except ValueError as e:
            raise PersistenceFailure(f"Cannot import {self.db_path}: {e}") from e

        conn = self.conn
        try:
            conn.execute("BEGIN")
            for statement in AGENT_DROP_SQL:
                conn.execute(statement)
            for statement in SCHEMA_SQL.split(";"):
                if statement.strip():
                    conn.execute(statement)
            self._insert_state(StoredState(feeds=feeds, items=items))
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        logger.info("Imported %d feeds and %d items", len(feeds), len(items))

    # --- State ---

    def load(self) -> StoredState:
        """Read the whole stored state.

        Raises:
            PersistenceFailure: On any SQLite error.
        """
        try:
            feeds = self.conn.execute("SELECT * FROM feeds ORDER BY rowid").fetchall()
            items = self.conn.execute("SELECT * FROM items ORDER BY rowid").fetchall()
            categories = self.conn.execute("SELECT * FROM categories ORDER BY rowid").fetchall()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot load state: {e}") from e
        return StoredState(
            feeds=[_row_to_feed(r) for r in feeds],
            items=[_row_to_item(r) for r in items],
            categories=[_row_to_category(r) for r in categories],
        )

    def save(self, state: StoredState) -> None:
        """Replace the stored state with state in one transaction.

        Raises:
            PersistenceFailure: On any SQLite error; the file is left unchanged.
        """
        try:
            with self.conn:
                self.conn.execute("DELETE FROM items")
                self.conn.execute("DELETE FROM feeds")
                self.conn.execute("DELETE FROM categories")
                self._insert_state(state)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot save state: {e}") from e

    def _insert_state(self, state: StoredState) -> None:
        self.conn.executemany(
            """INSERT INTO feeds (id, url, title, category, last_fetched_at,
               error_count, last_error, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    feed.id,
                    feed.url,
                    feed.title,
                    feed.category,
                    _dt_to_str(feed.last_fetched_at),
                    feed.error_count,
                    feed.last_error,
                    _dt_to_str(feed.created_at),
                )
                for feed in state.feeds
            ],
        )
        self.conn.executemany(
            """INSERT INTO items (id, feed_id, guid, title, link, summary, author,
               published_at, is_read, is_bookmarked, fetched_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    item.id,
                    item.feed_id,
                    item.key,
                    item.title,
                    item.link,
                    item.summary,
                    item.author,
                    _dt_to_str(item.published_at),
                    int(item.is_read),
                    int(item.is_bookmarked),
                    _dt_to_str(item.fetched_at),
                )
                for item in state.items
            ],
        )
        self.conn.executemany(
            "INSERT INTO categories (id, name, expanded) VALUES (?, ?, ?)",
            [(c.id, c.name, int(c.expanded)) for c in state.categories],
        )


# --- Helper functions ---


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime. Naive values are UTC."""
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _row_to_feed(row: sqlite3.Row) -> Feed:
    """Convert a database row to a Feed dataclass."""
    return Feed(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        category=row["category"],
        last_fetched_at=_str_to_dt(row["last_fetched_at"]),
        error_count=row["error_count"] or 0,
        last_error=row["last_error"],
        created_at=_str_to_dt(row["created_at"]) or utcnow(),
    )


def _row_to_item(row: sqlite3.Row) -> Item:
    """Convert a database row to an Item dataclass."""
    return Item(
        id=row["id"],
        feed_id=row["feed_id"],
        key=row["guid"],
        title=row["title"],
        link=row["link"],
        summary=row["summary"],
        author=row["author"],
        published_at=_str_to_dt(row["published_at"]),
        is_read=bool(row["is_read"]),
        is_bookmarked=bool(row["is_bookmarked"]),
        fetched_at=_str_to_dt(row["fetched_at"]) or utcnow(),
    )


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(id=row["id"], name=row["name"], expanded=bool(row["expanded"]))
