"""Tests for SQLite persistence."""

import sqlite3
from datetime import timedelta

import pytest

from conftest import BASE_TIME
from termfeed.database import SCHEMA_VERSION, Database
from termfeed.errors import PersistenceFailure
from termfeed.models import Feed, StoredState, make_item_id
from termfeed.store import FeedStore


@pytest.fixture
def db(tmp_db_path):
    database = Database(tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def populated(parsed, entry):
    store = FeedStore()
    tech = store.add_feed("https://example.com/rss", category="Tech")
    other = store.add_feed("https://other.com/atom")
    store.merge_fetch_result(tech, parsed(entry("a", author="Ada"), entry("b", hours_ago=None)))
    store.merge_fetch_result(other, parsed(entry("c", hours_ago=2), title="Other"))
    store.toggle_read(make_item_id(tech, "a"))
    store.toggle_bookmark(make_item_id(other, "c"))
    store.record_fetch_error(other, "HTTP 500")
    store.toggle_category_expanded(store.snapshot().categories[0].id)
    return store


class TestDatabaseConnection:
    def test_connect_creates_schema(self, db):
        tables = {
            row[0]
            for row in db.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {"feeds", "items", "categories"} <= tables
        assert db.schema_version == SCHEMA_VERSION

    def test_connect_idempotent(self, tmp_db_path):
        first = Database(tmp_db_path)
        first.connect()
        first.close()
        second = Database(tmp_db_path)
        second.connect()
        assert second.schema_version == SCHEMA_VERSION
        second.close()

    def test_not_connected(self, tmp_db_path):
        with pytest.raises(RuntimeError):
            Database(tmp_db_path).conn

    def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(PersistenceFailure):
            Database(str(blocker / "termfeed.db")).connect()

    def test_newer_schema_rejected(self, tmp_db_path, db):
        db.conn.execute("PRAGMA user_version = 99")
        db.conn.commit()
        db.close()
        with pytest.raises(PersistenceFailure, match="newer"):
            Database(tmp_db_path).connect()


class TestSaveLoad:
    def test_empty(self, db):
        assert db.load() == StoredState()

    def test_round_trip(self, db, populated):
        state = populated.to_state()
        db.save(state)
        loaded = db.load()
        assert loaded == state
        assert FeedStore.from_state(loaded).to_state() == state

    def test_save_replaces(self, db, populated):
        db.save(populated.to_state())
        feed_id = populated.snapshot().feeds[0].id
        populated.remove_feed(feed_id)
        db.save(populated.to_state())
        loaded = db.load()
        assert [f.id for f in loaded.feeds] == [f.id for f in populated.snapshot().feeds]
        assert all(i.feed_id != feed_id for i in loaded.items)

    def test_failed_save_keeps_previous_state(self, db, populated):
        state = populated.to_state()
        db.save(state)
        broken = StoredState(feeds=[
            Feed(url="https://dup.com/rss", title="one", id="x1"),
            Feed(url="https://dup.com/rss", title="two", id="x2"),
        ])
        with pytest.raises(PersistenceFailure):
            db.save(broken)
        assert db.load() == state


# Layout written by rssfeed-agent, which stored naive UTC timestamps.
AGENT_SCHEMA_SQL = """
CREATE TABLE feeds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    site_link TEXT,
    last_fetched_at TEXT,
    error_count INTEGER DEFAULT 0,
    last_error TEXT,
    is_active INTEGER DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    guid TEXT NOT NULL,
    title TEXT NOT NULL,
    link TEXT,
    summary TEXT,
    published_at TEXT,
    is_read INTEGER DEFAULT 0,
    fetched_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(feed_id, guid)
);

CREATE INDEX idx_items_feed_id ON items(feed_id);
CREATE INDEX idx_items_published_at ON items(published_at);
CREATE INDEX idx_items_is_read ON items(is_read);

CREATE VIRTUAL TABLE items_fts USING fts5(
    title,
    summary,
    content='items',
    content_rowid='id'
);

CREATE TRIGGER items_ai AFTER INSERT ON items BEGIN
    INSERT INTO items_fts(rowid, title, summary) VALUES (new.id, new.title, new.summary);
END;

CREATE TRIGGER items_ad AFTER DELETE ON items BEGIN
    INSERT INTO items_fts(items_fts, rowid, title, summary) VALUES ('delete', old.id, old.title, old.summary);
END;

CREATE TRIGGER items_au AFTER UPDATE ON items BEGIN
    INSERT INTO items_fts(items_fts, rowid, title, summary) VALUES ('delete', old.id, old.title, old.summary);
    INSERT INTO items_fts(rowid, title, summary) VALUES (new.id, new.title, new.summary);
END;
"""


@pytest.fixture
def agent_db(tmp_db_path):
    conn = sqlite3.connect(tmp_db_path)
    conn.executescript(AGENT_SCHEMA_SQL)
    conn.execute(
        "INSERT INTO feeds (url, title, is_active, site_link) VALUES (?, ?, ?, ?)",
        ("https://example.com/rss", "Example", 1, "https://example.com"),
    )
    conn.execute(
        """INSERT INTO items (feed_id, guid, title, link, published_at, is_read)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (1, "g1", "Old item", "https://example.com/old", "2026-02-13T10:00:00", 1),
    )
    conn.execute(
        "INSERT INTO items (feed_id, guid, title, fetched_at) VALUES (?, ?, ?, ?)",
        (1, "g2", "Undated item", "2026-02-13 11:30:00"),
    )
    conn.commit()
    conn.close()
    return tmp_db_path


class TestAgentImport:
    def test_layout_converted(self, agent_db):
        db = Database(agent_db)
        db.connect()
        assert db.schema_version == SCHEMA_VERSION
        tables = {
            row[0]
            for row in db.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert "items_fts" not in tables
        assert "categories" in tables
        state = db.load()
        db.close()

        feed = state.feeds[0]
        assert isinstance(feed.id, str)
        assert feed.url == "https://example.com/rss"
        assert feed.created_at.tzinfo is not None

        old, undated = state.items
        assert old.id == make_item_id(feed.id, "g1")
        assert old.feed_id == feed.id
        assert old.is_read is True
        assert old.published_at == BASE_TIME - timedelta(hours=2)
        assert undated.published_at is None
        assert undated.fetched_at == BASE_TIME - timedelta(minutes=30)

    def test_imported_items_mix_with_new_ones(self, agent_db, parsed, entry):
        db = Database(agent_db)
        db.connect()
        store = FeedStore.from_state(db.load())
        feed_id = store.snapshot().feeds[0].id
        store.merge_fetch_result(feed_id, parsed(entry("fresh"), title="Example"))

        titles = [item.title for item in store.dashboard_items()]
        assert titles == ["Title fresh", "Old item", "Undated item"]

        db.save(store.to_state())
        assert db.load() == store.to_state()
        db.close()

    def test_reopen_keeps_ids(self, agent_db):
        first = Database(agent_db)
        first.connect()
        feed_id = first.load().feeds[0].id
        first.close()

        second = Database(agent_db)
        second.connect()
        assert second.load().feeds[0].id == feed_id
        second.close()

    def test_unknown_layout_rejected(self, tmp_db_path):
        conn = sqlite3.connect(tmp_db_path)
        conn.execute("CREATE TABLE feeds (name TEXT)")
        conn.commit()
        conn.close()
        with pytest.raises(PersistenceFailure, match="Unrecognized"):
            Database(tmp_db_path).connect()
