"""Shared test fixtures for termfeed tests."""

import os
import tempfile
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone

import pytest

from termfeed.feed_parser import ParsedEntry, ParsedFeed


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description><![CDATA[<p>Description of the <b>first</b> article</p><script>alert(1)</script>]]></description>
      <pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Fri, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <author><name>Ada</name></author>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_MALFORMED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Malformed Feed</title>
    <link>https://example.com</link>
    <item>
      <title>Good Item</title>
      <guid>good-item</guid>
    </item>
    <item>
      <title>Bad Item</title>
      <!-- Missing closing tags intentionally -->
"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""

BASE_TIME = datetime(2026, 2, 13, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualExecutor(Executor):
    """Executor that runs submitted work only when asked."""

    def __init__(self):
        self.pending: list[tuple[Future, object, tuple]] = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args))
        return future

    def run_pending(self) -> int:
        ran = 0
        pending, self.pending = self.pending, []
        for future, fn, args in pending:
            if not future.set_running_or_notify_cancel():
                continue
            future.set_result(fn(*args))
            ran += 1
        return ran


class FakeFetcher:
    """Records fetch start times and returns scripted results per URL."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[tuple[str, float]] = []
        self.responses: dict = {}

    def fetch(self, url: str) -> ParsedFeed:
        self.calls.append((url, self.clock()))
        result = self.responses.get(url, ParsedFeed(title=None, entries=[], warnings=[]))
        if isinstance(result, Exception):
            raise result
        return result

    def times_for(self, prefix: str) -> list[float]:
        return [t for url, t in self.calls if url.startswith(prefix)]


def make_entry(key: str, hours_ago: float | None = 0, **kwargs) -> ParsedEntry:
    published = None if hours_ago is None else BASE_TIME - timedelta(hours=hours_ago)
    return ParsedEntry(
        key=key,
        title=kwargs.pop("title", f"Title {key}"),
        published_at=published,
        summary=kwargs.pop("summary", f"Summary {key}"),
        link=kwargs.pop("link", f"https://example.com/{key}"),
        **kwargs,
    )


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    os.unlink(path)
    yield path
    try:
        os.unlink(path)
    except OSError:
        pass


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_malformed_xml():
    """Sample malformed RSS XML."""
    return SAMPLE_MALFORMED_XML


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def executor():
    return ManualExecutor()


@pytest.fixture
def fake_fetcher(clock):
    return FakeFetcher(clock)


@pytest.fixture
def entry():
    """Factory for parsed entries published relative to BASE_TIME."""
    return make_entry


@pytest.fixture
def parsed():
    """Factory for a ParsedFeed from entries."""

    def _parsed(*entries, title="Parsed Feed"):
        return ParsedFeed(title=title, entries=list(entries), warnings=[])

    return _parsed
