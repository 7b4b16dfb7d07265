"""RSS/Atom feed parsing using feedparser."""

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from time import struct_time

import feedparser
from bs4 import BeautifulSoup

from termfeed.errors import ParseFailure


@dataclass
class ParsedEntry:
    """One normalized entry of a parsed feed."""

    key: str
    title: str
    published_at: datetime | None
    summary: str | None
    link: str | None
    author: str | None = None


@dataclass
class ParsedFeed:
    """Result of parsing an RSS/Atom feed."""

    title: str | None
    entries: list[ParsedEntry]
    warnings: list[str]


def parse_feed(content: bytes) -> ParsedFeed:
    """Parse a retrieved RSS or Atom document.

    Args:
        content: Raw bytes of the document.

    Returns:
        ParsedFeed with the channel title and normalized entries, newest first.

    Raises:
        ParseFailure: If the document is an HTML page or not a feed at all.
    """
    head = content[:200].decode("utf-8", errors="ignore").lstrip().lower()
    if head.startswith("<!doctype html") or head.startswith("<html"):
        raise ParseFailure("Received an HTML page instead of an RSS/Atom feed")

    parsed = feedparser.parse(content)

    if not parsed.feed.get("title") and not parsed.entries:
        if parsed.bozo and parsed.bozo_exception:
            raise ParseFailure(f"Not a valid RSS or Atom feed: {parsed.bozo_exception}")
        raise ParseFailure("Not a valid RSS or Atom feed")

    warnings: list[str] = []
    if parsed.bozo:
        warnings.append(f"Feed has formatting issues: {parsed.bozo_exception}")

    return ParsedFeed(
        title=parsed.feed.get("title") or None,
        entries=_extract_entries(parsed.entries, warnings),
        warnings=warnings,
    )


def to_plain_text(html: str | None) -> str | None:
    """Convert an HTML fragment to plain text, one paragraph per line."""
    if not html:
        return None
    if "<" not in html and "&" not in html:
        return html.strip() or None
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(separator="\n")
    cleaned = "\n".join(line.strip() for line in text.splitlines() if line.strip())
    return cleaned or None


def _extract_entries(entries: list, warnings: list[str]) -> list[ParsedEntry]:
    """Extract normalized entries from feedparser entries."""
    result = []
    for entry in entries:
        try:
            key = entry.get("id") or entry.get("guid") or entry.get("link") or entry.get("title")
            if not key:
                warnings.append("Skipping entry with no identifier")
                continue

            result.append(ParsedEntry(
                key=key,
                title=entry.get("title") or "Untitled",
                published_at=_parse_date(entry),
                summary=to_plain_text(_entry_body(entry)),
                link=entry.get("link"),
                author=entry.get("author") or None,
            ))
        except Exception as e:
            warnings.append(f"Skipping malformed entry: {e}")
            continue

    result.sort(
        key=lambda x: x.published_at or datetime.min.replace(tzinfo=timezone.utc),
        reverse=True,
    )
    return result


def _entry_body(entry) -> str | None:
    """Prefer full content over the summary."""
    for content in entry.get("content") or []:
        if content.get("value"):
            return content["value"]
    return entry.get("summary") or entry.get("description")


def _parse_date(entry) -> datetime | None:
    """Parse publication date from a feedparser entry as aware UTC."""
    for field in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field)
        if isinstance(time_struct, struct_time):
            try:
                return datetime.fromtimestamp(calendar.timegm(time_struct), tz=timezone.utc)
            except (ValueError, OverflowError):
                continue
    return None
