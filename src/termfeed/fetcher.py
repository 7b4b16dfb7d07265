"""Retrieval of a single feed over HTTP."""

import logging

import httpx

from termfeed.errors import FetchTimeout, NetworkError, ParseFailure, RateLimited
from termfeed.feed_parser import ParsedFeed, parse_feed

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "termfeed/0.1 (+terminal RSS reader)"
ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"


class FeedFetcher:
    """Fetches and parses one feed per call. Retries are the scheduler's job.

    Safe to call from several worker threads: each call uses its own client.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    def fetch(self, url: str) -> ParsedFeed:
        """Fetch and parse the feed at url.

        Raises:
            FetchTimeout: The request exceeded the timeout.
            RateLimited: The server answered 429 (or 503 with Retry-After).
            NetworkError: Connection failure or other non-success status.
            ParseFailure: The body is not an RSS or Atom feed.
        """
        content = self.get(url)
        parsed = parse_feed(content)
        for warning in parsed.warnings:
            logger.debug("Feed %s: %s", url, warning)
        return parsed

    def get(self, url: str) -> bytes:
        """Return the response body for url, mapping failures to FetchError."""
        headers = {"User-Agent": self.user_agent, "Accept": ACCEPT}
        try:
            with httpx.Client(
                timeout=self.timeout,
                headers=headers,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = client.get(url)
        except httpx.TimeoutException as exc:
            raise FetchTimeout(f"Timed out after {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code == 429:
            raise RateLimited(_retry_after(resp))
        if resp.status_code == 503 and "retry-after" in resp.headers:
            raise RateLimited(_retry_after(resp))
        if resp.status_code in (401, 403):
            raise NetworkError(f"HTTP {resp.status_code}: feed requires authentication")
        if resp.status_code >= 400:
            raise NetworkError(f"HTTP {resp.status_code}")
        if not resp.content.strip():
            raise ParseFailure("Empty response body")
        return resp.content


def _retry_after(resp: httpx.Response) -> float | None:
    """Read a numeric Retry-After header; HTTP-date values are ignored."""
    value = resp.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
