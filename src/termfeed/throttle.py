"""Per-host request throttling."""

import threading
import time
from typing import Callable
from urllib.parse import urlparse

from termfeed.errors import InvalidUrl


def extract_host(url: str) -> str:
    """Return the lower-cased authority (host[:port]) of a feed URL.

    Raises:
        InvalidUrl: If the URL has no http(s) scheme or no host.
    """
    try:
        result = urlparse(url.strip())
        port = result.port
    except ValueError:
        raise InvalidUrl(f"Invalid URL format: {url}")
    if result.scheme not in ("http", "https") or not result.hostname:
        raise InvalidUrl(f"Invalid URL format: {url}")
    host = result.hostname.lower()
    return f"{host}:{port}" if port else host


class DomainThrottle:
    """Tracks the last request time per host.

    Shared by the scheduler and its worker threads. Every read-modify-write
    of a host's timestamp happens under one lock, so two callers can never
    both be told a host is allowed before either has recorded its request.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._last: dict[str, float] = {}
        self._lock = threading.Lock()

    def may_proceed(self, host: str, min_delay: float) -> bool:
        """Record a request to host and return True if min_delay has passed."""
        with self._lock:
            now = self._clock()
            last = self._last.get(host)
            if last is not None and now - last < min_delay:
                return False
            if last is None or now > last:
                self._last[host] = now
            return True

    def time_until_allowed(self, host: str, min_delay: float) -> float:
        """Seconds until a request to host would be allowed (0.0 if now)."""
        with self._lock:
            last = self._last.get(host)
            if last is None:
                return 0.0
            return max(0.0, last + min_delay - self._clock())

    def last_request(self, host: str) -> float | None:
        with self._lock:
            return self._last.get(host)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last)
