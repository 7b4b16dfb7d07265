"""Exception types shared across termfeed."""


class TermfeedError(Exception):
    """Base class for termfeed errors."""


class InvalidUrl(TermfeedError):
    """Raised when a feed URL is not a valid http(s) URL."""


class DuplicateUrl(TermfeedError):
    """Raised when subscribing to a URL that is already subscribed."""


class CategoryError(TermfeedError):
    """Raised for invalid category names or ids."""


class PersistenceFailure(TermfeedError):
    """Raised when the stored state cannot be read or written."""


class FetchError(TermfeedError):
    """Raised when a feed cannot be retrieved or parsed."""

    transient = False


class FetchTimeout(FetchError):
    transient = True

    def __init__(self, reason: str = "Request timed out"):
        super().__init__(reason)


class NetworkError(FetchError):
    """Connection failures and non-success HTTP statuses."""


class ParseFailure(FetchError):
    """The document is not a usable RSS or Atom feed."""


class RateLimited(FetchError):
    """The server asked us to slow down (HTTP 429 or equivalent)."""

    transient = True

    def __init__(self, retry_after: float | None = None):
        message = "Rate limited by server"
        if retry_after is not None:
            message += f" (retry after {retry_after:.0f}s)"
        super().__init__(message)
        self.retry_after = retry_after
