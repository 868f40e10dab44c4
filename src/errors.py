"""Typed errors for the feed acquisition pipeline.

Each class maps to one recovery policy:

- TransientFetchError: network/timeout/5xx. The source is marked errored and
  picked up again by the retry job.
- PermanentBlockError: crawl policy forbids access. The source is blocked
  until an operator resets it.
- ParseError: the document could not be turned into items. Triggers the next
  fallback strategy, then marks the source errored.
- RaceConditionViolation: a concurrent writer inserted the same item first.
  Recovered inside the reconciler, never surfaced to callers.
- QuotaExceededError: the YouTube Data API budget is spent. Callers degrade
  to feed or page scraping.
"""


class FeedPipelineError(Exception):
    """Base class for pipeline errors."""


class TransientFetchError(FeedPipelineError):
    """Network failure, timeout or retryable HTTP status."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class PermanentBlockError(FeedPipelineError):
    """robots.txt (or an equivalent policy) disallows crawling the URL."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class ParseError(FeedPipelineError):
    """Malformed or empty document."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class RaceConditionViolation(FeedPipelineError):
    """Insert hit a unique index because another writer got there first."""


class QuotaExceededError(FeedPipelineError):
    """The daily YouTube Data API quota would be exceeded by this call."""

    def __init__(self, message: str, used: int = 0, limit: int = 0):
        super().__init__(message)
        self.used = used
        self.limit = limit


class SourceNotFoundError(FeedPipelineError):
    """A forced operation referenced a source id that does not exist."""
