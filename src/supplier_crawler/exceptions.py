"""Error taxonomy for the crawl pipeline.

Page-level errors (NavigationFailed, ChallengeExhausted, ExtractionFailed)
are recovered by the orchestrator as skips. Session-level errors propagate
to the keyword retry wrapper.
"""

from typing import Any, Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""


class ResourceExhausted(CrawlerError):
    """Pool caps reached and no idle page is available."""


class PoolError(CrawlerError):
    """The session pool is latched in its error state until reset()."""


class SessionDisconnected(PoolError):
    """The underlying browser process went away."""


class NavigationFailed(CrawlerError):
    """Navigation retries were exhausted for one URL."""

    def __init__(self, url: str, attempts: int, cause: Optional[BaseException] = None):
        self.url = url
        self.attempts = attempts
        self.cause = cause
        message = f"Navigation to {url} failed after {attempts} attempts"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class ChallengeExhausted(CrawlerError):
    """Every anti-bot remediation strategy failed for the current page."""

    def __init__(self, message: str, challenge: Any = None):
        self.challenge = challenge
        super().__init__(message)


class ExtractionFailed(CrawlerError):
    """Card processing broke partway through; partial records are attached."""

    def __init__(self, message: str, partial_records: Optional[list] = None):
        self.partial_records = list(partial_records or [])
        super().__init__(message)


class Busy(CrawlerError):
    """A search is already running on this orchestrator."""


class LoginRequired(CrawlerError):
    """The secondary verification site is not logged in."""
