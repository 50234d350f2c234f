"""Exception taxonomy for the harvester.

Per-item errors (NavigationError, ParseError) are recovered by the stage that
raised them and recorded next to the successes. Job-level errors fail the job.
StorageError travels up to the orchestrator loop, which logs and keeps polling.
"""


class HarvesterError(Exception):
    """Base class for every error raised by the harvester."""


class AntiDetectionError(HarvesterError):
    """A challenge page or soft ban was detected while fetching."""

    def __init__(self, url: str, rule: str = "") -> None:
        self.url = url
        self.rule = rule
        detail = f" ({rule})" if rule else ""
        super().__init__(f"anti-detection triggered at {url}{detail}")


class CookieError(HarvesterError):
    """The account's cookie payload is malformed or was rejected by the browser."""


class NavigationError(HarvesterError):
    """Navigation to a single URL failed (timeout, network error)."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"navigation to {url} failed: {reason}")


class ParseError(HarvesterError):
    """A parser could not turn a snapshot into a record."""


class NoAccountAvailableError(HarvesterError):
    """No account qualifies for the job (all invalid, exhausted, or cooling down)."""


class StorageError(HarvesterError):
    """The persistence layer failed."""


class UnsupportedQueryError(HarvesterError):
    """The platform cannot expand a search query into URLs."""
