"""
Retry policy for requests to the change-tracking service.

The scheduler consults a RetryPolicy after every request. Only two things are
worth retrying:
- the server hung up on us (connection reset and friends)
- a gateway-class status (502/503/504), which the service returns when it is
  overloaded

Everything else (4xx, timeouts, DNS failures) is surfaced immediately. A
request may also supply its own predicate to classify responses, e.g. archive
creation retries until it sees a 200.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from versionscout.utils.backoff import BackoffConfig, calculate_backoff

if TYPE_CHECKING:
    from versionscout.crawler.fetch_result import FetchResult

RetryPredicate = Callable[["FetchResult"], bool]

#: Transport errors that mean "the server hung up", safe to retry
CONNECTION_RESET_ERRORS: tuple[type[BaseException], ...] = (
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
    ConnectionResetError,
)


@dataclass
class RetryPolicy:
    """Retry policy shared by all requests of one scheduler.

    Attributes:
        max_retries: Maximum retry attempts per request (default: 3)
        backoff: Backoff configuration for the pause before each retry
        retryable_exceptions: Exception types that are safe to retry
        retryable_status_codes: Statuses the default predicate flags

    Example:
        >>> policy = RetryPolicy(max_retries=5)
        >>> policy.should_retry_exception(httpx.ReadError("reset"))
        True
        >>> policy.should_retry_status(503)
        True
        >>> policy.should_retry_status(404)
        False
    """

    max_retries: int = 3
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    retryable_exceptions: tuple[type[BaseException], ...] = CONNECTION_RESET_ERRORS
    retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: frozenset({502, 503, 504})
    )

    def __post_init__(self) -> None:
        """Validate policy configuration."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")

    def should_retry_exception(self, exc: BaseException) -> bool:
        """Check if a transport exception is retryable."""
        return isinstance(exc, self.retryable_exceptions)

    def should_retry_status(self, status: int) -> bool:
        """Check if an HTTP status is retryable under the default predicate."""
        return status in self.retryable_status_codes

    def default_retry_if(self, response: FetchResult) -> bool:
        """Default response predicate: retry gateway errors."""
        return self.should_retry_status(response.status)

    def delay_for(self, attempt: int) -> float:
        """Pause before retry number ``attempt`` (1-indexed)."""
        return calculate_backoff(attempt, self.backoff)


def retry_unless_status(*statuses: int) -> RetryPredicate:
    """Build a predicate that retries any response whose status is not listed.

    Example:
        >>> retry_if = retry_unless_status(200)
    """
    allowed = frozenset(statuses)

    def predicate(response: FetchResult) -> bool:
        return response.status not in allowed

    return predicate
