"""
Error taxonomy for versionscout.

Every failure a caller can see is one of these, so a scrape can report
problems per site/page/version instead of aborting wholesale.

Error codes follow the pattern:
- *_FAILED / *_MISMATCH: Terminal conditions for the whole run or a listing
- INVALID_*: The upstream rejected a URL we built (content deleted, bad IDs)
- *_ERROR: An upstream request failed after the scheduler gave up on it
"""

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from versionscout.crawler.fetch_result import FetchResult


class ErrorCode(str, Enum):
    """Stable error codes, suitable for machine-readable output."""

    AUTH_FAILED = "AUTH_FAILED"
    """Login was rejected. Nothing else can work; abort the run."""

    SCHEMA_MISMATCH = "SCHEMA_MISMATCH"
    """A listing response no longer has the shape we expect (upstream changed)."""

    INVALID_URL = "INVALID_URL"
    """A version or comparison URL does not resolve to content."""

    API_ERROR = "API_ERROR"
    """The diff host's API refused a request."""

    NO_VERSION_CONTENT = "NO_VERSION_CONTENT"
    """Content could not be retrieved even after cache-expiry retries."""

    ARCHIVE_ERROR = "ARCHIVE_ERROR"
    """A page archive could not be created or downloaded."""

    NETWORK_ERROR = "NETWORK_ERROR"
    """Transport failure or gateway error that outlived the retry budget."""


class VersionscoutError(Exception):
    """Base exception for all versionscout errors."""

    code: ErrorCode = ErrorCode.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a plain record for per-unit result output."""
        result: dict[str, Any] = {
            "error_code": self.code.value,
            "error": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class AuthenticationError(VersionscoutError):
    """Raised when the login response still asks us to log in."""

    code = ErrorCode.AUTH_FAILED

    def __init__(self, reason: str | None = None):
        message = "Could not log in"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, details={"reason": reason} if reason else None)
        self.reason = reason


class SchemaError(VersionscoutError):
    """Raised when a response does not match the expected minimal schema.

    Attributes:
        field: Dotted path of the offending field (or None for the whole body)
        endpoint: URL the response came from
    """

    code = ErrorCode.SCHEMA_MISMATCH

    def __init__(
        self,
        message: str,
        *,
        endpoint: str,
        field: str | None = None,
    ):
        details: dict[str, Any] = {"endpoint": endpoint}
        if field:
            details["field"] = field
        super().__init__(f"{message} (URL: {endpoint})", details=details)
        self.endpoint = endpoint
        self.field = field


class InvalidComparisonError(VersionscoutError):
    """Raised when a comparison URL does not lead to a diff host."""

    code = ErrorCode.INVALID_URL

    def __init__(self, url: str, *, status: int | None = None, final_url: str | None = None):
        details: dict[str, Any] = {"url": url}
        if status is not None:
            details["status"] = status
        if final_url:
            details["final_url"] = final_url
        super().__init__(f"Invalid diff URL: '{url}'", details=details)
        self.url = url


class InvalidVersionError(VersionscoutError):
    """Raised when the content API rejects a version URL."""

    code = ErrorCode.INVALID_URL

    def __init__(self, url: str, *, status: int | None = None):
        details: dict[str, Any] = {"url": url}
        if status is not None:
            details["status"] = status
        super().__init__(f"Invalid version URL: '{url}'", details=details)
        self.url = url


class DiffApiError(VersionscoutError):
    """Raised when the diff host's API returns an error status."""

    code = ErrorCode.API_ERROR

    def __init__(self, api_url: str, diff_url: str, *, status: int, body: str = ""):
        super().__init__(
            f"API Error from '{api_url}' (Diff URL: {diff_url}): {body}".rstrip(": "),
            details={"api_url": api_url, "diff_url": diff_url, "status": status},
        )
        self.status = status


class NoContentError(VersionscoutError):
    """Raised when a version's content cannot be fetched or stays a cache placeholder."""

    code = ErrorCode.NO_VERSION_CONTENT

    def __init__(
        self,
        url: str,
        *,
        urls: list[str] | None = None,
        attempts: int = 1,
        status: int | None = None,
    ):
        details: dict[str, Any] = {"url": url, "urls": urls or [url], "attempts": attempts}
        if status is not None:
            details["status"] = status
        super().__init__(f"Can't find raw content for {url}", details=details)
        self.url = url
        self.attempts = attempts


class ArchiveError(VersionscoutError):
    """Raised when a page archive cannot be created or fetched."""

    code = ErrorCode.ARCHIVE_ERROR


class NetworkError(VersionscoutError):
    """Raised when a request fails for good.

    Attributes:
        url: Requested URL
        attempts: Number of attempts made
        response: The last response received, if any (e.g. the final 503)
        last_error: The last transport exception, if any
    """

    code = ErrorCode.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        *,
        url: str,
        attempts: int,
        response: "FetchResult | None" = None,
        last_error: Exception | None = None,
    ):
        details: dict[str, Any] = {"url": url, "attempts": attempts}
        if response is not None:
            details["status"] = response.status
        if last_error is not None:
            details["error_type"] = type(last_error).__name__
        super().__init__(message, details=details)
        self.url = url
        self.attempts = attempts
        self.response = response
        self.last_error = last_error

    @property
    def status(self) -> int | None:
        return self.response.status if self.response is not None else None
