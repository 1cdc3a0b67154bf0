"""
Diff and content resolution.

Neither diffs nor raw content are served at a stable URL. Both take several
hops, each of which can fail in its own way:

Diff:
    comparison URL --redirect--> page on a diff host (discovered per request)
    diff host API  --------------> time-limited URL of the diff payload
    payload URL    --------------> diff body

Content:
    content API    --------------> time-limited URL of the raw capture
    capture URL    --------------> body (HTML, text or binary)

Each resolution tracks which hop it reached (ResolutionStage); errors raised
along the way record it in ``details["stage"]``.
"""

from __future__ import annotations

import hashlib
import mimetypes
import re
from enum import Enum
from urllib.parse import urlsplit

from versionscout.crawler.client import RequestScheduler, RequestSpec
from versionscout.crawler.fetch_result import FetchResult
from versionscout.crawler.urls import (
    CONTENT_MODES,
    DEFAULT_BASE_URL,
    DIFF_TYPES,
    content_api_url,
    diff_api_url,
    resolve_pointer,
)
from versionscout.utils.errors import (
    DiffApiError,
    InvalidComparisonError,
    InvalidVersionError,
    NoContentError,
    VersionscoutError,
)
from versionscout.utils.logging import get_logger
from versionscout.utils.schemas import Content, Diff

logger = get_logger(__name__)

#: Block the service injects into captured markup (analytics, styling)
VENDOR_MARKUP = re.compile(
    r"\n?<!--\s*Versionista general\s*-->.*?<!--\s*End Versionista general\s*-->\n?",
    re.IGNORECASE | re.DOTALL,
)

# Placeholder served when the capture fell out of the service's cache
_CACHE_EXPIRED = re.compile(r"^<h\d>Cache expired</h\d>", re.IGNORECASE)

# Artifact the service prepends to raw HTML captures
_LEADING_BLANK_LINES = "\n\n\n"


class ResolutionStage(str, Enum):
    """How far a resolution got."""

    REQUESTED = "requested"
    REDIRECT_RESOLVED = "redirect_resolved"
    API_RESOLVED = "api_resolved"
    CONTENT_FETCHED = "content_fetched"


def strip_vendor_markup(text: str) -> str:
    """Remove the service's injected block from captured markup."""
    return VENDOR_MARKUP.sub("", text, count=1)


def content_hash(body: str | bytes) -> str:
    """sha256 hex digest; text is hashed as UTF-8."""
    data = body.encode("utf-8") if isinstance(body, str) else body
    return hashlib.sha256(data).hexdigest()


def guess_extension(content_type: str) -> str:
    """File extension (with dot) for a content type, or an empty string."""
    mime_type = content_type.split(";", 1)[0].strip().lower()
    if not mime_type:
        return ""
    return mimetypes.guess_extension(mime_type) or ""


def _annotate(error: VersionscoutError, stage: ResolutionStage) -> None:
    error.details.setdefault("stage", stage.value)


class DiffResolver:
    """Resolves comparison URLs into diff payloads."""

    def __init__(self, scheduler: RequestScheduler, *, base_url: str = DEFAULT_BASE_URL) -> None:
        self._scheduler = scheduler
        self._service_host = urlsplit(base_url).netloc.lower()

    def _is_service_host(self, host: str) -> bool:
        return host == self._service_host or host.endswith(f".{self._service_host}")

    async def resolve_diff(self, comparison_url: str, diff_type: str = "only") -> Diff | None:
        """Fetch the diff behind a comparison URL.

        Args:
            comparison_url: Comparison URL on the service.
            diff_type: One of edits, screenshots, html, filtered, only, text,
                text_only.

        Returns:
            The diff, or None when the service has an empty diff (e.g. the
            capture had no content).

        Raises:
            ValueError: Unknown diff type.
            InvalidComparisonError: The comparison URL did not lead to a diff host.
            DiffApiError: The diff host's API rejected the request, or the
                payload it pointed to could not be fetched.
            NetworkError: A request failed after retries.
        """
        if diff_type not in DIFF_TYPES:
            raise ValueError(f"Unknown diff type {diff_type!r}; expected one of {sorted(DIFF_TYPES)}")

        stage = ResolutionStage.REQUESTED
        try:
            response = await self._scheduler.submit(RequestSpec(comparison_url))
            # Bad comparison URLs redirect back to normal pages on the service
            if response.status >= 400 or self._is_service_host(response.final_host):
                raise InvalidComparisonError(
                    comparison_url,
                    status=response.status,
                    final_url=response.final_url,
                )
            stage = ResolutionStage.REDIRECT_RESOLVED

            api_url = diff_api_url(response.final_url, diff_type)
            api_response = await self._scheduler.submit(RequestSpec(api_url, immediate=True))
            if api_response.status >= 400:
                raise DiffApiError(
                    api_url,
                    comparison_url,
                    status=api_response.status,
                    body=api_response.text,
                )
            stage = ResolutionStage.API_RESOLVED

            payload_url = resolve_pointer(api_response.text, response.final_url)
            payload = await self._scheduler.submit(RequestSpec(payload_url, immediate=True))
            if payload.status >= 400:
                # Expired or missing payload; the error body is not a diff
                raise DiffApiError(
                    payload_url,
                    comparison_url,
                    status=payload.status,
                    body=payload.text,
                )
            stage = ResolutionStage.CONTENT_FETCHED
        except VersionscoutError as e:
            _annotate(e, stage)
            raise

        if not payload.content:
            logger.debug("Empty diff", url=comparison_url, diff_type=diff_type)
            return None

        content = payload.text
        hashable = strip_vendor_markup(content).strip()
        return Diff(
            byte_length=len(hashable.encode("utf-8")),
            content_hash=content_hash(hashable),
            content=content,
        )


class ContentFetcher:
    """Fetches the raw captured content of versions."""

    def __init__(
        self,
        scheduler: RequestScheduler,
        *,
        base_url: str = DEFAULT_BASE_URL,
        cache_expired_retries: int = 2,
    ) -> None:
        self._scheduler = scheduler
        self._base_url = base_url.rstrip("/")
        self.cache_expired_retries = cache_expired_retries

    async def fetch_content(
        self,
        version_url: str,
        retries: int | None = None,
        mode: str = "raw",
    ) -> Content:
        """Fetch a version's content.

        HTML and text captures come back as text with the service's
        additions removed; anything else comes back as bytes, untouched.

        Args:
            version_url: Version URL on the service.
            retries: Extra attempts when the service answers with its
                "Cache expired" placeholder (default: configured value).
            mode: "raw" (as captured) or "html" (as cleaned up by the service).

        Raises:
            InvalidVersionError: The content API rejected the version URL.
            NoContentError: The capture could not be fetched, or was still
                "Cache expired" after all retries.
            NetworkError: A request failed after retries.
        """
        if mode not in CONTENT_MODES:
            raise ValueError(f"Unknown content mode {mode!r}; expected one of {sorted(CONTENT_MODES)}")
        if retries is None:
            retries = self.cache_expired_retries

        api_url = content_api_url(version_url, mode, self._base_url)
        attempts = 0

        while True:
            attempts += 1
            stage = ResolutionStage.REQUESTED
            try:
                api_response = await self._scheduler.submit(RequestSpec(api_url))
                if api_response.status >= 400:
                    raise InvalidVersionError(version_url, status=api_response.status)
                stage = ResolutionStage.API_RESOLVED

                raw_url = resolve_pointer(api_response.text, self._base_url)
                response = await self._scheduler.submit(RequestSpec(raw_url, immediate=True))
                if response.status >= 400:
                    raise NoContentError(
                        version_url,
                        urls=[version_url, api_url, response.final_url],
                        attempts=attempts,
                        status=response.status,
                    )
                stage = ResolutionStage.CONTENT_FETCHED

                if not response.is_textual():
                    return self._build(response.content, response, is_binary=True)

                text = response.text
                if not _CACHE_EXPIRED.match(text):
                    if text.startswith(_LEADING_BLANK_LINES):
                        text = text[len(_LEADING_BLANK_LINES):]
                    return self._build(strip_vendor_markup(text), response)

                if attempts > retries:
                    raise NoContentError(
                        version_url,
                        urls=[version_url, api_url, response.final_url],
                        attempts=attempts,
                    )
            except VersionscoutError as e:
                _annotate(e, stage)
                raise

            logger.info(
                "Content cache expired, retrying",
                url=version_url,
                attempt=attempts,
                retries=retries,
            )

    def _build(self, body: str | bytes, response: FetchResult, *, is_binary: bool = False) -> Content:
        data = body.encode("utf-8") if isinstance(body, str) else body
        return Content(
            body=body,
            content_type=response.content_type,
            extension=guess_extension(response.content_type),
            byte_length=len(data),
            content_hash=content_hash(data),
            is_binary=is_binary,
        )
