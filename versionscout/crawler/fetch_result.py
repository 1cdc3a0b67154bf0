"""Raw response record returned by the request scheduler."""

import re
from datetime import datetime
from urllib.parse import urlparse

# Bodies that look like markup even without a content-type header
_LOOKS_LIKE_MARKUP = re.compile(rb"^\s*<")


class FetchResult:
    """Result of a single HTTP exchange.

    Holds the response as received (status, headers, undecoded body) plus the
    URL the exchange ended at after redirects, which the diff protocol relies
    on to discover the diff host.
    """

    def __init__(
        self,
        url: str,
        *,
        status: int,
        headers: dict[str, str] | None = None,
        content: bytes = b"",
        final_url: str | None = None,
        redirects: list[str] | None = None,
        method: str = "GET",
        requested_at: datetime | None = None,
        encoding: str | None = None,
    ):
        self.url = url
        self.final_url = final_url or url  # Default to original URL if not redirected
        self.status = status
        # Header names are case-insensitive; normalize once
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.content = content
        self.redirects = redirects or []
        self.method = method
        self.requested_at = requested_at
        self._encoding = encoding

    @property
    def ok(self) -> bool:
        return self.status < 400

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def text(self) -> str:
        """Body decoded as text (replacement characters for bad bytes).

        A charset Python does not know falls back to UTF-8.
        """
        try:
            return self.content.decode(self._encoding or "utf-8", errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")

    @property
    def final_host(self) -> str:
        return urlparse(self.final_url).netloc.lower()

    def might_be_html(self) -> bool:
        """Whether the body is (probably) markup rather than binary data.

        Empty bodies count as markup: a removed page has no content, which is
        still a textual result.
        """
        return (
            self.content_type.startswith("text/html")
            or not self.content
            or bool(_LOOKS_LIKE_MARKUP.match(self.content))
        )

    def is_textual(self) -> bool:
        """Whether the body should be handled as text (HTML or any text/* type)."""
        return self.might_be_html() or self.content_type.startswith("text/")

    def __repr__(self) -> str:
        return f"FetchResult(status={self.status}, url={self.url!r}, final_url={self.final_url!r})"
