"""
URL scheme of the change-tracking service.

Service URLs identify records by path segments:

    {base}/{site_id}/                               site
    {base}/{site_id}/{page_id}/                     page
    {base}/{site_id}/{page_id}/{version_id}/        version
    {base}/{site_id}/{page_id}/{version_id}:{other_id}/   comparison

A comparison against ``0`` compares a version against nothing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

DEFAULT_BASE_URL = "https://versionista.com"

#: Diff variants served by the diff host
DIFF_TYPES = frozenset({"edits", "screenshots", "html", "filtered", "only", "text", "text_only"})

#: Content variants served by the content API
CONTENT_MODES = frozenset({"raw", "html"})

_ABSOLUTE_URL = re.compile(r"^\w+://")
_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class ServiceIds:
    """IDs parsed out of a service URL. Missing segments are None."""

    site_id: str | None = None
    page_id: str | None = None
    version_id: str | None = None
    compare_to_id: str | None = None


def parse_service_url(url: str) -> ServiceIds:
    """Split a service URL into its site, page and version IDs.

    Raises:
        ValueError: If the URL has no scheme and host.
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Not a service URL: {url!r}")

    segments = [segment for segment in parts.path.split("/") if segment]
    site_id = segments[0] if len(segments) > 0 else None
    page_id = segments[1] if len(segments) > 1 else None
    version_id = compare_to_id = None
    if len(segments) > 2:
        version_id, _, compare_to_id = segments[2].partition(":")
        compare_to_id = compare_to_id or None

    return ServiceIds(site_id, page_id, version_id, compare_to_id)


def format_page_url(site_id: str, page_id: str, base_url: str = DEFAULT_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/{site_id}/{page_id}/"


def format_version_url(
    site_id: str,
    page_id: str,
    version_id: str,
    base_url: str = DEFAULT_BASE_URL,
) -> str:
    return f"{base_url.rstrip('/')}/{site_id}/{page_id}/{version_id}/"


def format_comparison_url(
    site_id: str,
    page_id: str,
    version_id: str,
    compare_to_id: str | int = 0,
    base_url: str = DEFAULT_BASE_URL,
) -> str:
    """Build the URL comparing ``version_id`` against ``compare_to_id``."""
    return f"{base_url.rstrip('/')}/{site_id}/{page_id}/{version_id}:{compare_to_id}/"


def content_api_url(version_url: str, mode: str = "raw", base_url: str = DEFAULT_BASE_URL) -> str:
    """Build the content API URL for a version URL.

    Example:
        >>> content_api_url("https://versionista.com/74273/6221569/10485802/")
        'https://versionista.com/api/ip_url/74273/6221569/10485802/raw'
    """
    if mode not in CONTENT_MODES:
        raise ValueError(f"Unknown content mode {mode!r}; expected one of {sorted(CONTENT_MODES)}")

    path = urlsplit(version_url).path.strip("/")
    return f"{base_url.rstrip('/')}/api/ip_url/{path}/{mode}"


def diff_api_url(resolved_url: str, diff_type: str = "only") -> str:
    """Build the diff host's API URL for a resolved comparison URL.

    The diff host serves ``{scheme}://{host}/api/ip_url{path}{diff_type}`` for
    every diff page it hosts, keeping the page's query string.

    Example:
        >>> diff_api_url("http://52.90.238.162/pa/FzGD/")
        'http://52.90.238.162/api/ip_url/pa/FzGD/only'
    """
    if diff_type not in DIFF_TYPES:
        raise ValueError(f"Unknown diff type {diff_type!r}; expected one of {sorted(DIFF_TYPES)}")

    parts = urlsplit(resolved_url)
    path = parts.path if parts.path.endswith("/") else f"{parts.path}/"
    query = f"?{parts.query}" if parts.query else ""
    return f"{origin(resolved_url)}/api/ip_url{path}{diff_type}{query}"


def origin(url: str) -> str:
    """``scheme://host`` part of a URL."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def is_absolute(url: str) -> bool:
    """Whether ``url`` has a scheme (``https://...``, ``ftp://...``)."""
    return bool(_ABSOLUTE_URL.match(url))


def resolve_pointer(pointer: str, host_url: str) -> str:
    """Turn a pointer body returned by an ``ip_url`` API into a fetchable URL.

    The APIs answer with either an absolute URL or a path on their own host.
    """
    pointer = pointer.strip()
    if _HTTP_URL.match(pointer):
        return pointer
    return f"{origin(host_url)}{pointer if pointer.startswith('/') else '/' + pointer}"


def join_url_paths(base: str, *paths: str) -> str:
    """Join path segments onto a URL with exactly one slash between them."""
    result = base
    for path in paths:
        result = result + ("" if result.endswith("/") else "/") + path
    return result
