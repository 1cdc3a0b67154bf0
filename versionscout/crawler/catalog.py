"""
Catalog enumeration: sites, pages and versions of an account.

Sites only exist as an HTML table on the account's home page. Pages and
versions come from undocumented JSON endpoints; their payloads are checked
against minimal schemas so that an upstream change fails loudly
(SchemaError) instead of producing half-empty records.
"""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict

from versionscout.crawler.client import RequestScheduler, RequestSpec
from versionscout.crawler.fetch_result import FetchResult
from versionscout.crawler.lineage import build_lineage, from_timestamp, validate_record
from versionscout.crawler.urls import (
    DEFAULT_BASE_URL,
    format_page_url,
    is_absolute,
    parse_service_url,
)
from versionscout.utils.errors import SchemaError
from versionscout.utils.logging import get_logger
from versionscout.utils.schemas import Page, Site, Version

logger = get_logger(__name__)

# Sites without changes for about a year show a placeholder instead of a time
NO_RECENT_CHANGE_AGE = timedelta(days=365)

_LEADING_FLOAT = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class PageRecord(BaseModel):
    """Minimal schema of a page in the site API payload."""

    model_config = ConfigDict(strict=True, extra="ignore")

    title: str | None = None  # Absent for new pages
    flags: list[Any]
    url: str  # Absolute, or a path relative to the site's base
    lchk: int | float | None = None  # Last checked, unix seconds
    beacon: int | float
    vers: int | float
    id: str
    st: str  # A (active), I (paused), N (new)
    added: int | float
    mime: str
    cur_ver: int | float
    seenlast: int | float | None = None
    lnew: int | float | None = None  # Newest version, unix seconds


def parse_leading_float(text: str) -> float | None:
    """Parse a number off the start of ``text`` ("3600 s" -> 3600.0), else None."""
    match = _LEADING_FLOAT.match(text)
    return float(match.group(0)) if match else None


def parse_json(response: FetchResult) -> Any:
    try:
        return json.loads(response.content)
    except ValueError as e:
        raise SchemaError(
            f"Response is not valid JSON (HTTP {response.status})",
            endpoint=response.url,
        ) from e


class CatalogEnumerator:
    """Lists the sites, pages and versions visible to the logged-in account."""

    def __init__(self, scheduler: RequestScheduler, *, base_url: str = DEFAULT_BASE_URL) -> None:
        self._scheduler = scheduler
        self._base_url = base_url.rstrip("/")

    async def list_sites(self) -> list[Site]:
        """List every site in the account.

        Raises:
            SchemaError: If the home page has no site table or a row lacks its
                last-change column.
        """
        url = f"{self._base_url}/home?show_all=1"
        response = await self._scheduler.submit(RequestSpec(url))
        requested_at = response.requested_at or datetime.now(UTC)

        soup = BeautifulSoup(response.text, "html.parser")
        if soup.select_one(".sorttable") is None:
            raise SchemaError("HTML for site listing has no table of sites", endpoint=url)

        sites = [
            self._parse_site_row(row, url, requested_at)
            for row in soup.select(".sorttable > tbody > tr")
        ]
        logger.info("Listed sites", count=len(sites))
        return sites

    def _parse_site_row(self, row: Any, endpoint: str, requested_at: datetime) -> Site:
        link = row.select_one("a.kwbase")
        if link is None or not link.get("href"):
            raise SchemaError("Site row has no site link", endpoint=endpoint, field="a.kwbase")

        site_url = urljoin(f"{self._base_url}/", link["href"])

        # No stable class for "time since last change"; it follows "new pages found"
        updated = row.select_one(".kwnewfound + td .h")
        if updated is not None:
            seconds_ago = parse_leading_float(updated.get_text())
            last_change = requested_at - timedelta(seconds=seconds_ago) if seconds_ago is not None else None
        elif row.select_one(".kwnewfound + td .anev") is not None:
            last_change = requested_at - NO_RECENT_CHANGE_AGE
        else:
            raise SchemaError(
                'Could not find "since" field on the sites page',
                endpoint=endpoint,
                field=".kwnewfound + td",
            )

        return Site(
            id=parse_service_url(site_url).site_id,
            name=link.get_text().strip(),
            canonical_url=site_url,
            last_change_time=last_change,
        )

    async def list_pages(self, site: Site) -> list[Page]:
        """List the tracked pages of a site.

        Raises:
            SchemaError: If the payload or any page in it has an unexpected shape.
        """
        url = f"{self._base_url}/api/site/{site.id}/"
        response = await self._scheduler.submit(RequestSpec(url))
        payload = parse_json(response)

        if not isinstance(payload, dict):
            raise SchemaError("Response from page listing API was not a JSON object", endpoint=url)
        if payload.get("data") is None or payload.get("pages") is None:
            raise SchemaError(
                "Response from page listing API did not have 'data' and 'pages' properties",
                endpoint=url,
            )
        if not isinstance(payload["pages"], dict):
            raise SchemaError(
                "The 'pages' property in the page listing API was not an object",
                endpoint=url,
                field="pages",
            )

        data = payload["data"]
        site_base = data.get("base", "") if isinstance(data, dict) else ""

        pages = []
        for key, raw in payload["pages"].items():
            record = validate_record(raw, index=key, endpoint=url, model=PageRecord)
            remote_url = record.url if is_absolute(record.url) else f"{site_base}{record.url}"
            pages.append(
                Page(
                    id=record.id,
                    site_id=site.id,
                    remote_url=remote_url,
                    service_url=format_page_url(site.id, record.id, self._base_url),
                    title=record.title,
                    last_change_time=from_timestamp(record.lnew),
                    last_checked_time=from_timestamp(record.lchk),
                    date_added=from_timestamp(record.added),
                    total_version_count=int(record.vers),
                )
            )

        logger.info("Listed pages", site_id=site.id, count=len(pages))
        return pages

    async def list_versions(self, page: Page) -> list[Version]:
        """List a page's versions, oldest first, with comparison links.

        Raises:
            SchemaError: If the payload is not an array or a record is malformed.
        """
        url = f"{self._base_url}/api/versions/{page.site_id}/{page.id}"
        response = await self._scheduler.submit(RequestSpec(url))
        payload = parse_json(response)

        if not isinstance(payload, list):
            raise SchemaError("Response from version listing API was not a JSON array", endpoint=url)

        versions = build_lineage(page, payload, endpoint=url, base_url=self._base_url)
        logger.info("Listed versions", site_id=page.site_id, page_id=page.id, count=len(versions))
        return versions
