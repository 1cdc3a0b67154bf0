"""
Scrape orchestration: sites -> pages -> versions (-> diffs).

Failures are recorded on the unit they belong to (a site whose page listing
broke, a page whose versions could not be listed, a diff that would not
resolve) and the rest of the scrape carries on. Two failures end the whole
run: a rejected login, and a site listing that no longer parses.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from versionscout.crawler.lineage import filter_versions
from versionscout.utils.errors import AuthenticationError, VersionscoutError
from versionscout.utils.logging import LogContext, get_logger
from versionscout.utils.schemas import Diff, Page, Site, Version
from versionscout.versionista import Versionista

logger = get_logger(__name__)


class VersionResult(BaseModel):
    """A version and the diff against its predecessor."""

    version: Version
    diff: Diff | None = None
    error: str | None = None
    error_code: str | None = None


class PageResult(BaseModel):
    """A page with the versions captured in the scrape window."""

    page: Page
    versions: list[Version] = Field(default_factory=list)
    diffs: list[VersionResult] = Field(default_factory=list)
    error: str | None = None
    error_code: str | None = None


class SiteResult(BaseModel):
    """A site with its changed pages."""

    site: Site
    pages: list[PageResult] = Field(default_factory=list)
    error: str | None = None
    error_code: str | None = None


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _changed_since(last_change: datetime | None, after: datetime | None) -> bool:
    # Unknown change times are scraped; they may hold anything
    return after is None or last_change is None or last_change >= after


async def scrape(
    client: Versionista,
    *,
    site_ids: list[str] | None = None,
    after: datetime | None = None,
    before: datetime | None = None,
    diff_type: str | None = None,
) -> list[SiteResult]:
    """Scrape the account's sites, pages and versions.

    Args:
        client: Logged-in (or loggable) client.
        site_ids: Only scrape these sites (default: all).
        after: Only keep versions captured at or after this time (default:
            configured window). Sites and pages without changes since then are
            skipped.
        before: Only keep versions captured before this time.
        diff_type: Also resolve each kept version's diff against its
            predecessor, in this variant (default: no diffs).

    Returns:
        One result per scraped site.

    Raises:
        AuthenticationError: The login was rejected.
        SchemaError: The site listing could not be parsed.
    """
    window = client.settings.window
    after = _as_utc(after or window.after)
    before = _as_utc(before or window.before)

    sites = await client.get_sites()
    if site_ids is not None:
        wanted = set(site_ids)
        sites = [site for site in sites if site.id in wanted]
    sites = [site for site in sites if _changed_since(site.last_change_time, after)]

    logger.info(
        "Scraping sites",
        count=len(sites),
        after=after.isoformat() if after else None,
        before=before.isoformat() if before else None,
    )

    return list(
        await asyncio.gather(
            *(_scrape_site(client, site, after, before, diff_type) for site in sites)
        )
    )


async def _scrape_site(
    client: Versionista,
    site: Site,
    after: datetime | None,
    before: datetime | None,
    diff_type: str | None,
) -> SiteResult:
    with LogContext(site_id=site.id):
        try:
            pages = await client.get_pages(site)
        except AuthenticationError:
            raise
        except VersionscoutError as e:
            logger.warning("Could not list pages", error=e.message, error_code=e.code.value)
            return SiteResult(site=site, error=e.message, error_code=e.code.value)

        pages = [page for page in pages if _changed_since(page.last_change_time, after)]
        page_results = await asyncio.gather(
            *(_scrape_page(client, page, after, before, diff_type) for page in pages)
        )
        return SiteResult(site=site, pages=list(page_results))


async def _scrape_page(
    client: Versionista,
    page: Page,
    after: datetime | None,
    before: datetime | None,
    diff_type: str | None,
) -> PageResult:
    try:
        versions = await client.get_versions(page)
    except AuthenticationError:
        raise
    except VersionscoutError as e:
        logger.warning(
            "Could not list versions",
            page_id=page.id,
            error=e.message,
            error_code=e.code.value,
        )
        return PageResult(page=page, error=e.message, error_code=e.code.value)

    versions = filter_versions(versions, after, before)
    diffs: list[VersionResult] = []
    if diff_type is not None:
        diffs = list(
            await asyncio.gather(
                *(
                    _resolve_diff(client, version, diff_type)
                    for version in versions
                    if version.diff_with_previous is not None
                )
            )
        )

    return PageResult(page=page, versions=versions, diffs=diffs)


async def _resolve_diff(client: Versionista, version: Version, diff_type: str) -> VersionResult:
    # Skip over error captures when there is a good predecessor to compare to
    link = version.diff_with_previous_safe or version.diff_with_previous
    try:
        diff = await client.get_version_diff(link, diff_type)
    except AuthenticationError:
        raise
    except VersionscoutError as e:
        logger.warning(
            "Could not resolve diff",
            version_id=version.id,
            url=link.url,
            error=e.message,
            error_code=e.code.value,
        )
        return VersionResult(version=version, error=e.message, error_code=e.code.value)
    return VersionResult(version=version, diff=diff)
