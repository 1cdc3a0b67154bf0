"""
Client for a Versionista account.

Wires the request scheduler, login session and the catalog, diff, content
and archive components together. Every request goes through one scheduler,
and every request except the login waits for the login to succeed.

Example:
    async with Versionista(email="me@example.org", password="...") as client:
        for site in await client.get_sites():
            for page in await client.get_pages(site):
                versions = await client.get_versions(page)
"""

from __future__ import annotations

import httpx

from versionscout.crawler.archive import ArchiveFetcher, iter_archive_entries
from versionscout.crawler.catalog import CatalogEnumerator
from versionscout.crawler.client import RequestScheduler
from versionscout.crawler.resolver import ContentFetcher, DiffResolver
from versionscout.crawler.session import SessionManager
from versionscout.utils.config import Settings, get_settings
from versionscout.utils.logging import get_logger
from versionscout.utils.schemas import (
    ArchiveEntry,
    ComparisonLink,
    Content,
    Diff,
    Page,
    Site,
    Version,
)

logger = get_logger(__name__)


class Versionista:
    """Access to the sites, pages and versions of one Versionista account."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        email: str | None = None,
        password: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        service = self.settings.service
        content = self.settings.content

        self.scheduler = RequestScheduler.from_settings(self.settings, transport=transport)
        self.session = SessionManager(
            self.scheduler,
            email=email or self.settings.account.email,
            password=password or self.settings.account.password,
            base_url=service.base_url,
        )
        self.scheduler.set_authenticator(self.session.ensure_logged_in)

        self.catalog = CatalogEnumerator(self.scheduler, base_url=service.base_url)
        self.diffs = DiffResolver(self.scheduler, base_url=service.base_url)
        self.contents = ContentFetcher(
            self.scheduler,
            base_url=service.base_url,
            cache_expired_retries=content.cache_expired_retries,
        )
        self.archives = ArchiveFetcher(
            self.scheduler,
            archive_base_url=service.archive_base_url,
            poll_interval=content.archive_poll_interval,
            poll_timeout=content.archive_poll_timeout,
        )

    async def log_in(self) -> None:
        """Log in now rather than on the first request."""
        await self.session.ensure_logged_in()

    async def get_sites(self) -> list[Site]:
        return await self.catalog.list_sites()

    async def get_pages(self, site: Site) -> list[Page]:
        return await self.catalog.list_pages(site)

    async def get_versions(self, page: Page) -> list[Version]:
        """Versions of a page, oldest first, with comparison links."""
        return await self.catalog.list_versions(page)

    async def get_version_diff(
        self,
        comparison: ComparisonLink | str,
        diff_type: str | None = None,
    ) -> Diff | None:
        """Resolve a comparison link into its diff (None for an empty diff)."""
        url = comparison.url if isinstance(comparison, ComparisonLink) else comparison
        return await self.diffs.resolve_diff(url, diff_type or self.settings.content.default_diff_type)

    async def get_version_content(
        self,
        version: Version | str,
        retries: int | None = None,
        mode: str = "raw",
    ) -> Content:
        url = version.service_url if isinstance(version, Version) else version
        return await self.contents.fetch_content(url, retries=retries, mode=mode)

    async def get_version_archive(self, page: Page | str) -> bytes:
        """Zip archive of every stored capture of a page."""
        url = page.service_url if isinstance(page, Page) else page
        return await self.archives.fetch_archive(url)

    async def get_version_archive_entries(self, page: Page | str) -> list[ArchiveEntry]:
        return list(iter_archive_entries(await self.get_version_archive(page)))

    async def aclose(self) -> None:
        logger.debug("Closing client", stats=self.scheduler.stats.to_dict())
        await self.scheduler.aclose()

    async def __aenter__(self) -> Versionista:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
