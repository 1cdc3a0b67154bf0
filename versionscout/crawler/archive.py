"""
Page archives: every stored capture of a page in one zip file.

The service builds archives asynchronously. Requesting ``{page_url}archive``
returns a token; the zip appears under that token in the archive bucket some
time later, so we poll for it before downloading.
"""

from __future__ import annotations

import asyncio
import io
import random
import re
import zipfile
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import PurePosixPath

from versionscout.crawler.client import RequestScheduler, RequestSpec
from versionscout.crawler.resolver import content_hash
from versionscout.crawler.retry import retry_unless_status
from versionscout.crawler.urls import join_url_paths
from versionscout.utils.errors import ArchiveError, NetworkError
from versionscout.utils.logging import get_logger
from versionscout.utils.schemas import ArchiveEntry

logger = get_logger(__name__)

DEFAULT_ARCHIVE_BASE_URL = "https://s3.amazonaws.com/versionista-packs"

# e.g. "20170309221542.html", "20170309221542-1.pdf"
_ENTRY_NAME = re.compile(r"^(\d{4})(\d\d)(\d\d)(\d\d)(\d\d)(\d\d)[^.]*(\..*)?$")


def parse_archive_entry_name(name: str) -> tuple[datetime | None, str]:
    """Parse the capture time (UTC) and extension out of an archive file name.

    Names that do not start with a timestamp get no capture time.

    Example:
        >>> parse_archive_entry_name("20170309221542.html")
        (datetime.datetime(2017, 3, 9, 22, 15, 42, tzinfo=datetime.timezone.utc), '.html')
    """
    match = _ENTRY_NAME.match(name)
    if not match:
        return None, PurePosixPath(name).suffix

    year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
    try:
        captured = datetime(year, month, day, hour, minute, second, tzinfo=UTC)
    except ValueError:
        captured = None
    return captured, match.group(7) or ""


def iter_archive_entries(archive: bytes) -> Iterator[ArchiveEntry]:
    """Yield the files of a page archive. Directory entries are skipped.

    Raises:
        ArchiveError: If the bytes are not a zip file.
    """
    try:
        bundle = zipfile.ZipFile(io.BytesIO(archive))
    except zipfile.BadZipFile as e:
        raise ArchiveError("Page archive is not a valid zip file") from e

    with bundle:
        for info in bundle.infolist():
            if info.is_dir():
                continue
            name = PurePosixPath(info.filename).name
            captured, extension = parse_archive_entry_name(name)
            data = bundle.read(info)
            yield ArchiveEntry(
                name=info.filename,
                capture_time=captured,
                extension=extension,
                content=data,
                content_hash=content_hash(data),
            )


class ArchiveFetcher:
    """Requests, waits for and downloads page archives."""

    def __init__(
        self,
        scheduler: RequestScheduler,
        *,
        archive_base_url: str = DEFAULT_ARCHIVE_BASE_URL,
        poll_interval: float = 1.0,
        poll_timeout: float = 300.0,
    ) -> None:
        self._scheduler = scheduler
        self._archive_base_url = archive_base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    async def fetch_archive(self, page_url: str) -> bytes:
        """Download the zip archive of a page's captures.

        Args:
            page_url: Page URL on the service.

        Raises:
            ArchiveError: Archive creation failed or the archive never appeared.
        """
        create_url = join_url_paths(page_url, "archive")
        try:
            response = await self._scheduler.submit(
                RequestSpec(create_url, retry_if=retry_unless_status(200))
            )
        except NetworkError as e:
            raise ArchiveError(
                f"Error creating archive for {page_url}: {e.message}",
                details={"page_url": page_url, "status": e.status},
            ) from e

        token = response.text.strip()
        archive_url = f"{self._archive_base_url}/{token}"
        logger.info("Archive requested", page_url=page_url, archive_url=archive_url)

        await self._wait_until_ready(archive_url, page_url)

        download = await self._scheduler.submit(RequestSpec(archive_url, immediate=True))
        if download.status != 200:
            raise ArchiveError(
                f"Error downloading archive for {page_url}: HTTP {download.status}",
                details={"page_url": page_url, "status": download.status},
            )
        return download.content

    async def _wait_until_ready(self, archive_url: str, page_url: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_timeout

        while True:
            # Random query string so no cache answers for the bucket
            response = await self._scheduler.submit(
                RequestSpec(f"{archive_url}?{random.random()}", method="HEAD")
            )
            if response.status == 200:
                return
            if loop.time() > deadline:
                raise ArchiveError(
                    f"Timed out requesting archive for {page_url}",
                    details={"page_url": page_url, "archive_url": archive_url},
                )
            await asyncio.sleep(self.poll_interval)
