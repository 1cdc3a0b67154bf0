"""
versionscout crawler module.

Provides the request scheduler, login session, catalog enumeration, version
lineage, and diff/content/archive resolution.
"""

from versionscout.crawler.archive import ArchiveFetcher, iter_archive_entries, parse_archive_entry_name
from versionscout.crawler.catalog import CatalogEnumerator
from versionscout.crawler.client import RequestScheduler, RequestSpec, SchedulerStats
from versionscout.crawler.fetch_result import FetchResult
from versionscout.crawler.lineage import build_lineage, filter_versions, parse_status
from versionscout.crawler.resolver import ContentFetcher, DiffResolver, ResolutionStage
from versionscout.crawler.retry import RetryPolicy, retry_unless_status
from versionscout.crawler.session import SessionManager

__all__ = [
    "RequestScheduler",
    "RequestSpec",
    "SchedulerStats",
    "FetchResult",
    "RetryPolicy",
    "retry_unless_status",
    "SessionManager",
    "CatalogEnumerator",
    "build_lineage",
    "filter_versions",
    "parse_status",
    "DiffResolver",
    "ContentFetcher",
    "ResolutionStage",
    "ArchiveFetcher",
    "iter_archive_entries",
    "parse_archive_entry_name",
]
