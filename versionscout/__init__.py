"""
versionscout: change-history scraper for Versionista accounts.
"""

from versionscout.scraper import PageResult, SiteResult, VersionResult, scrape
from versionscout.versionista import Versionista

__version__ = "0.1.0"

__all__ = [
    "Versionista",
    "scrape",
    "SiteResult",
    "PageResult",
    "VersionResult",
]
