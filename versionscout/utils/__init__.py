"""
versionscout utilities module.
"""

from versionscout.utils.config import get_settings
from versionscout.utils.logging import LogContext, configure_logging, get_logger

__all__ = [
    "get_settings",
    "get_logger",
    "configure_logging",
    "LogContext",
]
