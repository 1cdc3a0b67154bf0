"""
Structured logging for versionscout.

Library modules only call ``get_logger``; an application that wants JSON or
console output calls ``configure_logging`` once at startup.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.types import Processor

from versionscout.utils.config import get_settings

_CREDENTIAL_KEYS = ("password", "pw")


def _redact_credentials(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Never let a password reach a log sink."""
    for key in _CREDENTIAL_KEYS:
        if key in event_dict:
            event_dict[key] = "***"
    return event_dict


def configure_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
    json_format: bool | None = None,
) -> None:
    """Route structlog through stdlib logging.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR (default: general.log_level).
        log_file: Extra file sink. Defaults to a dated file in
            general.logs_dir when that is set; stderr only otherwise.
        json_format: JSON lines (True) or console output (False)
            (default: general.json_logs).
    """
    general = get_settings().general
    log_level = log_level or general.log_level
    if json_format is None:
        json_format = general.json_logs

    if log_file is None and general.logs_dir:
        log_dir = Path(general.logs_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"versionscout_{datetime.now():%Y%m%d}.log"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_credentials,
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogContext:
    """Bind key-value pairs to every log call inside a block.

    Example:
        with LogContext(site_id="74273"):
            logger.info("Listing pages")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        structlog.contextvars.unbind_contextvars(*self.context)
