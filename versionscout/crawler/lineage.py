"""
Version lineage: turn a page's raw version records into ordered Versions.

Each Version (except the first) gets comparison links against its
predecessor and against the page's first version. When error captures
(status >= 400) sit in between, "safe" links are added that skip them, so a
diff never compares against an error page.

Everything here is pure: same records in, same Versions out.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import reduce
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from versionscout.crawler.urls import DEFAULT_BASE_URL, format_comparison_url, format_version_url
from versionscout.utils.errors import SchemaError
from versionscout.utils.schemas import ComparisonLink, Page, Version

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class VersionRecord(BaseModel):
    """Minimal schema of a record from the version listing API.

    Only the fields versionscout reads are checked; anything else the
    service sends is ignored.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    rc: str  # Status line as text, e.g. "200 OK"
    size: int | float
    fst: int | float  # First capture, unix seconds
    content_type: str
    lst: int | float  # Last capture, unix seconds
    id: Any
    stored: bool = False  # Only present when true
    seen: int | float | None = None
    title: str | None = None
    final_url: str | None = None  # Only present on redirects


def parse_status(status_text: str) -> int | None:
    """Parse the leading status code off a status line ("404 Not Found" -> 404)."""
    match = _LEADING_INT.match(status_text)
    return int(match.group(1)) if match else None


def from_timestamp(value: float | None) -> datetime | None:
    return datetime.fromtimestamp(value, UTC) if value is not None else None


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def validate_record(
    raw: Any,
    *,
    index: int | str,
    endpoint: str,
    model: type[BaseModel] = VersionRecord,
) -> Any:
    """Validate one raw record, turning pydantic errors into SchemaError."""
    if not isinstance(raw, Mapping):
        raise SchemaError(f"Record {index} is not an object", endpoint=endpoint, field=str(index))
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in (index, *first["loc"]))
        raise SchemaError(
            f"Record {index} does not match expected schema: '{field}' {first['msg']}",
            endpoint=endpoint,
            field=field,
        ) from e


def version_from_record(
    page: Page,
    record: VersionRecord,
    *,
    index: int,
    endpoint: str,
    base_url: str = DEFAULT_BASE_URL,
) -> Version:
    status = parse_status(record.rc)
    if status is None:
        raise SchemaError(
            f"Could not parse status code from version {index}: {record.rc!r}",
            endpoint=endpoint,
            field=f"{index}.rc",
        )

    version_id = str(record.id)
    return Version(
        id=version_id,
        page_id=page.id,
        site_id=page.site_id,
        service_url=format_version_url(page.site_id, page.id, version_id, base_url),
        capture_time=from_timestamp(record.fst),
        last_seen_time=from_timestamp(record.lst),
        has_stored_content=record.stored,
        http_status=status,
        error_code=str(status) if status >= 400 else None,
        content_type=record.content_type,
        byte_length=int(record.size),
        redirect_chain=[record.final_url] if record.final_url else [],
        title=record.title,
    )


@dataclass(frozen=True)
class LineageState:
    """Accumulator threaded through the lineage fold."""

    oldest: Version | None = None
    previous: Version | None = None
    oldest_safe: Version | None = None
    previous_safe: Version | None = None
    versions: tuple[Version, ...] = ()


def _compare(version: Version, other: Version, reference_time: datetime, base_url: str) -> ComparisonLink:
    return ComparisonLink(
        url=format_comparison_url(version.site_id, version.page_id, version.id, other.id, base_url),
        reference_time=reference_time,
    )


def link_version(state: LineageState, version: Version, base_url: str = DEFAULT_BASE_URL) -> LineageState:
    """Fold step: attach comparison links to ``version`` and advance the state."""
    if state.previous is not None and state.oldest is not None:
        links = {
            "diff_with_previous": _compare(version, state.previous, version.capture_time, base_url),
            "diff_with_first": _compare(version, state.oldest, state.oldest.capture_time, base_url),
        }
        # Safe links only when an error capture was skipped since the last good one
        if (
            state.previous_safe is not None
            and state.oldest_safe is not None
            and state.previous_safe.id != state.previous.id
        ):
            links["diff_with_previous_safe"] = _compare(
                version, state.previous_safe, version.capture_time, base_url
            )
            links["diff_with_first_safe"] = _compare(
                version, state.oldest_safe, state.oldest_safe.capture_time, base_url
            )
        version = version.model_copy(update=links)

    succeeded = version.error_code is None
    return LineageState(
        oldest=state.oldest or version,
        previous=version,
        oldest_safe=state.oldest_safe or (version if succeeded else None),
        previous_safe=version if succeeded else state.previous_safe,
        versions=(*state.versions, version),
    )


def link_versions(versions: Iterable[Version], base_url: str = DEFAULT_BASE_URL) -> list[Version]:
    """Sort versions by capture time (stable) and attach comparison links."""
    ordered = sorted(versions, key=lambda version: version.capture_time)
    state = reduce(lambda acc, version: link_version(acc, version, base_url), ordered, LineageState())
    return list(state.versions)


def build_lineage(
    page: Page,
    raw_versions: Sequence[Any],
    *,
    endpoint: str = "",
    base_url: str = DEFAULT_BASE_URL,
) -> list[Version]:
    """Build a page's ordered, linked versions from its raw version records.

    Deleted records are dropped before anything else: they carry almost no
    metadata and would fail validation.

    Args:
        page: Page the records belong to.
        raw_versions: Records from the version listing API.
        endpoint: URL the records came from, for error messages.
        base_url: Service base URL for the version and comparison URLs.

    Returns:
        Versions in ascending capture-time order.

    Raises:
        SchemaError: If a record lacks a required field or has an unparsable status.
    """
    live = [raw for raw in raw_versions if not (isinstance(raw, Mapping) and raw.get("deleted"))]
    versions = [
        version_from_record(
            page,
            validate_record(raw, index=index, endpoint=endpoint),
            index=index,
            endpoint=endpoint,
            base_url=base_url,
        )
        for index, raw in enumerate(live)
    ]
    return link_versions(versions, base_url)


def filter_versions(
    versions: Iterable[Version],
    after: datetime | None = None,
    before: datetime | None = None,
) -> list[Version]:
    """Keep versions captured in ``[after, before)``.

    Run this on linked versions: the links keep pointing at the real
    predecessors even when those fall outside the window. Naive bounds are
    taken as UTC.
    """
    after = _as_utc(after)
    before = _as_utc(before)
    return [
        version
        for version in versions
        if (after is None or version.capture_time >= after)
        and (before is None or version.capture_time < before)
    ]
