"""
Pydantic schemas for the records versionscout produces.

Every record is a frozen snapshot of what the service reported at scrape
time. Output formatters (CSV, JSON, streams) consume these through
``model_dump()`` and never touch the network layer.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Site(BaseModel):
    """A monitored site (a group of pages)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Site ID on the service")
    name: str = Field(..., description="Display name")
    canonical_url: str = Field(..., description="Site URL on the service")
    last_change_time: datetime | None = Field(
        None, description="Most recent change on any page (None if unknown)"
    )


class Page(BaseModel):
    """A tracked URL within a site."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Page ID on the service")
    site_id: str = Field(..., description="Owning site ID")
    remote_url: str = Field(..., description="URL of the tracked page itself")
    service_url: str = Field(..., description="Page URL on the service")
    title: str | None = Field(None, description="Page title")
    last_change_time: datetime | None = Field(None, description="Time of the newest version")
    last_checked_time: datetime | None = Field(None, description="Last time the page was polled")
    date_added: datetime | None = Field(None, description="When tracking started")
    total_version_count: int = Field(0, description="Number of versions the service holds")


class ComparisonLink(BaseModel):
    """A URL comparing one version against another."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="Comparison URL on the service")
    reference_time: datetime = Field(..., description="Capture time the comparison is anchored to")


class Version(BaseModel):
    """A single captured version of a page.

    ``error_code`` is set exactly when ``http_status`` is 400 or higher. The
    ``*_safe`` links skip over such error captures.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Version ID on the service")
    page_id: str = Field(..., description="Owning page ID")
    site_id: str = Field(..., description="Owning site ID")
    service_url: str = Field(..., description="Version URL on the service")
    capture_time: datetime = Field(..., description="When the capture was taken")
    last_seen_time: datetime | None = Field(None, description="Last time the same content was seen")
    has_stored_content: bool = Field(False, description="Whether the service kept the body")
    http_status: int | None = Field(None, description="HTTP status of the capture")
    error_code: str | None = Field(None, description="Status as text when it was an error")
    content_type: str | None = Field(None, description="Content type of the capture")
    byte_length: int | None = Field(None, description="Body size in bytes")
    redirect_chain: list[str] = Field(default_factory=list, description="Redirect targets")
    title: str | None = Field(None, description="Document title at capture time")
    diff_with_previous: ComparisonLink | None = None
    diff_with_first: ComparisonLink | None = None
    diff_with_previous_safe: ComparisonLink | None = None
    diff_with_first_safe: ComparisonLink | None = None


class Diff(BaseModel):
    """A resolved diff payload."""

    model_config = ConfigDict(frozen=True)

    byte_length: int = Field(..., description="Length of the content in bytes (UTF-8)")
    content_hash: str = Field(..., description="sha256 hex of the marker-stripped, trimmed body")
    content: str = Field(..., description="Diff body as served")


class Content(BaseModel):
    """Raw content of one version."""

    model_config = ConfigDict(frozen=True)

    body: str | bytes = Field(..., description="Text for HTML/text captures, bytes otherwise")
    content_type: str = Field("", description="Content type reported for the body")
    extension: str = Field("", description="File extension guessed from the content type")
    byte_length: int = Field(..., description="Length of the final body in bytes")
    content_hash: str = Field(..., description="sha256 hex of the final body")
    is_binary: bool = Field(False, description="True when the body was passed through as bytes")


class ArchiveEntry(BaseModel):
    """One file from a page archive."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="File name inside the archive")
    capture_time: datetime | None = Field(None, description="Capture time encoded in the name (UTC)")
    extension: str = Field("", description="File extension including the dot")
    content: bytes = Field(..., description="File body")
    content_hash: str = Field(..., description="sha256 hex of the body")
