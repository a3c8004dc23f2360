"""
Shared data models for pkg-updates.

Two kinds of models live here:

- Tagged catalog results used internally by the host (CatalogOk / CatalogErr),
  independent of any wire shape.
- Wire models for the HTTP surface. The host serializes them and the client
  validates responses against them, so both sides agree on the JSON shapes.
"""

from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, Field

# =============================================================================
# Internal tagged results
# =============================================================================


class CatalogOk(BaseModel):
    """A successfully computed catalog, newest version first."""

    status: Literal["ok"] = "ok"
    versions: list[str] = Field(default_factory=list)

    @property
    def latest(self) -> str | None:
        """First catalog entry, or None when the catalog is empty."""
        return self.versions[0] if self.versions else None


class CatalogErr(BaseModel):
    """A catalog that could not be computed."""

    status: Literal["error"] = "error"
    reason: str


CatalogResult = Annotated[CatalogOk | CatalogErr, Field(discriminator="status")]


# =============================================================================
# Wire models
# =============================================================================


class VersionsResponse(BaseModel):
    """Body of ``GET /versions``."""

    versions: list[str] = Field(
        default_factory=list,
        description="Available versions, newest first",
    )
    latest: str | None = Field(
        default=None,
        description="First entry of versions, or null when there are none",
    )


class HealthResponse(BaseModel):
    """Body of ``GET /health``."""

    status: str = Field(default="OK")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    versions: list[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Body of every JSON error response."""

    error: str


# =============================================================================
# Archive naming
# =============================================================================

ARCHIVE_SUFFIX = ".tar.gz"
ARCHIVE_MEDIA_TYPE = "application/gzip"


def archive_filename(version: str) -> str:
    """File name advertised in Content-Disposition for a version archive."""
    return f"{version}{ARCHIVE_SUFFIX}"


def version_from_filename(filename: str) -> str | None:
    """
    Recover the version from an archive file name.

    Returns:
        The version, or None if the name does not carry the archive suffix.
    """
    if not filename.endswith(ARCHIVE_SUFFIX) or filename == ARCHIVE_SUFFIX:
        return None
    return filename[: -len(ARCHIVE_SUFFIX)]


# =============================================================================
# Version requests
# =============================================================================

LATEST = "LATEST"

_WHITESPACE = re.compile(r"\s+")


def normalize_request(requested: str | None) -> str:
    """
    Normalize a requested version string.

    All whitespace is removed; an empty or missing request means LATEST.
    """
    cleaned = _WHITESPACE.sub("", requested or "")
    return cleaned or LATEST


def is_latest(requested: str) -> bool:
    """Whether a normalized request asks for the newest version."""
    return requested.upper() == LATEST


def match_version(requested: str, versions: list[str]) -> str | None:
    """
    Find a catalog entry equal to ``requested``, ignoring case.

    Returns:
        The catalog's spelling of the entry, or None.
    """
    wanted = requested.upper()
    for version in versions:
        if version.upper() == wanted:
            return version
    return None
