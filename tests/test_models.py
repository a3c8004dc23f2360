"""
Tests for the shared models.

Tests cover:
- Tagged catalog results
- Wire models
- Archive naming helpers
- Version request helpers
"""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter

from pkgupdates.models import (
    LATEST,
    CatalogErr,
    CatalogOk,
    CatalogResult,
    HealthResponse,
    VersionsResponse,
    archive_filename,
    is_latest,
    match_version,
    normalize_request,
    version_from_filename,
)

# =============================================================================
# Catalog Result Tests
# =============================================================================


class TestCatalogResult:
    """Tests for CatalogOk / CatalogErr."""

    def test_ok_latest(self) -> None:
        """Test the latest property."""
        assert CatalogOk(versions=["2.0", "1.0"]).latest == "2.0"
        assert CatalogOk().latest is None

    def test_discriminated_union(self) -> None:
        """Test that the status tag selects the model."""
        adapter = TypeAdapter(CatalogResult)

        ok = adapter.validate_python({"status": "ok", "versions": ["1.0"]})
        err = adapter.validate_python({"status": "error", "reason": "unreadable"})

        assert isinstance(ok, CatalogOk)
        assert isinstance(err, CatalogErr)
        assert err.reason == "unreadable"


# =============================================================================
# Wire Model Tests
# =============================================================================


class TestWireModels:
    """Tests for the HTTP body models."""

    def test_versions_response_dump(self) -> None:
        """Test the /versions body shape."""
        body = VersionsResponse(versions=["2.1.0", "1.0.0"], latest="2.1.0")
        assert body.model_dump() == {"versions": ["2.1.0", "1.0.0"], "latest": "2.1.0"}

    def test_versions_response_empty(self) -> None:
        """Test that latest is null for an empty catalog."""
        assert VersionsResponse().model_dump() == {"versions": [], "latest": None}

    def test_health_response_defaults(self) -> None:
        """Test the /health body shape."""
        body = HealthResponse(timestamp="2024-01-01T00:00:00+00:00")
        assert body.model_dump() == {
            "status": "OK",
            "timestamp": "2024-01-01T00:00:00+00:00",
            "versions": [],
        }


# =============================================================================
# Archive Naming Tests
# =============================================================================


class TestArchiveNaming:
    """Tests for archive_filename / version_from_filename."""

    def test_archive_filename(self) -> None:
        """Test the advertised file name."""
        assert archive_filename("2.1.0") == "2.1.0.tar.gz"

    def test_version_from_filename(self) -> None:
        """Test recovering the version."""
        assert version_from_filename("2.1.0.tar.gz") == "2.1.0"

    @pytest.mark.parametrize("filename", ["2.1.0.zip", "2.1.0", ".tar.gz"])
    def test_version_from_other_names(self, filename: str) -> None:
        """Test names without a usable suffix."""
        assert version_from_filename(filename) is None


# =============================================================================
# Version Request Tests
# =============================================================================


class TestVersionRequests:
    """Tests for request normalization and matching."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (None, LATEST),
            ("", LATEST),
            ("   ", LATEST),
            (" 1.0.0 ", "1.0.0"),
            ("1. 0", "1.0"),
            ("latest", "latest"),
        ],
    )
    def test_normalize_request(self, raw: str | None, expected: str) -> None:
        """Test whitespace removal and the LATEST default."""
        assert normalize_request(raw) == expected

    @pytest.mark.parametrize("value", ["LATEST", "latest", "LaTeSt"])
    def test_is_latest(self, value: str) -> None:
        """Test case-insensitive LATEST detection."""
        assert is_latest(value)

    def test_is_not_latest(self) -> None:
        """Test that versions are not LATEST."""
        assert not is_latest("1.0.0")

    def test_match_version_case_insensitive(self) -> None:
        """Test that matching ignores case and returns the catalog spelling."""
        assert match_version("release-A", ["Release-a", "1.0"]) == "Release-a"

    def test_match_version_exact_only(self) -> None:
        """Test that prefixes do not match."""
        assert match_version("1.0", ["1.0.0"]) is None
