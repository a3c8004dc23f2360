"""
Version catalog for the update host.

The catalog is derived from the package root on every call: each immediate
sub-directory whose name matches the digit-dot grammar (``1``, ``1.2``,
``1.2.3``, ``1.2.3.4`` ...) is a version. Anything else, including
pre-release names such as ``1.0.0-beta.1`` or ``v1.0``, is silently left out.
Resolution only matches catalog entries, so such directories are never served.

Ordering is numeric per component, newest first. Missing components count as
zero, so ``1.0`` and ``1.0.0`` tie; ties are broken by the plain code point
order of the names, which keeps the output identical across platforms and
filesystems.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

from pkgupdates.errors import CatalogReadError, VersionNotFoundError
from pkgupdates.logging import get_logger
from pkgupdates.models import (
    CatalogErr,
    CatalogOk,
    CatalogResult,
    is_latest,
    match_version,
    normalize_request,
)

logger = get_logger(__name__)

# ASCII digits only: str.isdigit() and \d would also accept other scripts
VERSION_PATTERN = re.compile(r"[0-9]+(?:\.[0-9]+)*")


@dataclass(frozen=True)
class VersionIdentifier:
    """
    A version directory name and its parsed numeric components.

    Attributes:
        raw: The directory name exactly as found on disk.
        parts: Integer components, e.g. ``(2, 1, 0)`` for ``"2.1.0"``.
    """

    raw: str
    parts: tuple[int, ...]

    @classmethod
    def parse(cls, name: str) -> VersionIdentifier | None:
        """
        Parse a directory name.

        Returns:
            The identifier, or None if the name is outside the grammar.
        """
        if not VERSION_PATTERN.fullmatch(name):
            return None
        return cls(raw=name, parts=tuple(int(part) for part in name.split(".")))

    def padded(self, length: int) -> tuple[int, ...]:
        """Return the components right-padded with zeros to ``length``."""
        return self.parts + (0,) * (length - len(self.parts))


def sort_versions_descending(names: list[str]) -> list[str]:
    """
    Filter names to valid version identifiers and sort them newest first.

    Args:
        names: Candidate directory names, in any order.

    Returns:
        Valid names ordered by descending numeric tuple.
    """
    identifiers = [
        identifier
        for identifier in map(VersionIdentifier.parse, sorted(names))
        if identifier is not None
    ]
    if not identifiers:
        return []

    width = max(len(identifier.parts) for identifier in identifiers)
    identifiers.sort(key=lambda identifier: identifier.padded(width), reverse=True)
    return [identifier.raw for identifier in identifiers]


class VersionStore:
    """
    Read-only view of the versions available under a package root.

    There is no cache: every call lists the directory again, so concurrent
    requests never share mutable state and a newly copied version is served
    immediately.

    Attributes:
        root: Directory containing one sub-directory per version.
    """

    def __init__(self, root: Path | str) -> None:
        """
        Initialize the VersionStore.

        Args:
            root: Directory containing one sub-directory per version.
        """
        self.root = Path(root)

    def _list_directory_names(self) -> list[str]:
        try:
            with os.scandir(self.root) as entries:
                return [
                    entry.name
                    for entry in entries
                    if entry.is_dir(follow_symlinks=False)
                ]
        except OSError as e:
            logger.error(
                "Failed to read package root",
                extra={"root": str(self.root), "error": str(e)},
            )
            raise CatalogReadError(
                "Unable to read the package catalog",
                details={"root": str(self.root), "error": str(e)},
            ) from e

    def list_versions(self) -> list[str]:
        """
        List available versions, newest first.

        Returns:
            Version names in descending numeric order.

        Raises:
            CatalogReadError: If the package root cannot be listed.
        """
        return sort_versions_descending(self._list_directory_names())

    def snapshot(self) -> CatalogResult:
        """
        Compute the catalog as a tagged result instead of raising.

        Returns:
            CatalogOk with the versions, or CatalogErr with a public reason.
        """
        try:
            return CatalogOk(versions=self.list_versions())
        except CatalogReadError as e:
            return CatalogErr(reason=e.message)

    def latest(self) -> str | None:
        """Return the newest version, or None when the catalog is empty."""
        versions = self.list_versions()
        return versions[0] if versions else None

    def resolve(self, requested: str | None) -> str:
        """
        Resolve a requested version against the current catalog.

        ``LATEST`` (any case) maps to the newest version. Anything else must
        match a catalog entry exactly, ignoring case and whitespace; no
        prefix or partial matching is done.

        Args:
            requested: Version string from the caller, or None for LATEST.

        Returns:
            The catalog's spelling of the matched version.

        Raises:
            CatalogReadError: If the package root cannot be listed.
            VersionNotFoundError: If the catalog is empty or has no match.
        """
        versions = self.list_versions()

        if not versions:
            raise VersionNotFoundError("No available releases for this app")

        cleaned = normalize_request(requested)
        if is_latest(cleaned):
            return versions[0]

        match = match_version(cleaned, versions)
        if match is not None:
            return match

        raise VersionNotFoundError(
            f"Version {cleaned} not found, try a different version "
            f"or 'version=LATEST' to get the latest version",
            details={"requested": requested},
        )
