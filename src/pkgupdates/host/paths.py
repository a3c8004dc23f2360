"""
Path containment for package directories.

Version names reaching this module have usually been matched against the
catalog already, but the check is applied independently: a version string
carrying ``..`` segments, an absolute path, or a version directory that is a
symlink pointing elsewhere must never resolve outside the package root.
"""

from __future__ import annotations

from pathlib import Path

from pkgupdates.errors import PathTraversalError, VersionNotFoundError
from pkgupdates.logging import get_logger

logger = get_logger(__name__)


def resolve_package_path(root: Path | str, version: str) -> Path:
    """
    Resolve the directory of a version and require it to live under root.

    Both paths are canonicalized (symlinks followed) and compared
    component-wise, so ``/srv/app-evil`` is not mistaken for a child of
    ``/srv/app``.

    Args:
        root: Package root directory.
        version: Version directory name.

    Returns:
        Canonical absolute path of the version directory.

    Raises:
        PathTraversalError: If the resolved path is not a strict
            descendant of the canonical root, or the name is not a
            valid path at all (e.g. it contains a NUL byte).
    """
    canonical_root = Path(root).resolve()
    try:
        if "\x00" in version:
            raise ValueError("embedded null byte")
        candidate = (canonical_root / version).resolve()
    except ValueError as e:
        # Names the OS cannot represent
        logger.warning(
            "Rejected unrepresentable version path",
            extra={"version": version, "error": str(e)},
        )
        raise PathTraversalError(
            "Invalid version path",
            details={"version": version, "error": str(e)},
        ) from e

    if candidate == canonical_root or not candidate.is_relative_to(canonical_root):
        logger.warning(
            "Rejected version path outside package root",
            extra={"version": version, "root": str(canonical_root)},
        )
        raise PathTraversalError(
            "Invalid version path",
            details={"version": version, "resolved": str(candidate)},
        )

    return candidate


def require_package_directory(root: Path | str, version: str) -> Path:
    """
    Resolve a version directory and require that it exists.

    Args:
        root: Package root directory.
        version: Version directory name.

    Returns:
        Canonical absolute path of an existing version directory.

    Raises:
        PathTraversalError: If the path escapes the package root.
        VersionNotFoundError: If the directory is missing or not a directory.
    """
    path = resolve_package_path(root, version)
    if not path.is_dir():
        raise VersionNotFoundError(
            f"Version {version} not found",
            details={"path": str(path)},
        )
    return path
