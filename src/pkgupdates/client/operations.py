"""
Filesystem operations used when applying an update.

The central operation is atomic_directory_swap: a fully populated staging
directory replaces the application directory with two renames inside the
same parent directory, so the application directory is never observed
half-written. The old tree is moved aside first and deleted afterwards.

All functions raise OSError (or a subclass) on failure; callers translate
that into the error of their stage.
"""

from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path

from pkgupdates.logging import get_logger

logger = get_logger(__name__)


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions for newly created directories.

    Returns:
        The directory path.
    """
    path.mkdir(parents=parents, mode=mode, exist_ok=True)
    return path


def remove_path(path: Path) -> bool:
    """
    Remove a directory tree, file or symlink.

    Symlinks are unlinked, never followed.

    Returns:
        True if something was removed, False if nothing existed.
    """
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
    else:
        return False

    logger.debug("Removed path", extra={"path": str(path)})
    return True


def sibling_path(path: Path, label: str) -> Path:
    """Return an unused hidden path next to ``path`` (``.<name>.<label>-<hex>``)."""
    return path.parent / f".{path.name}.{label}-{uuid.uuid4().hex[:12]}"


def atomic_directory_swap(staging: Path, target: Path) -> None:
    """
    Replace ``target`` with the fully populated ``staging`` directory.

    Steps:
    1. Rename the current target aside (if it exists)
    2. Rename staging to target
    3. Delete the old tree

    If step 2 fails the old tree is renamed back. Staging and target must
    be on the same filesystem (siblings in practice).

    Args:
        staging: Complete replacement directory.
        target: Directory to replace.
    """
    previous: Path | None = None
    if target.exists() or target.is_symlink():
        previous = sibling_path(target, "previous")
        os.rename(target, previous)

    try:
        os.rename(staging, target)
    except OSError:
        if previous is not None:
            os.rename(previous, target)
        raise

    logger.info(
        "Directory swapped into place",
        extra={"target": str(target)},
    )

    if previous is not None:
        try:
            remove_path(previous)
        except OSError as e:
            # The new tree is already live; a leftover hidden directory is harmless
            logger.warning(
                "Failed to remove previous directory",
                extra={"path": str(previous), "error": str(e)},
            )
