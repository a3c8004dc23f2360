"""
Archive extraction into the managed application directory.

Archives produced by the host wrap the package in one top-level directory
named after the version. Extraction strips exactly that one leading path
component so the package contents land directly in the target directory.

Replacement is full, not a merge: nothing from the previous tree survives.
The archive is first extracted into a hidden sibling staging directory and
only a complete, error-free extraction is swapped into place. A failed
extraction leaves the existing target directory untouched.
"""

from __future__ import annotations

import stat
import tarfile
import tempfile
import zlib
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

from pkgupdates.client.operations import atomic_directory_swap, ensure_directory, remove_path
from pkgupdates.errors import ExtractionError
from pkgupdates.logging import get_logger

logger = get_logger(__name__)

DEFAULT_DIRECTORY_MODE = 0o755

# Everything a corrupt archive, a truncated download or a full disk can raise
_EXTRACTION_FAILURES = (tarfile.TarError, EOFError, zlib.error, OSError)


def _strip_component(name: str) -> str | None:
    """Drop the first path component; None when nothing remains."""
    parts = name.lstrip("/").split("/", 1)
    if len(parts) < 2 or not parts[1].strip("/"):
        return None
    return parts[1]


def strip_leading_component(members: Iterator[tarfile.TarInfo]) -> Iterator[tarfile.TarInfo]:
    """
    Rewrite archive members so the wrapper directory disappears.

    The wrapper entry itself is skipped. Hard link targets are rewritten
    the same way, since they name other members of the archive.
    """
    for member in members:
        stripped = _strip_component(member.name)
        if stripped is None:
            continue

        if member.islnk():
            link_target = _strip_component(member.linkname)
            if link_target is None:
                continue
            member.linkname = link_target

        member.name = stripped
        yield member


class ArchiveUnpacker:
    """Extracts host archives into an application directory."""

    def extract(self, source: Path | str | BinaryIO, target_dir: Path | str) -> Path:
        """
        Replace ``target_dir`` with the contents of a tar.gz archive.

        Args:
            source: Archive file path, or a readable binary stream of
                tar.gz data.
            target_dir: Application directory to replace.

        Returns:
            The target directory path.

        Raises:
            ExtractionError: If the archive is malformed or truncated, an
                entry is unsafe, or the filesystem rejects a write.
        """
        target = Path(target_dir).absolute()

        try:
            ensure_directory(target.parent)
            staging = Path(
                tempfile.mkdtemp(prefix=f".{target.name}.staging-", dir=target.parent)
            )
        except OSError as e:
            raise ExtractionError(
                f"Cannot prepare extraction next to {target.name}: {e.strerror or e}",
                details={"target": str(target), "error": str(e)},
            ) from e

        logger.info(
            "Extracting archive",
            extra={"target": str(target), "staging": str(staging)},
        )

        try:
            self._extract_into(source, staging)
            staging.chmod(self._directory_mode(target))
            atomic_directory_swap(staging, target)
        except _EXTRACTION_FAILURES as e:
            self._discard(staging)
            logger.error(
                "Extraction failed",
                extra={"target": str(target), "error": str(e)},
            )
            raise ExtractionError(
                f"Failed to extract archive: {e}",
                details={"target": str(target), "error": str(e)},
            ) from e

        logger.info("Extraction completed successfully", extra={"target": str(target)})
        return target

    def _extract_into(self, source: Path | str | BinaryIO, destination: Path) -> None:
        if isinstance(source, (str, Path)):
            archive = tarfile.open(source, mode="r:gz")
        else:
            archive = tarfile.open(fileobj=source, mode="r|gz")

        with archive:
            archive.extractall(
                destination,
                members=strip_leading_component(iter(archive)),
                filter="data",
            )

    @staticmethod
    def _directory_mode(target: Path) -> int:
        """Keep the permissions of the directory being replaced."""
        if target.is_dir():
            return stat.S_IMODE(target.stat().st_mode)
        return DEFAULT_DIRECTORY_MODE

    @staticmethod
    def _discard(staging: Path) -> None:
        try:
            remove_path(staging)
        except OSError as e:
            logger.warning(
                "Failed to remove staging directory",
                extra={"path": str(staging), "error": str(e)},
            )
