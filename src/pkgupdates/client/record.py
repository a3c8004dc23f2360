"""
Installed-version record for the update client.

The record is a plain-text file kept outside the managed application
directory. It contains exactly the installed version identifier, with no
newline or other structure, and is the only durable state the client owns.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from pkgupdates.errors import PersistError
from pkgupdates.logging import get_logger

logger = get_logger(__name__)


class InstalledVersionRecord:
    """
    Reads and atomically rewrites the installed-version file.

    Attributes:
        path: Location of the record file.
    """

    def __init__(self, path: Path | str) -> None:
        """
        Initialize the InstalledVersionRecord.

        Args:
            path: Location of the record file.
        """
        self.path = Path(path)

    def read(self) -> str | None:
        """
        Read the installed version.

        Returns:
            The recorded version, or None if the file is missing, empty or
            unreadable.
        """
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(
                "Error reading version file",
                extra={"path": str(self.path), "error": str(e)},
            )
            return None

        return content or None

    def write(self, version: str) -> None:
        """
        Replace the record with ``version``.

        Writes to a temporary file in the same directory, fsyncs it and
        renames it over the record, so readers see either the old or the new
        version and never a partial write.

        Args:
            version: Version identifier to record.

        Raises:
            PersistError: If the record cannot be written.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(version)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_name, self.path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistError(
                f"Update applied but the installed version could not be recorded: {e.strerror or e}",
                details={"path": str(self.path), "version": version, "error": str(e)},
            ) from e

        logger.info(
            "Recorded installed version",
            extra={"path": str(self.path), "version": version},
        )
