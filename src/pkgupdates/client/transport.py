"""
HTTP access to the update host.

CatalogClient wraps an httpx.AsyncClient and exposes the two calls the
update session needs: fetching the catalog and downloading one archive to a
scratch file. Network faults are translated into the client error taxonomy
here so the session only deals with UpdateError subclasses.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from types import TracebackType
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from pkgupdates.errors import ServerUnreachableError, TransferError
from pkgupdates.logging import get_logger
from pkgupdates.models import (
    ErrorResponse,
    HealthResponse,
    VersionsResponse,
    archive_filename,
    version_from_filename,
)

logger = get_logger(__name__)

_FILENAME_PATTERN = re.compile(r'filename="(.+)"')

PARTIAL_SUFFIX = ".part"


def filename_from_disposition(header: str | None) -> str | None:
    """
    Extract the file name from a Content-Disposition header.

    Only the final path component is kept, so a hostile header cannot steer
    the download outside the scratch directory.
    """
    if not header:
        return None
    match = _FILENAME_PATTERN.search(header)
    if not match:
        return None
    name = Path(match.group(1).replace("\\", "/")).name
    if name in ("", ".", ".."):
        return None
    return name


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of the host's ``{"error": ...}`` text."""
    try:
        return ErrorResponse.model_validate(response.json()).error
    except (ValueError, ValidationError):
        return response.reason_phrase or f"HTTP {response.status_code}"


class DownloadedArchive(BaseModel):
    """
    A fully received archive sitting in the scratch directory.

    Attributes:
        path: Archive file.
        version: Version reported by the host (from Content-Disposition),
            or the requested identifier when the host sent none.
        size: Number of bytes received.
    """

    path: Path
    version: str
    size: int = Field(default=0, ge=0)


class CatalogClient:
    """
    Client for the update host's HTTP API.

    Use as an async context manager, or call aclose() when done.

    Attributes:
        server_url: Base URL of the update host.
    """

    def __init__(
        self,
        server_url: str,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the CatalogClient.

        Args:
            server_url: Base URL of the update host.
            timeout: Optional timeout in seconds. None disables timeouts,
                including on the archive transfer.
            transport: Optional httpx transport (tests, proxies).
        """
        self.server_url = server_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.server_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> CatalogClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _get_json(self, path: str) -> Any:
        response = await self._client.get(path)
        response.raise_for_status()
        return response.json()

    async def fetch_versions(self) -> list[str]:
        """
        Fetch the host catalog, newest first.

        ``GET /versions`` is tried first; if it fails, the ``versions``
        field of ``GET /health`` is used instead.

        Returns:
            Catalog as reported by the host (possibly empty).

        Raises:
            ServerUnreachableError: If neither endpoint yields a catalog.
        """
        try:
            data = await self._get_json("/versions")
            return VersionsResponse.model_validate(data).versions
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.warning(
                "Error fetching available versions, falling back to health check",
                extra={"server_url": self.server_url, "error": str(e)},
            )
            primary_error = e

        try:
            data = await self._get_json("/health")
            return HealthResponse.model_validate(data).versions
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.error(
                "Fallback health check also failed",
                extra={"server_url": self.server_url, "error": str(e)},
            )
            raise ServerUnreachableError(
                f"Update server {self.server_url} is unreachable: {primary_error}",
                details={
                    "server_url": self.server_url,
                    "versions_error": str(primary_error),
                    "health_error": str(e),
                },
            ) from e

    async def download(self, version: str, downloads_dir: Path) -> DownloadedArchive:
        """
        Download one version's archive into the scratch directory.

        The body is streamed to ``<name>.part``, fsynced, and renamed to
        ``<name>`` only once it has been received completely. A failed
        transfer leaves no file behind.

        Args:
            version: Version identifier or LATEST.
            downloads_dir: Scratch directory (created if missing).

        Returns:
            The downloaded archive.

        Raises:
            TransferError: On network faults, non-2xx responses, truncated
                bodies or local write failures.
        """
        partial: Path | None = None
        try:
            downloads_dir.mkdir(parents=True, exist_ok=True)

            async with self._client.stream(
                "GET", "/updates", params={"version": version}
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    message = _error_message(response)
                    raise TransferError(
                        f"Server refused download of {version}: {message}",
                        details={
                            "version": version,
                            "status_code": response.status_code,
                            "server_error": message,
                        },
                    )

                filename = filename_from_disposition(
                    response.headers.get("content-disposition")
                ) or archive_filename(version)
                actual_version = version_from_filename(filename) or version

                destination = downloads_dir / filename
                partial = destination.with_name(destination.name + PARTIAL_SUFFIX)

                size = 0
                with open(partial, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
                        size += len(chunk)
                    f.flush()
                    os.fsync(f.fileno())

            os.replace(partial, destination)
            partial = None

        except httpx.HTTPError as e:
            raise TransferError(
                f"Download of {version} failed: {e}",
                details={"version": version, "error": str(e)},
            ) from e
        except OSError as e:
            raise TransferError(
                f"Could not store download of {version}: {e.strerror or e}",
                details={"version": version, "error": str(e)},
            ) from e
        finally:
            if partial is not None:
                partial.unlink(missing_ok=True)

        logger.info(
            "Archive downloaded",
            extra={"version": actual_version, "path": str(destination), "bytes": size},
        )
        return DownloadedArchive(path=destination, version=actual_version, size=size)
