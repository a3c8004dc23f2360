"""
Update session for the pkg-updates client.

One UpdateSession performs one update attempt as a sequential pipeline:

- idle: nothing started yet
- resolving: fetching the catalog and validating the requested version
- downloading: streaming the archive into the scratch directory
- extracting: replacing the application directory from the scratch archive
- committing: writing the installed-version record
- done: the record names the applied version
- failed: a stage failed; the failing stage and cause are kept

Every non-terminal state can move to failed. A stage only starts after the
previous one has completed, so the application directory is not touched
until the archive has been fully received, and the record is not written
unless extraction succeeded.

UpdateClient is the facade used by the CLI: it reads the record, queries
the catalog and runs a fresh session per update request.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Literal

import httpx
from pydantic import BaseModel, Field

from pkgupdates.client.operations import remove_path
from pkgupdates.client.record import InstalledVersionRecord
from pkgupdates.client.transport import CatalogClient, DownloadedArchive
from pkgupdates.client.unpacker import ArchiveUnpacker
from pkgupdates.config import ClientConfig
from pkgupdates.errors import (
    FailedPreconditionError,
    InternalError,
    NoVersionsAvailableError,
    UpdateError,
    VersionNotFoundError,
)
from pkgupdates.logging import get_logger
from pkgupdates.models import LATEST, is_latest, match_version, normalize_request

logger = get_logger(__name__)


class SessionState(str, Enum):
    """
    States of an update session.

    State transitions:
    - idle → resolving
    - resolving → downloading | failed
    - downloading → extracting | failed
    - extracting → committing | failed
    - committing → done | failed
    """

    IDLE = "idle"
    RESOLVING = "resolving"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


_VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.RESOLVING},
    SessionState.RESOLVING: {SessionState.DOWNLOADING, SessionState.FAILED},
    SessionState.DOWNLOADING: {SessionState.EXTRACTING, SessionState.FAILED},
    SessionState.EXTRACTING: {SessionState.COMMITTING, SessionState.FAILED},
    SessionState.COMMITTING: {SessionState.DONE, SessionState.FAILED},
    SessionState.DONE: set(),
    SessionState.FAILED: set(),
}


class SessionFailure(BaseModel):
    """The stage a session failed in and why."""

    stage: SessionState
    error_code: str
    message: str


class UpdateResult(BaseModel):
    """
    Outcome of one update attempt.

    A failed result always names the stage. A ``committing`` failure means
    the application directory was updated but the record was not.
    """

    status: Literal["succeeded", "failed"]
    requested_version: str
    version: str | None = Field(
        default=None,
        description="Version that was applied (succeeded) or targeted (failed)",
    )
    previous_version: str | None = Field(
        default=None,
        description="Installed version read at session start",
    )
    failed_stage: SessionState | None = None
    error_code: str | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the commit stage completed."""
        return self.status == "succeeded"


class UpdateSession:
    """
    Runs a single update attempt against one application directory.

    Sessions are single-use; create a new one for every attempt. Callers
    are responsible for not running two sessions against the same
    application directory at the same time.

    Attributes:
        state: Current session state.
        failure: Failure details once the session has failed.
    """

    def __init__(
        self,
        catalog_client: CatalogClient,
        app_dir: Path | str,
        record: InstalledVersionRecord,
        downloads_dir: Path | str,
        unpacker: ArchiveUnpacker | None = None,
    ) -> None:
        """
        Initialize the UpdateSession.

        Args:
            catalog_client: Client for the update host.
            app_dir: Application directory that gets replaced.
            record: Installed-version record to commit to.
            downloads_dir: Scratch directory for the downloaded archive.
            unpacker: Archive unpacker (a default one is created if omitted).
        """
        self._catalog_client = catalog_client
        self._app_dir = Path(app_dir)
        self._record = record
        self._downloads_dir = Path(downloads_dir)
        self._unpacker = unpacker or ArchiveUnpacker()

        self._state = SessionState.IDLE
        self._failure: SessionFailure | None = None
        self._target_version: str | None = None
        self._archive: DownloadedArchive | None = None
        self._progress_callbacks: list[Callable[[UpdateSession], None]] = []

    @property
    def state(self) -> SessionState:
        """Get the current state."""
        return self._state

    @property
    def failure(self) -> SessionFailure | None:
        """Get the failure details, if the session failed."""
        return self._failure

    @property
    def target_version(self) -> str | None:
        """Version being applied, once known."""
        return self._target_version

    def add_progress_callback(self, callback: Callable[[UpdateSession], None]) -> None:
        """Add a callback to be notified after every state change."""
        self._progress_callbacks.append(callback)

    def _notify_progress(self) -> None:
        for callback in self._progress_callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _transition_to(self, new_state: SessionState) -> None:
        """
        Move to ``new_state``.

        Raises:
            FailedPreconditionError: If the transition is not allowed.
        """
        current = self._state
        allowed = _VALID_TRANSITIONS[current]

        if new_state not in allowed:
            raise FailedPreconditionError(
                f"Invalid session transition from {current.value} to {new_state.value}",
                details={
                    "current_state": current.value,
                    "target_state": new_state.value,
                    "valid_transitions": sorted(s.value for s in allowed),
                },
            )

        logger.info(
            f"Session transition: {current.value} -> {new_state.value}",
            extra={
                "old_state": current.value,
                "new_state": new_state.value,
                "target_version": self._target_version,
            },
        )
        self._state = new_state
        self._notify_progress()

    async def update(self, version: str = LATEST) -> UpdateResult:
        """
        Apply ``version`` (or the newest version) to the application directory.

        The same version may be applied again; it is re-extracted
        unconditionally, which repairs a damaged install.

        Args:
            version: Version identifier or LATEST.

        Returns:
            UpdateResult naming the applied version, or the failing stage
            and cause.

        Raises:
            FailedPreconditionError: If the session has already been used.
        """
        if self._state != SessionState.IDLE:
            raise FailedPreconditionError(
                f"Cannot start an update while in {self._state.value} state",
                details={"current_state": self._state.value},
            )

        requested = normalize_request(version)
        previous = self._record.read()

        logger.info(
            "Starting update",
            extra={
                "requested": requested,
                "installed": previous,
                "app_dir": str(self._app_dir),
            },
        )

        stage = SessionState.RESOLVING
        try:
            self._transition_to(SessionState.RESOLVING)
            self._target_version = await self._resolve(requested)

            stage = SessionState.DOWNLOADING
            self._transition_to(SessionState.DOWNLOADING)
            self._archive = await self._catalog_client.download(
                self._target_version, self._downloads_dir
            )
            self._target_version = self._archive.version

            stage = SessionState.EXTRACTING
            self._transition_to(SessionState.EXTRACTING)
            await asyncio.to_thread(self._unpacker.extract, self._archive.path, self._app_dir)

            stage = SessionState.COMMITTING
            self._transition_to(SessionState.COMMITTING)
            self._record.write(self._target_version)
            self._discard_archive()

            self._transition_to(SessionState.DONE)

        except UpdateError as e:
            return self._fail(stage, e, requested, previous)
        except Exception as e:
            logger.exception(
                "Unexpected error during update",
                extra={"stage": stage.value, "requested": requested},
            )
            error = InternalError(
                f"Unexpected error while {stage.value}: {e}",
                details={"exception_type": type(e).__name__},
            )
            return self._fail(stage, error, requested, previous)

        logger.info(
            f"Update completed: {previous or 'none'} -> {self._target_version}",
            extra={"version": self._target_version, "previous_version": previous},
        )
        return UpdateResult(
            status="succeeded",
            requested_version=requested,
            version=self._target_version,
            previous_version=previous,
        )

    async def _resolve(self, requested: str) -> str:
        """
        Validate the request against the host catalog.

        LATEST is passed through unchanged; the host picks the version and
        reports it back in the download.
        """
        versions = await self._catalog_client.fetch_versions()

        if not versions:
            raise NoVersionsAvailableError(
                "No versions available on the update server",
                details={"server_url": self._catalog_client.server_url},
            )

        if is_latest(requested):
            return LATEST

        match = match_version(requested, versions)
        if match is None:
            raise VersionNotFoundError(
                f"Version {requested} not found. Available versions: {', '.join(versions)}",
                details={"requested": requested, "available": versions},
            )
        return match

    def _fail(
        self,
        stage: SessionState,
        error: UpdateError,
        requested: str,
        previous: str | None,
    ) -> UpdateResult:
        self._failure = SessionFailure(
            stage=stage,
            error_code=error.error_code,
            message=error.message,
        )
        self._discard_archive()

        logger.error(
            f"Update failed while {stage.value}: {error.message}",
            extra={
                "stage": stage.value,
                "error_code": error.error_code,
                "details": error.details,
            },
        )
        self._transition_to(SessionState.FAILED)

        return UpdateResult(
            status="failed",
            requested_version=requested,
            version=self._target_version,
            previous_version=previous,
            failed_stage=stage,
            error_code=error.error_code,
            message=error.message,
        )

    def _discard_archive(self) -> None:
        if self._archive is None:
            return
        try:
            remove_path(self._archive.path)
        except OSError as e:
            logger.warning(
                "Failed to remove downloaded archive",
                extra={"path": str(self._archive.path), "error": str(e)},
            )
        self._archive = None


class UpdateClient:
    """
    Client-side entry point: version queries plus update sessions.

    Attributes:
        config: Client settings.
        record: Installed-version record.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        unpacker: ArchiveUnpacker | None = None,
    ) -> None:
        """
        Initialize the UpdateClient.

        Args:
            config: Client settings.
            transport: Optional httpx transport for every request.
            unpacker: Optional unpacker shared by all sessions.
        """
        self.config = config
        self.record = InstalledVersionRecord(config.version_file_path)
        self._transport = transport
        self._unpacker = unpacker

    def _catalog_client(self) -> CatalogClient:
        return CatalogClient(
            self.config.server_url,
            timeout=self.config.request_timeout_seconds,
            transport=self._transport,
        )

    def get_current_version(self) -> str | None:
        """Installed version, or None when nothing has been recorded."""
        return self.record.read()

    async def get_available_versions(self) -> list[str]:
        """
        Host catalog, newest first.

        Raises:
            ServerUnreachableError: If the host cannot be queried.
        """
        async with self._catalog_client() as client:
            return await client.fetch_versions()

    async def check_for_update(self) -> bool:
        """
        Whether the host's newest version differs from the installed one.

        This is plain string inequality, not a version comparison: any
        difference counts, including a host that is behind the client.

        Returns:
            False for an empty catalog or an exact match, True otherwise.

        Raises:
            ServerUnreachableError: If the host cannot be queried.
        """
        versions = await self.get_available_versions()
        if not versions:
            return False

        current = self.get_current_version()
        available = current != versions[0]
        logger.info(
            "Checked for update",
            extra={"installed": current, "latest": versions[0], "available": available},
        )
        return available

    async def update(
        self,
        version: str = LATEST,
        progress_callback: Callable[[UpdateSession], None] | None = None,
    ) -> UpdateResult:
        """
        Run a new UpdateSession for ``version``.

        Args:
            version: Version identifier or LATEST.
            progress_callback: Optional callback for state changes.

        Returns:
            The session's result.
        """
        async with self._catalog_client() as client:
            session = UpdateSession(
                client,
                self.config.app_dir,
                self.record,
                self.config.downloads_path,
                unpacker=self._unpacker,
            )
            if progress_callback is not None:
                session.add_progress_callback(progress_callback)
            return await session.update(version)
