"""
Error types for pkg-updates.

This module defines the UpdateError base class and the domain-specific
subclasses used by both the host and the client. Domain failures should be
expressed using UpdateError (or subclasses) instead of returning ad-hoc
status codes or sentinel values.

Host-side errors are mapped to HTTP status codes at the transport layer
(see pkgupdates.host.server). Client-side errors abort the current update
session and are reported together with the failing stage.
"""

from __future__ import annotations

from typing import Any


class UpdateError(Exception):
    """
    Base exception class for pkg-updates errors.

    Attributes:
        error_code: Internal error code string (e.g., "version_not_found",
            "path_traversal", "transfer_error").
        message: Human-readable error message. Safe to show to remote callers;
            must not contain filesystem paths.
        details: Optional structured details for logs (may contain paths).

    Example:
        >>> raise UpdateError(
        ...     error_code="version_not_found",
        ...     message="Version 9.9.9 not found",
        ...     details={"requested": "9.9.9"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdateError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Host-side errors
# =============================================================================


class CatalogReadError(UpdateError):
    """
    Error raised when the package root directory cannot be listed.

    Fatal for the current request only; the host keeps serving.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a CatalogReadError."""
        super().__init__(
            error_code="catalog_read_error", message=message, details=details
        )


class VersionNotFoundError(UpdateError):
    """
    Error raised when a requested version is not in the catalog.

    This is a client-correctable condition: retry with a different
    identifier or with LATEST.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a VersionNotFoundError."""
        super().__init__(
            error_code="version_not_found", message=message, details=details
        )


class PathTraversalError(UpdateError):
    """
    Error raised when a version resolves outside the package root.

    Security rejection. Never retried automatically and never silently
    corrected.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a PathTraversalError."""
        super().__init__(error_code="path_traversal", message=message, details=details)


class ArchiveStreamError(UpdateError):
    """Error raised when a package archive cannot be produced or is cut short."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ArchiveStreamError."""
        super().__init__(
            error_code="archive_stream_error", message=message, details=details
        )


# =============================================================================
# Client-side errors
# =============================================================================


class ServerUnreachableError(UpdateError):
    """Error raised when the update host cannot be queried for its catalog."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ServerUnreachableError."""
        super().__init__(
            error_code="server_unreachable", message=message, details=details
        )


class NoVersionsAvailableError(UpdateError):
    """Error raised when the host catalog is empty."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a NoVersionsAvailableError."""
        super().__init__(
            error_code="no_versions_available", message=message, details=details
        )


class TransferError(UpdateError):
    """
    Error raised when downloading an archive fails.

    Network or stream fault. Safe to retry the whole session from idle;
    the application directory has not been touched.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a TransferError."""
        super().__init__(error_code="transfer_error", message=message, details=details)


class ExtractionError(UpdateError):
    """
    Error raised when an archive cannot be extracted.

    Covers malformed or truncated archives and filesystem write failures.
    Must be surfaced loudly and not retried silently.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ExtractionError."""
        super().__init__(
            error_code="extraction_error", message=message, details=details
        )


class PersistError(UpdateError):
    """
    Error raised when the installed-version record cannot be written.

    The application directory has already been replaced at this point;
    only the bookkeeping failed. The next run will mis-report the
    installed version until the record is repaired.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a PersistError."""
        super().__init__(error_code="persist_error", message=message, details=details)


# =============================================================================
# Generic errors
# =============================================================================


class FailedPreconditionError(UpdateError):
    """
    Error raised when a precondition for the operation is not met.

    Used for illegal state machine transitions and reuse of finished
    update sessions.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FailedPreconditionError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class InternalError(UpdateError):
    """
    Error raised for unexpected internal errors.

    These should be logged with full stack traces.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)
