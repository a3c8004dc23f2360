"""
Update client: installed-version record, archive download and extraction,
and the session that applies an update end to end.
"""

from pkgupdates.client.record import InstalledVersionRecord
from pkgupdates.client.session import (
    SessionFailure,
    SessionState,
    UpdateClient,
    UpdateResult,
    UpdateSession,
)
from pkgupdates.client.transport import CatalogClient, DownloadedArchive
from pkgupdates.client.unpacker import ArchiveUnpacker

__all__ = [
    # Record
    "InstalledVersionRecord",
    # Transport
    "CatalogClient",
    "DownloadedArchive",
    # Extraction
    "ArchiveUnpacker",
    # Session
    "SessionFailure",
    "SessionState",
    "UpdateClient",
    "UpdateResult",
    "UpdateSession",
]
