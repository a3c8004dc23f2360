"""
Update host: version catalog, path containment, archive streaming and the
HTTP surface that exposes them.
"""

from pkgupdates.host.catalog import (
    VersionIdentifier,
    VersionStore,
    sort_versions_descending,
)
from pkgupdates.host.packager import ArchivePackager
from pkgupdates.host.paths import require_package_directory, resolve_package_path
from pkgupdates.host.server import create_app, run_host

__all__ = [
    # Catalog
    "VersionIdentifier",
    "VersionStore",
    "sort_versions_descending",
    # Paths
    "resolve_package_path",
    "require_package_directory",
    # Packaging
    "ArchivePackager",
    # HTTP
    "create_app",
    "run_host",
]
