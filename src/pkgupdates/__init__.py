"""
pkg-updates - versioned package distribution and client-side update application.

The host side scans a directory of version-named package folders, resolves
requested versions and streams them as tar.gz archives over HTTP. The client
side downloads an archive, replaces the local application directory and
records the installed version.
"""

__version__ = "0.1.0"
