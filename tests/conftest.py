"""
Pytest configuration and shared fixtures for the pkg-updates tests.
"""

from __future__ import annotations

import io
import logging
import tarfile
from collections.abc import Iterator
from pathlib import Path

import pytest

from pkgupdates.logging import ROOT_LOGGER_NAME

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Undo setup_logging() calls made by a test."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def make_package(root: Path, version: str, files: dict[str, str] | None = None) -> Path:
    """Create a version directory under ``root`` with the given files."""
    package = root / version
    package.mkdir(parents=True)
    if files is None:
        files = {"VERSION": version, "bin/run.sh": f"#!/bin/sh\necho {version}\n"}
    for name, content in files.items():
        target = package / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    return package


def make_archive_bytes(wrapper: str, files: dict[str, str]) -> bytes:
    """Build a tar.gz with every file under a single ``wrapper`` directory."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        info = tarfile.TarInfo(wrapper)
        info.type = tarfile.DIRTYPE
        info.mode = 0o755
        tar.addfile(info)
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{wrapper}/{name}")
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.fixture
def packages_root(tmp_path: Path) -> Path:
    """A package root holding versions 1.0.0, 1.2.0 and 2.1.0."""
    root = tmp_path / "packages"
    root.mkdir()
    for version in ("1.0.0", "1.2.0", "2.1.0"):
        make_package(root, version)
    return root
