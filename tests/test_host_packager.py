"""
Tests for the streaming archive packager.

Tests cover:
- Archive layout (single wrapper directory named after the version)
- Chunking and bounded buffering
- Error forwarding before and during the stream
- Early close releasing the packaging worker
"""

from __future__ import annotations

import asyncio
import io
import os
import tarfile
import threading
from pathlib import Path

import pytest
from conftest import make_package

from pkgupdates.errors import ArchiveStreamError
from pkgupdates.host.packager import ArchivePackager, _ChunkWriter

# =============================================================================
# Helpers
# =============================================================================


async def _collect(packager: ArchivePackager, path: Path) -> bytes:
    chunks = []
    async for chunk in packager.stream_package(path):
        chunks.append(chunk)
    return b"".join(chunks)


def _names(data: bytes) -> list[str]:
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
        return tar.getnames()


def _package_threads() -> list[threading.Thread]:
    return [t for t in threading.enumerate() if t.name.startswith("package-")]


# =============================================================================
# Archive Content Tests
# =============================================================================


class TestStreamPackage:
    """Tests for ArchivePackager.stream_package."""

    @pytest.mark.asyncio
    async def test_archive_has_single_wrapper(self, packages_root: Path) -> None:
        """Test that every entry lives under the version directory."""
        data = await _collect(ArchivePackager(), packages_root / "2.1.0")
        names = _names(data)

        assert names[0] == "2.1.0"
        assert all(name == "2.1.0" or name.startswith("2.1.0/") for name in names)
        assert "2.1.0/VERSION" in names
        assert "2.1.0/bin/run.sh" in names

    @pytest.mark.asyncio
    async def test_file_contents_preserved(self, packages_root: Path) -> None:
        """Test that file contents survive the round trip."""
        data = await _collect(ArchivePackager(), packages_root / "1.2.0")

        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            member = tar.extractfile("1.2.0/VERSION")
            assert member is not None
            assert member.read() == b"1.2.0"

    @pytest.mark.asyncio
    async def test_output_is_gzip(self, packages_root: Path) -> None:
        """Test the gzip magic bytes."""
        data = await _collect(ArchivePackager(), packages_root / "1.0.0")
        assert data[:2] == b"\x1f\x8b"

    @pytest.mark.asyncio
    async def test_chunks_respect_chunk_size(self, tmp_path: Path) -> None:
        """Test that no chunk exceeds the configured size."""
        package = make_package(tmp_path, "1.0.0", {"blob.bin": os.urandom(200_000).hex()})
        packager = ArchivePackager(chunk_size=4096, max_pending_chunks=2)

        sizes = [len(chunk) async for chunk in packager.stream_package(package)]

        assert len(sizes) > 10
        assert max(sizes) <= 4096

    @pytest.mark.asyncio
    async def test_symlinks_stored_not_followed(self, tmp_path: Path) -> None:
        """Test that symlinks inside a package are archived as links."""
        secret = tmp_path / "secret.txt"
        secret.write_text("do not ship")
        package = make_package(tmp_path / "root", "1.0.0", {"a.txt": "a"})
        os.symlink(secret, package / "link")

        data = await _collect(ArchivePackager(), package)

        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            member = tar.getmember("1.0.0/link")
            assert member.issym()

    @pytest.mark.asyncio
    async def test_missing_directory_fails_before_first_chunk(self, tmp_path: Path) -> None:
        """Test that an unavailable package raises on the first pull."""
        stream = ArchivePackager().stream_package(tmp_path / "missing")

        with pytest.raises(ArchiveStreamError) as exc_info:
            await anext(stream)

        assert exc_info.value.message == "Package is not available"

    @pytest.mark.asyncio
    async def test_concurrent_streams_are_independent(self, packages_root: Path) -> None:
        """Test that simultaneous downloads do not interfere."""
        packager = ArchivePackager(chunk_size=1024, max_pending_chunks=1)

        results = await asyncio.gather(
            *(_collect(packager, packages_root / v) for v in ("1.0.0", "1.2.0", "2.1.0", "1.0.0"))
        )

        assert _names(results[0])[0] == "1.0.0"
        assert _names(results[1])[0] == "1.2.0"
        assert _names(results[2])[0] == "2.1.0"
        assert _names(results[0]) == _names(results[3])


# =============================================================================
# Failure and Cancellation Tests
# =============================================================================


class _FailingPackager(ArchivePackager):
    """Emits one chunk, then reports a read failure."""

    def _produce(self, path: Path, writer: _ChunkWriter) -> None:
        writer.put(b"partial archive bytes")
        writer.put(OSError("Input/output error"))


class TestStreamFailures:
    """Tests for mid-stream failures and early close."""

    @pytest.mark.asyncio
    async def test_mid_stream_error_after_chunks(self, packages_root: Path) -> None:
        """Test that a worker failure surfaces after the delivered chunks."""
        received = []

        with pytest.raises(ArchiveStreamError) as exc_info:
            async for chunk in _FailingPackager().stream_package(packages_root / "1.0.0"):
                received.append(chunk)

        assert received == [b"partial archive bytes"]
        assert exc_info.value.message == "Archive stream interrupted"
        assert "Input/output error" in exc_info.value.details["error"]

    @pytest.mark.asyncio
    async def test_unexpected_worker_error_ends_stream(
        self, packages_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that any worker exception reaches the consumer instead of stalling it."""

        def broken_add(self: tarfile.TarFile, *args: object, **kwargs: object) -> None:
            raise ValueError("unexpected from tarfile")

        monkeypatch.setattr(tarfile.TarFile, "add", broken_add)

        with pytest.raises(ArchiveStreamError) as exc_info:
            await asyncio.wait_for(_collect(ArchivePackager(), packages_root / "1.0.0"), timeout=5)

        assert "unexpected from tarfile" in exc_info.value.details["error"]

        for thread in _package_threads():
            thread.join(timeout=5)
        assert _package_threads() == []

    @pytest.mark.asyncio
    async def test_early_close_stops_worker(self, tmp_path: Path) -> None:
        """Test that closing the stream promptly releases the worker thread."""
        package = make_package(tmp_path, "1.0.0", {"blob.bin": os.urandom(2_000_000).hex()})
        packager = ArchivePackager(chunk_size=1024, max_pending_chunks=1)

        stream = packager.stream_package(package)
        first = await anext(stream)
        assert first

        await asyncio.wait_for(stream.aclose(), timeout=5)

        for thread in _package_threads():
            thread.join(timeout=5)
        assert _package_threads() == []

    @pytest.mark.asyncio
    async def test_close_after_completion(self, packages_root: Path) -> None:
        """Test that closing a finished stream is harmless."""
        stream = ArchivePackager().stream_package(packages_root / "1.0.0")
        async for _ in stream:
            pass
        await stream.aclose()


# =============================================================================
# write_package Tests
# =============================================================================


class TestWritePackage:
    """Tests for ArchivePackager.write_package."""

    def test_writes_same_layout(self, packages_root: Path, tmp_path: Path) -> None:
        """Test the file-based archive layout."""
        destination = tmp_path / "out" / "2.1.0.tar.gz"

        result = ArchivePackager().write_package(packages_root / "2.1.0", destination)

        assert result == destination
        with tarfile.open(destination, mode="r:gz") as tar:
            assert tar.getnames()[0] == "2.1.0"

    def test_missing_directory(self, tmp_path: Path) -> None:
        """Test that a missing package raises ArchiveStreamError."""
        with pytest.raises(ArchiveStreamError):
            ArchivePackager().write_package(tmp_path / "missing", tmp_path / "x.tar.gz")
