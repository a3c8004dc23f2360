"""
Streaming tar.gz packaging of version directories.

tarfile only offers a blocking, push-style writer, so each archive is built
in its own worker thread that writes into a small file-like sink. The sink
cuts the compressed output into chunks and hands them to the event loop
through a bounded asyncio.Queue: when the HTTP client reads slowly the queue
fills up and the worker blocks, so memory per download stays bounded by
``chunk_size * max_pending_chunks`` regardless of package size.

Closing the async iterator early (client went away, handler cancelled) sets
a cancel flag. The worker notices it on its next write, unwinds through
tarfile's context managers (closing every open file) and exits.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import tarfile
import threading
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from pkgupdates.errors import ArchiveStreamError
from pkgupdates.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_PENDING_CHUNKS = 16

# How often a blocked worker re-checks the cancel flag
_PUT_POLL_SECONDS = 0.1

# Queue marker for a complete archive
_END = object()


class _PackagingCancelled(Exception):
    """Raised inside the worker once the consumer has gone away."""


class _ChunkWriter:
    """
    Write-only file object handed to tarfile.

    Accumulates compressed bytes and forwards them to the event loop in
    ``chunk_size`` pieces.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue[Any],
        cancelled: threading.Event,
        chunk_size: int,
    ) -> None:
        self._loop = loop
        self._queue = queue
        self._cancelled = cancelled
        self._chunk_size = chunk_size
        self._buffer = bytearray()

    def write(self, data: bytes) -> int:
        if self._cancelled.is_set():
            raise _PackagingCancelled()

        self._buffer += data
        while len(self._buffer) >= self._chunk_size:
            chunk = bytes(self._buffer[: self._chunk_size])
            del self._buffer[: self._chunk_size]
            self.put(chunk)
        return len(data)

    def flush(self) -> None:
        if self._buffer:
            chunk = bytes(self._buffer)
            self._buffer.clear()
            self.put(chunk)

    def put(self, item: Any) -> None:
        """Block until the event loop accepts ``item`` or the stream is cancelled."""
        try:
            future = asyncio.run_coroutine_threadsafe(self._queue.put(item), self._loop)
        except RuntimeError as e:
            # Event loop already closed
            raise _PackagingCancelled() from e

        while True:
            try:
                future.result(timeout=_PUT_POLL_SECONDS)
                return
            except concurrent.futures.TimeoutError:
                if self._cancelled.is_set():
                    future.cancel()
                    raise _PackagingCancelled() from None
            except concurrent.futures.CancelledError:
                raise _PackagingCancelled() from None


class ArchivePackager:
    """
    Produces gzip-compressed tar streams of package directories.

    The archive holds a single top-level entry named after the package
    directory (the version), followed by all of its descendants in sorted
    order. Symlinks are stored as links, not followed.

    Attributes:
        chunk_size: Size of the byte chunks yielded to the transport.
        max_pending_chunks: Chunks buffered before the worker blocks.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_pending_chunks: int = DEFAULT_MAX_PENDING_CHUNKS,
    ) -> None:
        """
        Initialize the ArchivePackager.

        Args:
            chunk_size: Size of the byte chunks yielded to the transport.
            max_pending_chunks: Chunks buffered before the worker blocks.
        """
        self.chunk_size = chunk_size
        self.max_pending_chunks = max_pending_chunks

    def _produce(self, path: Path, writer: _ChunkWriter) -> None:
        """Worker thread body: write the archive into ``writer``."""
        try:
            with tarfile.open(fileobj=writer, mode="w|gz", bufsize=self.chunk_size) as tar:
                tar.add(str(path), arcname=path.name)
            writer.flush()
            writer.put(_END)
        except _PackagingCancelled:
            logger.info("Archive stream cancelled", extra={"package": path.name})
        except Exception as e:
            if not isinstance(e, (OSError, tarfile.TarError)):
                logger.exception("Unexpected packaging failure", extra={"package": path.name})
            # The consumer only wakes up on a queue item, so every failure is forwarded
            with contextlib.suppress(_PackagingCancelled):
                writer.put(e)

    async def stream_package(self, path: Path | str) -> AsyncIterator[bytes]:
        """
        Stream a package directory as a tar.gz archive.

        Args:
            path: Package directory, already resolved and contained.

        Yields:
            Compressed archive chunks.

        Raises:
            ArchiveStreamError: If the directory is unavailable (before the
                first chunk) or a read fails part-way through (after some
                chunks may already have been yielded).
        """
        path = Path(path)
        if not path.is_dir():
            raise ArchiveStreamError(
                "Package is not available",
                details={"path": str(path)},
            )

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=self.max_pending_chunks)
        cancelled = threading.Event()
        finished: asyncio.Future[None] = loop.create_future()
        writer = _ChunkWriter(loop, queue, cancelled, self.chunk_size)

        def run() -> None:
            try:
                self._produce(path, writer)
            finally:
                try:
                    loop.call_soon_threadsafe(_mark_finished, finished)
                except RuntimeError:
                    pass

        worker = threading.Thread(
            target=run,
            name=f"package-{path.name}",
            daemon=True,
        )
        worker.start()

        sent = 0
        logger.info("Archive stream started", extra={"package": path.name})
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                if isinstance(item, BaseException):
                    logger.error(
                        "Archive stream failed",
                        extra={"package": path.name, "bytes_sent": sent, "error": str(item)},
                    )
                    raise ArchiveStreamError(
                        "Archive stream interrupted",
                        details={"path": str(path), "error": str(item)},
                    ) from item
                sent += len(item)
                yield item
            logger.info(
                "Archive stream completed",
                extra={"package": path.name, "bytes_sent": sent},
            )
        finally:
            cancelled.set()
            await asyncio.shield(finished)

    def write_package(self, path: Path | str, destination: Path | str) -> Path:
        """
        Write a package archive to a file.

        Args:
            path: Package directory.
            destination: Archive file to create (parents are created).

        Returns:
            The destination path.

        Raises:
            ArchiveStreamError: If the directory is unavailable or unreadable.
        """
        path = Path(path)
        destination = Path(destination)

        if not path.is_dir():
            raise ArchiveStreamError(
                "Package is not available",
                details={"path": str(path)},
            )

        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(destination, mode="w:gz") as tar:
                tar.add(str(path), arcname=path.name)
        except (OSError, tarfile.TarError) as e:
            raise ArchiveStreamError(
                "Failed to write package archive",
                details={"path": str(path), "destination": str(destination), "error": str(e)},
            ) from e

        logger.info(
            "Package archive written",
            extra={"package": path.name, "destination": str(destination)},
        )
        return destination


def _mark_finished(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)
