"""
Asynchronous byte sources for uploads.

Anything with an `async read(size) -> bytes` method that returns b"" at the end of the stream can be uploaded,
e.g. asyncio.StreamReader or the readers below.
"""

import asyncio
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from dracoon_client.exceptions import DracoonIOError

logger = logging.getLogger(__name__)


@runtime_checkable
class AsyncReader(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


class BytesReader:
    """Reads from an in-memory buffer."""

    def __init__(self, data: bytes | bytearray | memoryview):
        self._view = memoryview(data)
        self._position = 0

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self._view) - self._position
        chunk = self._view[self._position : self._position + size]
        self._position += len(chunk)
        return chunk.tobytes()

    def release(self) -> None:
        """Drop the reference to the underlying buffer."""
        self._view.release()


class FileReader:
    """
    Reads a local file without blocking the event loop, file I/O runs in a worker thread.
    Use as an async context manager or call close() when done.
    """

    def __init__(self, file_path: Path):
        self.file_path = file_path
        self._file = open(file_path, "rb")

    async def read(self, size: int = -1) -> bytes:
        return await asyncio.to_thread(self._file.read, size)

    def close(self) -> None:
        self._file.close()

    async def __aenter__(self) -> "FileReader":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


async def read_exact(reader: AsyncReader, size: int) -> bytes:
    """
    Read exactly `size` bytes, reads are repeated as readers may return less than asked for.
    A stream that ends early is an I/O error.
    """
    chunks = []
    remaining = size
    while remaining > 0:
        try:
            chunk = await reader.read(remaining)
        except OSError as err:
            logger.error(f"Error reading from source: {err}")
            raise DracoonIOError(f"Error reading from source: {err}") from err

        if not chunk:
            logger.error(f"Source ended early, expected {size} bytes but got {size - remaining}.")
            raise DracoonIOError(f"Source ended early, expected {size} bytes but got {size - remaining}.")
        chunks.append(chunk)
        remaining -= len(chunk)

    return b"".join(chunks)


async def read_into(reader: AsyncReader, buffer: bytearray) -> None:
    """Fill a preallocated buffer completely from the reader (same rules as read_exact)."""
    view = memoryview(buffer)
    position = 0
    try:
        while position < len(buffer):
            try:
                chunk = await reader.read(len(buffer) - position)
            except OSError as err:
                logger.error(f"Error reading from source: {err}")
                raise DracoonIOError(f"Error reading from source: {err}") from err

            if not chunk:
                logger.error(f"Source ended early, expected {len(buffer)} bytes but got {position}.")
                raise DracoonIOError(f"Source ended early, expected {len(buffer)} bytes but got {position}.")
            chunk = chunk[: len(buffer) - position]
            view[position : position + len(chunk)] = chunk
            position += len(chunk)
    finally:
        view.release()
