"""
Guitar Harmony - Blob storage

The bytes of uploaded attachments live behind the :class:`BlobStore`
interface.  Two interchangeable backends exist:

- :class:`LocalBlobStore` (this module) writes into a directory on local disk.
- :class:`guitar_harmony.webdav.WebDAVBlobStore` writes to Nextcloud over WebDAV.

A *location* is the opaque string a backend hands back from :meth:`save`;
it is what the ``files.file_path`` column stores.
"""

from __future__ import annotations

import abc
import asyncio
import os
from pathlib import Path
from typing import AsyncIterable, AsyncIterator

import aiofiles
import aiofiles.os
from loguru import logger

from guitar_harmony.errors import NotFoundError, StorageError

CHUNK_SIZE = 65536


class BlobStore(abc.ABC):
    """Where attachment bytes are kept."""

    name = "blob"

    @abc.abstractmethod
    async def save(self, folder: str, name: str, chunks: AsyncIterable[bytes]) -> str:
        """
        Durably store the streamed *chunks* as *folder*/*name* and return
        the location.  If the stream raises part way, nothing is left behind
        and the exception propagates.
        """

    @abc.abstractmethod
    async def exists(self, location: str) -> bool:
        ...

    @abc.abstractmethod
    def stream(self, location: str, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the stored bytes in chunks."""

    @abc.abstractmethod
    async def delete(self, location: str) -> bool:
        """Remove the bytes. Returns False if they were already gone."""

    async def close(self) -> None:
        return None


class LocalBlobStore(BlobStore):
    """Blob storage in a local directory; the location is the absolute file path."""

    name = "local"

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, location: str) -> Path:
        """Map a stored location to a path, refusing anything outside the root."""
        path = Path(location)
        if not path.is_absolute():
            path = self.root / path
        path = path.resolve()
        try:
            path.relative_to(self.root)
        except ValueError:
            raise StorageError(f"Location outside of upload directory: {location}")
        return path

    async def save(self, folder: str, name: str, chunks: AsyncIterable[bytes]) -> str:
        target = self._resolve(str(Path(folder) / name))
        size = 0
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
                    size += len(chunk)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
        except OSError as e:
            logger.error("❌ Failed to write {}: {}", target, e)
            await self._discard(target)
            raise StorageError(f"Failed to store file: {e}") from e
        except Exception:
            await self._discard(target)
            raise

        logger.info("💾 Stored {} ({} bytes)", target, size)
        return str(target)

    @staticmethod
    async def _discard(path: Path) -> None:
        """Remove a partially written file, if any."""
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass

    async def exists(self, location: str) -> bool:
        return await aiofiles.os.path.isfile(self._resolve(location))

    async def stream(self, location: str, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        path = self._resolve(location)
        try:
            async with aiofiles.open(path, "rb") as f:
                while chunk := await f.read(chunk_size):
                    yield chunk
        except FileNotFoundError:
            raise NotFoundError("file", location)

    async def delete(self, location: str) -> bool:
        path = self._resolve(location)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.warning("⚠️ Stored file already gone: {}", path)
            return False
        except OSError as e:
            logger.error("❌ Failed to delete {}: {}", path, e)
            raise StorageError(f"Failed to delete file: {e}") from e

        logger.info("🗑️ Deleted stored file {}", path)
        return True
