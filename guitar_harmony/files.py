"""
Guitar Harmony - File attachments

Audio takes and Logic project bundles uploaded against a song.  Metadata
lives in the ``files`` table; the bytes live in a :class:`BlobStore`.

Only ``.zip``, ``.mp3`` and ``.wav`` uploads are accepted (or one of the
matching MIME types when the name carries no usable extension).
"""

import uuid
from pathlib import PurePath
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Tuple

from loguru import logger

from guitar_harmony.blobs import BlobStore
from guitar_harmony.database import Database, utc_now
from guitar_harmony.errors import FileTooLargeError, NotFoundError, ValidationError

ALLOWED_EXTENSIONS = {".zip", ".mp3", ".wav"}
ALLOWED_MIME_TYPES = {
    "application/zip",
    "application/x-zip-compressed",
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/x-wav",
    "audio/wave",
}
ZIP_MIME_TYPES = {"application/zip", "application/x-zip-compressed"}

CONTENT_TYPES = {
    ".zip": "application/zip",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
}


def extension_of(filename: str) -> str:
    return PurePath(filename).suffix.lower()


def is_allowed(filename: str, content_type: Optional[str] = None) -> bool:
    """Whether an upload named *filename* with MIME *content_type* is accepted."""
    if extension_of(filename) in ALLOWED_EXTENSIONS:
        return True
    return (content_type or "").split(";")[0].strip().lower() in ALLOWED_MIME_TYPES


def file_type_for(filename: str, content_type: Optional[str] = None) -> str:
    """``"logic"`` for zipped project bundles, ``"audio"`` for everything else."""
    ext = extension_of(filename)
    if ext == ".zip":
        return "logic"
    if ext not in ALLOWED_EXTENSIONS and (content_type or "").lower() in ZIP_MIME_TYPES:
        return "logic"
    return "audio"


def content_type_for(filename: str) -> str:
    return CONTENT_TYPES.get(extension_of(filename), "application/octet-stream")


class _SizeLimitedStream:
    """Async byte stream that counts what passes through and stops past *max_bytes*."""

    def __init__(self, chunks: AsyncIterable[bytes], max_bytes: int) -> None:
        self.chunks = chunks
        self.max_bytes = max_bytes
        self.size = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self.chunks:
            self.size += len(chunk)
            if self.size > self.max_bytes:
                raise FileTooLargeError(
                    f"File exceeds maximum upload size of {self.max_bytes // (1024 * 1024)} MB"
                )
            yield chunk


class FileStore:
    """Upload, list, download and delete song attachments."""

    def __init__(self, db: Database, blobs: BlobStore, max_bytes: int) -> None:
        self.db = db
        self.blobs = blobs
        self.max_bytes = max_bytes

    async def upload(
        self,
        song_id: int,
        filename: str,
        content_type: Optional[str],
        chunks: AsyncIterable[bytes],
    ) -> Dict[str, Any]:
        """
        Validate and store one attachment for *song_id*.

        The payload is streamed straight into the blob store and counted on
        the way; going past ``max_bytes`` aborts the write and leaves nothing
        stored.  The metadata row is only inserted once the write succeeded,
        and the stored bytes are removed again if the insert fails.

        Raises:
            ValidationError: empty or disallowed file name / type.
            NotFoundError: the song does not exist.
            FileTooLargeError: more than ``max_bytes`` of payload.
        """
        original_name = PurePath(filename or "").name
        if not original_name:
            raise ValidationError("No file provided")
        if not is_allowed(original_name, content_type):
            raise ValidationError(
                "Invalid file type. Only .zip, .mp3, and .wav files are allowed."
            )

        song = await self.db.fetchone("SELECT id FROM songs WHERE id = ?", (song_id,))
        if song is None:
            raise NotFoundError("song", song_id)

        stored_name = f"{uuid.uuid4().hex}{extension_of(original_name)}"
        file_type = file_type_for(original_name, content_type)
        payload = _SizeLimitedStream(chunks, self.max_bytes)
        location = await self.blobs.save(str(song_id), stored_name, payload)
        file_size = payload.size

        try:
            async with self.db.transaction():
                cursor = await self.db.execute(
                    """
                    INSERT INTO files
                        (song_id, filename, original_name, file_type,
                         file_path, file_size, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (song_id, stored_name, original_name, file_type,
                     location, file_size, utc_now()),
                )
        except Exception:
            logger.exception("❌ Failed to record upload for song id={}", song_id)
            await self.blobs.delete(location)
            raise

        record = await self.get(cursor.lastrowid)
        logger.success(
            "📎 File added (id={}) to song id={}: {} [{}, {} bytes]",
            cursor.lastrowid, song_id, original_name, file_type, file_size,
        )
        return record

    async def get(self, file_id: int) -> Optional[Dict[str, Any]]:
        return await self.db.fetchone("SELECT * FROM files WHERE id = ?", (file_id,))

    async def list_by_song(self, song_id: int) -> List[Dict[str, Any]]:
        """Attachments of one song, newest first."""
        return await self.db.fetchall(
            "SELECT * FROM files WHERE song_id = ? ORDER BY created_at DESC, id DESC",
            (song_id,),
        )

    async def download(
        self, file_id: int
    ) -> Tuple[Dict[str, Any], AsyncIterator[bytes], str]:
        """Return ``(record, byte chunks, content type)`` for an attachment."""
        record = await self.get(file_id)
        if record is None:
            raise NotFoundError("file", file_id)
        if not await self.blobs.exists(record["file_path"]):
            logger.warning(
                "⚠️ File id={} has no stored bytes at {}", file_id, record["file_path"]
            )
            raise NotFoundError("file", file_id)

        return (
            record,
            self.blobs.stream(record["file_path"]),
            content_type_for(record["original_name"]),
        )

    async def delete(self, file_id: int) -> bool:
        async with self.db.transaction():
            record = await self.db.fetchone(
                "SELECT file_path FROM files WHERE id = ?", (file_id,)
            )
            if record is None:
                logger.warning("⚠️ File id={} not found for deletion", file_id)
                return False
            await self.blobs.delete(record["file_path"])
            await self.db.execute("DELETE FROM files WHERE id = ?", (file_id,))

        logger.info("🗑️ File id={} deleted", file_id)
        return True
