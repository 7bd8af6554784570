"""
Guitar Harmony - Song store

Songs are the centre of the catalog: lyrics, key, readiness status and play
statistics, plus an optional link into the guitar catalog.  Records come back
as plain dicts; when ``guitar_id`` resolves, the linked guitar is embedded
under ``guitar_info``.
"""

from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from guitar_harmony.blobs import BlobStore
from guitar_harmony.database import (
    READINESS_VALUES,
    Database,
    build_update,
    escape_like,
    utc_now,
)
from guitar_harmony.errors import NotFoundError, ValidationError

SONG_FIELDS = ("title", "lyrics", "key", "guitar", "guitar_id", "readiness")

SONG_SORTS = {
    "updated": "s.updated_at DESC",
    "played-recent": "s.last_played_at IS NULL, s.last_played_at DESC, s.updated_at DESC",
    "played-oldest": "s.last_played_at IS NULL, s.last_played_at ASC, s.updated_at DESC",
}

DEFAULT_TITLE = "Untitled"

_SELECT_SONG = """
SELECT s.*,
       g.id AS g_id, g.name AS g_name, g.type AS g_type,
       g.notes AS g_notes, g.image_url AS g_image_url
FROM songs s
LEFT JOIN guitars g ON g.id = s.guitar_id
"""

_GUITAR_COLUMNS = ("id", "name", "type", "notes", "image_url")


def _song_from_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Fold the joined ``g_*`` columns into a nested ``guitar_info`` dict."""
    joined = {col: row.pop(f"g_{col}") for col in _GUITAR_COLUMNS}
    if joined["id"] is not None:
        row["guitar_info"] = joined
    return row


def check_readiness(readiness: Optional[str]) -> None:
    if readiness not in READINESS_VALUES:
        raise ValidationError(
            f"Invalid readiness '{readiness}'. Must be one of: {', '.join(READINESS_VALUES)}"
        )


class SongStore:
    """
    Persistence for songs.

    Deleting a song also removes its attachments, so the store needs the
    :class:`BlobStore` holding their bytes.
    """

    def __init__(self, db: Database, blobs: BlobStore) -> None:
        self.db = db
        self.blobs = blobs

    async def create(
        self,
        title: Optional[str] = DEFAULT_TITLE,
        lyrics: Optional[str] = "",
        key: Optional[str] = "",
        guitar: Optional[str] = "",
        guitar_id: Optional[int] = None,
        readiness: Optional[str] = "Writing",
    ) -> int:
        title = title.strip() if title and title.strip() else DEFAULT_TITLE
        readiness = readiness or "Writing"
        check_readiness(readiness)

        now = utc_now()
        async with self.db.transaction():
            cursor = await self.db.execute(
                """
                INSERT INTO songs
                    (title, lyrics, key, guitar, guitar_id, readiness,
                     play_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (title, lyrics or "", key or "", guitar or "", guitar_id, readiness, now, now),
            )
        song_id = cursor.lastrowid
        logger.success("✅ Song added (id={}): {}", song_id, title)
        return song_id

    async def get(self, song_id: int) -> Optional[Dict[str, Any]]:
        row = await self.db.fetchone(f"{_SELECT_SONG} WHERE s.id = ?", (song_id,))
        return _song_from_row(row) if row else None

    async def list(
        self,
        readiness: Optional[str] = None,
        sort: Optional[str] = None,
        exclude_archived: bool = False,
    ) -> List[Dict[str, Any]]:
        """All songs, optionally narrowed to one readiness status."""
        order = SONG_SORTS.get(sort or "updated")
        if order is None:
            raise ValidationError(
                f"Invalid sort '{sort}'. Must be one of: {', '.join(SONG_SORTS)}"
            )

        conditions, params = self._filters(readiness, exclude_archived)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self.db.fetchall(f"{_SELECT_SONG} {where} ORDER BY {order}", params)
        return [_song_from_row(r) for r in rows]

    async def search(
        self,
        text: str,
        readiness: Optional[str] = None,
        exclude_archived: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Case-insensitive literal substring match over title, lyrics, key,
        the free-text guitar label and the linked guitar's name.
        """
        pattern = f"%{escape_like(text.strip().casefold())}%"
        columns = ("s.title", "s.lyrics", "s.key", "s.guitar", "g.name")
        match = " OR ".join(f"casefold({col}) LIKE ? ESCAPE '\\'" for col in columns)

        conditions, params = self._filters(readiness, exclude_archived)
        conditions.insert(0, f"({match})")
        params[:0] = [pattern] * len(columns)

        rows = await self.db.fetchall(
            f"{_SELECT_SONG} WHERE {' AND '.join(conditions)} ORDER BY s.updated_at DESC",
            params,
        )
        return [_song_from_row(r) for r in rows]

    @staticmethod
    def _filters(readiness: Optional[str], exclude_archived: bool):
        conditions: List[str] = []
        params: List[Any] = []
        if readiness:
            check_readiness(readiness)
            conditions.append("s.readiness = ?")
            params.append(readiness)
        if exclude_archived:
            conditions.append("s.readiness IS NOT 'Archived'")
        return conditions, params

    async def update(self, song_id: int, fields: Mapping[str, Any]) -> bool:
        """
        Write only the supplied columns and refresh ``updated_at``.

        A ``guitar_id`` of ``None`` unlinks the guitar.  Nothing is written
        (and ``updated_at`` stays put) when *fields* is empty.  Returns True
        if a row was modified; an unknown id is a silent no-op.
        """
        fields = dict(fields)
        if "title" in fields:
            title = fields["title"]
            fields["title"] = title.strip() if title and title.strip() else DEFAULT_TITLE
        if "readiness" in fields:
            check_readiness(fields["readiness"])

        statement = build_update("songs", song_id, fields, SONG_FIELDS, touch=("updated_at",))
        if statement is None:
            return False

        sql, values = statement
        async with self.db.transaction():
            cursor = await self.db.execute(sql, values)
        updated = cursor.rowcount > 0
        if updated:
            logger.info("✏️ Song id={} updated: {}", song_id, sorted(fields))
        return updated

    async def mark_played(self, song_id: int) -> Dict[str, Any]:
        """Record a play: bump ``play_count`` and stamp ``last_played_at``."""
        now = utc_now()
        async with self.db.transaction():
            cursor = await self.db.execute(
                """
                UPDATE songs
                SET last_played_at = ?, play_count = COALESCE(play_count, 0) + 1, updated_at = ?
                WHERE id = ?
                """,
                (now, now, song_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("song", song_id)

        song = await self.get(song_id)
        if song is None:
            raise NotFoundError("song", song_id)
        logger.info("🎵 Song id={} played (count={})", song_id, song["play_count"])
        return song

    async def delete(self, song_id: int) -> bool:
        """
        Delete a song together with its attachments (rows and bytes).

        Runs in one transaction: if the blob storage fails part way, nothing
        is removed from the database and the delete can simply be repeated.
        """
        async with self.db.transaction():
            row = await self.db.fetchone("SELECT id FROM songs WHERE id = ?", (song_id,))
            if row is None:
                logger.warning("⚠️ Song id={} not found for deletion", song_id)
                return False

            files = await self.db.fetchall(
                "SELECT id, file_path FROM files WHERE song_id = ?", (song_id,)
            )
            for record in files:
                await self.blobs.delete(record["file_path"])

            await self.db.execute("DELETE FROM files WHERE song_id = ?", (song_id,))
            await self.db.execute("DELETE FROM songs WHERE id = ?", (song_id,))

        logger.info("🗑️ Song id={} deleted with {} file(s)", song_id, len(files))
        return True
