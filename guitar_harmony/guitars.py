"""
Guitar Harmony - Guitar catalog

The instruments a song can be written for.  Songs point at guitars through
the soft ``songs.guitar_id`` reference, so deleting a guitar here leaves the
songs alone.
"""

from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from guitar_harmony.database import GUITAR_TYPES, Database, build_update, escape_like, utc_now
from guitar_harmony.errors import ValidationError

GUITAR_FIELDS = ("name", "type", "notes", "image_url")

GUITAR_SORTS = {
    "name": "name COLLATE NOCASE ASC",
    "type": "type ASC, name COLLATE NOCASE ASC",
}

# Reference catalog inserted on first start
GUITAR_SEED = [
    ("Martin D-28", "Acoustic", "Classic dreadnought, great for strumming"),
    ("Taylor 814ce", "Acoustic", "Cutaway acoustic-electric"),
    ("Gibson J-45", "Acoustic", "Vintage round shoulder"),
    ("Fender Stratocaster", "Electric", "Versatile solid body"),
    ("Gibson Les Paul", "Electric", "Classic rock tone"),
    ("Fender Telecaster", "Electric", "Country and rock"),
    ("PRS Custom 24", "Electric", "Modern versatile electric"),
    ("Ibanez RG", "Electric", "Fast neck, great for shred"),
    ("Fender Precision Bass", "Bass", "Classic P-Bass"),
    ("Music Man StingRay", "Bass", "Punchy active bass"),
    ("Fender Jazz Bass", "Bass", "Versatile J-Bass"),
    ("Classical Nylon", "Acoustic", "Nylon string classical"),
    ("12-String Acoustic", "Acoustic", "Rich, full sound"),
    ("Resonator Guitar", "Other", "Bluegrass and slide"),
]


def _check_type(guitar_type: str) -> None:
    if guitar_type not in GUITAR_TYPES:
        raise ValidationError(
            f"Invalid guitar type '{guitar_type}'. Must be one of: {', '.join(GUITAR_TYPES)}"
        )


def _check_name(name: Optional[str]) -> str:
    if name is None or not str(name).strip():
        raise ValidationError("Guitar name is required")
    return str(name).strip()


class GuitarStore:
    """CRUD over the ``guitars`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        name: str,
        type: str = "Other",
        notes: Optional[str] = "",
        image_url: Optional[str] = None,
    ) -> int:
        name = _check_name(name)
        _check_type(type)

        async with self.db.transaction():
            cursor = await self.db.execute(
                """
                INSERT INTO guitars (name, type, notes, image_url, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, type, notes or "", image_url, utc_now()),
            )
        guitar_id = cursor.lastrowid
        logger.success("✅ Guitar added (id={}): {} [{}]", guitar_id, name, type)
        return guitar_id

    async def get(self, guitar_id: int) -> Optional[Dict[str, Any]]:
        return await self.db.fetchone("SELECT * FROM guitars WHERE id = ?", (guitar_id,))

    async def list(self, sort: str = "name") -> List[Dict[str, Any]]:
        """All guitars, alphabetically or grouped by type."""
        order = GUITAR_SORTS.get(sort or "name")
        if order is None:
            raise ValidationError(
                f"Invalid sort '{sort}'. Must be one of: {', '.join(GUITAR_SORTS)}"
            )
        return await self.db.fetchall(f"SELECT * FROM guitars ORDER BY {order}")

    async def search(self, text: str) -> List[Dict[str, Any]]:
        """Case-insensitive substring match over name, type and notes."""
        pattern = f"%{escape_like(text.strip().casefold())}%"
        return await self.db.fetchall(
            """
            SELECT * FROM guitars
            WHERE casefold(name) LIKE ? ESCAPE '\\'
               OR casefold(type) LIKE ? ESCAPE '\\'
               OR casefold(notes) LIKE ? ESCAPE '\\'
            ORDER BY name COLLATE NOCASE ASC
            """,
            (pattern, pattern, pattern),
        )

    async def update(self, guitar_id: int, fields: Mapping[str, Any]) -> bool:
        """Write only the supplied columns. Returns True if a row was modified."""
        fields = dict(fields)
        if "name" in fields:
            fields["name"] = _check_name(fields["name"])
        if "type" in fields:
            _check_type(fields["type"])

        statement = build_update("guitars", guitar_id, fields, GUITAR_FIELDS)
        if statement is None:
            return False

        sql, values = statement
        async with self.db.transaction():
            cursor = await self.db.execute(sql, values)
        updated = cursor.rowcount > 0
        if updated:
            logger.info("✏️ Guitar id={} updated: {}", guitar_id, sorted(fields))
        return updated

    async def delete(self, guitar_id: int) -> bool:
        async with self.db.transaction():
            cursor = await self.db.execute("DELETE FROM guitars WHERE id = ?", (guitar_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("🗑️ Guitar id={} deleted", guitar_id)
        else:
            logger.warning("⚠️ Guitar id={} not found for deletion", guitar_id)
        return deleted

    async def seed_if_empty(self) -> int:
        """Insert the reference catalog when no guitar exists yet."""
        async with self.db.transaction():
            cursor = await self.db.execute("SELECT COUNT(*) FROM guitars")
            (count,) = await cursor.fetchone()
            if count:
                return 0
            now = utc_now()
            await self.db.conn.executemany(
                "INSERT INTO guitars (name, type, notes, created_at) VALUES (?, ?, ?, ?)",
                [(name, gtype, notes, now) for name, gtype, notes in GUITAR_SEED],
            )
        logger.success("🎸 Seeded guitar catalog with {} instruments", len(GUITAR_SEED))
        return len(GUITAR_SEED)
