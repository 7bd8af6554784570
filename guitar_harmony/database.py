"""
Guitar Harmony - SQLite Database

One embedded SQLite database holds the three tables of the application:
``songs``, ``guitars`` and ``files``.  All access goes through a
:class:`Database` object that owns a single aiosqlite connection; it is
opened once during application startup and closed on shutdown.

``songs.guitar_id`` is a soft reference into ``guitars``: it is indexed but
carries no foreign key, so deleting a guitar never fails and never touches
the songs that pointed at it.  ``files.song_id`` on the other hand cascades,
the owning song takes its file rows with it.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import aiosqlite
from loguru import logger

from guitar_harmony.errors import ValidationError

READINESS_VALUES = ("Idea", "Writing", "Practice", "GigReady", "Archived")
GUITAR_TYPES = ("Acoustic", "Electric", "Bass", "Other")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS guitars (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK(type IN ('Acoustic', 'Electric', 'Bass', 'Other')),
    notes TEXT,
    image_url TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS songs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    lyrics TEXT,
    key TEXT,
    guitar TEXT,
    guitar_id INTEGER,
    readiness TEXT DEFAULT 'Writing' CHECK(readiness IN ('Idea', 'Writing', 'Practice', 'GigReady', 'Archived')),
    last_played_at TEXT,
    play_count INTEGER DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    song_id INTEGER NOT NULL,
    filename TEXT NOT NULL,
    original_name TEXT NOT NULL,
    file_type TEXT NOT NULL,
    file_path TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    created_at TEXT,
    FOREIGN KEY (song_id) REFERENCES songs(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_files_song_id ON files(song_id);
CREATE INDEX IF NOT EXISTS idx_songs_title ON songs(title);
CREATE INDEX IF NOT EXISTS idx_guitars_name ON guitars(name COLLATE NOCASE);
"""

# Indexes on columns that may only exist after the migrations below ran
POST_MIGRATION_SQL = """
CREATE INDEX IF NOT EXISTS idx_songs_guitar_id ON songs(guitar_id);
CREATE INDEX IF NOT EXISTS idx_songs_readiness ON songs(readiness);
"""

# ---------------------------------------------------------------------------
# Migration helpers
# ---------------------------------------------------------------------------
_MIGRATIONS = [
    # Migration 1: readiness status (databases created before the status column)
    {
        "check": "SELECT COUNT(*) FROM pragma_table_info('songs') WHERE name='readiness'",
        "apply": [
            "ALTER TABLE songs ADD COLUMN readiness TEXT DEFAULT 'Writing' "
            "CHECK(readiness IN ('Idea', 'Writing', 'Practice', 'GigReady', 'Archived'))",
        ],
        "description": "Add readiness column",
    },
    # Migration 2: last played timestamp
    {
        "check": "SELECT COUNT(*) FROM pragma_table_info('songs') WHERE name='last_played_at'",
        "apply": [
            "ALTER TABLE songs ADD COLUMN last_played_at TEXT",
        ],
        "description": "Add last_played_at column",
    },
    # Migration 3: play counter
    {
        "check": "SELECT COUNT(*) FROM pragma_table_info('songs') WHERE name='play_count'",
        "apply": [
            "ALTER TABLE songs ADD COLUMN play_count INTEGER DEFAULT 0",
        ],
        "description": "Add play_count column",
    },
    # Migration 4: link songs to the guitar catalog
    {
        "check": "SELECT COUNT(*) FROM pragma_table_info('songs') WHERE name='guitar_id'",
        "apply": [
            "ALTER TABLE songs ADD COLUMN guitar_id INTEGER",
        ],
        "description": "Add guitar_id column",
    },
]

# Rows written by older releases carry SQLite's CURRENT_TIMESTAMP text
# (``YYYY-MM-DD HH:MM:SS``); rewrite them into the utc_now() format.
_TIMESTAMP_COLUMNS = {
    "guitars": ("created_at",),
    "songs": ("created_at", "updated_at", "last_played_at"),
    "files": ("created_at",),
}
_SQLITE_TIMESTAMP_GLOB = (
    "[0-9][0-9][0-9][0-9]-[0-9][0-9]-[0-9][0-9] [0-9][0-9]:[0-9][0-9]:[0-9][0-9]"
)


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with microseconds.

    Every timestamp column is written in this one format so that plain
    string ordering in SQL is also chronological ordering.
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def row_to_dict(row) -> Dict[str, Any]:
    """Convert a database row to a plain dictionary."""
    if row is None:
        return {}
    return dict(row)


def casefold(value: Any) -> Any:
    """SQL ``casefold(x)``: Unicode-aware lower-casing, NULL passes through."""
    return value.casefold() if isinstance(value, str) else value


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so *text* matches literally (use with ``ESCAPE '\\'``)."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_update(
    table: str,
    row_id: int,
    fields: Mapping[str, Any],
    allowed: Sequence[str],
    touch: Iterable[str] = (),
) -> Optional[Tuple[str, List[Any]]]:
    """
    Build a parameterised ``UPDATE`` for the supplied subset of columns.

    Only keys present in *fields* are written; a key explicitly mapped to
    ``None`` sets the column to NULL.  Columns named in *touch* are stamped
    with :func:`utc_now` alongside.  Returns ``None`` when *fields* is empty
    so callers can skip the statement (and the timestamp refresh) entirely.

    Raises:
        ValidationError: if *fields* names a column outside *allowed*.
    """
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValidationError(f"Unknown {table} field(s): {', '.join(unknown)}")
    if not fields:
        return None

    columns = [col for col in allowed if col in fields]
    assignments = [f"{col} = ?" for col in columns]
    values: List[Any] = [fields[col] for col in columns]

    now = utc_now()
    for col in touch:
        assignments.append(f"{col} = ?")
        values.append(now)

    values.append(row_id)
    return f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?", values


# ---------------------------------------------------------------------------
# Database handle
# ---------------------------------------------------------------------------
class Database:
    """
    Owner of the application's single aiosqlite connection.

    Usage::

        db = Database(DB_PATH)
        await db.connect()        # opens, creates tables, runs migrations
        ...
        async with db.transaction():
            await db.execute("UPDATE ...", params)
        ...
        await db.close()

    Writes are expected to run inside :meth:`transaction`, which serialises
    writers with an ``asyncio.Lock`` so statements from concurrent requests
    never interleave inside one ``BEGIN``/``COMMIT`` block.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._conn

    async def connect(self) -> None:
        """Open the connection (once), create tables and run pending migrations."""
        if self._conn is not None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: autocommit, transactions are issued explicitly
        conn = await aiosqlite.connect(str(self.path), isolation_level=None)
        conn.row_factory = aiosqlite.Row
        try:
            # SQLite's own LIKE only folds ASCII letters
            await conn.create_function("casefold", 1, casefold, deterministic=True)
            await conn.execute("PRAGMA foreign_keys = ON")
            await conn.execute("PRAGMA journal_mode = WAL")
            await conn.executescript(SCHEMA_SQL)
            await self._run_migrations(conn)
            await conn.executescript(POST_MIGRATION_SQL)
            await self._normalize_timestamps(conn)
        except Exception as e:
            await conn.close()
            logger.critical("❌ Failed to initialize database at {}: {}", self.path, e)
            raise

        self._conn = conn
        logger.success("✅ Database initialized at {}", self.path)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("🔒 Database connection closed ({})", self.path)

    @staticmethod
    async def _run_migrations(conn: aiosqlite.Connection) -> None:
        """Run any pending schema migrations."""
        for migration in _MIGRATIONS:
            cursor = await conn.execute(str(migration["check"]))
            (count,) = await cursor.fetchone()
            if count == 0:
                logger.info("🔄 Running migration: {}", migration["description"])
                for stmt in migration["apply"]:
                    await conn.execute(stmt)
                logger.success("✅ Migration applied: {}", migration["description"])

    @staticmethod
    async def _normalize_timestamps(conn: aiosqlite.Connection) -> None:
        """Rewrite legacy ``YYYY-MM-DD HH:MM:SS`` values so string order stays time order."""
        for table, columns in _TIMESTAMP_COLUMNS.items():
            for col in columns:
                cursor = await conn.execute(
                    f"""
                    UPDATE {table}
                    SET {col} = substr({col}, 1, 10) || 'T' || substr({col}, 12, 8)
                                || '.000000+00:00'
                    WHERE {col} GLOB ?
                    """,
                    (_SQLITE_TIMESTAMP_GLOB,),
                )
                if cursor.rowcount > 0:
                    logger.info(
                        "🔄 Converted {} legacy {}.{} value(s)", cursor.rowcount, table, col
                    )

    # ------------------------------------------------------------------
    # Statement helpers
    # ------------------------------------------------------------------
    async def execute(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        return await self.conn.execute(sql, params)

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        cursor = await self.conn.execute(sql, params)
        row = await cursor.fetchone()
        return row_to_dict(row) if row else None

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        cursor = await self.conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [row_to_dict(r) for r in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Database"]:
        """Run the enclosed statements atomically (BEGIN IMMEDIATE … COMMIT/ROLLBACK)."""
        async with self._lock:
            await self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self
            except BaseException:
                await self.conn.execute("ROLLBACK")
                raise
            else:
                await self.conn.execute("COMMIT")
