"""
Guitar Harmony - Pytest Configuration & Shared Fixtures

Provides reusable fixtures for:
- A fresh SQLite database per test (tmp_path)
- Local blob storage in a temporary uploads directory
- The three stores wired to them
- A FastAPI TestClient, signed in or anonymous
"""

from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from guitar_harmony import config
from guitar_harmony.auth import _create_session_cookie
from guitar_harmony.blobs import LocalBlobStore
from guitar_harmony.database import Database
from guitar_harmony.files import FileStore
from guitar_harmony.guitars import GuitarStore
from guitar_harmony.main import create_app
from guitar_harmony.songs import SongStore

TEST_PASSWORD = "test-password"
MAX_TEST_UPLOAD = 1024 * 1024


async def iter_chunks(data: bytes, size: int = 4096):
    """Feed *data* to an upload or blob store the way a request body arrives."""
    for start in range(0, len(data), size):
        yield data[start:start + size]

# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "guitar-harmony.db"


@pytest.fixture
def uploads_dir(tmp_path: Path) -> Path:
    d = tmp_path / "uploads"
    d.mkdir()
    return d


@pytest.fixture
async def db(db_path: Path):
    """An open database with the full schema, closed after the test."""
    database = Database(db_path)
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def blobs(uploads_dir: Path) -> LocalBlobStore:
    return LocalBlobStore(uploads_dir)


@pytest.fixture
def song_store(db: Database, blobs: LocalBlobStore) -> SongStore:
    return SongStore(db, blobs)


@pytest.fixture
def guitar_store(db: Database) -> GuitarStore:
    return GuitarStore(db)


@pytest.fixture
def file_store(db: Database, blobs: LocalBlobStore) -> FileStore:
    return FileStore(db, blobs, MAX_TEST_UPLOAD)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def anon_client(db_path: Path, uploads_dir: Path):
    """TestClient without a session cookie (lifespan runs on enter)."""
    app = create_app(
        db_path=db_path, blob_store=LocalBlobStore(uploads_dir), seed_guitars=True
    )
    with patch.object(config, "AUTH_PASSWORD", TEST_PASSWORD), patch.object(
        config, "MAX_UPLOAD_BYTES", MAX_TEST_UPLOAD
    ):
        with TestClient(app, raise_server_exceptions=False) as client:
            yield client


@pytest.fixture
def client(anon_client: TestClient) -> TestClient:
    """TestClient carrying a valid session cookie."""
    anon_client.cookies.set(config.SESSION_COOKIE_NAME, _create_session_cookie())
    return anon_client


@pytest.fixture
def make_song(client: TestClient):
    """Factory fixture: create a song over HTTP and return its JSON record."""

    def _factory(**fields) -> dict:
        response = client.post("/api/songs", json=fields)
        assert response.status_code == 201, response.text
        return response.json()

    return _factory
