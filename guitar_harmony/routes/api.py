"""
Guitar Harmony - JSON API Routes

Provides all REST API endpoints for:
- Login / logout with the shared password
- Songs CRUD, search and filters, play tracking
- File attachments per song (upload, list, download, delete)
- Guitar catalog CRUD
- Health check

Stores are created at startup and reached through ``request.app.state``;
errors raised by them are mapped to status codes by the exception handlers
in ``guitar_harmony.main``.
"""

import time
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel

from guitar_harmony import config
from guitar_harmony.auth import clear_session_cookie, set_session_cookie, verify_password
from guitar_harmony.errors import AuthenticationError, NotFoundError
from guitar_harmony.files import FileStore
from guitar_harmony.guitars import GuitarStore
from guitar_harmony.query import SongQuery, run_song_query
from guitar_harmony.songs import SongStore

router = APIRouter(prefix="/api", tags=["API"])

# Track startup time for health check
_START_TIME = time.time()

UPLOAD_CHUNK_SIZE = 65536


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------
class LoginRequest(BaseModel):
    password: str


class SongCreate(BaseModel):
    title: Optional[str] = None
    lyrics: Optional[str] = ""
    key: Optional[str] = ""
    guitar: Optional[str] = ""
    guitar_id: Optional[int] = None
    readiness: Optional[str] = "Writing"


class SongUpdate(BaseModel):
    title: Optional[str] = None
    lyrics: Optional[str] = None
    key: Optional[str] = None
    guitar: Optional[str] = None
    guitar_id: Optional[int] = None
    readiness: Optional[str] = None


class GuitarCreate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = "Other"
    notes: Optional[str] = ""
    image_url: Optional[str] = None


class GuitarUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_song_store(request: Request) -> SongStore:
    return request.app.state.songs


def get_guitar_store(request: Request) -> GuitarStore:
    return request.app.state.guitars


def get_file_store(request: Request) -> FileStore:
    return request.app.state.files


def _file_payload(record: Dict[str, Any]) -> Dict[str, Any]:
    return {**record, "url": f"/api/files/{record['id']}"}


async def _read_upload(file: UploadFile) -> AsyncIterator[bytes]:
    while chunk := await file.read(UPLOAD_CHUNK_SIZE):
        yield chunk


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for the service (reachable without a session)."""
    db = request.app.state.db
    blobs = request.app.state.blobs

    result: Dict[str, Any] = {
        "status": "ok" if db.is_connected else "degraded",
        "database": "ok" if db.is_connected else "closed",
        "storage": blobs.name,
        "uptime_seconds": round(time.time() - _START_TIME, 2),
        "version": config.APP_VERSION,
    }
    if hasattr(blobs, "check_connection"):
        result["nextcloud"] = await blobs.check_connection()
    return result


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
@router.post("/auth/login")
async def api_login(body: LoginRequest, response: Response):
    """Exchange the shared password for a session cookie."""
    if not verify_password(body.password):
        logger.warning("🔒 Failed login attempt")
        raise AuthenticationError("Invalid password")

    set_session_cookie(response)
    logger.info("🔓 Logged in")
    return {"success": True}


@router.post("/auth/logout")
async def api_logout(response: Response):
    clear_session_cookie(response)
    return {"success": True}


# ---------------------------------------------------------------------------
# Songs
# ---------------------------------------------------------------------------
@router.get("/songs")
async def api_list_songs(
    q: Optional[str] = Query(None),
    readiness: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    exclude_archived: bool = Query(False, alias="excludeArchived"),
    songs: SongStore = Depends(get_song_store),
):
    """List songs, or search them when ``q`` is given."""
    query = SongQuery(
        q=q, readiness=readiness or None, sort=sort or None, exclude_archived=exclude_archived
    )
    return await run_song_query(songs, query)


@router.post("/songs", status_code=201)
async def api_create_song(body: SongCreate, songs: SongStore = Depends(get_song_store)):
    song_id = await songs.create(**body.model_dump())
    return await songs.get(song_id)


@router.get("/songs/{song_id}")
async def api_get_song(song_id: int, songs: SongStore = Depends(get_song_store)):
    song = await songs.get(song_id)
    if song is None:
        raise NotFoundError("song", song_id)
    return song


@router.put("/songs/{song_id}")
async def api_update_song(
    song_id: int, body: SongUpdate, songs: SongStore = Depends(get_song_store)
):
    """Update only the fields present in the request body."""
    await songs.update(song_id, body.model_dump(exclude_unset=True))
    song = await songs.get(song_id)
    if song is None:
        raise NotFoundError("song", song_id)
    return song


@router.delete("/songs/{song_id}")
async def api_delete_song(song_id: int, songs: SongStore = Depends(get_song_store)):
    """Delete a song together with its files. Unknown ids succeed as well."""
    await songs.delete(song_id)
    return {"success": True}


@router.post("/songs/{song_id}/played")
async def api_mark_played(song_id: int, songs: SongStore = Depends(get_song_store)):
    return await songs.mark_played(song_id)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------
@router.get("/songs/{song_id}/files")
async def api_list_files(song_id: int, files: FileStore = Depends(get_file_store)):
    return [_file_payload(r) for r in await files.list_by_song(song_id)]


@router.post("/songs/{song_id}/files", status_code=201)
async def api_upload_file(
    song_id: int,
    file: UploadFile = File(...),
    files: FileStore = Depends(get_file_store),
):
    """
    Attach an audio take (.mp3 / .wav) or a Logic project bundle (.zip)
    to a song.
    """
    logger.info("📤 Upload received for song id={}: {}", song_id, file.filename)
    record = await files.upload(
        song_id, file.filename or "", file.content_type, _read_upload(file)
    )
    return _file_payload(record)


@router.get("/files/{file_id}")
async def api_download_file(file_id: int, files: FileStore = Depends(get_file_store)):
    """Stream an attachment back as a download under its original name."""
    record, chunks, media_type = await files.download(file_id)
    name = record["original_name"]
    fallback = name.encode("ascii", "replace").decode("ascii").replace('"', "")
    disposition = f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name)}"
    return StreamingResponse(
        chunks,
        media_type=media_type,
        headers={
            "Content-Disposition": disposition,
            "Content-Length": str(record["file_size"]),
        },
    )


@router.delete("/files/{file_id}")
async def api_delete_file(file_id: int, files: FileStore = Depends(get_file_store)):
    await files.delete(file_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Guitars
# ---------------------------------------------------------------------------
@router.get("/guitars")
async def api_list_guitars(
    search: Optional[str] = Query(None),
    sort: str = Query("name"),
    guitars: GuitarStore = Depends(get_guitar_store),
):
    if search and search.strip():
        return await guitars.search(search)
    return await guitars.list(sort=sort)


@router.post("/guitars", status_code=201)
async def api_create_guitar(body: GuitarCreate, guitars: GuitarStore = Depends(get_guitar_store)):
    fields = body.model_dump()
    if not (fields["name"] or "").strip():
        fields["name"] = "Untitled Guitar"
    if not fields["type"]:
        fields["type"] = "Other"
    guitar_id = await guitars.create(**fields)
    return await guitars.get(guitar_id)


@router.get("/guitars/{guitar_id}")
async def api_get_guitar(guitar_id: int, guitars: GuitarStore = Depends(get_guitar_store)):
    guitar = await guitars.get(guitar_id)
    if guitar is None:
        raise NotFoundError("guitar", guitar_id)
    return guitar


@router.put("/guitars/{guitar_id}")
async def api_update_guitar(
    guitar_id: int, body: GuitarUpdate, guitars: GuitarStore = Depends(get_guitar_store)
):
    await guitars.update(guitar_id, body.model_dump(exclude_unset=True))
    guitar = await guitars.get(guitar_id)
    if guitar is None:
        raise NotFoundError("guitar", guitar_id)
    return guitar


@router.delete("/guitars/{guitar_id}")
async def api_delete_guitar(guitar_id: int, guitars: GuitarStore = Depends(get_guitar_store)):
    """Delete a guitar; songs linked to it keep their (now dangling) reference."""
    await guitars.delete(guitar_id)
    return {"success": True}
