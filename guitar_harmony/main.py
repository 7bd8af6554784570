"""
Guitar Harmony - Main Application

Single-process FastAPI application that serves:
- REST API endpoints for songs, guitars and file attachments
- A minimal login page and logout redirect
- Health check endpoint
- Shared-password session authentication

Song metadata lives in an embedded SQLite database opened once at startup;
attachment bytes live on local disk or on Nextcloud (STORAGE_BACKEND).
"""

import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger

from guitar_harmony import config
from guitar_harmony.auth import (
    auth_required,
    clear_session_cookie,
    is_api_path,
    is_authenticated,
    render_login_page,
)
from guitar_harmony.blobs import BlobStore, LocalBlobStore
from guitar_harmony.database import Database
from guitar_harmony.errors import HarmonyError
from guitar_harmony.files import FileStore
from guitar_harmony.guitars import GuitarStore
from guitar_harmony.routes.api import router as api_router
from guitar_harmony.songs import SongStore
from guitar_harmony.webdav import WebDAVBlobStore

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
def configure_logging() -> None:
    """Replace loguru's default sink with the coloured stdout sink (plus optional file)."""
    level = "DEBUG" if config.DEBUG else config.LOG_LEVEL
    logger.remove()
    logger.add(sys.stdout, level=level, format=LOG_FORMAT, colorize=True)
    if config.LOG_FILE:
        logger.add(
            config.LOG_FILE,
            level=level,
            rotation=config.LOG_FILE_SIZE,
            retention=config.LOG_RETENTION,
            enqueue=True,
        )


configure_logging()


def build_blob_store() -> BlobStore:
    """Pick the attachment backend named by STORAGE_BACKEND."""
    if config.STORAGE_BACKEND == "local":
        return LocalBlobStore(config.UPLOADS_DIR)
    if config.STORAGE_BACKEND == "webdav":
        return WebDAVBlobStore(
            config.WEBDAV_BASE_URL,
            config.NEXTCLOUD_USERNAME,
            config.NEXTCLOUD_PASSWORD,
            root=config.NEXTCLOUD_UPLOADS_PATH,
        )
    raise ValueError(
        f"Unknown STORAGE_BACKEND '{config.STORAGE_BACKEND}'. Use 'local' or 'webdav'."
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(
    *,
    db_path: Optional[Path] = None,
    blob_store: Optional[BlobStore] = None,
    seed_guitars: Optional[bool] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The keyword arguments override the matching settings from
    ``guitar_harmony.config`` (used by the test-suite).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        On startup:
            1. Create required directories
            2. Open the database (creates tables / runs migrations)
            3. Seed the guitar catalog when empty
            4. Build the stores
        On shutdown:
            5. Close the blob backend and the database
        """
        logger.info("🚀 Starting Guitar Harmony v{}", config.APP_VERSION)
        logger.info("📋 Environment: {} | Debug: {}", config.APP_ENV, config.DEBUG)

        if db_path is None:
            config.ensure_directories()
        blobs = blob_store if blob_store is not None else build_blob_store()
        logger.info("📁 Attachment storage: {}", blobs.name)

        db = Database(db_path or config.DB_PATH)
        await db.connect()

        guitars = GuitarStore(db)
        seed = config.SEED_GUITARS if seed_guitars is None else seed_guitars
        if seed:
            await guitars.seed_if_empty()

        app.state.db = db
        app.state.blobs = blobs
        app.state.guitars = guitars
        app.state.songs = SongStore(db, blobs)
        app.state.files = FileStore(db, blobs, config.MAX_UPLOAD_BYTES)

        logger.success(
            "✅ Application ready — listening on {}:{}", config.APP_HOST, config.APP_PORT
        )
        try:
            yield
        finally:
            logger.info("🛑 Shutting down Guitar Harmony …")
            await blobs.close()
            await db.close()
            logger.info("👋 Shutdown complete")

    app = FastAPI(
        title="Guitar Harmony",
        description="Catalog of songs in progress, the guitars they are played on, and their recordings.",
        version=config.APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if config.DEBUG else None,
        redoc_url="/redoc" if config.DEBUG else None,
    )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------
    @app.exception_handler(HarmonyError)
    async def harmony_error_handler(request: Request, exc: HarmonyError):
        if exc.status_code >= 500:
            logger.opt(exception=exc).error(
                "❌ {} {} failed {}: {}",
                request.method, request.url.path, dict(request.path_params), exc,
            )
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400, content={"detail": jsonable_encoder(exc.errors())}
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(
            "❌ {} {} unhandled error {}: {}",
            request.method, request.url.path, dict(request.path_params), exc,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # ------------------------------------------------------------------
    # Authentication middleware
    # ------------------------------------------------------------------
    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        """Turn away requests without a valid session cookie."""
        if auth_required(request):
            # For API requests, return 401 instead of redirect
            if is_api_path(request.url.path):
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Authentication required"},
                )
            return RedirectResponse(url="/login", status_code=302)

        return await call_next(request)

    # ------------------------------------------------------------------
    # Request logging middleware
    # ------------------------------------------------------------------
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log every incoming HTTP request with timing information."""
        start = time.time()
        try:
            response = await call_next(request)
        except Exception as exc:
            duration = round(time.time() - start, 3)
            logger.error(
                "❌ {method} {path} — unhandled error after {duration}s: {exc}",
                method=request.method,
                path=request.url.path,
                duration=duration,
                exc=exc,
            )
            raise

        duration = round(time.time() - start, 3)
        status = response.status_code
        if status >= 500:
            log = logger.error
        elif status >= 400:
            log = logger.warning
        else:
            log = logger.info
        log(
            "📤 {method} {path} — {status} [{duration}s]",
            method=request.method,
            path=request.url.path,
            status=status,
            duration=duration,
        )
        return response

    # ------------------------------------------------------------------
    # Pages mounted directly on the app
    # ------------------------------------------------------------------
    @app.get("/login")
    async def login_page(request: Request):
        """Show the login form, or go home when already signed in."""
        if is_authenticated(request):
            return RedirectResponse(url="/", status_code=302)
        return render_login_page()

    @app.get("/logout")
    async def logout():
        response = RedirectResponse(url="/login", status_code=302)
        clear_session_cookie(response)
        logger.info("🔒 Logged out")
        return response

    @app.get("/")
    async def index():
        return {
            "name": "Guitar Harmony",
            "version": config.APP_VERSION,
            "api": "/api",
        }

    app.include_router(api_router)  # /api/*

    return app


# ---------------------------------------------------------------------------
# Create the app instance (used by Uvicorn)
# ---------------------------------------------------------------------------
app = create_app()


# ---------------------------------------------------------------------------
# Direct execution (development)
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "guitar_harmony.main:app",
        host=config.APP_HOST,
        port=config.APP_PORT,
        reload=config.DEBUG,
        log_level="debug" if config.DEBUG else "info",
    )
