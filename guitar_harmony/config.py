"""
Guitar Harmony - Configuration
All settings loaded from environment variables with sensible defaults.

The application runs as a single process.  Song metadata lives in an
embedded SQLite database; uploaded attachments live either in a local
directory or on a Nextcloud instance reached over WebDAV.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
_ = load_dotenv()

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "8000"))
APP_ENV = os.getenv("APP_ENV", "development")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
DEBUG = os.getenv("DEBUG", "true").lower() == "true"
SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")

if APP_ENV == "production" and SECRET_KEY == "change-me-in-production":
    raise RuntimeError(
        "SECRET_KEY must be changed from the default value in production. "
        "Set the SECRET_KEY environment variable to a random secret."
    )

# ---------------------------------------------------------------------------
# Authentication (one shared password gates the whole app)
# ---------------------------------------------------------------------------
AUTH_PASSWORD = os.getenv("AUTH_PASSWORD", "guitar123")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "auth")
# Session max age in seconds, default 30 days
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24 * 30)))

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent

DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "guitar-harmony.db")))
UPLOADS_DIR = Path(os.getenv("UPLOADS_DIR", str(DATA_DIR / "uploads")))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
# Optional log file; stdout only when empty
LOG_FILE = os.getenv("LOG_FILE", "")
LOG_FILE_SIZE = os.getenv("LOG_FILE_SIZE", "10 MB")
LOG_RETENTION = os.getenv("LOG_RETENTION", "14 days")

# ---------------------------------------------------------------------------
# Attachment storage
# ---------------------------------------------------------------------------
# "local" keeps uploads under UPLOADS_DIR, "webdav" stores them on Nextcloud
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local").strip().lower()

NEXTCLOUD_URL = os.getenv("NEXTCLOUD_URL", "")  # e.g. https://cloud.example.com
NEXTCLOUD_USERNAME = os.getenv("NEXTCLOUD_USERNAME", "")
NEXTCLOUD_PASSWORD = os.getenv("NEXTCLOUD_PASSWORD", "")
NEXTCLOUD_REMOTE_PATH = os.getenv(
    "NEXTCLOUD_REMOTE_PATH", "/remote.php/dav/files/{username}/GuitarHarmony"
)
# Folder (relative to WEBDAV_BASE_URL) that holds uploaded attachments
NEXTCLOUD_UPLOADS_PATH = os.getenv("NEXTCLOUD_UPLOADS_PATH", "/uploads")

# Build the full WebDAV base URL
WEBDAV_BASE_URL: str = (
    NEXTCLOUD_URL.rstrip("/")
    + NEXTCLOUD_REMOTE_PATH.format(username=NEXTCLOUD_USERNAME)
    if NEXTCLOUD_URL and NEXTCLOUD_USERNAME
    else ""
)

# ---------------------------------------------------------------------------
# Upload limits
# ---------------------------------------------------------------------------
MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "500"))
MAX_UPLOAD_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024

# ---------------------------------------------------------------------------
# Guitar catalog
# ---------------------------------------------------------------------------
# Insert the reference guitar catalog on first start (only when empty)
SEED_GUITARS = os.getenv("SEED_GUITARS", "true").lower() == "true"


def ensure_directories() -> None:
    """Create the local directories the application writes to."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    if STORAGE_BACKEND == "local":
        UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
