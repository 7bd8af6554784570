"""
Guitar Harmony - Nextcloud WebDAV blob storage

Stores attachment bytes on a Nextcloud instance via the WebDAV protocol,
as the remote alternative to :class:`guitar_harmony.blobs.LocalBlobStore`.

Uses one pooled :class:`httpx.AsyncClient` with Basic Auth against the
Nextcloud WebDAV endpoint.  The client is created lazily and closed by
:meth:`WebDAVBlobStore.close` during application shutdown.

Locations are remote paths relative to the WebDAV base URL
(e.g. ``/uploads/12/3f9c….mp3``), never full URLs, so credentials and
host names stay out of the database.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any, AsyncIterable, AsyncIterator
from urllib.parse import quote

import httpx
from loguru import logger

from guitar_harmony.blobs import CHUNK_SIZE, BlobStore
from guitar_harmony.errors import HarmonyError, NotFoundError, StorageError

PROPFIND_BODY = """<?xml version="1.0" encoding="UTF-8"?>
<d:propfind xmlns:d="DAV:">
    <d:prop>
        <d:resourcetype/>
        <d:getcontentlength/>
    </d:prop>
</d:propfind>"""


class WebDAVBlobStore(BlobStore):
    """Blob storage on Nextcloud (or any WebDAV server)."""

    name = "webdav"

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        root: str = "/uploads",
        *,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not (base_url and username and password):
            raise ValueError(
                "Nextcloud WebDAV is not configured. "
                "Set NEXTCLOUD_URL, NEXTCLOUD_USERNAME, and NEXTCLOUD_PASSWORD."
            )
        self.base_url = base_url.rstrip("/")
        self.root = "/" + root.strip("/") if root.strip("/") else ""
        self._auth = httpx.BasicAuth(username, password)
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                auth=self._auth,
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                transport=self._transport,
            )
        return self._client

    def build_url(self, remote_path: str = "/") -> str:
        """Build the full WebDAV URL for a given remote path."""
        clean = remote_path.strip("/")
        if clean:
            # Encode path segments individually to preserve slashes
            encoded = "/".join(quote(seg, safe="") for seg in clean.split("/"))
            return f"{self.base_url}/{encoded}"
        return self.base_url

    async def _request(self, method: str, remote_path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.client.request(method, self.build_url(remote_path), **kwargs)
        except httpx.HTTPError as e:
            logger.error("❌ WebDAV {} failed for {}: {}", method, remote_path, e)
            raise StorageError(f"WebDAV {method} failed: {e}") from e

    async def mkdir(self, remote_path: str) -> None:
        """Create a directory (and parent directories) via MKCOL."""
        current = ""
        for part in PurePosixPath(remote_path.strip("/")).parts:
            current = f"{current}/{part}"
            response = await self._request("MKCOL", current)
            # 201 = created, 405 = already exists
            if response.status_code in (201, 405):
                continue
            raise StorageError(
                f"MKCOL {current} failed with HTTP {response.status_code}"
            )
        logger.debug("📁 Ensured directory exists: {}", remote_path)

    # ------------------------------------------------------------------
    # BlobStore interface
    # ------------------------------------------------------------------
    async def save(self, folder: str, name: str, chunks: AsyncIterable[bytes]) -> str:
        remote_dir = f"{self.root}/{folder.strip('/')}"
        await self.mkdir(remote_dir)

        remote_path = f"{remote_dir}/{name}"
        sent = 0

        async def body() -> AsyncIterator[bytes]:
            nonlocal sent
            async for chunk in chunks:
                sent += len(chunk)
                yield chunk

        try:
            response = await self._request(
                "PUT",
                remote_path,
                content=body(),
                headers={"Content-Type": "application/octet-stream"},
            )
        except StorageError:
            raise
        except HarmonyError:
            # The body stream itself failed; drop whatever the server kept
            await self.delete(remote_path)
            raise

        if response.status_code not in (200, 201, 204):
            logger.error(
                "❌ Upload failed ({}): {}", response.status_code, response.text[:200]
            )
            raise StorageError(f"Upload to {remote_path} failed with HTTP {response.status_code}")

        logger.info("⬆️ Uploaded {} ({} bytes)", remote_path, sent)
        return remote_path

    async def exists(self, location: str) -> bool:
        response = await self._request(
            "PROPFIND",
            location,
            headers={"Depth": "0", "Content-Type": "application/xml; charset=utf-8"},
            content=PROPFIND_BODY,
        )
        if response.status_code in (200, 207):
            return True
        if response.status_code == 404:
            return False
        raise StorageError(f"PROPFIND {location} failed with HTTP {response.status_code}")

    async def stream(self, location: str, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        try:
            async with self.client.stream("GET", self.build_url(location)) as response:
                if response.status_code == 404:
                    raise NotFoundError("file", location)
                if response.status_code != 200:
                    raise StorageError(
                        f"Download of {location} failed with HTTP {response.status_code}"
                    )
                async for chunk in response.aiter_bytes(chunk_size=chunk_size):
                    yield chunk
        except httpx.HTTPError as e:
            logger.error("❌ Stream download error for {}: {}", location, e)
            raise StorageError(f"Download of {location} failed: {e}") from e

    async def delete(self, location: str) -> bool:
        response = await self._request("DELETE", location)
        if response.status_code in (200, 204):
            logger.info("🗑️ Deleted remote: {}", location)
            return True
        if response.status_code == 404:
            logger.warning("⚠️ Remote path not found: {}", location)
            return False
        raise StorageError(f"Delete of {location} failed with HTTP {response.status_code}")

    async def check_connection(self) -> dict[str, Any]:
        """
        Test the WebDAV connection to Nextcloud.
        Returns a status dict with 'connected' bool and optional error info.
        """
        try:
            response = await self.client.request(
                "PROPFIND", self.build_url("/"), headers={"Depth": "0"}
            )
        except httpx.HTTPError as e:
            logger.error("❌ Nextcloud connection failed: {}", e)
            return {"connected": False, "error": str(e)}

        if response.status_code in (200, 207):
            return {"connected": True}
        msg = f"HTTP {response.status_code}: {response.text[:200]}"
        logger.warning("⚠️ Nextcloud connection issue: {}", msg)
        return {"connected": False, "error": msg}

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
