"""Durable blob storage backends.

``LocalBlobStore`` writes under MEDIA_VOLUME and is served by the ``/media``
static mount. ``SupabaseBlobStore`` talks to Supabase Storage; the SDK is
synchronous so every call is pushed onto a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

from atelier.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredBlob:
    """Permanent location of an uploaded image."""
    url: str
    path: str
    bucket: str = ""


class BlobStore(Protocol):
    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str = "image/png",
    ) -> StoredBlob: ...

    async def delete(self, bucket: str, path: str) -> None: ...


class LocalBlobStore:
    """Filesystem-backed store: ``{root}/{bucket}/{path}``."""

    def __init__(self, root: str, base_url: str) -> None:
        self.root = root
        self.base_url = base_url.rstrip("/")

    def _full_path(self, bucket: str, path: str) -> str:
        full = os.path.normpath(os.path.join(self.root, bucket, path))
        if not full.startswith(os.path.normpath(self.root) + os.sep):
            raise ValueError(f"Path escapes media root: {bucket}/{path}")
        return full

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str = "image/png",
    ) -> StoredBlob:
        full = self._full_path(bucket, path)
        await asyncio.to_thread(_write_file, full, data)
        logger.debug("Stored %d bytes at %s", len(data), full)
        return StoredBlob(url=f"{self.base_url}/{bucket}/{path}", path=path, bucket=bucket)

    async def delete(self, bucket: str, path: str) -> None:
        full = self._full_path(bucket, path)
        if os.path.exists(full):
            await asyncio.to_thread(os.remove, full)


def _write_file(full_path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    with open(full_path, "wb") as f:
        f.write(data)


class SupabaseBlobStore:
    """Supabase Storage backend using the service-role client."""

    def __init__(self, url: str, service_key: str) -> None:
        from supabase import create_client

        self.client = create_client(url, service_key)
        self.storage = self.client.storage

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str = "image/png",
    ) -> StoredBlob:
        def _upload():
            return self.storage.from_(bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": content_type, "upsert": "true"},
            )

        await asyncio.to_thread(_upload)
        public_url = await asyncio.to_thread(self.storage.from_(bucket).get_public_url, path)
        logger.info("Uploaded %s/%s (%d bytes)", bucket, path, len(data))
        return StoredBlob(url=public_url, path=path, bucket=bucket)

    async def delete(self, bucket: str, path: str) -> None:
        await asyncio.to_thread(self.storage.from_(bucket).remove, [path])


def bucket_for(asset_type: str) -> str:
    settings = get_settings()
    return {
        "character": settings.BUCKET_CHARACTERS,
        "location": settings.BUCKET_LOCATIONS,
        "prop": settings.BUCKET_PROPS,
        "scene": settings.BUCKET_SCENES,
    }[asset_type]


@lru_cache
def get_blob_store() -> BlobStore:
    """Configured blob store singleton."""
    settings = get_settings()
    if settings.BLOB_BACKEND == "supabase":
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise RuntimeError("BLOB_BACKEND=supabase requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        return SupabaseBlobStore(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    return LocalBlobStore(settings.MEDIA_VOLUME, settings.MEDIA_BASE_URL)
