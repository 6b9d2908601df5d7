from __future__ import annotations
"""Blob Persistence Adapter — moves a transient result URL into durable storage.

Two flavours:
  persist()             one attempt, used on the fast path right after dispatch
  persist_with_retry()  initial delay + exponential backoff, used for callbacks

Both return ``StoredBlob`` or ``None``; failures never raise.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx

from atelier.config import get_settings
from atelier.services.asset_gateway import AssetRef
from atelier.services.blob_store import BlobStore, StoredBlob, bucket_for, get_blob_store

logger = logging.getLogger(__name__)

_http_client: httpx.AsyncClient | None = None
_last_ts_ms = 0


def _get_http_client() -> httpx.AsyncClient:
    """Return a module-level httpx.AsyncClient, creating it on first use."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(follow_redirects=True)
    return _http_client


class FetchError(Exception):
    """Result download failed."""

    def __init__(self, message: str, retryable: bool) -> None:
        super().__init__(message)
        self.retryable = retryable


def destination_for(ref: AssetRef, variant_id: str, now_ms: int | None = None) -> tuple[str, str]:
    """(bucket, path) for a variant's image; unique per variant and attempt."""
    if now_ms is None:
        global _last_ts_ms
        # Strictly increasing per process
        _last_ts_ms = max(int(time.time() * 1000), _last_ts_ms + 1)
        now_ms = _last_ts_ms
    if ref.sub_type:
        filename = f"{ref.sub_type}_{variant_id}_{now_ms}.png"
    else:
        filename = f"{variant_id}_{now_ms}.png"
    return bucket_for(ref.asset_type), f"{ref.asset_id}/{filename}"


class BlobPersistence:
    """Download-then-upload of generated images."""

    def __init__(
        self,
        store: BlobStore | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self.store = store or get_blob_store()
        self.client = client
        self.sleep = sleep
        self.download_timeout = settings.DOWNLOAD_TIMEOUT
        self.min_bytes = settings.MIN_IMAGE_BYTES
        self.max_attempts = settings.PERSIST_MAX_ATTEMPTS
        self.initial_delay = settings.PERSIST_INITIAL_DELAY
        self.backoff_base = settings.PERSIST_BACKOFF_BASE

    async def persist(self, transient_url: str, ref: AssetRef, variant_id: str) -> StoredBlob | None:
        """Single attempt. ``None`` on any failure."""
        try:
            return await self._persist_once(transient_url, ref, variant_id)
        except Exception as exc:
            logger.warning("Fast persistence failed for variant %s: %s", variant_id, exc)
            return None

    async def persist_with_retry(
        self, transient_url: str, ref: AssetRef, variant_id: str,
    ) -> StoredBlob | None:
        """Wait for the result to settle, then retry 5xx/undersized/transport errors."""
        await self.sleep(self.initial_delay)
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._persist_once(transient_url, ref, variant_id)
            except FetchError as exc:
                if not exc.retryable:
                    logger.error("Persistence for variant %s gave up: %s", variant_id, exc)
                    return None
                last_error = exc
            except Exception as exc:
                last_error = exc
            logger.warning(
                "Persistence attempt %d/%d for variant %s failed: %s",
                attempt, self.max_attempts, variant_id, last_error,
            )
            if attempt < self.max_attempts:
                await self.sleep(self.backoff_base * 2 ** (attempt - 1))
        logger.error("Persistence exhausted for variant %s", variant_id)
        return None

    async def discard(self, ref: AssetRef, storage_path: str) -> None:
        """Best-effort removal of a stored image."""
        if not storage_path:
            return
        try:
            await self.store.delete(bucket_for(ref.asset_type), storage_path)
        except Exception:
            logger.warning("Failed to delete blob %s for %s", storage_path, ref, exc_info=True)

    async def _persist_once(self, transient_url: str, ref: AssetRef, variant_id: str) -> StoredBlob:
        data = await self._download(transient_url)
        bucket, path = destination_for(ref, variant_id)
        stored = await self.store.upload(bucket, path, data, content_type="image/png")
        logger.info("Persisted variant %s to %s/%s (%d bytes)", variant_id, bucket, path, len(data))
        return stored

    async def _download(self, url: str) -> bytes:
        client = self.client or _get_http_client()
        try:
            response = await client.get(url, timeout=self.download_timeout)
        except httpx.HTTPError as exc:
            raise FetchError(f"download error: {exc}", retryable=True) from exc
        if response.status_code >= 500:
            raise FetchError(f"HTTP {response.status_code}", retryable=True)
        if response.status_code >= 400:
            raise FetchError(f"HTTP {response.status_code}", retryable=False)
        data = response.content
        if len(data) < self.min_bytes:
            raise FetchError(f"image too small ({len(data)} bytes)", retryable=True)
        return data
