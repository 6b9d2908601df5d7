"""Redis Pub/Sub bridge between the pipeline and WebSocket clients.

Anything that changes a variant (API handlers, Celery workers, the stuck
sweep) publishes to ``atelier:ws:<project_id>``; the WebSocket endpoint
subscribes per connection and relays.

Envelope::

    {"type": "variant_update" | "selection_update" | "batch_progress",
     "project_id": ..., "sent_at": <epoch ms>, ...event fields}
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator

import redis
import redis.asyncio as aioredis

from atelier.config import get_settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "atelier:ws:"


def channel_for(project_id: str) -> str:
    return f"{CHANNEL_PREFIX}{project_id}"


# ──────── Publishers (sync; async code goes through asyncio.to_thread) ────────

_sync_pool: redis.ConnectionPool | None = None


def _get_sync_pool() -> redis.ConnectionPool:
    global _sync_pool
    if _sync_pool is None:
        _sync_pool = redis.ConnectionPool.from_url(get_settings().REDIS_URL)
    return _sync_pool


def publish_variant_update(
    project_id: str, asset_type: str, asset_id: str, variant_id: str, status: str,
) -> None:
    _publish(project_id, "variant_update", {
        "asset_type": asset_type,
        "asset_id": asset_id,
        "variant_id": variant_id,
        "status": status,
    })


def publish_selection_update(
    project_id: str, asset_type: str, asset_id: str, variant_id: str | None,
) -> None:
    """``variant_id`` is ``None`` when the asset's selection was cleared."""
    _publish(project_id, "selection_update", {
        "asset_type": asset_type,
        "asset_id": asset_id,
        "variant_id": variant_id,
    })


def publish_batch_progress(project_id: str, stage: str, completed: int, total: int) -> None:
    _publish(project_id, "batch_progress", {
        "stage": stage,
        "completed": completed,
        "total": total,
        "percent": round(completed / total * 100) if total > 0 else 0,
    })


def _publish(project_id: str, event_type: str, fields: dict[str, Any]) -> None:
    """Best-effort publish; a Redis outage never fails the pipeline."""
    envelope = {
        "type": event_type,
        "project_id": project_id,
        "sent_at": int(time.time() * 1000),
        **fields,
    }
    try:
        client = redis.Redis(connection_pool=_get_sync_pool())
        client.publish(channel_for(project_id), json.dumps(envelope))
    except Exception:
        logger.warning("Failed to publish %s for project %s", event_type, project_id, exc_info=True)


# ──────── Subscriber (async, one per WebSocket) ────────

_async_client: aioredis.Redis | None = None


def _get_async_client() -> aioredis.Redis:
    global _async_client
    if _async_client is None:
        _async_client = aioredis.from_url(get_settings().REDIS_URL)
    return _async_client


async def subscribe_project(project_id: str) -> aioredis.client.PubSub:
    """Subscribe to a project's channel. Close the pubsub, never the shared client."""
    pubsub = _get_async_client().pubsub()
    await pubsub.subscribe(channel_for(project_id))
    return pubsub


async def listen_pubsub(pubsub: aioredis.client.PubSub) -> AsyncIterator[dict[str, Any]]:
    """Yield decoded envelopes; subscribe confirmations and junk are skipped."""
    async for raw in pubsub.listen():
        if raw["type"] != "message":
            continue
        try:
            message = json.loads(raw["data"])
        except (json.JSONDecodeError, TypeError):
            logger.debug("Dropping undecodable pub/sub payload on %s", raw.get("channel"))
            continue
        if isinstance(message, dict):
            yield message
