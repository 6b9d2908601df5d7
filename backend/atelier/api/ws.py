"""WebSocket feed of variant status, selection and batch progress.

One connection per project tab. The client may narrow the feed to the
assets it is looking at::

    {"type": "watch", "asset_type": "character", "asset_id": "c-1"}
    {"type": "unwatch", "asset_type": "character", "asset_id": "c-1"}

Batch progress is always delivered. With nothing watched, everything is.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from atelier.services.pubsub import listen_pubsub, subscribe_project

router = APIRouter()
logger = logging.getLogger(__name__)


def _wants(message: dict, watched: set[tuple[str, str]]) -> bool:
    if not watched or message.get("type") == "batch_progress":
        return True
    return (message.get("asset_type"), message.get("asset_id")) in watched


def _apply_control(raw: str, watched: set[tuple[str, str]]) -> dict | None:
    """Update the watch set from a client frame; returns the reply, if any."""
    if raw == "ping":
        return {"type": "pong"}
    try:
        frame = json.loads(raw)
    except ValueError:
        return {"type": "error", "detail": "Expected JSON or 'ping'"}
    if not isinstance(frame, dict):
        return {"type": "error", "detail": "Expected a JSON object"}

    key = (frame.get("asset_type"), frame.get("asset_id"))
    if frame.get("type") == "watch" and all(key):
        watched.add(key)
    elif frame.get("type") == "unwatch":
        watched.discard(key)
    else:
        return {"type": "error", "detail": f"Unknown frame: {frame.get('type')!r}"}
    return {"type": "watching", "assets": sorted(f"{t}:{i}" for t, i in watched)}


@router.websocket("/ws/{project_id}")
async def ws_project(ws: WebSocket, project_id: str):
    await ws.accept()
    logger.info("WS connected: project=%s", project_id)

    watched: set[tuple[str, str]] = set()
    pubsub = None
    relay = None
    try:
        pubsub = await subscribe_project(project_id)
        relay = asyncio.create_task(_relay(pubsub, ws, project_id, watched))

        while True:
            reply = _apply_control(await ws.receive_text(), watched)
            if reply is not None:
                await ws.send_json(reply)
    except WebSocketDisconnect:
        logger.info("WS disconnected: project=%s", project_id)
    except Exception as exc:
        logger.warning("WS error for project=%s: %s", project_id, exc)
    finally:
        if relay:
            relay.cancel()
        if pubsub:
            await pubsub.unsubscribe()
            await pubsub.close()


async def _relay(pubsub, ws: WebSocket, project_id: str, watched: set[tuple[str, str]]):
    """Forward the project's pub/sub messages that pass the watch filter."""
    try:
        async for message in listen_pubsub(pubsub):
            if not _wants(message, watched):
                continue
            try:
                await ws.send_json(message)
            except Exception:
                break
    except asyncio.CancelledError:
        pass
    except Exception as exc:
        logger.warning("Pub/Sub relay error for project=%s: %s", project_id, exc)
