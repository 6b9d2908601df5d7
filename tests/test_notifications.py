"""
Tests for pipeline notifications over Redis Pub/Sub (Redis is mocked) and
the WebSocket watch filter.
"""
import json
from unittest.mock import MagicMock, patch

import pytest

from atelier.api.ws import _apply_control, _wants
from atelier.services import pubsub
from atelier.services.asset_gateway import AssetRef
from atelier.services.notifications import Notifier


@pytest.fixture
def redis_client():
    client = MagicMock()
    with patch.object(pubsub, "_get_sync_pool"), \
         patch.object(pubsub.redis, "Redis", return_value=client):
        yield client


def _published(redis_client):
    channel, raw = redis_client.publish.call_args.args
    message = json.loads(raw)
    assert isinstance(message.pop("sent_at"), int)
    return channel, message


def test_batch_progress_message(redis_client):
    pubsub.publish_batch_progress("proj-1", "bible", 1, 3)

    channel, message = _published(redis_client)
    assert channel == "atelier:ws:proj-1"
    assert message == {
        "type": "batch_progress",
        "project_id": "proj-1",
        "stage": "bible",
        "completed": 1,
        "total": 3,
        "percent": 33,
    }


def test_publish_failure_is_swallowed(redis_client):
    redis_client.publish.side_effect = ConnectionError("redis down")

    pubsub.publish_variant_update("proj-1", "prop", "prop-1", "v-1", "ready")


@pytest.mark.asyncio
async def test_notifier_resolves_project(redis_client, db, project):
    """Test variant events go to the channel of the asset's project."""
    notifier = Notifier(db)

    await notifier.variant(AssetRef("prop", "prop-1"), "v-1", "ready")

    channel, message = _published(redis_client)
    assert channel == "atelier:ws:proj-1"
    assert message == {
        "type": "variant_update",
        "project_id": "proj-1",
        "asset_type": "prop",
        "asset_id": "prop-1",
        "variant_id": "v-1",
        "status": "ready",
    }


@pytest.mark.asyncio
async def test_notifier_skips_unknown_asset(redis_client, db):
    await Notifier(db).selection(AssetRef("scene", "missing"), None)

    redis_client.publish.assert_not_called()


def test_watch_filter():
    """Test watched assets narrow the feed but progress always passes."""
    watched = set()
    update = {"type": "variant_update", "asset_type": "prop", "asset_id": "prop-1"}
    assert _wants(update, watched)

    reply = _apply_control(json.dumps({"type": "watch", "asset_type": "scene", "asset_id": "s-1"}), watched)

    assert reply == {"type": "watching", "assets": ["scene:s-1"]}
    assert not _wants(update, watched)
    assert _wants({"type": "batch_progress"}, watched)
    assert _wants({"type": "selection_update", "asset_type": "scene", "asset_id": "s-1"}, watched)

    _apply_control(json.dumps({"type": "unwatch", "asset_type": "scene", "asset_id": "s-1"}), watched)
    assert watched == set()


def test_control_frames():
    assert _apply_control("ping", set()) == {"type": "pong"}
    assert _apply_control("{oops", set())["type"] == "error"
    assert _apply_control(json.dumps({"type": "dance"}), set())["type"] == "error"
