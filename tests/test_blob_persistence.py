"""
Unit tests for blob persistence (download, validate, upload).

The transient result host is an httpx.MockTransport; see ``image_handler``
in conftest for which paths succeed and which fail.
"""
import pytest

from atelier.services.asset_gateway import AssetRef
from atelier.services.blob_persistence import destination_for

CHAR = AssetRef("character", "char-1", "full_body")
PROP = AssetRef("prop", "prop-1")


def test_destination_paths():
    """Test storage paths are unique per variant and attempt."""
    assert destination_for(CHAR, "v1", now_ms=1700) == (
        "bible-characters-uploads", "char-1/full_body_v1_1700.png",
    )
    assert destination_for(PROP, "v2", now_ms=1800) == ("bible-props-uploads", "prop-1/v2_1800.png")
    assert destination_for(AssetRef("scene", "s-1"), "v3", now_ms=1)[0] == "scene-images"


@pytest.mark.asyncio
async def test_persist_uploads_image(persistence, blob_store, sleeps):
    stored = await persistence.persist("https://results.test/ok.png", CHAR, "v1")

    assert stored is not None
    assert stored.bucket == "bible-characters-uploads"
    assert stored.path.startswith("char-1/full_body_v1_")
    assert stored.url == f"https://blobs.test/{stored.bucket}/{stored.path}"
    assert (stored.bucket, stored.path) in blob_store.uploads
    assert sleeps == []


@pytest.mark.asyncio
async def test_persist_rejects_undersized_payload(persistence, blob_store):
    """Test a tiny body is treated as not-yet-ready, never stored."""
    assert await persistence.persist("https://results.test/tiny.png", PROP, "v1") is None
    assert blob_store.uploads == {}


@pytest.mark.asyncio
async def test_persist_with_retry_backs_off_on_server_errors(persistence, blob_store, sleeps):
    """Test initial delay, then exponential backoff between attempts."""
    stored = await persistence.persist_with_retry("https://results.test/broken.png", PROP, "v1")

    assert stored is None
    assert sleeps == [2.0, 2.0, 4.0]
    assert blob_store.uploads == {}


@pytest.mark.asyncio
async def test_persist_with_retry_gives_up_on_client_error(persistence, sleeps):
    stored = await persistence.persist_with_retry("https://results.test/missing.png", PROP, "v1")

    assert stored is None
    assert sleeps == [2.0]


@pytest.mark.asyncio
async def test_persist_with_retry_succeeds(persistence, blob_store, sleeps):
    stored = await persistence.persist_with_retry("https://results.test/ok.png", PROP, "v1")

    assert stored is not None
    assert sleeps == [2.0]
    assert len(blob_store.uploads) == 1


@pytest.mark.asyncio
async def test_discard_is_best_effort(persistence, blob_store):
    async def _fail(bucket, path):
        raise RuntimeError("storage offline")

    await persistence.discard(PROP, "")
    assert blob_store.deleted == []

    await persistence.discard(PROP, "prop-1/v1_1.png")
    assert blob_store.deleted == [("bible-props-uploads", "prop-1/v1_1.png")]

    blob_store.delete = _fail
    await persistence.discard(PROP, "prop-1/v1_2.png")
