"""Pytest configuration helpers.

Puts ``backend/`` on ``sys.path`` so tests can import the ``atelier`` package
regardless of how pytest is invoked, points the app at a throwaway SQLite
database, and provides in-memory fakes for the two external services
(Generation Service, Blob Store).
"""
import os
import sys
import tempfile

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
BACKEND = os.path.join(ROOT, "backend")
if BACKEND not in sys.path:
    sys.path.insert(0, BACKEND)

_TMP = tempfile.mkdtemp(prefix="atelier-tests-")
os.environ["DATABASE_URL_OVERRIDE"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["MEDIA_VOLUME"] = os.path.join(_TMP, "media")
os.environ["USE_MOCK_API"] = "false"
os.environ["DEBUG"] = "false"
os.environ["BATCH_COOLDOWN"] = "0"
os.environ["INGEST_CALLBACKS_INLINE"] = "true"
os.environ["APP_BASE_URL"] = "http://atelier.test"

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

from atelier.services.blob_store import StoredBlob  # noqa: E402
from atelier.services.generation_client import DispatchOptions, DispatchResult  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 4096


class FakeBlobStore:
    """Blob store that keeps uploads in memory."""

    def __init__(self):
        self.uploads: dict[tuple[str, str], bytes] = {}
        self.deleted: list[tuple[str, str]] = []

    async def upload(self, bucket, path, data, content_type="image/png"):
        self.uploads[(bucket, path)] = data
        return StoredBlob(url=f"https://blobs.test/{bucket}/{path}", path=path, bucket=bucket)

    async def delete(self, bucket, path):
        self.deleted.append((bucket, path))
        self.uploads.pop((bucket, path), None)


class FakeGenerationClient:
    """Scriptable Generation Service: ``responses[model]`` is a DispatchResult."""

    def __init__(self):
        self.responses: dict[str, DispatchResult] = {}
        self.calls: list[tuple[str, str, DispatchOptions]] = []

    async def dispatch(self, prompt, model, options):
        self.calls.append((prompt, model, options))
        return self.responses.get(model, DispatchResult(job_id=f"job-{len(self.calls)}"))


def image_handler(request: httpx.Request) -> httpx.Response:
    """Transient result host: path decides the behaviour."""
    path = request.url.path
    if path.startswith("/tiny"):
        return httpx.Response(200, content=b"tiny")
    if path.startswith("/missing"):
        return httpx.Response(404)
    if path.startswith("/broken"):
        return httpx.Response(503)
    return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def gen_client():
    return FakeGenerationClient()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def persistence(blob_store, sleeps):
    from atelier.services.blob_persistence import BlobPersistence

    async def _sleep(seconds):
        sleeps.append(seconds)

    client = httpx.AsyncClient(transport=httpx.MockTransport(image_handler))
    return BlobPersistence(store=blob_store, client=client, sleep=_sleep)


@pytest.fixture
def notifier():
    return AsyncMock()


@pytest_asyncio.fixture
async def db():
    """Fresh schema per test; yields the session factory."""
    import atelier.models  # noqa: F401
    from atelier.database import Base, async_session_factory, engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield async_session_factory
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def store(db):
    from atelier.services.variant_store import VariantStore

    return VariantStore(db)


@pytest.fixture
def orchestrator(store, gen_client, persistence, notifier):
    from atelier.services.orchestrator import VariantOrchestrator

    return VariantOrchestrator(store=store, client=gen_client, persistence=persistence, notifier=notifier)


@pytest.fixture
def selection(store, persistence, notifier):
    from atelier.services.selection import SelectionService

    return SelectionService(store=store, persistence=persistence, notifier=notifier)


@pytest_asyncio.fixture
async def project(db):
    """A project with one character, one location, one prop and one scene."""
    from atelier.models import Character, Location, Project, Prop, Scene

    async with db() as session:
        proj = Project(id="proj-1", title="Night Ferry", visual_style="moody 35mm film")
        session.add(proj)
        session.add_all([
            Character(id="char-1", project_id="proj-1", name="Mara", visual_dna="red coat, silver hair"),
            Location(id="loc-1", project_id="proj-1", name="Harbor", description="foggy harbor at dawn"),
            Prop(id="prop-1", project_id="proj-1", name="Lantern", description="brass storm lantern"),
            Scene(
                id="scene-1", project_id="proj-1", sequence_order=1,
                action="Mara lifts the lantern", shot_type="wide shot", time_of_day="dawn",
                location_id="loc-1", character_ids=["char-1"], prop_ids=["prop-1"],
            ),
        ])
        await session.commit()
    return proj


@pytest.fixture
def make_variant(store):
    """Insert a variant directly in the given status."""

    async def _make(ref, model="seedream-4.5-text-to-image", status="ready", order=0, **fields):
        variant = await store.create(ref, model=model, prompt="a prompt", generation_order=order)
        values = dict(fields)
        if status != "generating":
            values["status"] = status
            if status in ("ready", "selected"):
                values.setdefault("image_url", f"https://blobs.test/bucket/{variant.id}.png")
                values.setdefault("storage_path", f"{ref.asset_id}/{variant.id}.png")
            if status == "selected":
                values["is_selected"] = True
        if values:
            await store.update(variant.id, **values)
        return await store.get(variant.id)

    return _make
