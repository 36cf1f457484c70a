"""
Shared fixtures: in-memory stores that record every call, sample images
and a TestClient wired to those stores.
"""

import asyncio
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from mediacache.core.cache_metrics import reset_cache_metrics
from mediacache.core.config import Settings
from mediacache.core.errors import StoreUnavailable
from mediacache.main import create_app
from mediacache.services.fill import FillOrchestrator
from mediacache.storage import MemoryBlobStore

CLIP_BYTES = b"\x00\x00\x00\x18ftypmp42" + bytes(range(256)) * 64


def make_image(size=(3000, 2000), fmt="JPEG", mode="RGB", color=(200, 40, 40)) -> bytes:
    im = Image.new(mode, size, color)
    buffer = BytesIO()
    im.save(buffer, format=fmt)
    return buffer.getvalue()


class RecordingStore(MemoryBlobStore):
    """MemoryBlobStore that logs (operation, key) for every data call."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    def ops(self, name):
        return [key for op, key in self.calls if op == name]

    async def exists(self, key):
        self.calls.append(("exists", key))
        return await super().exists(key)

    async def read(self, key):
        self.calls.append(("read", key))
        return await super().read(key)

    async def open_stream(self, key):
        self.calls.append(("open_stream", key))
        return await super().open_stream(key)

    async def write(self, key, data, content_type, cache_control=None):
        self.calls.append(("write", key))
        return await super().write(key, data, content_type, cache_control)


class BrokenStore(RecordingStore):
    """Every data call fails as a transport error."""

    async def exists(self, key):
        self.calls.append(("exists", key))
        raise StoreUnavailable("connection refused")

    async def write(self, key, data, content_type, cache_control=None):
        self.calls.append(("write", key))
        raise StoreUnavailable("connection refused")


class SlowStore(RecordingStore):
    """exists() hangs far past any test timeout."""

    async def exists(self, key):
        self.calls.append(("exists", key))
        await asyncio.sleep(5)
        return True


@pytest.fixture(scope="session")
def photo_bytes():
    return make_image((3000, 2000))


@pytest.fixture
def origin(photo_bytes):
    store = RecordingStore(read_only=True)
    store.put("photo.jpg", photo_bytes)
    store.put("clip.mp4", CLIP_BYTES)
    store.put("docs/manual.pdf", b"%PDF-1.7 fake")
    store.put("my photo.png", make_image((40, 30), fmt="PNG"))
    return store


@pytest.fixture
def cache():
    return RecordingStore()


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_cache_metrics()
    yield


@pytest.fixture
def orchestrator(origin, cache):
    return FillOrchestrator(origin, cache)


@pytest.fixture
def settings():
    return Settings(_env_file=None, ORIGIN_BACKEND="memory", CACHE_BACKEND="memory")


@pytest.fixture
def client(settings, origin, cache):
    """TestClient bound to the recording stores."""
    app = create_app(settings, origin=origin, cache=cache)
    with TestClient(app) as test_client:
        yield test_client
