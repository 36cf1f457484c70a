"""
Tests for the fill/serve state machine, driven directly (no HTTP).
"""

import asyncio
import re
from io import BytesIO

import pytest
from PIL import Image

from conftest import CLIP_BYTES, BrokenStore, RecordingStore, SlowStore, make_image
from mediacache.core.cache_metrics import get_cache_metrics
from mediacache.core.errors import TransformFailed
from mediacache.services.fill import (
    IMMUTABLE_CACHE_CONTROL,
    NO_STORE_CACHE_CONTROL,
    FillOrchestrator,
)
from mediacache.storage import LocalBlobStore


def run(coro):
    return asyncio.run(coro)


async def _drain(result):
    if result.stream is None:
        return result.body
    return b"".join([chunk async for chunk in result.stream])


class CountingTransformer:
    """Async stand-in for the engine: counts calls and can be slowed down."""

    def __init__(self, delay=0.0, output=b"transformed"):
        self.calls = 0
        self.delay = delay
        self.output = output

    async def transform(self, data, params):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.output


class FailingTransformer:
    async def transform(self, data, params):
        raise TransformFailed("corrupt source")


class TestScenarios:
    def test_a_miss_transforms_and_fills(self, orchestrator, origin, cache):
        result = run(orchestrator.handle("/photo.jpg", {"w": "500", "format": "webp"}))

        assert result.status_code == 200
        assert result.outcome == "miss"
        assert result.content_type == "image/webp"
        assert result.cache_control == IMMUTABLE_CACHE_CONTROL
        im = Image.open(BytesIO(result.body))
        assert im.size == (500, 333)

        [written] = cache.ops("write")
        assert re.match(r"^cache/photo\.jpg\.[0-9a-f]{32}$", written)
        stored = cache.objects[written]
        assert stored.data == result.body
        assert stored.content_type == "image/webp"
        assert stored.cache_control == IMMUTABLE_CACHE_CONTROL

    def test_b_repeat_is_served_from_cache(self, orchestrator, origin, cache):
        first = run(orchestrator.handle("/photo.jpg", {"w": "500", "format": "webp"}))
        second = run(orchestrator.handle("/photo.jpg", {"format": "webp", "w": "500"}))

        assert second.outcome == "hit"
        assert second.body == first.body
        assert (second.status_code, second.content_type, second.cache_control) == (
            first.status_code,
            first.content_type,
            first.cache_control,
        )
        assert len(origin.ops("read")) == 1
        assert len(cache.ops("write")) == 1

    def test_c_video_passes_through(self, orchestrator, origin, cache):
        result = run(orchestrator.handle("/clip.mp4", {"w": "100"}))

        assert result.status_code == 200
        assert result.outcome == "passthrough"
        assert result.content_type == "video/mp4"
        assert result.cache_control == IMMUTABLE_CACHE_CONTROL
        assert run(_drain(result)) == CLIP_BYTES
        assert cache.calls == []

    def test_d_missing_image_is_404_without_write(self, orchestrator, cache):
        result = run(orchestrator.handle("/missing.png", {"w": "100"}))

        assert result.status_code == 404
        assert result.cache_control == NO_STORE_CACHE_CONTROL
        assert cache.ops("write") == []

    def test_e_oversized_is_400_before_any_io(self, orchestrator, origin, cache):
        result = run(orchestrator.handle("/photo.jpg", {"w": "3000"}))

        assert result.status_code == 400
        assert result.body == b"Image too large"
        assert result.cache_control == NO_STORE_CACHE_CONTROL
        assert origin.calls == []
        assert cache.calls == []


class TestPassThrough:
    def test_missing_passthrough_is_404(self, orchestrator, cache):
        result = run(orchestrator.handle("/nope.mp4", {}))
        assert result.status_code == 404
        assert cache.calls == []

    def test_nested_document(self, orchestrator):
        result = run(orchestrator.handle("docs/manual.pdf", {}))
        assert result.content_type == "application/pdf"
        assert run(_drain(result)) == b"%PDF-1.7 fake"

    def test_unknown_extension_uses_store_type(self, origin):
        origin.put("blob.xyz", b"abc", content_type="application/x-custom")
        orch = FillOrchestrator(origin, RecordingStore())
        result = run(orch.handle("blob.xyz", {}))
        assert result.content_type == "application/x-custom"


class TestValidation:
    @pytest.mark.parametrize(
        "query",
        [{"w": "abc"}, {"h": "0"}, {"w": "12px"}, {"format": "gif"}, {"q": "101"}, {"h": "2001"}],
    )
    def test_bad_params_never_touch_stores(self, orchestrator, origin, cache, query):
        result = run(orchestrator.handle("photo.jpg", query))
        assert result.status_code == 400
        assert origin.calls == [] and cache.calls == []

    def test_traversal_is_404(self, orchestrator, origin):
        result = run(orchestrator.handle("../etc/passwd.jpg", {"w": "10"}))
        assert result.status_code == 404
        assert origin.calls == []

    def test_unrelated_params_share_the_cache_entry(self, orchestrator, cache):
        run(orchestrator.handle("photo.jpg", {"w": "50"}))
        second = run(orchestrator.handle("photo.jpg", {"w": "50", "utm_source": "newsletter"}))
        assert second.outcome == "hit"
        assert len(cache.ops("write")) == 1


class TestSizelessPolicy:
    def test_transform_policy_reencodes_at_native_size(self, origin, cache):
        origin.put("small.png", make_image((40, 30), fmt="PNG"))
        orch = FillOrchestrator(origin, cache, sizeless_policy="transform")
        result = run(orch.handle("small.png", {}))
        assert result.outcome == "miss"
        assert result.content_type == "image/webp"
        assert Image.open(BytesIO(result.body)).size == (40, 30)

    def test_original_policy_serves_untransformed(self, origin, cache, photo_bytes):
        orch = FillOrchestrator(origin, cache, sizeless_policy="original")
        result = run(orch.handle("photo.jpg", {}))
        assert result.outcome == "passthrough"
        assert result.content_type == "image/jpeg"
        assert run(_drain(result)) == photo_bytes
        assert cache.calls == []

    def test_original_policy_still_transforms_with_params(self, origin, cache):
        orch = FillOrchestrator(origin, cache, sizeless_policy="original")
        result = run(orch.handle("photo.jpg", {"format": "png", "w": "20"}))
        assert result.outcome == "miss"
        assert result.content_type == "image/png"

    def test_unknown_policy_is_rejected(self, origin, cache):
        with pytest.raises(ValueError):
            FillOrchestrator(origin, cache, sizeless_policy="sometimes")


class TestFailures:
    def test_cache_outage_is_500(self, origin):
        orch = FillOrchestrator(origin, BrokenStore())
        result = run(orch.handle("photo.jpg", {"w": "10"}))
        assert result.status_code == 500
        assert result.body == b"Processing failed"
        assert result.cache_control == NO_STORE_CACHE_CONTROL

    def test_origin_outage_is_500(self, cache):
        orch = FillOrchestrator(BrokenStore(read_only=True), cache)
        assert run(orch.handle("clip.mp4", {})).status_code == 500
        assert run(orch.handle("photo.jpg", {"w": "10"})).status_code == 500
        assert cache.ops("write") == []

    def test_failed_write_is_500_and_not_a_hit_later(self, origin):
        class WriteFails(RecordingStore):
            async def write(self, key, data, content_type, cache_control=None):
                self.calls.append(("write", key))
                raise OSError("disk full")

        cache = WriteFails()
        orch = FillOrchestrator(origin, cache)
        assert run(orch.handle("photo.jpg", {"w": "10"})).status_code == 500
        assert cache.objects == {}
        assert run(orch.handle("photo.jpg", {"w": "10"})).status_code == 500

    def test_transform_failure_is_500_without_write(self, origin, cache):
        orch = FillOrchestrator(origin, cache, FailingTransformer())
        result = run(orch.handle("photo.jpg", {"w": "10"}))
        assert result.status_code == 500
        assert cache.ops("write") == []

    def test_corrupt_original_is_500(self, origin, cache):
        origin.put("broken.jpg", b"not really a jpeg")
        orch = FillOrchestrator(origin, cache)
        assert run(orch.handle("broken.jpg", {"w": "10"})).status_code == 500

    def test_store_timeout_is_500(self, cache):
        orch = FillOrchestrator(SlowStore(read_only=True), cache, store_timeout=0.05)
        result = run(orch.handle("photo.jpg", {"w": "10"}))
        assert result.status_code == 500

    def test_transform_timeout_is_500(self, origin, cache):
        orch = FillOrchestrator(origin, cache, CountingTransformer(delay=1.0), transform_timeout=0.05)
        result = run(orch.handle("photo.jpg", {"w": "10"}))
        assert result.status_code == 500
        assert cache.ops("write") == []

    def test_vanished_cache_entry_is_refilled(self, origin, cache):
        class Vanishing(RecordingStore):
            async def exists(self, key):
                self.calls.append(("exists", key))
                return True

        vanishing = Vanishing()
        orch = FillOrchestrator(origin, vanishing)
        result = run(orch.handle("photo.jpg", {"w": "10"}))
        assert result.status_code == 200
        assert result.outcome == "miss"
        assert len(vanishing.ops("write")) == 1


class TestHitContentType:
    def test_untyped_cache_entry_is_served_as_target_format(self, origin, cache):
        orch = FillOrchestrator(origin, cache)
        params = orch.parse_params({"w": "10", "format": "png"})
        cache.put(orch.cache_key("photo.jpg", params), make_image((10, 7), fmt="PNG"))
        result = run(orch.handle("photo.jpg", {"w": "10", "format": "png"}))
        assert result.outcome == "hit"
        assert result.content_type == "image/png"

    def test_missing_sidecar_keeps_miss_and_hit_headers_equal(self, origin, tmp_path):
        local = LocalBlobStore(tmp_path / "cache")
        orch = FillOrchestrator(origin, local)
        first = run(orch.handle("photo.jpg", {"w": "10"}))
        for sidecar in (local.root / ".meta").rglob("*.json"):
            sidecar.unlink()
        second = run(orch.handle("photo.jpg", {"w": "10"}))
        assert (first.outcome, second.outcome) == ("miss", "hit")
        assert second.content_type == first.content_type == "image/webp"


class TestConcurrency:
    def _concurrent(self, orch, n=3):
        async def go():
            return await asyncio.gather(*[orch.handle("photo.jpg", {"w": "10"}) for _ in range(n)])

        return run(go())

    def test_duplicate_fills_are_tolerated(self, origin, cache):
        transformer = CountingTransformer(delay=0.05)
        orch = FillOrchestrator(origin, cache, transformer)
        results = self._concurrent(orch)
        assert transformer.calls == 3
        assert len(cache.ops("write")) == 3
        assert len(cache.objects) == 1
        assert {r.body for r in results} == {b"transformed"}

    def test_single_flight_coalesces(self, origin, cache):
        transformer = CountingTransformer(delay=0.05)
        orch = FillOrchestrator(origin, cache, transformer, single_flight=True)
        results = self._concurrent(orch)
        assert transformer.calls == 1
        assert len(cache.ops("write")) == 1
        assert sorted(r.outcome for r in results) == ["coalesced", "coalesced", "miss"]
        assert {r.body for r in results} == {b"transformed"}

    def test_single_flight_shares_failures(self, origin, cache):
        orch = FillOrchestrator(origin, cache, FailingTransformer(), single_flight=True)
        results = self._concurrent(orch, n=2)
        assert [r.status_code for r in results] == [500, 500]


def test_outcomes_are_counted(orchestrator):
    run(orchestrator.handle("photo.jpg", {"w": "10"}))
    run(orchestrator.handle("photo.jpg", {"w": "10"}))
    run(orchestrator.handle("clip.mp4", {}))
    run(orchestrator.handle("photo.jpg", {"w": "9999"}))
    run(orchestrator.handle("gone.jpg", {"w": "10"}))
    metrics = get_cache_metrics()
    assert metrics["miss"] == 1
    assert metrics["hit"] == 1
    assert metrics["passthrough"] == 1
    assert metrics["invalid"] == 1
    assert metrics["not_found"] == 1
    assert metrics["hit_ratio"] == 0.5


def test_startup_connects_both_stores(origin, cache):
    orch = FillOrchestrator(origin, cache)
    run(orch.startup())
    assert origin._connected and cache._connected
    run(orch.shutdown())
    assert not origin._connected
