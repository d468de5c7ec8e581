import time

import pytest

from core.resource_cache import EXPORT, PREVIEW, MediaResourceCache
from models.media import EffectType, MediaKind

from conftest import FakeImageHandle, FakeVideoHandle, make_effect, make_item


def test_acquire_is_memoized(cache, loader):
    loader.register("a.png", FakeImageHandle)
    item = make_item(MediaKind.IMAGE, "a.png")

    first = cache.acquire(item, PREVIEW)
    second = cache.acquire(item, PREVIEW)

    assert first is not None
    assert first is second
    assert loader.calls == ["a.png"]


def test_effects_have_no_resource(cache, loader):
    assert cache.acquire(make_effect(EffectType.FADE_IN), PREVIEW) is None
    assert loader.calls == []


def test_timeout_makes_item_absent_without_raising(loader):
    loader.register("slow.mp4", FakeVideoHandle)
    gate = loader.block("slow.mp4")
    cache = MediaResourceCache(loader, timeout=0.05, max_workers=1)
    item = make_item(MediaKind.VIDEO, "slow.mp4")
    try:
        assert cache.acquire(item, PREVIEW) is None
        assert cache.is_pending(item.uuid)

        # The load keeps running and a later call picks it up
        gate.set()
        assert cache.acquire(item, PREVIEW, timeout=2.0) is not None
        assert loader.calls == ["slow.mp4"]
    finally:
        gate.set()
        cache.shutdown()


def test_default_wait_follows_timeout_attribute(loader):
    loader.register("slow.mp4", FakeVideoHandle)
    gate = loader.block("slow.mp4")
    cache = MediaResourceCache(loader, timeout=5.0, max_workers=1)
    item = make_item(MediaKind.VIDEO, "slow.mp4")
    try:
        cache.timeout = 0.05
        started = time.monotonic()
        assert cache.acquire(item, PREVIEW) is None
        assert time.monotonic() - started < 2.0
    finally:
        gate.set()
        cache.shutdown()


def test_failed_load_is_absent_and_remembered(cache, loader):
    loader.fail("broken.png")
    item = make_item(MediaKind.IMAGE, "broken.png")

    assert cache.acquire(item, PREVIEW) is None
    assert cache.failure(item.uuid) is not None
    assert cache.acquire(item, PREVIEW) is None
    assert loader.calls == ["broken.png"]


def test_failure_forgotten_once_item_leaves(cache, loader):
    loader.fail("broken.png")
    item = make_item(MediaKind.IMAGE, "broken.png")
    cache.acquire(item, PREVIEW)

    cache.evict([], PREVIEW)
    assert cache.failure(item.uuid) is None


def test_handle_survives_while_another_owner_holds_it(cache, loader):
    loader.register("shared.png", FakeImageHandle)
    item = make_item(MediaKind.IMAGE, "shared.png")

    handle = cache.acquire(item, PREVIEW)
    cache.acquire(item, EXPORT)
    assert cache.owners(item.uuid) == {PREVIEW, EXPORT}

    cache.evict([], PREVIEW)
    assert item.uuid in cache
    assert not handle.closed

    cache.release(item.uuid, EXPORT)
    assert item.uuid not in cache
    assert handle.closed


def test_evict_keeps_present_ids(cache, loader):
    loader.register("a.png", FakeImageHandle)
    loader.register("b.png", FakeImageHandle)
    a = make_item(MediaKind.IMAGE, "a.png")
    b = make_item(MediaKind.IMAGE, "b.png")
    cache.acquire(a, PREVIEW)
    cache.acquire(b, PREVIEW)

    cache.evict([a.uuid], PREVIEW)
    assert a.uuid in cache
    assert b.uuid not in cache


def test_release_owner_restores_baseline(cache, loader):
    loader.register("a.png", FakeImageHandle)
    loader.register("b.png", FakeImageHandle)
    a = make_item(MediaKind.IMAGE, "a.png")
    b = make_item(MediaKind.IMAGE, "b.png")
    cache.acquire(a, PREVIEW)
    baseline = len(cache)

    cache.acquire(a, EXPORT)
    cache.acquire(b, EXPORT)
    assert len(cache) == 2

    cache.release_owner(EXPORT)
    assert len(cache) == baseline
    assert cache.owners(a.uuid) == {PREVIEW}


def test_preload_loads_window_in_background(cache, loader):
    loader.register("near.png", FakeImageHandle)
    loader.register("far.png", FakeImageHandle)
    near = make_item(MediaKind.IMAGE, "near.png", start=3.0, duration=1.0)
    far = make_item(MediaKind.IMAGE, "far.png", start=30.0, duration=1.0)

    started = cache.preload([near, far], 0.0, PREVIEW)
    assert started == 1

    deadline = time.monotonic() + 2.0
    while near.uuid not in cache and time.monotonic() < deadline:
        time.sleep(0.01)
    assert near.uuid in cache
    assert far.uuid not in cache


def test_preload_caps_heavy_loads(cache, loader):
    gates = []
    items = []
    for i in range(5):
        path = f"v{i}.mp4"
        loader.register(path, FakeVideoHandle)
        gates.append(loader.block(path))
        items.append(make_item(MediaKind.VIDEO, path, start=float(i) * 0.1))
    try:
        assert cache.preload(items, 0.0, PREVIEW) == 3
        # Nothing more starts while three are still loading
        assert cache.preload(items, 0.0, PREVIEW) == 0
    finally:
        for gate in gates:
            gate.set()


def test_release_while_loading_closes_orphan(cache, loader):
    handles = []

    def factory():
        handle = FakeImageHandle()
        handles.append(handle)
        return handle

    loader.register("late.png", factory)
    gate = loader.block("late.png")
    item = make_item(MediaKind.IMAGE, "late.png")

    cache.preload([item], 0.0, PREVIEW)
    cache.release(item.uuid, PREVIEW)
    gate.set()

    deadline = time.monotonic() + 2.0
    while not (handles and handles[0].closed) and time.monotonic() < deadline:
        time.sleep(0.01)
    assert item.uuid not in cache
    assert handles and handles[0].closed


@pytest.mark.parametrize("owner", [PREVIEW, EXPORT])
def test_shutdown_closes_everything(loader, owner):
    loader.register("a.png", FakeImageHandle)
    cache = MediaResourceCache(loader, timeout=1.0)
    item = make_item(MediaKind.IMAGE, "a.png")
    handle = cache.acquire(item, owner)

    cache.shutdown()
    assert handle.closed
    assert len(cache) == 0
    assert cache.acquire(item, owner) is None
