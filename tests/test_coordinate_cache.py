import asyncio

from localerank.models.dto import Coordinate
from localerank.services.coordinate_cache import CoordinateCache, description_prefix, normalize_key
from localerank.services.kv_store import InMemoryKeyValueStore, read_json


class _Clock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_normalize_key_ignores_case_and_whitespace():
    a = normalize_key("  Big   Ben ", "gb", "Clock tower at the north end of the palace")
    b = normalize_key("big ben", "GB ", "clock  TOWER at the north")
    assert a == b == "big ben|GB|clock tower at the north"


def test_description_prefix_handles_missing_description():
    assert description_prefix(None) == ""
    assert description_prefix("one two", words=5) == "one two"


def test_entries_expire_after_ttl():
    clock = _Clock()
    cache = CoordinateCache(InMemoryKeyValueStore(), ttl_seconds=100, clock=clock)
    coordinate = Coordinate(lat=51.5, lon=-0.12)

    async def run():
        await cache.put("k", coordinate)
        clock.now += 99
        fresh = await cache.get("k")
        clock.now += 1
        stale = await cache.get("k")
        return fresh, stale

    fresh, stale = asyncio.run(run())
    assert fresh == coordinate
    assert stale is None


def test_session_tier_answers_when_global_tier_is_gone():
    store = InMemoryKeyValueStore()
    cache = CoordinateCache(store, prefix="c:")

    async def run():
        await cache.put("k", Coordinate(lat=1.0, lon=2.0))
        await store.delete("c:k")
        return await cache.get("k")

    assert asyncio.run(run()) == Coordinate(lat=1.0, lon=2.0)


def test_corrupt_global_entry_is_ignored():
    store = InMemoryKeyValueStore()
    cache = CoordinateCache(store, prefix="c:")

    async def run():
        await store.set("c:k", "{not json")
        return await cache.get("k")

    assert asyncio.run(run()) is None


def test_read_json_resets_corrupt_values_to_default():
    store = InMemoryKeyValueStore()
    asyncio.run(store.set("key", "[1, 2"))
    assert asyncio.run(read_json(store, "key", [])) == []
