import pytest
from fastapi.testclient import TestClient

from fakes import FakeGeocoder, FakeLocaleProvider, FakePlaces, no_sleep
from localerank.api.deps import EngineServices, get_services
from localerank.main import app
from localerank.services.bookmarks import BookmarkStore
from localerank.services.coordinate_cache import CoordinateCache
from localerank.services.discovery import snapshot_cache
from localerank.services.distance import DistanceCache, DistanceEngine
from localerank.services.geocoding import CoordinateResolver
from localerank.services.kv_store import InMemoryKeyValueStore


@pytest.fixture()
def store():
    return InMemoryKeyValueStore()


@pytest.fixture()
def fake_services(store):
    provider = FakeLocaleProvider()
    cache = CoordinateCache(store)
    resolver = CoordinateResolver(cache, places=FakePlaces(), geocoder=FakeGeocoder())
    engine = DistanceEngine(DistanceCache(), travel_provider=None, sleep=no_sleep)
    return EngineServices(
        store=store,
        locale_provider=provider,
        resolver=resolver,
        distance_engine=engine,
        bookmarks=BookmarkStore(store),
    )


@pytest.fixture()
def api_client(fake_services):
    app.dependency_overrides[get_services] = lambda: fake_services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _fresh_snapshot_cache():
    snapshot_cache.invalidate()
    yield
    snapshot_cache.invalidate()
