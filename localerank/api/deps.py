# Wiring of the long-lived engine services.
# Built once in the application lifespan and exposed to routes through
# FastAPI dependencies, so tests can swap the whole graph with
# `app.dependency_overrides[get_services]`.

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends, Request

from localerank.core.config import settings
from localerank.models.dto import FilterState
from localerank.services.bookmarks import BookmarkStore
from localerank.services.coordinate_cache import CoordinateCache
from localerank.services.discovery import DiscoverySession
from localerank.services.distance import DistanceCache, DistanceEngine
from localerank.services.geocoding import CoordinateResolver
from localerank.services.google_maps import GoogleMapsClient
from localerank.services.kv_store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from localerank.services.locale_api import LocaleApiClient
from localerank.services.providers import LocaleListProvider, LocationProvider
from localerank.services.request_coordinator import RequestCoordinator

logger = structlog.get_logger(__name__)


@dataclass
class EngineServices:
    store: KeyValueStore
    locale_provider: LocaleListProvider
    resolver: CoordinateResolver
    distance_engine: DistanceEngine
    bookmarks: BookmarkStore

    def new_session(self, filters: FilterState, location_provider: Optional[LocationProvider]) -> DiscoverySession:
        # One request is one discovery screen: nothing to debounce
        coordinator = RequestCoordinator(self.locale_provider, filters=filters, debounce_seconds=0)
        return DiscoverySession(coordinator, self.resolver, self.distance_engine, location_provider)


def build_store() -> KeyValueStore:
    if settings.ENABLE_REDIS and settings.REDIS_URL:
        logger.info("kv_store_selected", backend="redis")
        return RedisKeyValueStore(settings.REDIS_URL)
    logger.info("kv_store_selected", backend="memory")
    return InMemoryKeyValueStore()


def build_services(store: Optional[KeyValueStore] = None) -> EngineServices:
    store = store if store is not None else build_store()
    maps = GoogleMapsClient()
    if not settings.GOOGLE_MAPS_API_KEY:
        logger.warning("google_maps_key_missing")

    coordinate_cache = CoordinateCache(store)
    return EngineServices(
        store=store,
        locale_provider=LocaleApiClient(),
        resolver=CoordinateResolver(coordinate_cache, places=maps, geocoder=maps),
        distance_engine=DistanceEngine(DistanceCache(), travel_provider=maps),
        bookmarks=BookmarkStore(store),
    )


def get_services(request: Request) -> EngineServices:
    return request.app.state.services


def get_bookmark_store(services: EngineServices = Depends(get_services)) -> BookmarkStore:
    return services.bookmarks
