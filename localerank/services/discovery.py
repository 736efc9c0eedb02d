# localerank/services/discovery.py
"""The discovery pipeline: fetched locales in, ranked list out.

    RequestCoordinator --locales--> resolve coordinates --> straight-line
    distances --> sort --> publish --> travel batches (re-sort + publish each)

A new locale list or a new user position starts a fresh ranking run; an older
run still in progress notices through its generation token and drops its
output instead of publishing stale order.
"""
import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional

import structlog

from localerank.core.config import settings
from localerank.models.dto import Coordinate, Locale, RankedLocale
from localerank.services.distance import DistanceEngine
from localerank.services.geocoding import CoordinateResolver
from localerank.services.location import get_user_location
from localerank.services.providers import LocationProvider
from localerank.services.request_coordinator import FetchTrigger, QueryCycle, RequestCoordinator
from localerank.services.sorter import sort_locales
from localerank.utils.geo import haversine

logger = structlog.get_logger(__name__)

RankingListener = Callable[[List[RankedLocale]], None]


def snapshot_key(user: Optional[Coordinate], fetch_key: Optional[str], precision: int = 3) -> Optional[str]:
    if user is None or fetch_key is None:
        return None
    return f"{round(user.lat, precision)},{round(user.lon, precision)}|{fetch_key}"


@dataclass
class _Snapshot:
    key: str
    locales: List[Locale]
    ranked: List[RankedLocale]


class RankingSnapshotCache:
    """Last fully ranked list, reusable while position and query are unchanged."""

    def __init__(self):
        self._snapshot: Optional[_Snapshot] = None

    def get(self, key: Optional[str], locales: List[Locale]) -> Optional[List[RankedLocale]]:
        snapshot = self._snapshot
        if key is None or snapshot is None or snapshot.key != key or snapshot.locales != locales:
            return None
        return list(snapshot.ranked)

    def store(self, key: Optional[str], locales: List[Locale], ranked: List[RankedLocale]) -> None:
        if key is None:
            return
        self._snapshot = _Snapshot(key=key, locales=list(locales), ranked=list(ranked))

    def invalidate(self) -> None:
        self._snapshot = None


snapshot_cache = RankingSnapshotCache()


def apply_radius(ranked: List[RankedLocale], radius_km: Optional[float]) -> List[RankedLocale]:
    """Drop locales known to lie beyond the radius; unknown distances stay."""
    if radius_km is None:
        return list(ranked)
    return [item for item in ranked if item.distance_km is None or item.distance_km <= radius_km]


class DiscoverySession:
    def __init__(
        self,
        coordinator: RequestCoordinator,
        resolver: CoordinateResolver,
        engine: DistanceEngine,
        location_provider: Optional[LocationProvider] = None,
        snapshots: Optional[RankingSnapshotCache] = None,
        move_threshold_km: float = settings.LOCATION_MOVE_THRESHOLD_KM,
    ):
        self.coordinator = coordinator
        self.resolver = resolver
        self.engine = engine
        self.location_provider = location_provider
        self.snapshots = snapshots if snapshots is not None else snapshot_cache
        self.move_threshold_km = move_threshold_km

        self.user_location: Optional[Coordinate] = None
        # Position the latest ranking run was started from
        self._ranked_from: Optional[Coordinate] = None
        self.ranked: List[RankedLocale] = []
        self._fetch_key: Optional[str] = None
        self._generation = 0
        self._ranking_task: Optional[asyncio.Task] = None
        self._listeners: List[RankingListener] = []

        coordinator.subscribe(self._on_locales)

    def subscribe(self, listener: RankingListener) -> None:
        self._listeners.append(listener)

    async def start(self) -> Optional[QueryCycle]:
        """Mount the coordinator, take a first position fix and issue the initial fetch."""
        self.coordinator.mount()
        await self.update_user_location()
        return self.coordinator.submit(FetchTrigger.FOCUS)

    def close(self) -> None:
        self.coordinator.unmount()
        self._generation += 1

    def refresh(self) -> Optional[QueryCycle]:
        self.snapshots.invalidate()
        return self.coordinator.refresh()

    async def update_user_location(self) -> bool:
        """Take a new position fix; re-ranks the current locales without refetching.

        Returns True when a ranking run was started.
        """
        position = await get_user_location(self.location_provider)
        if position is None:
            return False

        anchor = self._ranked_from
        self.user_location = position
        if anchor is not None:
            moved_km = haversine(anchor.lat, anchor.lon, position.lat, position.lon)
            if moved_km <= self.move_threshold_km:
                return False
            self.snapshots.invalidate()
        logger.info("user_location_updated", lat=position.lat, lon=position.lon, first_fix=anchor is None)

        if self.coordinator.locales:
            self._schedule_ranking(self.coordinator.locales)
            return True
        return False

    async def wait_ranked(self) -> List[RankedLocale]:
        """Wait for pending fetches and ranking runs, then return the published list."""
        while True:
            await self.coordinator.wait_idle()
            task = self._ranking_task
            if task is None or task.done():
                break
            await task
        return list(self.ranked)

    # --- pipeline ---

    def _on_locales(self, locales: List[Locale], cycle: QueryCycle) -> None:
        self._fetch_key = cycle.fetch_key
        self._schedule_ranking(locales)

    def _schedule_ranking(self, locales: List[Locale]) -> None:
        self._generation += 1
        self._ranked_from = self.user_location
        self._ranking_task = asyncio.get_running_loop().create_task(
            self._rank(list(locales), self._generation)
        )

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.coordinator.mounted

    async def _rank(self, locales: List[Locale], generation: int) -> None:
        user = self.user_location
        key = snapshot_key(user, self._fetch_key)

        cached = self.snapshots.get(key, locales)
        if cached is not None:
            logger.debug("ranking_snapshot_reused", count=len(cached))
            self._publish(cached)
            return

        coordinates = await asyncio.gather(*(self.resolver.resolve(locale) for locale in locales))
        if not self._is_current(generation):
            logger.debug("ranking_run_discarded", stage="resolve")
            return

        items = [RankedLocale(locale=locale, coordinate=c) for locale, c in zip(locales, coordinates)]
        ranked = sort_locales(self.engine.attach_straight_line(items, user), user)
        self._publish(ranked)

        if user is None:
            return

        def on_batch(batch: List[RankedLocale]) -> None:
            if self._is_current(generation):
                self._publish(sort_locales(batch, user))

        refined = await self.engine.refine_travel(
            ranked, user, on_batch, should_continue=lambda: self._is_current(generation)
        )
        if self._is_current(generation):
            final = sort_locales(refined, user)
            self._publish(final)
            self.snapshots.store(key, locales, final)

    def _publish(self, ranked: List[RankedLocale]) -> None:
        self.ranked = ranked
        for listener in list(self._listeners):
            listener(list(ranked))
