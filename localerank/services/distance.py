# localerank/services/distance.py
"""Straight-line and travel distances between the user and locales.

Both kinds are memoized under a key built from the two coordinates rounded to
a fixed precision, so GPS jitter below ~10 m keeps hitting the same entry.
Both tiers are dropped wholesale once the user moves further than the
configured threshold from the position they were filled for, and each is
capped in size so mixed traffic from many positions cannot grow it forever.
"""
import asyncio
import math
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from localerank.core.config import settings
from localerank.core.errors import ProviderDeniedError, ProviderError
from localerank.models.dto import Coordinate, DistanceSource, RankedLocale
from localerank.services.providers import TravelDistanceProvider
from localerank.utils.geo import haversine

logger = structlog.get_logger(__name__)


def straight_line_distance(
    a: Optional[Coordinate], b: Optional[Coordinate], precision: int = settings.DISTANCE_ROUNDING_PRECISION
) -> Optional[float]:
    """Great-circle km between two coordinates, or None if either one is invalid."""
    if a is None or b is None or not a.is_valid() or not b.is_valid():
        return None
    return haversine(a.lat, a.lon, b.lat, b.lon, precision=precision)


class DistanceCache:
    """Both tiers are LRU maps capped at `max_entries` each."""

    def __init__(
        self,
        precision: int = settings.DISTANCE_ROUNDING_PRECISION,
        move_threshold_km: float = settings.LOCATION_MOVE_THRESHOLD_KM,
        max_entries: int = settings.DISTANCE_CACHE_MAX_ENTRIES,
    ):
        self.precision = precision
        self.move_threshold_km = move_threshold_km
        self.max_entries = max(1, max_entries)
        self.anchor: Optional[Coordinate] = None
        self._straight: "OrderedDict[str, float]" = OrderedDict()
        self._travel: "OrderedDict[str, float]" = OrderedDict()

    def key(self, a: Coordinate, b: Coordinate) -> str:
        p = self.precision
        return f"{a.lat:.{p}f},{a.lon:.{p}f}|{b.lat:.{p}f},{b.lon:.{p}f}"

    @staticmethod
    def _get(tier: "OrderedDict[str, float]", key: str) -> Optional[float]:
        km = tier.get(key)
        if km is not None:
            tier.move_to_end(key)
        return km

    def _put(self, tier: "OrderedDict[str, float]", key: str, km: float) -> None:
        tier[key] = km
        tier.move_to_end(key)
        while len(tier) > self.max_entries:
            tier.popitem(last=False)

    def get_straight(self, a: Coordinate, b: Coordinate) -> Optional[float]:
        return self._get(self._straight, self.key(a, b))

    def put_straight(self, a: Coordinate, b: Coordinate, km: float) -> None:
        self._put(self._straight, self.key(a, b), km)

    def get_travel(self, a: Coordinate, b: Coordinate) -> Optional[float]:
        return self._get(self._travel, self.key(a, b))

    def put_travel(self, a: Coordinate, b: Coordinate, km: float) -> None:
        self._put(self._travel, self.key(a, b), km)

    def straight_size(self) -> int:
        return len(self._straight)

    def travel_size(self) -> int:
        return len(self._travel)

    def observe_user_position(self, user: Coordinate) -> bool:
        """Track the user's position; returns True when the cached tiers were dropped."""
        if self.anchor is None:
            self.anchor = user
            return False
        moved_km = haversine(self.anchor.lat, self.anchor.lon, user.lat, user.lon)
        if moved_km <= self.move_threshold_km:
            return False
        logger.info(
            "distance_cache_invalidated",
            moved_km=round(moved_km, 3),
            dropped_travel=len(self._travel),
            dropped_straight=len(self._straight),
        )
        # Entries keyed on the old position would never be hit again
        self._straight.clear()
        self._travel.clear()
        self.anchor = user
        return True


BatchCallback = Callable[[List[RankedLocale]], None]


class DistanceEngine:
    def __init__(
        self,
        cache: DistanceCache,
        travel_provider: Optional[TravelDistanceProvider] = None,
        batch_size: int = settings.TRAVEL_BATCH_SIZE,
        batch_delay: float = settings.TRAVEL_BATCH_DELAY,
        timeout: float = settings.TRAVEL_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cache = cache
        self.travel_provider = travel_provider
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.timeout = timeout
        self._sleep = sleep

    def straight_line(self, user: Optional[Coordinate], target: Optional[Coordinate]) -> Optional[float]:
        if user is None or target is None or not user.is_valid() or not target.is_valid():
            return None
        cached = self.cache.get_straight(user, target)
        if cached is not None:
            return cached
        km = straight_line_distance(user, target, self.cache.precision)
        if km is not None:
            self.cache.put_straight(user, target, km)
        return km

    async def travel_distance(
        self, locale_id: str, user: Optional[Coordinate], target: Optional[Coordinate]
    ) -> Optional[float]:
        km, _ = await self._travel_with_source(locale_id, user, target)
        return km

    async def _travel_with_source(
        self, locale_id: str, user: Optional[Coordinate], target: Optional[Coordinate]
    ) -> Tuple[Optional[float], Optional[DistanceSource]]:
        if user is None or target is None or not user.is_valid() or not target.is_valid():
            return None, None

        self.cache.observe_user_position(user)
        cached = self.cache.get_travel(user, target)
        if cached is not None:
            return cached, DistanceSource.TRAVEL

        if self.travel_provider is None:
            return self.straight_line(user, target), DistanceSource.STRAIGHT_LINE

        try:
            km = await asyncio.wait_for(
                self.travel_provider.driving_distance(locale_id, user, target), self.timeout
            )
        except ProviderDeniedError as e:
            logger.warning("travel_distance_refused", locale_id=locale_id, status=e.status)
            km = None
        except ProviderError as e:
            logger.info("travel_distance_failed", locale_id=locale_id, error=str(e))
            km = None
        except asyncio.TimeoutError:
            logger.info("travel_distance_timeout", locale_id=locale_id)
            km = None

        if km is None or math.isnan(km) or km < 0:
            return self.straight_line(user, target), DistanceSource.STRAIGHT_LINE

        self.cache.put_travel(user, target, km)
        return km, DistanceSource.TRAVEL

    def attach_straight_line(
        self, items: Sequence[RankedLocale], user: Optional[Coordinate]
    ) -> List[RankedLocale]:
        """Synchronous first pass: every locale gets its straight-line distance or None."""
        if user is not None and user.is_valid():
            self.cache.observe_user_position(user)
        attached: List[RankedLocale] = []
        for item in items:
            km = self.straight_line(user, item.coordinate)
            attached.append(
                item.model_copy(
                    update={
                        "distance_km": km,
                        "distance_source": DistanceSource.STRAIGHT_LINE if km is not None else None,
                        "distance_pending": km is not None and self.travel_provider is not None,
                    }
                )
            )
        return attached

    async def refine_travel(
        self,
        items: Sequence[RankedLocale],
        user: Optional[Coordinate],
        on_batch: BatchCallback,
        should_continue: Callable[[], bool] = lambda: True,
    ) -> List[RankedLocale]:
        """Upgrade pending entries to travel distances, `batch_size` at a time.

        `on_batch` receives the whole list after each batch so nothing that is
        still unresolved disappears from view.
        """
        current = list(items)
        pending = [item for item in current if item.distance_pending]
        if user is None or not pending:
            return current

        for start in range(0, len(pending), self.batch_size):
            if not should_continue():
                return current
            if start > 0 and self.batch_delay > 0:
                await self._sleep(self.batch_delay)
                if not should_continue():
                    return current

            batch = pending[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self._travel_with_source(item.id, user, item.coordinate) for item in batch)
            )
            if not should_continue():
                return current

            updates = {item.id: outcome for item, outcome in zip(batch, outcomes)}
            current = [self._fold(item, updates) for item in current]
            logger.debug("travel_batch_applied", size=len(batch), offset=start)
            on_batch(current)
        return current

    @staticmethod
    def _fold(
        item: RankedLocale, updates: Dict[str, Tuple[Optional[float], Optional[DistanceSource]]]
    ) -> RankedLocale:
        if item.id not in updates:
            return item
        km, source = updates[item.id]
        return item.model_copy(
            update={
                "distance_km": km if km is not None else item.distance_km,
                "distance_source": source if km is not None else item.distance_source,
                "distance_pending": False,
            }
        )
