# localerank/services/coordinate_cache.py
"""Two-tier memo of resolved locale coordinates.

The global tier sits in the persistent key-value store and is authoritative:
it is read first and written on every successful resolution. The session
tier is an in-process dict that survives for the lifetime of the process.
Both tiers expire entries after the configured TTL (24 h by default).
"""
import time
from typing import Callable, Dict, Optional

import structlog
from pydantic import ValidationError

from localerank.core.config import settings
from localerank.models.dto import Coordinate, CoordinateCacheEntry
from localerank.services.kv_store import KeyValueStore, read_json

logger = structlog.get_logger(__name__)


def description_prefix(description: Optional[str], words: int = settings.DESCRIPTION_PREFIX_WORDS) -> str:
    if not description:
        return ""
    return " ".join(description.split()[:words])


def normalize_key(
    name: str,
    country_code: Optional[str],
    description: Optional[str],
    prefix_words: int = settings.DESCRIPTION_PREFIX_WORDS,
) -> str:
    """Case and whitespace insensitive key over (name, country, description prefix)."""
    name_part = " ".join((name or "").lower().split())
    country_part = (country_code or "").strip().upper()
    desc_part = description_prefix(description, prefix_words).lower()
    return f"{name_part}|{country_part}|{desc_part}"


class CoordinateCache:
    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = settings.COORDINATE_CACHE_TTL_SECONDS,
        prefix: str = settings.COORDINATE_CACHE_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self._clock = clock
        self._session: Dict[str, CoordinateCacheEntry] = {}

    def _expired(self, entry: CoordinateCacheEntry) -> bool:
        return self._clock() - entry.timestamp >= self.ttl_seconds

    async def _get_global(self, key: str) -> Optional[CoordinateCacheEntry]:
        data = await read_json(self.store, self.prefix + key, None)
        if data is None:
            return None
        try:
            entry = CoordinateCacheEntry.model_validate(data)
        except ValidationError:
            logger.warning("coordinate_cache_entry_corrupt", key=key)
            return None
        if self._expired(entry):
            return None
        return entry

    def _get_session(self, key: str) -> Optional[CoordinateCacheEntry]:
        entry = self._session.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._session[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[Coordinate]:
        entry = await self._get_global(key)
        tier = "global"
        if entry is None:
            entry = self._get_session(key)
            tier = "session"
        if entry is None:
            return None
        logger.debug("coordinate_cache_hit", key=key, tier=tier)
        return Coordinate(lat=entry.lat, lon=entry.lon)

    async def put(self, key: str, coordinate: Coordinate) -> None:
        entry = CoordinateCacheEntry(key=key, lat=coordinate.lat, lon=coordinate.lon, timestamp=self._clock())
        self._session[key] = entry
        await self.store.setex(self.prefix + key, self.ttl_seconds, entry.model_dump_json())
