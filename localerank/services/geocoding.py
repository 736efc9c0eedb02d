# localerank/services/geocoding.py
"""Coordinate resolution for locales through an ordered chain of strategies.

Chain, short-circuiting on the first coordinate:
  1. the locale's own stored coordinate (no I/O)
  2. the coordinate cache (global tier, then session tier)
  3. places text search with progressively looser queries
  4. address geocoding, ranked by location precision
Nothing found means None: coordinates are never invented.

Each strategy answers `try_resolve(ctx)` with a Coordinate, SKIP (move on) or
ABORT (the provider refused us, skip the rest of that provider's strategies).
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Union

import structlog

from localerank.core.config import settings
from localerank.core.errors import ProviderDeniedError, ProviderError
from localerank.models.dto import (
    Coordinate,
    DENIAL_STATUSES,
    GeocodeResult,
    Locale,
    LocationType,
)
from localerank.services.coordinate_cache import CoordinateCache, description_prefix, normalize_key
from localerank.services.providers import GeocodingProvider, PlacesSearchProvider

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LandmarkOverride:
    query: str
    address: str


_MYSORE_PALACE = LandmarkOverride(
    query="Mysore Palace",
    address="Mysore Palace, Sayyaji Rao Rd, Agrahara, Chamrajpura, Mysuru, Karnataka 570001",
)
_TAJ_MAHAL = LandmarkOverride(
    query="Taj Mahal",
    address="Taj Mahal, Dharmapuri, Tajganj, Agra, Uttar Pradesh 282001",
)
_OOTY = LandmarkOverride(
    query="Government Botanical Garden Ooty",
    address="Government Botanical Garden, Vannarapettai, Ooty, Tamil Nadu 643001",
)
_COLOSSEUM = LandmarkOverride(
    query="Colosseum Rome",
    address="Piazza del Colosseo, 1, 00184 Roma RM, Italy",
)
_BIG_BEN = LandmarkOverride(
    query="Big Ben London",
    address="Elizabeth Tower, London SW1A 0AA, United Kingdom",
)
_EIFFEL_TOWER = LandmarkOverride(
    query="Eiffel Tower Paris",
    address="Champ de Mars, 5 Av. Anatole France, 75007 Paris, France",
)

# Exact (normalized) names that geocode to the wrong place on their own
LANDMARK_OVERRIDES: Dict[str, LandmarkOverride] = {
    "mysure": _MYSORE_PALACE,
    "mysore": _MYSORE_PALACE,
    "mysuru": _MYSORE_PALACE,
    "mysore palace": _MYSORE_PALACE,
    "amba vilas palace": _MYSORE_PALACE,
    "taj": _TAJ_MAHAL,
    "taj mahal": _TAJ_MAHAL,
    "tajmahal": _TAJ_MAHAL,
    "ooty": _OOTY,
    "ootacamund": _OOTY,
    "udhagamandalam": _OOTY,
    "colosseum": _COLOSSEUM,
    "coliseum": _COLOSSEUM,
    "colosseo": _COLOSSEUM,
    "big ben": _BIG_BEN,
    "elizabeth tower": _BIG_BEN,
    "eiffel": _EIFFEL_TOWER,
    "eiffel tower": _EIFFEL_TOWER,
    "tour eiffel": _EIFFEL_TOWER,
}


def find_landmark(name: str) -> Optional[LandmarkOverride]:
    return LANDMARK_OVERRIDES.get(" ".join((name or "").lower().split()))


class StrategyOutcome(Enum):
    SKIP = "skip"
    ABORT = "abort"


ResolveResult = Union[Coordinate, StrategyOutcome]


@dataclass
class ResolutionContext:
    locale: Locale
    key: str
    country_code: str
    description_prefix: str
    landmark: Optional[LandmarkOverride]
    tried: Dict[str, Set[str]] = field(default_factory=dict)

    @classmethod
    def for_locale(cls, locale: Locale, prefix_words: int = settings.DESCRIPTION_PREFIX_WORDS) -> "ResolutionContext":
        return cls(
            locale=locale,
            key=normalize_key(locale.name, locale.country_code, locale.description, prefix_words),
            country_code=(locale.country_code or "").strip().upper(),
            description_prefix=description_prefix(locale.description, prefix_words),
            landmark=find_landmark(locale.name),
        )

    def with_country(self, query: str) -> str:
        return f"{query}, {self.country_code}" if self.country_code else query

    def first_attempt(self, provider: str, query: str) -> bool:
        """Record `query` for `provider`; False when it was already sent."""
        seen = self.tried.setdefault(provider, set())
        if query in seen:
            return False
        seen.add(query)
        return True


QueryBuilder = Callable[[ResolutionContext], Optional[str]]


class ResolutionStrategy:
    name: str = "strategy"
    provider: Optional[str] = None
    writes_cache: bool = False

    async def try_resolve(self, ctx: ResolutionContext) -> ResolveResult:
        raise NotImplementedError


class StoredCoordinateStrategy(ResolutionStrategy):
    name = "stored"

    async def try_resolve(self, ctx: ResolutionContext) -> ResolveResult:
        if ctx.locale.has_valid_coordinate():
            return ctx.locale.coordinate
        return StrategyOutcome.SKIP


class CacheLookupStrategy(ResolutionStrategy):
    name = "cache"

    def __init__(self, cache: CoordinateCache):
        self.cache = cache

    async def try_resolve(self, ctx: ResolutionContext) -> ResolveResult:
        coordinate = await self.cache.get(ctx.key)
        if coordinate is not None and coordinate.is_valid():
            return coordinate
        return StrategyOutcome.SKIP


class PlacesQueryStrategy(ResolutionStrategy):
    provider = "places"
    writes_cache = True

    def __init__(self, name: str, places: PlacesSearchProvider, build: QueryBuilder, timeout: float):
        self.name = name
        self.places = places
        self.build = build
        self.timeout = timeout

    async def try_resolve(self, ctx: ResolutionContext) -> ResolveResult:
        base = self.build(ctx)
        if not base:
            return StrategyOutcome.SKIP
        query = ctx.with_country(base)
        if not ctx.first_attempt(self.provider, query):
            return StrategyOutcome.SKIP

        try:
            response = await asyncio.wait_for(
                self.places.text_search(query, ctx.country_code or None), self.timeout
            )
        except ProviderDeniedError as e:
            logger.warning("places_access_denied", query=query, status=e.status)
            return StrategyOutcome.ABORT
        except ProviderError as e:
            logger.info("places_query_failed", query=query, error=str(e))
            return StrategyOutcome.SKIP
        except asyncio.TimeoutError:
            logger.info("places_query_timeout", query=query, timeout=self.timeout)
            return StrategyOutcome.SKIP

        if response.status in DENIAL_STATUSES:
            logger.warning("places_access_denied", query=query, status=response.status)
            return StrategyOutcome.ABORT
        for result in response.results:
            coordinate = Coordinate(lat=result.lat, lon=result.lng)
            if coordinate.is_valid():
                return coordinate
        logger.debug("places_no_results", query=query, status=response.status)
        return StrategyOutcome.SKIP


_PRECISION_RANK = {
    LocationType.ROOFTOP.value: 0,
    LocationType.RANGE_INTERPOLATED.value: 1,
    LocationType.GEOMETRIC_CENTER.value: 2,
    LocationType.APPROXIMATE.value: 3,
}


def rank_geocode_results(results: Sequence[GeocodeResult]) -> List[GeocodeResult]:
    """Most precise location type first, then full matches before partial ones."""
    return sorted(
        results,
        key=lambda r: (_PRECISION_RANK.get(r.location_type or "", len(_PRECISION_RANK)), r.partial_match),
    )


class GeocodeAddressStrategy(ResolutionStrategy):
    provider = "geocoding"
    writes_cache = True

    def __init__(self, name: str, geocoder: GeocodingProvider, build: QueryBuilder, timeout: float):
        self.name = name
        self.geocoder = geocoder
        self.build = build
        self.timeout = timeout

    async def try_resolve(self, ctx: ResolutionContext) -> ResolveResult:
        address = self.build(ctx)
        if not address:
            return StrategyOutcome.SKIP
        if not ctx.first_attempt(self.provider, address):
            return StrategyOutcome.SKIP

        try:
            response = await asyncio.wait_for(self.geocoder.geocode(address), self.timeout)
        except ProviderDeniedError as e:
            logger.warning("geocoding_access_denied", address=address, status=e.status)
            return StrategyOutcome.ABORT
        except ProviderError as e:
            logger.info("geocoding_failed", address=address, error=str(e))
            return StrategyOutcome.SKIP
        except asyncio.TimeoutError:
            logger.info("geocoding_timeout", address=address, timeout=self.timeout)
            return StrategyOutcome.SKIP

        if response.status in DENIAL_STATUSES:
            logger.warning("geocoding_access_denied", address=address, status=response.status)
            return StrategyOutcome.ABORT
        for result in rank_geocode_results(response.results):
            coordinate = Coordinate(lat=result.lat, lon=result.lng)
            if coordinate.is_valid():
                return coordinate
        return StrategyOutcome.SKIP


def _description_and_name(ctx: ResolutionContext) -> Optional[str]:
    if not ctx.description_prefix:
        return None
    return f"{ctx.description_prefix}, {ctx.locale.name}"


def build_default_chain(
    cache: CoordinateCache,
    places: PlacesSearchProvider,
    geocoder: GeocodingProvider,
    timeout: float = settings.RESOLVE_TIMEOUT,
) -> List[ResolutionStrategy]:
    return [
        StoredCoordinateStrategy(),
        CacheLookupStrategy(cache),
        PlacesQueryStrategy("places_description", places, _description_and_name, timeout),
        PlacesQueryStrategy("places_landmark", places, lambda c: c.landmark.query if c.landmark else None, timeout),
        PlacesQueryStrategy("places_tourist", places, lambda c: f"tourist attraction {c.locale.name}", timeout),
        PlacesQueryStrategy("places_popular", places, lambda c: f"popular places {c.locale.name}", timeout),
        PlacesQueryStrategy("places_name", places, lambda c: c.locale.name or None, timeout),
        GeocodeAddressStrategy("geocode_landmark", geocoder, lambda c: c.landmark.address if c.landmark else None, timeout),
        GeocodeAddressStrategy(
            "geocode_description", geocoder, lambda c: c.with_country(_description_and_name(c)) if c.description_prefix else None, timeout
        ),
        GeocodeAddressStrategy(
            "geocode_name", geocoder, lambda c: c.with_country(c.locale.name) if c.locale.name else None, timeout
        ),
    ]


class CoordinateResolver:
    """Runs the strategy chain for one locale and memoizes network results."""

    def __init__(
        self,
        cache: CoordinateCache,
        places: PlacesSearchProvider,
        geocoder: GeocodingProvider,
        timeout: float = settings.RESOLVE_TIMEOUT,
        strategies: Optional[List[ResolutionStrategy]] = None,
    ):
        self.cache = cache
        self.strategies = strategies or build_default_chain(cache, places, geocoder, timeout)

    async def resolve(self, locale: Locale) -> Optional[Coordinate]:
        ctx = ResolutionContext.for_locale(locale)
        aborted_providers: Set[str] = set()

        for strategy in self.strategies:
            if strategy.provider is not None and strategy.provider in aborted_providers:
                continue
            outcome = await strategy.try_resolve(ctx)
            if outcome is StrategyOutcome.ABORT:
                if strategy.provider is not None:
                    aborted_providers.add(strategy.provider)
                continue
            if outcome is StrategyOutcome.SKIP:
                continue

            if strategy.writes_cache:
                await self.cache.put(ctx.key, outcome)
            logger.info(
                "coordinate_resolved",
                locale_id=locale.id,
                strategy=strategy.name,
                lat=outcome.lat,
                lon=outcome.lon,
            )
            return outcome

        logger.info("coordinate_not_found", locale_id=locale.id, name=locale.name)
        return None
