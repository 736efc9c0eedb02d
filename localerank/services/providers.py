"""Contracts for the upstream collaborators the engine consumes.

Concrete httpx implementations live in `google_maps` and `locale_api`; tests
substitute in-memory fakes that satisfy the same protocols.
"""
from typing import Optional, Protocol, Sequence

from localerank.core.abort import AbortSignal
from localerank.models.dto import Coordinate, GeocodeResponse, LocalePage, PlacesResponse


class LocaleListProvider(Protocol):
    async def list_locales(
        self,
        search: str,
        country_code: str,
        state_code: str,
        spot_types: Sequence[str],
        page: int,
        page_size: int,
        include_inactive: bool = False,
        signal: Optional[AbortSignal] = None,
    ) -> LocalePage: ...


class PlacesSearchProvider(Protocol):
    async def text_search(self, query: str, country_code: Optional[str] = None) -> PlacesResponse: ...


class GeocodingProvider(Protocol):
    async def geocode(self, address: str) -> GeocodeResponse: ...


class TravelDistanceProvider(Protocol):
    async def driving_distance(self, origin_id: str, origin: Coordinate, destination: Coordinate) -> float: ...


class LocationProvider(Protocol):
    async def has_permission(self) -> bool: ...
    async def current_position(self, accuracy: str = "balanced") -> Coordinate: ...
