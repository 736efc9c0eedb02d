# Google Maps Platform clients: Places Text Search, Geocoding and Distance Matrix.
# Each call opens a short-lived httpx.AsyncClient with a per-call timeout.
# Transport problems and malformed bodies surface as ProviderError so callers
# can move on to their next strategy; HTTP 401/403/429 surface as
# ProviderDeniedError.

import httpx
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from localerank.core.config import settings
from localerank.core.errors import ProviderDeniedError, ProviderError
from localerank.models.dto import (
    Coordinate,
    DENIAL_STATUSES,
    GeocodeResponse,
    GeocodeResult,
    PlaceResult,
    PlacesResponse,
)

logger = logging.getLogger(__name__)

PLACES_TEXT_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"

_DENIED_HTTP_CODES = {401, 403, 429}


class GoogleMapsClient:
    """Implements the places, geocoding and travel-distance provider protocols."""

    def __init__(
        self,
        api_key: Optional[str] = settings.GOOGLE_MAPS_API_KEY,
        timeout: float = settings.RESOLVE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def _get_json(self, provider: str, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise ProviderDeniedError(provider, "MISSING_API_KEY")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params={**params, "key": self.api_key})
                if response.status_code in _DENIED_HTTP_CODES:
                    raise ProviderDeniedError(provider, f"HTTP_{response.status_code}")
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            logger.warning(f"{provider} request timed out after {self.timeout}s")
            raise ProviderError(f"{provider} timed out")
        except httpx.HTTPStatusError as e:
            logger.warning(f"{provider} returned status error: {e.response.status_code}")
            raise ProviderError(f"{provider} HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"{provider} transport error: {e}")
            raise ProviderError(f"{provider} transport error")
        except ValueError:
            raise ProviderError(f"{provider} returned a non-JSON body")

        if not isinstance(data, dict):
            raise ProviderError(f"{provider} returned an unexpected payload")
        return data

    async def text_search(self, query: str, country_code: Optional[str] = None) -> PlacesResponse:
        params = {"query": query}
        if country_code:
            params["region"] = country_code.lower()
        data = await self._get_json("places", PLACES_TEXT_SEARCH_URL, params)

        try:
            results = [
                PlaceResult(
                    name=item.get("name", ""),
                    lat=item["geometry"]["location"]["lat"],
                    lng=item["geometry"]["location"]["lng"],
                )
                for item in data.get("results") or []
            ]
            return PlacesResponse(status=data.get("status", "UNKNOWN_ERROR"), results=results)
        except (KeyError, TypeError, ValidationError):
            raise ProviderError("places returned malformed results")

    async def geocode(self, address: str) -> GeocodeResponse:
        data = await self._get_json("geocoding", GEOCODE_URL, {"address": address})

        try:
            results = [
                GeocodeResult(
                    lat=item["geometry"]["location"]["lat"],
                    lng=item["geometry"]["location"]["lng"],
                    location_type=item["geometry"].get("location_type"),
                    partial_match=bool(item.get("partial_match", False)),
                    formatted_address=item.get("formatted_address"),
                )
                for item in data.get("results") or []
            ]
            return GeocodeResponse(status=data.get("status", "UNKNOWN_ERROR"), results=results)
        except (KeyError, TypeError, ValidationError):
            raise ProviderError("geocoding returned malformed results")

    async def driving_distance(self, origin_id: str, origin: Coordinate, destination: Coordinate) -> float:
        """Routed driving distance in kilometers from `origin` to `destination`."""
        params = {
            "origins": f"{origin.lat},{origin.lon}",
            "destinations": f"{destination.lat},{destination.lon}",
            "mode": "driving",
            "units": "metric",
        }
        data = await self._get_json("distance_matrix", DISTANCE_MATRIX_URL, params)

        status = data.get("status", "UNKNOWN_ERROR")
        if status in DENIAL_STATUSES:
            raise ProviderDeniedError("distance_matrix", status)
        if status != "OK":
            raise ProviderError(f"distance_matrix status {status} for {origin_id}")

        try:
            element = data["rows"][0]["elements"][0]
            if element.get("status") != "OK":
                raise ProviderError(f"no route for {origin_id}: {element.get('status')}")
            return float(element["distance"]["value"]) / 1000.0
        except (KeyError, IndexError, TypeError, ValueError):
            raise ProviderError("distance_matrix returned malformed rows")
