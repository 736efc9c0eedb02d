# Client for the backend locale list (GET /api/v1/locales).

import httpx
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from localerank.core.abort import AbortSignal
from localerank.core.config import settings
from localerank.core.errors import LocaleProviderError
from localerank.models.dto import Coordinate, Locale, LocalePage, Pagination

logger = logging.getLogger(__name__)

LOCALES_PATH = "/api/v1/locales"


def map_locale(payload: Dict[str, Any]) -> Locale:
    """Translate one backend record (camelCase, flat lat/lon) into a Locale."""
    lat, lon = payload.get("latitude"), payload.get("longitude")
    coordinate = None
    if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
        coordinate = Coordinate(lat=lat, lon=lon)

    created_at = payload.get("createdAt")
    if isinstance(created_at, str):
        try:
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        except ValueError:
            created_at = None

    return Locale(
        id=str(payload.get("_id") or payload["id"]),
        name=payload.get("name", ""),
        description=payload.get("description"),
        country_code=payload.get("countryCode", ""),
        state_code=payload.get("stateCode"),
        state_province=payload.get("stateProvince"),
        spot_types=list(payload.get("spotTypes") or []),
        coordinate=coordinate,
        created_at=created_at,
        image_url=payload.get("imageUrl"),
        is_active=payload.get("isActive", True),
    )


class LocaleApiClient:
    def __init__(
        self,
        base_url: str = settings.LOCALE_API_BASE_URL,
        timeout: float = settings.LOCALE_API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

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
    ) -> LocalePage:
        params: Dict[str, Any] = {"page": page, "limit": page_size}
        if search and search.strip():
            params["search"] = search.strip()
        if country_code and country_code != "all":
            params["countryCode"] = country_code
        if state_code:
            params["stateCode"] = state_code
        if spot_types:
            params["spotType"] = ",".join(spot_types)
        if include_inactive:
            params["includeInactive"] = "true"

        request = self._fetch(params)
        data = await (signal.guard(request) if signal is not None else request)

        try:
            locales = self._map_records(data.get("locales") or [])
            raw_pagination = data.get("pagination") or {}
            pagination = Pagination(
                current_page=raw_pagination.get("currentPage", page),
                total_pages=raw_pagination.get("totalPages", page),
                total=raw_pagination.get("total", len(locales)),
                limit=raw_pagination.get("limit", page_size),
            )
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.error(f"Malformed locale list payload: {e}")
            raise LocaleProviderError("malformed locale list")
        return LocalePage(locales=locales, pagination=pagination)

    @staticmethod
    def _map_records(records: Sequence[Any]) -> List[Locale]:
        locales: List[Locale] = []
        for index, item in enumerate(records):
            try:
                locales.append(map_locale(item))
            except (KeyError, TypeError, AttributeError, ValidationError) as e:
                logger.warning(f"Dropping malformed locale record at index {index}: {e}")
        return locales

    async def _fetch(self, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(LOCALES_PATH, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            logger.warning("Locale list request timed out.")
            raise LocaleProviderError("locale list timed out")
        except httpx.HTTPStatusError as e:
            logger.error(f"Locale API returned status error: {e.response.status_code}")
            raise LocaleProviderError(f"locale list HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Locale API transport error: {e}")
            raise LocaleProviderError("locale list unreachable")
        except ValueError:
            raise LocaleProviderError("locale list returned a non-JSON body")

        if not isinstance(data, dict):
            raise LocaleProviderError("locale list returned an unexpected payload")
        return data
