# localerank/api/routes.py
# HTTP surface of the ranking engine: one discovery cycle per request, plus
# the bookmark list.

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from localerank.api.deps import EngineServices, get_bookmark_store, get_services
from localerank.models.dto import (
    BookmarkListResponse,
    BookmarkResponse,
    Coordinate,
    DiscoverResponse,
    ErrorResponse,
    FilterAction,
    FilterActionType,
    Locale,
    PublicLocaleResult,
    RankedLocale,
)
from localerank.services.bookmarks import BookmarkStore, SaveResult
from localerank.services.discovery import apply_radius
from localerank.services.filters import apply_filter_actions, initial_filter_state, is_valid_radius, radius_km
from localerank.services.location import StaticLocationProvider
from localerank.services.request_coordinator import CyclePhase
from localerank.utils.geo import format_distance, parse_coordinate_string

router = APIRouter()
logger = logging.getLogger(__name__)


def _bad_request(error: str, detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=ErrorResponse(error=error, detail=detail).model_dump(),
    )


def _to_public(item: RankedLocale) -> PublicLocaleResult:
    locale = item.locale
    return PublicLocaleResult(
        id=locale.id,
        name=locale.name,
        description=locale.description,
        country_code=locale.country_code,
        state_code=locale.state_code,
        spot_types=locale.spot_types,
        image_url=locale.image_url,
        lat=item.coordinate.lat if item.coordinate else None,
        lon=item.coordinate.lon if item.coordinate else None,
        distance_km=round(item.distance_km, 3) if item.distance_km is not None else None,
        distance_label=format_distance(item.distance_km),
        distance_source=item.distance_source,
        created_at=locale.created_at,
    )


def _resolve_user(lat: Optional[float], lon: Optional[float], location: Optional[str]) -> Optional[Coordinate]:
    if lat is not None and lon is not None:
        coordinate = Coordinate(lat=lat, lon=lon)
        if not coordinate.is_valid():
            raise _bad_request("INVALID_LOCATION", "lat/lon must be a valid, non-zero WGS84 coordinate.")
        return coordinate
    if location:
        parsed = parse_coordinate_string(location)
        if parsed is None:
            raise _bad_request("INVALID_LOCATION", "location must look like 'lat,lon'.")
        return Coordinate(lat=parsed[0], lon=parsed[1])
    return None


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------
@router.get(
    "/discover",
    response_model=DiscoverResponse,
    responses={
        400: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def discover(
    search: str = "",
    country: Optional[str] = None,
    country_name: str = "",
    state: Optional[str] = None,
    state_name: str = "",
    spot_type: List[str] = Query(default=[]),
    radius: str = "",
    page: int = Query(1, ge=1, le=50),
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    location: Optional[str] = None,
    services: EngineServices = Depends(get_services),
):
    """Fetch, resolve, measure and rank locales around the caller."""
    if not is_valid_radius(radius.strip()):
        raise _bad_request("INVALID_RADIUS", "radius must be a non-negative number of kilometers.")
    user = _resolve_user(lat, lon, location)

    actions: List[FilterAction] = []
    if country is not None:
        actions.append(FilterAction(type=FilterActionType.SET_COUNTRY, value=country, label=country_name))
    if state is not None:
        actions.append(FilterAction(type=FilterActionType.SET_STATE, value=state, label=state_name))
    for spot in dict.fromkeys(spot_type):
        actions.append(FilterAction(type=FilterActionType.TOGGLE_SPOT_TYPE, value=spot))
    actions.append(FilterAction(type=FilterActionType.SET_RADIUS, value=radius))
    filters = apply_filter_actions(initial_filter_state(), actions)

    session = services.new_session(filters, StaticLocationProvider(user, permitted=user is not None))
    coordinator = session.coordinator
    coordinator.search_query = search
    try:
        await session.start()
        await session.wait_ranked()
        while coordinator.page < page and coordinator.phase is not CyclePhase.FAILED:
            if coordinator.load_next_page() is None:
                break
            await session.wait_ranked()

        partial = coordinator.phase is CyclePhase.FAILED and bool(coordinator.locales)
        if coordinator.phase is CyclePhase.FAILED and not partial:
            logger.warning(f"Discovery failed for search={search!r} page={coordinator.page}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=ErrorResponse(
                    error="LOCALE_LIST_UNAVAILABLE",
                    detail=coordinator.error or "The locale list could not be loaded. Please try again.",
                ).model_dump(),
            )
        ranked = apply_radius(session.ranked, radius_km(filters))
    finally:
        session.close()

    notices = []
    if partial:
        logger.warning(f"Page {coordinator.page + 1} failed; returning {coordinator.page} loaded page(s)")
        notices.append(f"Only the first {coordinator.page} page(s) could be loaded.")
    if user is None:
        notices.append("Location unavailable: showing newest locales first.")

    logger.info(f"Discovery returned {len(ranked)} locales (page {coordinator.page}/{coordinator.total_pages})")
    return DiscoverResponse(
        results=[_to_public(item) for item in ranked],
        page=coordinator.page,
        total_pages=coordinator.total_pages,
        user_lat=user.lat if user else None,
        user_lon=user.lon if user else None,
        notice=" ".join(notices) or None,
    )


# ----------------------------------------------------------------------
# Bookmarks
# ----------------------------------------------------------------------
@router.get("/bookmarks", response_model=BookmarkListResponse)
async def list_bookmarks(bookmarks: BookmarkStore = Depends(get_bookmark_store)):
    return BookmarkListResponse(bookmarks=await bookmarks.list())


@router.post(
    "/bookmarks",
    response_model=BookmarkResponse,
    responses={409: {"model": ErrorResponse}},
)
async def save_bookmark(
    locale: Locale,
    response: Response,
    bookmarks: BookmarkStore = Depends(get_bookmark_store),
):
    result = await bookmarks.save(locale)
    if result is SaveResult.BUSY:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=ErrorResponse(
                error="BOOKMARK_SAVE_IN_PROGRESS",
                detail="This locale is already being saved.",
            ).model_dump(),
        )
    if result is SaveResult.ALREADY_SAVED:
        return BookmarkResponse(id=locale.id, saved=True, notice="Already saved.")
    response.status_code = status.HTTP_201_CREATED
    return BookmarkResponse(id=locale.id, saved=True)


@router.get("/bookmarks/{locale_id}", response_model=BookmarkResponse)
async def bookmark_status(locale_id: str, bookmarks: BookmarkStore = Depends(get_bookmark_store)):
    return BookmarkResponse(id=locale_id, saved=await bookmarks.is_saved(locale_id))


@router.delete(
    "/bookmarks/{locale_id}",
    response_model=BookmarkResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_bookmark(locale_id: str, bookmarks: BookmarkStore = Depends(get_bookmark_store)):
    if not await bookmarks.unsave(locale_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(error="BOOKMARK_NOT_FOUND", detail="This locale is not saved.").model_dump(),
        )
    return BookmarkResponse(id=locale_id, saved=False)
