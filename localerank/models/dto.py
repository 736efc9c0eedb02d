# Data models for the locale pipeline.
# Internal records, upstream provider payloads and public API DTOs all live
# here so every layer speaks the same types.

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from localerank.utils.geo import is_valid_coordinate

# --- Core records ---

class Coordinate(BaseModel):
    """A latitude/longitude pair. May be invalid; check `is_valid()` before use."""
    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float

    def is_valid(self) -> bool:
        return is_valid_coordinate(self.lat, self.lon)


class Locale(BaseModel):
    """A point of interest as served by the locale backend."""
    id: str = Field(..., description="Stable unique identifier.")
    name: str
    description: Optional[str] = None
    country_code: str = ""
    state_code: Optional[str] = None
    state_province: Optional[str] = None
    spot_types: List[str] = Field(default_factory=list)
    coordinate: Optional[Coordinate] = None
    created_at: Optional[datetime] = None
    image_url: Optional[str] = None
    is_active: bool = True

    def has_valid_coordinate(self) -> bool:
        return self.coordinate is not None and self.coordinate.is_valid()


class DistanceSource(str, Enum):
    STRAIGHT_LINE = "straight_line"
    TRAVEL = "travel"


class RankedLocale(BaseModel):
    """View-model annotation: a locale plus whatever distance is known right now.

    The wrapped Locale is never mutated; distances live only here.
    """
    model_config = ConfigDict(frozen=True)

    locale: Locale
    coordinate: Optional[Coordinate] = None
    distance_km: Optional[float] = None
    distance_source: Optional[DistanceSource] = None
    distance_pending: bool = False

    @property
    def id(self) -> str:
        return self.locale.id

    @property
    def created_at(self) -> Optional[datetime]:
        return self.locale.created_at


class Pagination(BaseModel):
    current_page: int = 1
    total_pages: int = 1
    total: int = 0
    limit: int = 50


class LocalePage(BaseModel):
    locales: List[Locale] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class CoordinateCacheEntry(BaseModel):
    key: str
    lat: float
    lon: float
    timestamp: float = Field(..., description="Unix seconds when the entry was written.")

# --- Upstream provider payloads ---

class PlacesStatus(str, Enum):
    OK = "OK"
    ZERO_RESULTS = "ZERO_RESULTS"
    REQUEST_DENIED = "REQUEST_DENIED"
    OVER_QUERY_LIMIT = "OVER_QUERY_LIMIT"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


DENIAL_STATUSES = frozenset({PlacesStatus.REQUEST_DENIED.value, PlacesStatus.OVER_QUERY_LIMIT.value})


class PlaceResult(BaseModel):
    name: str = ""
    lat: float
    lng: float


class PlacesResponse(BaseModel):
    status: str
    results: List[PlaceResult] = Field(default_factory=list)


class LocationType(str, Enum):
    ROOFTOP = "ROOFTOP"
    RANGE_INTERPOLATED = "RANGE_INTERPOLATED"
    GEOMETRIC_CENTER = "GEOMETRIC_CENTER"
    APPROXIMATE = "APPROXIMATE"


class GeocodeResult(BaseModel):
    lat: float
    lng: float
    location_type: Optional[str] = None
    partial_match: bool = False
    formatted_address: Optional[str] = None


class GeocodeResponse(BaseModel):
    status: str
    results: List[GeocodeResult] = Field(default_factory=list)

# --- Filters ---

class FilterState(BaseModel):
    """Discovery filters. Only ever replaced through the reducer in services.filters."""
    model_config = ConfigDict(frozen=True)

    country_code: str = ""
    country_name: str = ""
    state_code: str = ""
    state_province: str = ""
    spot_types: frozenset[str] = Field(default_factory=frozenset)
    search_radius: str = ""


class FilterActionType(str, Enum):
    SET_COUNTRY = "SET_COUNTRY"
    SET_STATE = "SET_STATE"
    TOGGLE_SPOT_TYPE = "TOGGLE_SPOT_TYPE"
    SET_RADIUS = "SET_RADIUS"
    RESET = "RESET"


class FilterAction(BaseModel):
    type: FilterActionType
    value: str = ""
    label: str = ""

# --- Public Data Transfer Objects (DTOs) ---

class PublicLocaleResult(BaseModel):
    """A ranked locale as returned by /api/discover."""
    id: str
    name: str
    description: Optional[str] = None
    country_code: str
    state_code: Optional[str] = None
    spot_types: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    distance_km: Optional[float] = Field(None, description="Null when no distance could be computed.")
    distance_label: Optional[str] = None
    distance_source: Optional[DistanceSource] = None
    created_at: Optional[datetime] = None


class DiscoverResponse(BaseModel):
    results: List[PublicLocaleResult]
    page: int
    total_pages: int
    user_lat: Optional[float] = None
    user_lon: Optional[float] = None
    notice: Optional[str] = None


class BookmarkResponse(BaseModel):
    id: str
    saved: bool
    notice: Optional[str] = None


class BookmarkListResponse(BaseModel):
    bookmarks: List[Locale]


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
