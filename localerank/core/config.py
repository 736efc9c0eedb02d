# Runtime configuration for the locale ranking engine.
# Every tunable (timeouts, cache lifetimes, batch sizes) lives here so that
# operational tuning never requires a code change.

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "Locale Rank"
    VERSION: str = "0.3.0"
    BRIEF_DESCRIPTION: str = "Resolves, measures and ranks points of interest around the user for the discovery screen."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")

    # --- Upstream services ---
    GOOGLE_MAPS_API_KEY: Optional[str] = Field(None, description="Key for Places, Geocoding and Distance Matrix")
    LOCALE_API_BASE_URL: str = Field("http://localhost:5000", description="Backend serving /api/v1/locales")
    LOCALE_API_TIMEOUT: float = Field(10.0, description="Timeout for the locale list call (seconds)")

    # --- Persistent key-value store ---
    REDIS_URL: Optional[str] = Field(None, description="Redis URL backing the coordinate cache and bookmarks")
    ENABLE_REDIS: bool = Field(False, description="Use Redis instead of the in-process store")

    # --- Coordinate resolution ---
    COORDINATE_CACHE_TTL_SECONDS: int = 24 * 60 * 60
    COORDINATE_CACHE_PREFIX: str = "locale_coords:"
    DESCRIPTION_PREFIX_WORDS: int = 5
    RESOLVE_TIMEOUT: float = Field(5.0, description="Per-call timeout for places/geocoding requests (seconds)")

    # --- Distance engine ---
    DISTANCE_ROUNDING_PRECISION: int = 4
    DISTANCE_CACHE_MAX_ENTRIES: int = Field(10_000, description="Entries kept per distance tier before the least recently used are evicted")
    LOCATION_MOVE_THRESHOLD_KM: float = Field(0.5, description="User movement that invalidates travel distances")
    TRAVEL_BATCH_SIZE: int = 5
    TRAVEL_BATCH_DELAY: float = Field(0.2, description="Pause between travel distance batches (seconds)")
    TRAVEL_TIMEOUT: float = 5.0

    # --- Request coordination ---
    SEARCH_DEBOUNCE_SECONDS: float = 0.35
    PAGE_SIZE: int = 50
    INCLUDE_INACTIVE: bool = False
    DEFAULT_COUNTRY_CODE: str = "GB"
    DEFAULT_COUNTRY_NAME: str = "United Kingdom"

    # --- Bookmarks ---
    BOOKMARKS_KEY: str = "savedLocations"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
