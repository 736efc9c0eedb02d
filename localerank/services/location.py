import structlog
from typing import Optional

from localerank.core.errors import LocationUnavailable
from localerank.models.dto import Coordinate
from localerank.services.providers import LocationProvider

logger = structlog.get_logger(__name__)


class StaticLocationProvider:
    """Location provider fed from outside (request parameters, tests).

    `permitted=False` models a user who denied the location permission.
    """

    def __init__(self, coordinate: Optional[Coordinate] = None, permitted: bool = True):
        self.coordinate = coordinate
        self.permitted = permitted

    async def has_permission(self) -> bool:
        return self.permitted

    async def current_position(self, accuracy: str = "balanced") -> Coordinate:
        if not self.permitted:
            raise LocationUnavailable("location permission denied")
        if self.coordinate is None:
            raise LocationUnavailable("no position fix")
        return self.coordinate


async def get_user_location(provider: Optional[LocationProvider], accuracy: str = "balanced") -> Optional[Coordinate]:
    """Permission-gated position lookup; any failure degrades to None."""
    if provider is None:
        return None
    try:
        if not await provider.has_permission():
            logger.info("user_location_permission_denied")
            return None
        position = await provider.current_position(accuracy)
    except LocationUnavailable as e:
        logger.info("user_location_unavailable", reason=str(e))
        return None
    if not position.is_valid():
        logger.warning("user_location_invalid", lat=position.lat, lon=position.lon)
        return None
    return position
