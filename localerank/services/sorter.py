from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from localerank.models.dto import Coordinate, RankedLocale

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _created_ts(item: RankedLocale) -> float:
    created = item.created_at
    if created is None:
        return float("-inf")
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (created - _EPOCH).total_seconds()


def _sort_key(item: RankedLocale, by_distance: bool) -> Tuple:
    recency = -_created_ts(item)
    if not by_distance:
        return (recency, item.id)
    if item.distance_km is None:
        return (1, 0.0, recency, item.id)
    return (0, item.distance_km, recency, item.id)


def sort_locales(items: Sequence[RankedLocale], user_location: Optional[Coordinate]) -> List[RankedLocale]:
    """Total order for display.

    With a usable user location: nearest first, anything without a distance
    after everything with one. Ties, unknown distances and the no-location
    case fall back to newest first, then id.
    """
    by_distance = user_location is not None and user_location.is_valid()
    return sorted(items, key=lambda item: _sort_key(item, by_distance))
