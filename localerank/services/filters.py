"""Filter reducer and the FetchKey derived from it."""
import re
from typing import Iterable, Optional

import structlog

from localerank.core.config import settings
from localerank.models.dto import FilterAction, FilterActionType, FilterState

logger = structlog.get_logger(__name__)

_RADIUS = re.compile(r"^(\d+(\.\d*)?|\.\d+)$")


def is_valid_radius(value: str) -> bool:
    """Empty, or a non-negative decimal such as "12", "12.5" or ".5"."""
    return value == "" or bool(_RADIUS.match(value))


def initial_filter_state() -> FilterState:
    return FilterState(
        country_code=settings.DEFAULT_COUNTRY_CODE,
        country_name=settings.DEFAULT_COUNTRY_NAME,
    )


def reduce_filters(state: FilterState, action: FilterAction) -> FilterState:
    if action.type is FilterActionType.SET_COUNTRY:
        # A new country invalidates whatever state/province was picked
        return state.model_copy(update={
            "country_code": action.value,
            "country_name": action.label,
            "state_code": "",
            "state_province": "",
        })
    if action.type is FilterActionType.SET_STATE:
        return state.model_copy(update={"state_code": action.value, "state_province": action.label})
    if action.type is FilterActionType.TOGGLE_SPOT_TYPE:
        spot_types = set(state.spot_types)
        spot_types.symmetric_difference_update({action.value})
        return state.model_copy(update={"spot_types": frozenset(spot_types)})
    if action.type is FilterActionType.SET_RADIUS:
        radius = action.value.strip()
        if not is_valid_radius(radius):
            logger.info("filter_radius_rejected", value=action.value)
            return state
        return state.model_copy(update={"search_radius": radius})
    if action.type is FilterActionType.RESET:
        return initial_filter_state()
    return state


def apply_filter_actions(state: FilterState, actions: Iterable[FilterAction]) -> FilterState:
    for action in actions:
        state = reduce_filters(state, action)
    return state


def radius_km(state: FilterState) -> Optional[float]:
    return float(state.search_radius) if state.search_radius else None


def build_fetch_key(search_query: str, filters: FilterState, page: int) -> str:
    """Deterministic signature of the effective query; equal keys mean identical fetches."""
    return "|".join([
        (search_query or "").strip(),
        filters.country_code,
        filters.state_code,
        ",".join(sorted(filters.spot_types)),
        str(page),
    ])
