import asyncio

from localerank.models.dto import Coordinate
from localerank.services.location import StaticLocationProvider, get_user_location


def test_no_provider_or_denied_permission_means_no_location():
    assert asyncio.run(get_user_location(None)) is None
    assert asyncio.run(get_user_location(StaticLocationProvider(Coordinate(lat=1, lon=1), permitted=False))) is None


def test_missing_fix_and_invalid_position_are_unavailable():
    assert asyncio.run(get_user_location(StaticLocationProvider(None))) is None
    assert asyncio.run(get_user_location(StaticLocationProvider(Coordinate(lat=0, lon=0)))) is None


def test_valid_position_is_returned():
    position = Coordinate(lat=51.5, lon=-0.12)
    assert asyncio.run(get_user_location(StaticLocationProvider(position))) == position
