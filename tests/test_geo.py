import math

import pytest

from localerank.utils.geo import (
    format_distance,
    haversine,
    is_valid_coordinate,
    parse_coordinate_string,
    round_coordinate,
)


@pytest.mark.parametrize(
    "lat, lon",
    [(None, 1.0), (1.0, None), (float("nan"), 1.0), (0, 0), (91, 10), (-91, 10), (10, 181), (10, -180.5)],
)
def test_invalid_coordinates_are_rejected(lat, lon):
    assert not is_valid_coordinate(lat, lon)


def test_valid_coordinates_include_the_edges():
    assert is_valid_coordinate(90, 180)
    assert is_valid_coordinate(-90, -180)
    assert is_valid_coordinate(0, 10)


def test_haversine_london_to_paris():
    km = haversine(51.5074, -0.1278, 48.8566, 2.3522)
    assert 340 < km < 345


def test_haversine_antipodes_does_not_blow_up():
    km = haversine(0.0, 0.0, 0.0, 180.0)
    assert km == pytest.approx(math.pi * 6371.0, rel=1e-9)


def test_haversine_precision_absorbs_jitter():
    a = haversine(51.50741, -0.12781, 48.8566, 2.3522, precision=4)
    b = haversine(51.50744, -0.12779, 48.8566, 2.3522, precision=4)
    assert a == b


def test_round_coordinate():
    assert round_coordinate(51.507412, -0.127812) == (51.5074, -0.1278)


@pytest.mark.parametrize(
    "km, label",
    [(None, None), (0.2504, "250m"), (0.9994, "999m"), (1.0, "1.0km"), (3.46, "3.5km"), (12.4, "12km"), (250.6, "251km")],
)
def test_format_distance(km, label):
    assert format_distance(km) == label


def test_parse_coordinate_string():
    assert parse_coordinate_string(" 51.5, -0.12 ") == (51.5, -0.12)
    assert parse_coordinate_string("91,0") is None
    assert parse_coordinate_string("0,0") is None
    assert parse_coordinate_string("north,west") is None
    assert parse_coordinate_string("") is None
