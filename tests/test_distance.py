import asyncio

import pytest

from fakes import FakeTravel, make_locale, no_sleep
from localerank.core.errors import ProviderDeniedError
from localerank.models.dto import Coordinate, DistanceSource, RankedLocale
from localerank.services.distance import DistanceCache, DistanceEngine, straight_line_distance

USER = Coordinate(lat=51.5074, lon=-0.1278)
PARIS = Coordinate(lat=48.8566, lon=2.3522)


def _item(locale_id: str, coordinate=None) -> RankedLocale:
    return RankedLocale(locale=make_locale(locale_id), coordinate=coordinate)


def test_straight_line_is_none_for_invalid_points():
    assert straight_line_distance(USER, Coordinate(lat=91, lon=0)) is None
    assert straight_line_distance(None, PARIS) is None
    assert straight_line_distance(USER, PARIS) == pytest.approx(343.5, abs=1.0)


def test_invalid_target_never_reaches_travel_provider():
    travel = FakeTravel({"x": 12.0})
    engine = DistanceEngine(DistanceCache(), travel_provider=travel)

    km = asyncio.run(engine.travel_distance("x", USER, Coordinate(lat=91, lon=0)))

    assert km is None
    assert travel.calls == []


def test_travel_distance_is_cached():
    travel = FakeTravel({"p": 460.0})
    engine = DistanceEngine(DistanceCache(), travel_provider=travel)

    async def run():
        return await engine.travel_distance("p", USER, PARIS), await engine.travel_distance("p", USER, PARIS)

    assert asyncio.run(run()) == (460.0, 460.0)
    assert travel.calls == ["p"]


@pytest.mark.parametrize("failure", [ProviderDeniedError("distance_matrix", "OVER_QUERY_LIMIT"), None])
def test_travel_failure_falls_back_to_straight_line_without_caching(failure):
    travel = FakeTravel({"p": failure} if failure else {})
    cache = DistanceCache()
    engine = DistanceEngine(cache, travel_provider=travel)

    km = asyncio.run(engine.travel_distance("p", USER, PARIS))

    assert km == straight_line_distance(USER, PARIS)
    assert cache.travel_size() == 0


def test_gps_jitter_hits_the_same_cache_entry():
    travel = FakeTravel({"p": 460.0})
    engine = DistanceEngine(DistanceCache(), travel_provider=travel)
    jittered = Coordinate(lat=51.50741, lon=-0.12779)

    async def run():
        await engine.travel_distance("p", USER, PARIS)
        await engine.travel_distance("p", jittered, PARIS)

    asyncio.run(run())
    assert travel.calls == ["p"]


def test_moving_beyond_threshold_invalidates_travel_tier():
    cache = DistanceCache(move_threshold_km=0.5)
    cache.observe_user_position(USER)
    cache.put_travel(USER, PARIS, 460.0)

    assert cache.observe_user_position(Coordinate(lat=51.5080, lon=-0.1280)) is False
    assert cache.travel_size() == 1
    assert cache.observe_user_position(Coordinate(lat=51.6, lon=-0.1278)) is True
    assert cache.travel_size() == 0


def test_attach_straight_line_marks_pending_only_with_travel_provider():
    items = [_item("near", PARIS), _item("lost")]

    with_travel = DistanceEngine(DistanceCache(), travel_provider=FakeTravel()).attach_straight_line(items, USER)
    without = DistanceEngine(DistanceCache()).attach_straight_line(items, USER)

    assert with_travel[0].distance_pending is True
    assert with_travel[0].distance_source is DistanceSource.STRAIGHT_LINE
    assert with_travel[1].distance_km is None
    assert with_travel[1].distance_pending is False
    assert without[0].distance_pending is False
    assert items[0].distance_km is None


def test_refine_travel_runs_in_batches_and_reports_each():
    coordinates = {str(i): Coordinate(lat=48.0 + i / 100, lon=2.0) for i in range(7)}
    travel = FakeTravel({locale_id: 400.0 + int(locale_id) for locale_id in coordinates})
    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    engine = DistanceEngine(DistanceCache(), travel_provider=travel, batch_size=3, batch_delay=0.2, sleep=record_sleep)
    items = engine.attach_straight_line([_item(i, c) for i, c in coordinates.items()], USER)
    snapshots = []

    result = asyncio.run(engine.refine_travel(items, USER, on_batch=snapshots.append))

    assert len(snapshots) == 3
    assert sleeps == [0.2, 0.2]
    assert [len(s) for s in snapshots] == [7, 7, 7]
    assert sum(1 for i in snapshots[0] if i.distance_source is DistanceSource.TRAVEL) == 3
    assert all(i.distance_source is DistanceSource.TRAVEL and not i.distance_pending for i in result)
    assert result[4].distance_km == 404.0


def test_refine_travel_stops_when_run_is_superseded():
    coordinates = {str(i): Coordinate(lat=48.0 + i / 100, lon=2.0) for i in range(6)}
    travel = FakeTravel({locale_id: 400.0 for locale_id in coordinates})
    engine = DistanceEngine(DistanceCache(), travel_provider=travel, batch_size=2, sleep=no_sleep)
    items = engine.attach_straight_line([_item(i, c) for i, c in coordinates.items()], USER)
    snapshots = []

    asyncio.run(engine.refine_travel(items, USER, on_batch=snapshots.append, should_continue=lambda: not snapshots))

    assert len(snapshots) == 1
    assert len(travel.calls) == 2


def test_straight_line_tier_is_capped():
    engine = DistanceEngine(DistanceCache(max_entries=100))

    for i in range(5000):
        engine.straight_line(Coordinate(lat=10 + i * 0.0001, lon=20.0), PARIS)

    assert engine.cache.straight_size() == 100


def test_least_recently_used_entry_is_evicted_first():
    cache = DistanceCache(max_entries=2)
    a, b, c = (Coordinate(lat=51.0 + i, lon=0.5) for i in range(3))
    cache.put_straight(USER, a, 1.0)
    cache.put_straight(USER, b, 2.0)
    assert cache.get_straight(USER, a) == 1.0

    cache.put_straight(USER, c, 3.0)

    assert cache.get_straight(USER, b) is None
    assert cache.get_straight(USER, a) == 1.0
    assert cache.get_straight(USER, c) == 3.0


def test_moving_beyond_threshold_drops_straight_line_tier_too():
    engine = DistanceEngine(DistanceCache(move_threshold_km=0.5))
    engine.attach_straight_line([_item("p", PARIS)], USER)
    assert engine.cache.straight_size() == 1

    engine.attach_straight_line([_item("p", PARIS)], Coordinate(lat=52.5, lon=-0.1278))

    assert engine.cache.straight_size() == 1
    assert engine.cache.get_straight(USER, PARIS) is None
