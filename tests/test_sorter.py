from fakes import make_locale
from localerank.models.dto import Coordinate, RankedLocale
from localerank.services.sorter import sort_locales

USER = Coordinate(lat=51.5, lon=-0.12)


def _ranked(locale_id, km=None, age_days=0, created=True):
    locale = make_locale(locale_id, age_days=age_days)
    if not created:
        locale = locale.model_copy(update={"created_at": None})
    return RankedLocale(locale=locale, distance_km=km)


def test_nearest_first_with_unknown_distances_last():
    items = [_ranked("far", 20.0), _ranked("unknown"), _ranked("near", 1.5), _ranked("mid", 7.0)]

    ordered = sort_locales(items, USER)

    assert [i.id for i in ordered] == ["near", "mid", "far", "unknown"]


def test_distance_ties_fall_back_to_newest_first():
    items = [_ranked("old", 3.0, age_days=10), _ranked("new", 3.0, age_days=1)]
    assert [i.id for i in sort_locales(items, USER)] == ["new", "old"]


def test_unknown_distances_are_ordered_by_recency():
    items = [_ranked("u-old", age_days=9), _ranked("u-new", age_days=2), _ranked("k", 50.0, age_days=30)]
    assert [i.id for i in sort_locales(items, USER)] == ["k", "u-new", "u-old"]


def test_without_location_orders_by_recency_and_ignores_distance():
    items = [_ranked("a", 1.0, age_days=5), _ranked("b", 90.0, age_days=1), _ranked("c", created=False)]
    assert [i.id for i in sort_locales(items, None)] == ["b", "a", "c"]


def test_invalid_user_location_counts_as_no_location():
    items = [_ranked("a", 1.0, age_days=5), _ranked("b", 90.0, age_days=1)]
    assert [i.id for i in sort_locales(items, Coordinate(lat=0, lon=0))] == ["b", "a"]


def test_sorting_is_deterministic_and_does_not_mutate_input():
    items = [_ranked(str(i), km=float(i % 3), age_days=i % 2) for i in range(12)]
    snapshot = list(items)

    first = sort_locales(items, USER)
    second = sort_locales(list(reversed(items)), USER)

    assert [i.id for i in first] == [i.id for i in second]
    assert items == snapshot
