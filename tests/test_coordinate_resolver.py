import asyncio

from fakes import FakeGeocoder, FakePlaces, make_locale
from localerank.core.errors import ProviderDeniedError, ProviderError
from localerank.models.dto import Coordinate, GeocodeResponse, GeocodeResult, PlaceResult, PlacesResponse
from localerank.services.coordinate_cache import CoordinateCache, normalize_key
from localerank.services.geocoding import CoordinateResolver, find_landmark, rank_geocode_results
from localerank.services.kv_store import InMemoryKeyValueStore

MYSORE_PALACE = PlacesResponse(status="OK", results=[PlaceResult(name="Mysore Palace", lat=12.3052, lng=76.6552)])


def _resolver(places=None, geocoder=None, store=None, timeout=1.0):
    store = store or InMemoryKeyValueStore()
    cache = CoordinateCache(store)
    resolver = CoordinateResolver(cache, places or FakePlaces(), geocoder or FakeGeocoder(), timeout=timeout)
    return resolver, cache, store


def test_stored_coordinate_needs_no_network():
    places, geocoder = FakePlaces(), FakeGeocoder()
    resolver, _, _ = _resolver(places, geocoder)
    locale = make_locale("a", lat=51.5, lon=-0.12)

    assert asyncio.run(resolver.resolve(locale)) == Coordinate(lat=51.5, lon=-0.12)
    assert places.queries == []
    assert geocoder.addresses == []


def test_zero_zero_placeholder_is_not_a_stored_coordinate():
    places = FakePlaces(default=PlacesResponse(status="OK", results=[PlaceResult(lat=50.1, lng=-5.5)]))
    resolver, _, _ = _resolver(places)

    result = asyncio.run(resolver.resolve(make_locale("a", name="Lands End", lat=0, lon=0)))

    assert result == Coordinate(lat=50.1, lon=-5.5)
    assert places.queries


def test_resolution_is_cached_and_idempotent():
    places = FakePlaces(default=PlacesResponse(status="OK", results=[PlaceResult(lat=50.1, lng=-5.5)]))
    resolver, _, store = _resolver(places)
    locale = make_locale("a", name="Lands End", description="The westernmost point of mainland Cornwall")

    async def run():
        first = await resolver.resolve(locale)
        calls_after_first = len(places.queries)
        second = await resolver.resolve(locale)
        return first, second, calls_after_first

    first, second, calls_after_first = asyncio.run(run())

    assert first == second == Coordinate(lat=50.1, lon=-5.5)
    assert calls_after_first == 1
    assert len(places.queries) == 1
    key = normalize_key(locale.name, locale.country_code, locale.description)
    assert asyncio.run(store.get("locale_coords:" + key)) is not None


def test_first_places_query_uses_description_prefix_and_country():
    places = FakePlaces(default=PlacesResponse(status="OK", results=[PlaceResult(lat=50.1, lng=-5.5)]))
    resolver, _, _ = _resolver(places)
    locale = make_locale("a", name="Lands End", description="The  westernmost point of mainland Cornwall England")

    asyncio.run(resolver.resolve(locale))

    assert places.queries == ["The westernmost point of mainland, Lands End, GB"]


def test_misspelled_landmark_resolves_through_override_before_geocoding():
    places = FakePlaces(answers={"Mysore Palace, IN": MYSORE_PALACE})
    geocoder = FakeGeocoder()
    resolver, _, _ = _resolver(places, geocoder)

    result = asyncio.run(resolver.resolve(make_locale("m", name="Mysure", country_code="IN")))

    assert result == Coordinate(lat=12.3052, lon=76.6552)
    assert places.queries == ["Mysore Palace, IN"]
    assert geocoder.addresses == []


def test_landmark_lookup_normalizes_case_and_spacing():
    assert find_landmark("  MYSURE ") is not None
    assert find_landmark("Mysore   Palace").query == "Mysore Palace"
    assert find_landmark("Somewhere Else") is None


def test_places_denial_skips_remaining_places_strategies_but_not_geocoding():
    places = FakePlaces(default=PlacesResponse(status="REQUEST_DENIED"))
    geocoder = FakeGeocoder(answers={
        "Hidden Cove, GB": GeocodeResponse(status="OK", results=[GeocodeResult(lat=50.2, lng=-5.1)]),
    })
    resolver, _, _ = _resolver(places, geocoder)

    result = asyncio.run(resolver.resolve(make_locale("h", name="Hidden Cove")))

    assert result == Coordinate(lat=50.2, lon=-5.1)
    assert len(places.queries) == 1
    assert geocoder.addresses == ["Hidden Cove, GB"]


def test_denied_exception_aborts_provider_and_transport_error_skips_strategy():
    places = FakePlaces(default=ProviderDeniedError("places", "HTTP_403"))
    geocoder = FakeGeocoder(
        answers={"Hidden Cove, GB": GeocodeResponse(status="OK", results=[GeocodeResult(lat=50.2, lng=-5.1)])},
        default=ProviderError("geocoding transport error"),
    )
    resolver, _, _ = _resolver(places, geocoder)
    locale = make_locale("h", name="Hidden Cove", description="Quiet sandy bay")

    result = asyncio.run(resolver.resolve(locale))

    assert result == Coordinate(lat=50.2, lon=-5.1)
    assert len(places.queries) == 1
    assert geocoder.addresses == ["Quiet sandy bay, Hidden Cove, GB", "Hidden Cove, GB"]


def test_geocoding_prefers_the_most_precise_result():
    geocoder = FakeGeocoder(default=GeocodeResponse(status="OK", results=[
        GeocodeResult(lat=1.0, lng=1.0, location_type="APPROXIMATE"),
        GeocodeResult(lat=2.0, lng=2.0, location_type="ROOFTOP", partial_match=True),
        GeocodeResult(lat=3.0, lng=3.0, location_type="ROOFTOP"),
    ]))
    resolver, _, _ = _resolver(geocoder=geocoder)

    result = asyncio.run(resolver.resolve(make_locale("g", name="Corner Shop")))

    assert result == Coordinate(lat=3.0, lon=3.0)


def test_rank_geocode_results_puts_unknown_types_last():
    ranked = rank_geocode_results([
        GeocodeResult(lat=1.0, lng=1.0),
        GeocodeResult(lat=2.0, lng=2.0, location_type="GEOMETRIC_CENTER"),
    ])
    assert [r.lat for r in ranked] == [2.0, 1.0]


def test_nothing_found_returns_none_and_caches_nothing():
    resolver, cache, _ = _resolver()
    locale = make_locale("n", name="Nowhere")

    assert asyncio.run(resolver.resolve(locale)) is None
    key = normalize_key(locale.name, locale.country_code, locale.description)
    assert asyncio.run(cache.get(key)) is None


class _SlowPlaces:
    def __init__(self):
        self.queries = []

    async def text_search(self, query, country_code=None):
        self.queries.append(query)
        await asyncio.sleep(1)
        return MYSORE_PALACE


def test_slow_provider_times_out_and_chain_moves_on():
    places = _SlowPlaces()
    geocoder = FakeGeocoder(default=GeocodeResponse(status="OK", results=[GeocodeResult(lat=50.2, lng=-5.1)]))
    resolver, _, _ = _resolver(places, geocoder, timeout=0.01)

    result = asyncio.run(resolver.resolve(make_locale("s", name="Slow Point")))

    assert result == Coordinate(lat=50.2, lon=-5.1)
    assert len(places.queries) == 3
