import httpx
import pytest

from groupwalk.models.domain import Location
from groupwalk.services import geocoding
from groupwalk.services.geocoding import Address, GeocodingCache, NominatimGeocoder

BASE_URL = "https://geocoder.test"

SEARCH_HIT = [
    {
        "lat": "52.5316",
        "lon": "13.3849",
        "display_name": "Invalidenstraße 1, 10115 Berlin, Deutschland",
        "address": {"postcode": "10115"},
    }
]


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _geocoder(handler, cache: GeocodingCache | None = None) -> NominatimGeocoder:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return NominatimGeocoder(
        base_url=BASE_URL,
        user_agent="GroupWalkTests/1.0",
        country="Germany",
        cache=cache if cache is not None else GeocodingCache(ttl_seconds=60),
        client=client,
    )


def test_address_query_uses_default_country() -> None:
    address = Address(street="Invalidenstraße", house_number="1", postal_code="10115", city="Berlin")

    assert address.query("Germany") == "Invalidenstraße 1, 10115 Berlin, Germany"
    assert Address("Main St", "", "", country="US").query("Germany") == "Main St, US"


def test_geocode_returns_first_match_and_caches_it() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=SEARCH_HIT)

    geocoder = _geocoder(handler)
    address = Address(street="Invalidenstraße", house_number="1", postal_code="10115", city="Berlin")

    first = geocoder.geocode(address)
    second = geocoder.geocode("  invalidenstraße 1,  10115 berlin, germany ")

    assert first.location == Location(52.5316, 13.3849)
    assert first.postal_code == "10115"
    assert second == first
    assert len(requests) == 1
    assert requests[0].url.path == "/search"
    assert requests[0].url.params["limit"] == "1"
    assert requests[0].headers["User-Agent"] == "GroupWalkTests/1.0"


def test_geocode_without_match_returns_none_and_is_not_cached() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=[])

    geocoder = _geocoder(handler)

    assert geocoder.geocode("Nowhere 1, 00000 Atlantis") is None
    assert geocoder.geocode("Nowhere 1, 00000 Atlantis") is None
    assert calls == 2


def test_geocode_rejects_empty_address() -> None:
    geocoder = _geocoder(lambda request: httpx.Response(200, json=SEARCH_HIT))

    with pytest.raises(ValueError):
        geocoder.geocode("   ")


def test_geocode_makes_a_single_attempt_on_server_errors() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503)

    with pytest.raises(httpx.HTTPStatusError):
        _geocoder(handler).geocode("Invalidenstraße 1, Berlin")
    assert calls == 1


def test_geocode_client_error_raises() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(400)

    with pytest.raises(httpx.HTTPStatusError):
        _geocoder(handler).geocode("Invalidenstraße 1, Berlin")
    assert calls == 1


def test_geocode_network_error_propagates_without_retry() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(httpx.ConnectError):
        _geocoder(handler).geocode("Invalidenstraße 1, Berlin")
    assert attempts == 1


def test_get_geocoder_respects_enabled_setting(monkeypatch) -> None:
    monkeypatch.setattr(geocoding.settings, "geocoding_enabled", False)
    geocoding.get_geocoder.cache_clear()
    try:
        assert geocoding.get_geocoder() is None
    finally:
        geocoding.get_geocoder.cache_clear()

    monkeypatch.setattr(geocoding.settings, "geocoding_enabled", True)
    try:
        geocoder = geocoding.get_geocoder()
        assert isinstance(geocoder, NominatimGeocoder)
        assert geocoding.get_geocoder() is geocoder
    finally:
        geocoding.get_geocoder.cache_clear()


def test_reverse_geocode() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/reverse"
        return httpx.Response(200, json={"display_name": "Berlin Mitte", "address": {"postcode": "10117"}})

    geocoder = _geocoder(handler)
    result = geocoder.reverse_geocode(Location(52.520, 13.400))

    assert result.display_name == "Berlin Mitte"
    assert result.postal_code == "10117"
    with pytest.raises(ValueError):
        geocoder.reverse_geocode(Location(None, 13.4))


def test_reverse_geocode_error_payload_returns_none() -> None:
    geocoder = _geocoder(lambda request: httpx.Response(200, json={"error": "Unable to geocode"}))

    assert geocoder.reverse_geocode(Location(0.0, 0.0)) is None


def test_cache_entries_expire() -> None:
    clock = _FakeClock()
    cache: GeocodingCache[str] = GeocodingCache(ttl_seconds=10, clock=clock)

    cache.set("berlin", "hit")
    clock.now = 9.9
    assert cache.get("berlin") == "hit"
    clock.now = 10.0
    assert cache.get("berlin") is None
    assert len(cache) == 0


def test_expired_geocode_is_fetched_again() -> None:
    clock = _FakeClock()
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=SEARCH_HIT)

    geocoder = _geocoder(handler, cache=GeocodingCache(ttl_seconds=60, clock=clock))
    geocoder.geocode("Invalidenstraße 1, Berlin")
    clock.now = 61
    geocoder.geocode("Invalidenstraße 1, Berlin")

    assert calls == 2
