"""Unit tests for geolocation and impossible-travel detection."""

import httpx
import pytest

from m365_compromise_engine.analyzers.travel import ImpossibleTravelDetector
from m365_compromise_engine.enrichment.geo import GeoCache, IpGeoLocator, haversine_km


GEO_RESULTS = {
    "192.0.2.10": {"status": "success", "countryCode": "NL", "city": "Amsterdam",
                   "lat": 52.3676, "lon": 4.9041},
    "192.0.2.20": {"status": "success", "countryCode": "US", "city": "New York",
                   "lat": 40.7128, "lon": -74.0060},
    "10.0.0.1": {"status": "fail", "message": "private range"},
}


@pytest.fixture
def geo_calls():
    return []


@pytest.fixture
def locator(geo_calls):
    """IpGeoLocator backed by a mock transport; unknown addresses return 500."""
    def handler(request):
        ip = request.url.path.rsplit("/", 1)[-1]
        geo_calls.append(ip)
        if ip in GEO_RESULTS:
            return httpx.Response(200, json=GEO_RESULTS[ip])
        return httpx.Response(500)

    return IpGeoLocator(client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestHaversine:
    """Great-circle distance."""

    def test_amsterdam_to_new_york(self, amsterdam, new_york):
        distance = haversine_km(amsterdam["latitude"], amsterdam["longitude"],
                                new_york["latitude"], new_york["longitude"])
        assert distance == pytest.approx(5860, abs=30)

    def test_same_point(self):
        assert haversine_km(52.0, 4.0, 52.0, 4.0) == 0


class TestImpossibleTravel:
    """Pairwise speed checks over time-ordered sign-ins."""

    def test_later_event_flagged(self, make_sign_in, new_york):
        first = make_sign_in("s1", 0, ip="198.51.100.10")
        second = make_sign_in("s2", 60, ip="203.0.113.50", location=new_york)
        flagged = ImpossibleTravelDetector(GeoCache()).detect([first, second])

        assert flagged == [second]
        assert first.travel is None
        assert second.travel.previous_sign_in_id == "s1"
        assert second.travel.speed_kmh == pytest.approx(5860, abs=30)
        assert second.travel.elapsed_hours == pytest.approx(1.0)

    def test_input_order_does_not_matter(self, make_sign_in, new_york):
        first = make_sign_in("s1", 0, ip="198.51.100.10")
        second = make_sign_in("s2", 60, ip="203.0.113.50", location=new_york)
        flagged = ImpossibleTravelDetector(GeoCache()).detect([second, first])
        assert flagged == [second]
        assert first.travel is None

    def test_plausible_speed_not_flagged(self, make_sign_in, new_york):
        first = make_sign_in("s1", 0, ip="198.51.100.10")
        second = make_sign_in("s2", 8 * 60, ip="203.0.113.50", location=new_york)
        assert ImpossibleTravelDetector(GeoCache()).detect([first, second]) == []

    def test_same_address_skipped(self, make_sign_in, new_york):
        first = make_sign_in("s1", 0, ip="198.51.100.10")
        second = make_sign_in("s2", 10, ip="198.51.100.10", location=new_york)
        assert ImpossibleTravelDetector(GeoCache()).detect([first, second]) == []

    def test_missing_coordinates_skipped(self, make_sign_in):
        first = make_sign_in("s1", 0, ip="198.51.100.10", location=None)
        second = make_sign_in("s2", 10, ip="203.0.113.50", location=None)
        assert ImpossibleTravelDetector(GeoCache()).detect([first, second]) == []

    def test_simultaneous_sign_ins_skipped(self, make_sign_in, new_york):
        first = make_sign_in("s1", 0, ip="198.51.100.10")
        second = make_sign_in("s2", 0, ip="203.0.113.50", location=new_york)
        assert ImpossibleTravelDetector(GeoCache()).detect([first, second]) == []

    def test_custom_speed_limit(self, make_sign_in, new_york):
        first = make_sign_in("s1", 0, ip="198.51.100.10")
        second = make_sign_in("s2", 8 * 60, ip="203.0.113.50", location=new_york)
        detector = ImpossibleTravelDetector(GeoCache(), speed_limit_kmh=500)
        assert detector.detect([first, second]) == [second]

    def test_lookup_through_locator(self, make_sign_in, locator):
        first = make_sign_in("s1", 0, ip="192.0.2.10", location=None)
        second = make_sign_in("s2", 30, ip="192.0.2.20", location=None)
        flagged = ImpossibleTravelDetector(GeoCache(locator)).detect([first, second])
        assert flagged == [second]
        assert second.travel.destination.city == "New York"


class TestGeoCache:
    """Run-scoped memoization with an unavailable sentinel."""

    def test_one_lookup_per_address(self, locator, geo_calls):
        cache = GeoCache(locator)
        assert cache.lookup("192.0.2.10").country == "NL"
        assert cache.lookup("192.0.2.10").country == "NL"
        assert geo_calls == ["192.0.2.10"]

    def test_failures_cached_as_unavailable(self, locator, geo_calls):
        cache = GeoCache(locator)
        assert cache.lookup("192.0.2.99") is None
        assert cache.lookup("192.0.2.99") is None
        assert cache.lookup("10.0.0.1") is None
        assert geo_calls == ["192.0.2.99", "10.0.0.1"]
        assert "192.0.2.99" in cache
        assert cache.lookups == 2

    def test_primed_location_skips_locator(self, locator, geo_calls, make_sign_in):
        fact = make_sign_in(ip="192.0.2.20")
        cache = GeoCache(locator)
        cache.prime(fact.ip_address, fact.location)
        assert cache.lookup("192.0.2.20").city == "Amsterdam"
        assert geo_calls == []

    def test_no_locator(self):
        cache = GeoCache()
        assert cache.lookup("192.0.2.10") is None
        cache.clear()
        assert len(cache) == 0
