import pytest
import requests

from calintel.travel import (
    OsrmTravelEstimator,
    PlaceholderTravelEstimator,
    TravelEstimate,
    build_travel_estimator,
)


class _Response:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class _Session:
    def __init__(self, responses):
        self.headers = {}
        self.calls = []
        self._responses = responses

    def get(self, url, params=None, timeout=None):
        self.calls.append(url)
        for prefix, payload in self._responses:
            if url.startswith(prefix):
                if isinstance(payload, Exception):
                    raise payload
                return _Response(payload)
        raise AssertionError(f"unexpected url {url}")


def test_placeholder_distances():
    estimator = PlaceholderTravelEstimator()

    assert estimator.estimate("Home", "Office") == TravelEstimate(30, 10000)
    assert estimator.estimate("Cafe", "Library") == TravelEstimate(30, 5000)
    assert estimator.estimate("HQ", "hq").minutes == 0


def test_osrm_estimate_uses_route_and_caches():
    session = _Session(
        [
            ("https://nominatim.openstreetmap.org/search", [{"lat": "40.0", "lon": "-74.0"}]),
            ("https://router.project-osrm.org/route", {"routes": [{"duration": 1260, "distance": 15432.7}]}),
        ]
    )
    estimator = OsrmTravelEstimator(user_agent="test-agent", session=session)

    first = estimator.estimate("Office", "Airport")
    second = estimator.estimate("office", "AIRPORT")

    assert first == TravelEstimate(minutes=21, distance_meters=15432)
    assert second == first
    assert session.headers["User-Agent"] == "test-agent"
    assert len([c for c in session.calls if "router" in c]) == 1


def test_osrm_falls_back_to_placeholder_on_network_error():
    session = _Session(
        [("https://nominatim.openstreetmap.org/search", requests.ConnectionError("offline"))]
    )
    estimator = OsrmTravelEstimator(session=session)

    assert estimator.estimate("Home", "Office") == TravelEstimate(30, 10000)


def test_osrm_falls_back_when_geocoder_finds_nothing():
    session = _Session([("https://nominatim.openstreetmap.org/search", [])])
    estimator = OsrmTravelEstimator(session=session)

    assert estimator.estimate("Nowhere", "Elsewhere").minutes == 30


def test_build_travel_estimator():
    assert isinstance(build_travel_estimator("placeholder"), PlaceholderTravelEstimator)
    assert isinstance(build_travel_estimator("osrm"), OsrmTravelEstimator)
    with pytest.raises(ValueError):
        build_travel_estimator("teleport")
