from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

import requests

from .timeutils import normalize_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TravelEstimate:
    minutes: int
    distance_meters: Optional[int] = None


class TravelTimeEstimator(Protocol):
    def estimate(self, origin: str, destination: str) -> TravelEstimate:
        ...


class PlaceholderTravelEstimator:
    """Conservative name-based guess used when no routing service is configured."""

    def estimate(self, origin: str, destination: str) -> TravelEstimate:
        a = normalize_text(origin)
        b = normalize_text(destination)
        if a == b:
            return TravelEstimate(minutes=0, distance_meters=0)
        if a in b or b in a:
            return TravelEstimate(minutes=5, distance_meters=_placeholder_distance(a, b))
        return TravelEstimate(minutes=30, distance_meters=_placeholder_distance(a, b))


def _placeholder_distance(a: str, b: str) -> int:
    if ("home" in a and "office" in b) or ("office" in a and "home" in b):
        return 10000
    return 5000


_NOMINATIM_SEARCH = "https://nominatim.openstreetmap.org/search"
_OSRM_DRIVING = "https://router.project-osrm.org/route/v1/driving/"
_REQUEST_TIMEOUT = 8

Coordinates = Tuple[float, float]


class OsrmTravelEstimator:
    """Road estimates from Nominatim geocoding and the public OSRM router, cached per address pair."""

    def __init__(
        self,
        user_agent: str = "calintel/0.1",
        fallback: Optional[TravelTimeEstimator] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": user_agent})
        self._fallback = fallback or PlaceholderTravelEstimator()
        self._places: Dict[str, Optional[Coordinates]] = {}
        self._routes: Dict[Tuple[str, str], Optional[TravelEstimate]] = {}

    def estimate(self, origin: str, destination: str) -> TravelEstimate:
        pair = (normalize_text(origin), normalize_text(destination))
        routed = None
        if all(pair):
            if pair not in self._routes:
                self._routes[pair] = self._lookup_route(*pair)
            routed = self._routes[pair]
        if routed is None:
            return self._fallback.estimate(origin, destination)
        return routed

    def _lookup_route(self, origin: str, destination: str) -> Optional[TravelEstimate]:
        if origin == destination:
            return TravelEstimate(minutes=0, distance_meters=0)
        ends = [self._coordinates(origin), self._coordinates(destination)]
        if None in ends:
            return None
        # OSRM expects lon,lat pairs
        waypoints = ";".join(f"{lon},{lat}" for lat, lon in ends)
        try:
            routes = self._get_json(_OSRM_DRIVING + waypoints, {"overview": "false"}).get("routes")
            if not routes:
                return None
            best = routes[0]
            meters = best.get("distance")
            return TravelEstimate(
                minutes=max(1, round(float(best.get("duration", 0)) / 60)),
                distance_meters=None if meters is None else int(meters),
            )
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.warning("Routing %r -> %r failed: %s", origin, destination, e)
            return None

    def _coordinates(self, address: str) -> Optional[Coordinates]:
        if address not in self._places:
            self._places[address] = self._lookup_place(address)
        return self._places[address]

    def _lookup_place(self, address: str) -> Optional[Coordinates]:
        try:
            matches = self._get_json(_NOMINATIM_SEARCH, {"q": address, "format": "json", "limit": 1})
            if not matches:
                return None
            return float(matches[0]["lat"]), float(matches[0]["lon"])
        except (requests.RequestException, ValueError, KeyError) as e:
            logger.warning("Geocoding %r failed: %s", address, e)
            return None

    def _get_json(self, url: str, params: Dict[str, Any]) -> Any:
        response = self._session.get(url, params=params, timeout=_REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()


def build_travel_estimator(provider: str, user_agent: str = "calintel/0.1") -> TravelTimeEstimator:
    if provider == "osrm":
        return OsrmTravelEstimator(user_agent=user_agent)
    if provider == "placeholder":
        return PlaceholderTravelEstimator()
    raise ValueError(f"Unknown travel provider: {provider!r}")
