"""Directions provider adapter with graceful failure"""
import logging
import math
import threading
from dataclasses import dataclass
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence

import polyline
import requests

from .. import config
from ..utils.geo_utils import polyline_length_km
from .normalizer import round_coordinates

logger = logging.getLogger(__name__)


@dataclass
class RoutePath:
    """Road-following path returned by the provider"""
    coordinates: List[List[float]]  # [lon, lat]
    distance_km: float


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def _is_valid_pair(coords: Any) -> bool:
    return isinstance(coords, (list, tuple)) and len(coords) == 2 and all(_is_number(c) for c in coords)


class RouteService:
    """Service for requesting driving routes between survey points"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = config.GOOGLE_MAPS_API_KEY if api_key is None else api_key
        self.base_url = base_url or config.DIRECTIONS_API_URL
        self.timeout = timeout or config.ROUTE_TIMEOUT_SECONDS
        self._session = session
        self._local = threading.local()
        if not self.api_key:
            logger.warning("No directions API key configured; proposed segments will be straight lines")

    @property
    def session(self) -> requests.Session:
        """The injected session, else one session per worker thread."""
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def fetch_route(self, from_coords: Sequence[float], to_coords: Sequence[float]) -> Optional[RoutePath]:
        """
        Fetch a driving route between two points.

        Args:
            from_coords: Start as [lon, lat]
            to_coords: End as [lon, lat]

        Returns:
            RoutePath with [lon, lat] vertices and distance in km, or None
            when the input is invalid, both points coincide, or the
            provider fails. Never raises.
        """
        if not _is_valid_pair(from_coords) or not _is_valid_pair(to_coords):
            logger.warning("Skipping invalid route coordinates: from=%r to=%r", from_coords, to_coords)
            return None
        if from_coords[0] == to_coords[0] and from_coords[1] == to_coords[1]:
            return None

        data = self._request({
            "origin": f"{from_coords[1]},{from_coords[0]}",
            "destination": f"{to_coords[1]},{to_coords[0]}",
            "mode": config.ROUTE_TRAVEL_MODE,
        })
        if data is None:
            return None

        routes = self._routes(data)
        if not routes:
            logger.warning("No routes found between %s and %s", from_coords, to_coords)
            return None
        return self._decode_route(routes[0])

    def fetch_alternatives(
        self,
        origin: Dict[str, float],
        destination: Dict[str, float],
        waypoint: Optional[Dict[str, float]] = None,
    ) -> List[RoutePath]:
        """
        Fetch every alternative route, optionally forced through a waypoint.

        Args:
            origin: {lat, lng}
            destination: {lat, lng}
            waypoint: Optional {lat, lng} the route must pass through

        Returns:
            Decodable routes, possibly empty
        """
        params = {
            "origin": f"{origin['lat']},{origin['lng']}",
            "destination": f"{destination['lat']},{destination['lng']}",
            "mode": config.ROUTE_TRAVEL_MODE,
            "alternatives": "true",
        }
        if waypoint:
            params["waypoints"] = f"{waypoint['lat']},{waypoint['lng']}"

        data = self._request(params)
        if data is None:
            return []
        paths = []
        for route in self._routes(data):
            path = self._decode_route(route)
            if path is not None:
                paths.append(path)
        return paths

    def _request(self, params: Dict[str, str]) -> Optional[Dict]:
        if not self.api_key:
            return None
        try:
            response = self.session.get(
                self.base_url,
                params={**params, "key": self.api_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Error fetching route from directions provider: %s", exc)
            return None

        if not isinstance(data, dict):
            logger.error("Unexpected directions response body: %s", type(data).__name__)
            return None
        status = data.get("status")
        if status != "OK":
            logger.error("Directions API error: %s %s", status, data.get("error_message", ""))
            return None
        return data

    @staticmethod
    def _routes(data: Dict) -> List[Any]:
        routes = data.get("routes")
        if not isinstance(routes, list):
            return []
        return routes

    @staticmethod
    def _decode_route(route: Any) -> Optional[RoutePath]:
        if not isinstance(route, dict):
            logger.warning("Malformed route entry skipped: %r", route)
            return None
        overview = route.get("overview_polyline")
        encoded = overview.get("points") if isinstance(overview, dict) else None
        if not encoded or not isinstance(encoded, str):
            logger.warning("Route without overview polyline skipped")
            return None
        try:
            decoded = polyline.decode(encoded)
        except (ValueError, IndexError, TypeError) as exc:
            logger.error("Undecodable polyline from directions provider: %s", exc)
            return None

        # Provider speaks (lat, lng); everything else here is [lon, lat]
        coordinates = round_coordinates([[lng, lat] for lat, lng in decoded])
        meters = _leg_meters(route.get("legs"))
        if meters is None:
            logger.warning("Route legs without usable distances; measuring the polyline instead")
            return RoutePath(coordinates=coordinates, distance_km=polyline_length_km(coordinates))
        return RoutePath(coordinates=coordinates, distance_km=meters / 1000)


def _leg_meters(legs: Any) -> Optional[float]:
    """Sum of legs[*].distance.value, or None when any leg is malformed."""
    if not isinstance(legs, list) or not legs:
        return None
    total = 0.0
    for leg in legs:
        distance = leg.get("distance") if isinstance(leg, dict) else None
        value = distance.get("value") if isinstance(distance, dict) else None
        if not _is_number(value):
            return None
        total += value
    return total
