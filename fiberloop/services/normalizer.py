"""Canonical names, rounded coordinates and segment validation"""
import logging
import math
import re
from numbers import Real
from typing import Any, List, Optional, Sequence

from .. import config
from ..utils.geo_utils import haversine_km

logger = logging.getLogger(__name__)

# The group must follow whitespace, and normalized names contain none
_PARENTHETICAL = re.compile(r"\s+\([^)]+\)")
_WHITESPACE = re.compile(r"\s+")

Coordinate = List[float]


def normalize_name(raw: Optional[str]) -> Optional[str]:
    """
    Canonicalize a surveyed point name.

    Trims, removes the first parenthetical group that follows a word,
    joins words with '-' and upper-cases, so "Ram Nagar (GP) " becomes
    "RAM-NAGAR". Idempotent.

    Args:
        raw: Name as written in the survey file

    Returns:
        Normalized name, or None when nothing usable remains
    """
    if raw is None:
        return None
    name = _PARENTHETICAL.sub("", str(raw).strip(), count=1).strip()
    if not name:
        return None
    return _WHITESPACE.sub("-", name).upper()


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return round(value, config.COORDINATE_PRECISION)


def normalize_coordinate(pair: Any) -> Optional[Coordinate]:
    """
    Round a coordinate to the stored precision.

    Accepts [lon, lat] (extra items such as altitude are ignored) or a
    mapping with lat and lng/lon keys.

    Returns:
        [lon, lat], or None when the input is malformed. Callers drop the
        point or vertex on None, they never substitute zero.
    """
    if isinstance(pair, dict):
        lat = pair.get("lat")
        lng = pair.get("lng", pair.get("lon"))
        lon_value, lat_value = _finite(lng), _finite(lat)
    elif isinstance(pair, (list, tuple)) and len(pair) >= 2:
        lon_value, lat_value = _finite(pair[0]), _finite(pair[1])
    else:
        logger.warning("Invalid coordinate format: %r", pair)
        return None

    if lon_value is None or lat_value is None:
        logger.warning("Non-finite coordinate dropped: %r", pair)
        return None
    return [lon_value, lat_value]


def round_coordinates(coords: Any) -> List[Coordinate]:
    """Normalize every vertex of a polyline, dropping the malformed ones."""
    if not isinstance(coords, (list, tuple)):
        logger.warning("Invalid coordinates: not a sequence %r", coords)
        return []
    rounded = []
    for coord in coords:
        normalized = normalize_coordinate(coord)
        if normalized is not None:
            rounded.append(normalized)
    return rounded


def _coordinate_key(coord: Sequence[float]) -> str:
    precision = config.COORDINATE_PRECISION
    return f"{coord[0]:.{precision}f},{coord[1]:.{precision}f}"


def is_valid_segment(coords: Sequence[Sequence[float]], min_distance_km: Optional[float] = None) -> bool:
    """
    Check that a polyline is renderable and measurable.

    Args:
        coords: [lon, lat] vertices, already normalized
        min_distance_km: Smallest consecutive step that counts as movement

    Returns:
        False for fewer than 2 vertices, fewer than 2 distinct vertices,
        or when no consecutive pair is at least min_distance_km apart
    """
    if min_distance_km is None:
        min_distance_km = config.MIN_SEGMENT_KM
    if not coords or len(coords) < 2:
        logger.warning("Invalid segment: fewer than 2 coordinates")
        return False

    if len({_coordinate_key(c) for c in coords}) < 2:
        logger.warning("Invalid segment: all coordinates are identical")
        return False

    for i in range(1, len(coords)):
        if haversine_km(coords[i - 1], coords[i]) >= min_distance_km:
            return True

    logger.warning("Invalid segment: coordinates too close (dist < %s km)", min_distance_km)
    return False


def to_latlng_dicts(coords: Sequence[Sequence[float]]) -> List[dict]:
    """[lon, lat] pairs to the {lat, lng} objects the map client exchanges."""
    return [{"lat": c[1], "lng": c[0]} for c in coords]
