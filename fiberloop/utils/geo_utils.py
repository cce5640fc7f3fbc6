"""Great-circle helpers shared by the services"""
import math
from typing import Dict, Optional, Sequence

import numpy as np

from .. import config


def haversine_km(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Great-circle distance between two [lon, lat] pairs.

    Args:
        a: First coordinate as [lon, lat]
        b: Second coordinate as [lon, lat]

    Returns:
        Distance in kilometers
    """
    lon1, lat1 = a[0], a[1]
    lon2, lat2 = b[0], b[1]
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return 2 * config.EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in meters, latitude first.

    Returns:
        Distance in meters
    """
    return haversine_km([lon1, lat1], [lon2, lat2]) * 1000


def polyline_length_km(coords: Sequence[Sequence[float]]) -> float:
    """Sum of consecutive haversine distances along a [lon, lat] polyline."""
    total = 0.0
    for i in range(1, len(coords)):
        total += haversine_km(coords[i - 1], coords[i])
    return total


def midpoint(coords: Sequence[Sequence[float]]) -> Optional[Dict[str, float]]:
    """Mean position of a polyline, used to place segment labels."""
    if not coords or len(coords) < 2:
        return None
    lons = [c[0] for c in coords]
    lats = [c[1] for c in coords]
    return {"lng": sum(lons) / len(lons), "lat": sum(lats) / len(lats)}


def pairwise_distance_matrix_km(coords: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Vectorised haversine distances between every pair of points.

    Args:
        coords: Sequence of [lon, lat] pairs

    Returns:
        n x n matrix of distances in kilometers
    """
    arr = np.radians(np.asarray(coords, dtype=float).reshape(-1, 2))
    lon = arr[:, 0][:, None]
    lat = arr[:, 1][:, None]
    d_lat = lat.T - lat
    d_lon = lon.T - lon
    h = np.sin(d_lat / 2) ** 2 + np.cos(lat) * np.cos(lat.T) * np.sin(d_lon / 2) ** 2
    h = np.clip(h, 0.0, 1.0)
    return 2 * config.EARTH_RADIUS_KM * np.arctan2(np.sqrt(h), np.sqrt(1 - h))
