# geo_utils.py
# Pure mathematical / geographic helper functions.
# No side effects; only errors is imported from this project.

import math
from typing import Sequence, Tuple

import numpy as np

from .errors import InputError


EARTH_RADIUS_M = 6_371_000.0


def validate_coord(lat: float, lng: float) -> None:
    """
    Reject coordinates that cannot describe a point on Earth.

    Raises:
        InputError: on non-numeric, non-finite or out-of-range values.
    """
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        raise InputError(f"Coordinates must be numeric, got ({lat!r}, {lng!r})")
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        raise InputError(f"Coordinates must be finite, got ({lat}, {lng})")
    if not -90.0 <= lat_f <= 90.0:
        raise InputError(f"Latitude out of range: {lat}")
    if not -180.0 <= lng_f <= 180.0:
        raise InputError(f"Longitude out of range: {lng}")


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points in metres.

    Args:
        lat1, lng1: Origin in decimal degrees.
        lat2, lng2: Destination in decimal degrees.

    Returns:
        Distance in metres.
    """
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a, b) -> float:
    """Haversine distance between two objects exposing .lat / .lng."""
    return haversine_distance(a.lat, a.lng, b.lat, b.lng)


def calculate_bearing(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Forward azimuth (bearing) from point 1 to point 2 in degrees [0, 360).

    Args:
        lat1, lng1: Origin in decimal degrees.
        lat2, lng2: Destination in decimal degrees.

    Returns:
        Bearing in degrees.
    """
    rlat1, rlng1 = math.radians(lat1), math.radians(lng1)
    rlat2, rlng2 = math.radians(lat2), math.radians(lng2)
    d_lng = rlng2 - rlng1
    y = math.sin(d_lng) * math.cos(rlat2)
    x = math.cos(rlat1) * math.sin(rlat2) - math.sin(rlat1) * math.cos(rlat2) * math.cos(d_lng)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


# ---------------------------------------------------------------------------
# Polyline helpers (vectorised)
# ---------------------------------------------------------------------------

def coords_to_array(coords: Sequence) -> np.ndarray:
    """(n, 2) float array of [lat, lng] rows."""
    if not coords:
        return np.empty((0, 2), dtype=float)
    return np.array([(c.lat, c.lng) for c in coords], dtype=float)


def haversine_to_many(lat: float, lng: float, points: np.ndarray) -> np.ndarray:
    """
    Distances in metres from one point to every row of a [lat, lng] array.

    Same formula as haversine_distance, evaluated for all rows at once.
    """
    lat_r = np.radians(lat)
    lats_r = np.radians(points[:, 0])
    d_lat = lats_r - lat_r
    d_lng = np.radians(points[:, 1] - lng)
    a = np.sin(d_lat / 2) ** 2 + np.cos(lat_r) * np.cos(lats_r) * np.sin(d_lng / 2) ** 2
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def nearest_vertex(point, points: np.ndarray) -> Tuple[int, float]:
    """
    Index of, and distance to, the polyline vertex closest to point.

    Args:
        point:  Anything with .lat / .lng.
        points: (n, 2) [lat, lng] array.

    Returns:
        (index, distance_m); (-1, inf) for an empty polyline.
    """
    if len(points) == 0:
        return -1, float("inf")
    dists = haversine_to_many(point.lat, point.lng, points)
    idx = int(np.argmin(dists))
    return idx, float(dists[idx])


def segment_lengths(points: np.ndarray) -> np.ndarray:
    """Length in metres of each consecutive segment of a [lat, lng] array."""
    if len(points) < 2:
        return np.zeros(0, dtype=float)
    lat1 = np.radians(points[:-1, 0])
    lat2 = np.radians(points[1:, 0])
    d_lat = lat2 - lat1
    d_lng = np.radians(points[1:, 1] - points[:-1, 1])
    a = np.sin(d_lat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(d_lng / 2) ** 2
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def polyline_length(points: np.ndarray) -> float:
    return float(segment_lengths(points).sum())


def distance_along_route(point, points: np.ndarray) -> float:
    """
    Polyline length from the first vertex up to the vertex nearest to point.

    Returns 0 for an empty polyline.
    """
    idx, _ = nearest_vertex(point, points)
    if idx <= 0:
        return 0.0
    return float(segment_lengths(points[: idx + 1]).sum())
