"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from shapely.geometry import Point, Polygon

from ..models.domain import Coordinates

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_km(a: Coordinates, b: Coordinates) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def haversine_matrix_km(points: Sequence[Coordinates]) -> np.ndarray:
    """Pairwise great-circle distances as an (n, n) array."""

    if not points:
        return np.zeros((0, 0), dtype=float)
    lat = np.radians(np.array([p.latitude for p in points], dtype=float))
    lon = np.radians(np.array([p.longitude for p in points], dtype=float))
    d_phi = lat[:, None] - lat[None, :]
    d_lambda = lon[:, None] - lon[None, :]
    a = np.sin(d_phi / 2) ** 2 + np.cos(lat)[:, None] * np.cos(lat)[None, :] * np.sin(d_lambda / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    matrix = 2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    np.fill_diagonal(matrix, 0.0)
    return matrix


def centroid(points: Sequence[Coordinates]) -> Coordinates | None:
    if not points:
        return None
    lat = sum(p.latitude for p in points) / len(points)
    lon = sum(p.longitude for p in points) / len(points)
    return Coordinates(lat, lon)


def point_to_segment_km(point: Coordinates, start: Coordinates, end: Coordinates) -> float:
    """Distance from ``point`` to the segment start-end.

    Uses a local equirectangular projection, accurate enough at city scale.
    """

    ref_lat = math.radians((start.latitude + end.latitude + point.latitude) / 3)

    def project(c: Coordinates) -> tuple[float, float]:
        x = math.radians(c.longitude) * math.cos(ref_lat) * EARTH_RADIUS_KM
        y = math.radians(c.latitude) * EARTH_RADIUS_KM
        return x, y

    px, py = project(point)
    ax, ay = project(start)
    bx, by = project(end)
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return math.hypot(px - ax, py - ay)
    t = max(0.0, min(1.0, ((px - ax) * dx + (py - ay) * dy) / length_sq))
    return math.hypot(px - (ax + t * dx), py - (ay + t * dy))


def point_in_polygon(lat: float, lon: float, polygon_coords: Sequence[tuple[float, float]]) -> bool:
    """Return True if the point is inside the polygon denoted by (lat, lon) pairs."""

    polygon = Polygon([(lng, lat) for lat, lng in polygon_coords])
    return polygon.contains(Point(lon, lat))
