"""Geospatial helpers."""
from __future__ import annotations

import math
from typing import Dict

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = EARTH_RADIUS_KM
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def distance_km(a: Dict[str, float], b: Dict[str, float]) -> float:
    return haversine_km(a["lat"], a["lng"], b["lat"], b["lng"])


def offset_point(center: Dict[str, float], d_lat: float, d_lng: float) -> Dict[str, float]:
    return {"lat": center["lat"] + d_lat, "lng": center["lng"] + d_lng}


def range_bounds_km(distance_range: int, base_radius_m: int) -> tuple[float, float]:
    """Inner and outer edge of annulus ``distance_range`` in kilometres."""
    base_km = base_radius_m / 1000.0
    if distance_range <= 1:
        return 0.0, base_km
    return (distance_range - 1) * base_km, distance_range * base_km


def in_distance_range(dist_km: float, distance_range: int, base_radius_m: int) -> bool:
    inner, outer = range_bounds_km(distance_range, base_radius_m)
    if distance_range <= 1:
        return dist_km < outer
    return inner <= dist_km < outer
