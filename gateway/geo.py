"""Spherical-earth geometry helpers shared by location validation and spawn queries"""
import math
import random
from typing import Optional, Tuple

EARTH_RADIUS_M = 6371000.0
METERS_PER_DEGREE_LAT = 111320.0


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in meters between two WGS84 points.

    Uses the haversine formula on a sphere of radius 6,371,000 m. The exact
    operation order matters: distance figures are compared against fixtures.
    """
    d_lat = ((lat2 - lat1) * math.pi) / 180
    d_lon = ((lon2 - lon1) * math.pi) / 180
    a = (
        math.sin(d_lat / 2) * math.sin(d_lat / 2)
        + math.cos((lat1 * math.pi) / 180)
        * math.cos((lat2 * math.pi) / 180)
        * math.sin(d_lon / 2)
        * math.sin(d_lon / 2)
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def implied_speed_mps(distance_m: float, elapsed_s: float) -> float:
    """Speed needed to cover distance_m in elapsed_s. Zero elapsed with movement is infinite."""
    if elapsed_s <= 0:
        return math.inf if distance_m > 0 else 0.0
    return distance_m / elapsed_s


def offset_point(lat: float, lng: float, distance_m: float, bearing_deg: float) -> Tuple[float, float]:
    """Move distance_m along bearing_deg using a flat local approximation"""
    bearing_rad = math.radians(bearing_deg)
    lat_offset = (distance_m / METERS_PER_DEGREE_LAT) * math.cos(bearing_rad)
    lng_offset = (distance_m / (METERS_PER_DEGREE_LAT * math.cos(math.radians(lat)))) * math.sin(bearing_rad)
    return lat + lat_offset, lng + lng_offset


def random_point_in_radius(
    lat: float,
    lng: float,
    min_m: float,
    max_m: float,
    rng: Optional[random.Random] = None
) -> Tuple[float, float]:
    """Random point between min_m and max_m away from (lat, lng)"""
    rng = rng or random
    bearing = rng.random() * 360
    distance = min_m + rng.random() * (max_m - min_m)
    return offset_point(lat, lng, distance, bearing)


def bounding_box(lat: float, lng: float, radius_m: float) -> Tuple[float, float, float, float]:
    """
    Lat/lng box enclosing a circle of radius_m, as (min_lat, max_lat, min_lng, max_lng).

    Used as a cheap SQL prefilter; callers still apply haversine_meters.
    When the circle reaches a pole every longitude is inside, and the box
    spans the full 360 degrees.
    """
    # 1% slack so the box never clips points the haversine check would keep
    meters_per_degree = math.pi * EARTH_RADIUS_M / 180
    lat_delta = 1.01 * radius_m / meters_per_degree
    min_lat, max_lat = lat - lat_delta, lat + lat_delta
    if min_lat <= -90.0 or max_lat >= 90.0:
        return max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0

    # Widest longitude spread occurs at the edge nearest the pole
    cos_lat = max(math.cos(math.radians(max(abs(min_lat), abs(max_lat)))), 1e-6)
    lng_delta = 1.01 * radius_m / (meters_per_degree * cos_lat)
    if lng_delta >= 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, lng - lng_delta, lng + lng_delta


def region_key(lat: float, lng: float, size_km: float = 5.0) -> str:
    """Grid key ('R<lat index>_<lng index>') of the size_km region containing (lat, lng)"""
    lat_step = size_km / 111.32
    lng_step = size_km / (111.32 * max(math.cos(math.radians(lat)), 1e-6))
    return f"R{math.floor(lat / lat_step)}_{math.floor(lng / lng_step)}"


def is_valid_coordinate(lat: float, lng: float) -> bool:
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0
