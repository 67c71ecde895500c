"""Great-circle distance helpers."""

import math

EARTH_RADIUS_M = 6_371_000

# Assumed average speed in city traffic when no better figure is known
CITY_SPEED_KMH = 30.0


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in meters between two lat/lon points."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.asin(math.sqrt(min(1.0, a)))


def distance_between(a, b) -> float:
    """Haversine distance in meters between two objects with latitude/longitude."""
    return haversine(a.latitude, a.longitude, b.latitude, b.longitude)


def travel_seconds(meters: float, speed_kmh: float = CITY_SPEED_KMH) -> float:
    return meters / (speed_kmh / 3.6)


def format_distance(meters: float) -> str:
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    minutes = max(1, math.ceil(seconds / 60))
    return f"{minutes} dk"
