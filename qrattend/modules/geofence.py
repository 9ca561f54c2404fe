"""
Geofence helpers - QR Attendance API

Great-circle distance and location parsing used to check that a scan
happened close enough to where the QR session was issued.
"""

import math
from typing import Dict, Any, Optional

EARTH_RADIUS_METERS = 6371000.0


class LocationError(ValueError):
    """Raised when a location object cannot be parsed."""


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return distance between two lat/lon pairs in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2.0) ** 2
    a = min(1.0, max(0.0, a))
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def parse_location(location: Any) -> Optional[Dict[str, float]]:
    """
    Normalize a client supplied location.

    Accepts ``{"latitude": .., "longitude": ..}`` (``lat``/``lng`` also work)
    or a GeoJSON style ``{"coordinates": [lng, lat]}``.

    Args:
        location: Location object from the request body, or None

    Returns:
        Optional[Dict[str, float]]: ``{'latitude', 'longitude'}`` or None when
        no location was given

    Raises:
        LocationError: If the object is malformed or out of range
    """
    if location is None:
        return None
    if not isinstance(location, dict):
        raise LocationError('Location must be an object')

    if 'coordinates' in location:
        coordinates = location['coordinates']
        if not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
            raise LocationError('Coordinates must be [longitude, latitude]')
        longitude, latitude = coordinates[0], coordinates[1]
    else:
        latitude = location.get('latitude', location.get('lat'))
        longitude = location.get('longitude', location.get('lng'))

    if latitude is None and longitude is None:
        return None

    try:
        latitude = float(latitude)
        longitude = float(longitude)
    except (TypeError, ValueError):
        raise LocationError('Latitude and longitude must be numbers')

    if math.isnan(latitude) or math.isnan(longitude):
        raise LocationError('Latitude and longitude must be numbers')
    if not -90 <= latitude <= 90:
        raise LocationError('Latitude must be between -90 and 90')
    if not -180 <= longitude <= 180:
        raise LocationError('Longitude must be between -180 and 180')

    return {'latitude': latitude, 'longitude': longitude}


def is_within_radius(center: Dict[str, float], point: Dict[str, float], radius: float) -> bool:
    """Check whether ``point`` lies within ``radius`` meters of ``center``."""
    distance = haversine_distance(
        center['latitude'], center['longitude'],
        point['latitude'], point['longitude']
    )
    return distance <= radius
