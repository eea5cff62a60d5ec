from dataclasses import dataclass
from math import atan2, cos, radians, sin, sqrt

from ..errors import InvalidCoordinates
from ..models.payload import GeoLocation, WaypointDefinition

EARTH_RADIUS_METERS = 6_371_000.0
# Rough approximation: 1 degree is about 111,320 meters
METERS_PER_DEGREE = 111_320.0


@dataclass(frozen=True)
class LocationCheck:
    is_valid: bool
    distance_meters: float
    max_distance_meters: float


def validate_coordinates(location: GeoLocation) -> None:
    if not -90.0 <= location.lat <= 90.0 or not -180.0 <= location.lon <= 180.0:
        raise InvalidCoordinates(location.lat, location.lon)


def distance(target: GeoLocation, current: GeoLocation) -> float:
    """Great-circle distance in meters (Haversine)."""
    validate_coordinates(target)
    validate_coordinates(current)

    lat1 = radians(target.lat)
    lat2 = radians(current.lat)
    delta_lat = radians(current.lat - target.lat)
    delta_lon = radians(current.lon - target.lon)

    a = sin(delta_lat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(delta_lon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def is_within_radius(target: GeoLocation, current: GeoLocation, radius_meters: float) -> bool:
    return distance(target, current) <= radius_meters


def is_within_bounding_box(target: GeoLocation, current: GeoLocation, radius_meters: float) -> bool:
    """Cheap pre-check. A False here means definitely out of range; a True
    still needs the Haversine distance to decide."""
    degree_tolerance = radius_meters / METERS_PER_DEGREE
    # Longitude degrees shrink towards the poles, widen the box accordingly
    lon_tolerance = degree_tolerance / max(cos(radians(target.lat)), 1e-6)
    lat_diff = abs(target.lat - current.lat)
    lon_diff = abs(target.lon - current.lon)
    lon_diff = min(lon_diff, 360.0 - lon_diff)
    return lat_diff <= degree_tolerance and lon_diff <= lon_tolerance


def validate_waypoint_location(waypoint: WaypointDefinition, location: GeoLocation) -> LocationCheck:
    meters = distance(waypoint.target_location, location)
    return LocationCheck(
        is_valid=meters <= waypoint.radius_meters,
        distance_meters=meters,
        max_distance_meters=waypoint.radius_meters,
    )
