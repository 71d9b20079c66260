import math
from dataclasses import dataclass
from typing import Dict, Any, Optional

from pitstop.config import settings

EARTH_RADIUS_METERS = 6_371_000

@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def __post_init__(self):
        errors = validate_coordinates(self.lat, self.lng)["errors"]
        if errors:
            raise ValueError("; ".join(errors))

@dataclass(frozen=True)
class HomeZone:
    """Privacy circle around a member's home; position is never shared inside it"""
    center: GeoPoint
    radius_meters: float = settings.DEFAULT_PRIVACY_RADIUS_M

    def contains(self, point: GeoPoint) -> bool:
        return distance_meters(point, self.center) < self.radius_meters

def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """
    Calculate distance between two points using Haversine formula
    Returns distance in meters
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [a.lat, a.lng, b.lat, b.lng])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    c = 2 * math.asin(min(1.0, math.sqrt(h)))

    return EARTH_RADIUS_METERS * c

def within_radius(a: GeoPoint, b: GeoPoint, radius_meters: float) -> bool:
    return distance_meters(a, b) <= radius_meters

def home_zone_for(
    home_lat: Optional[float],
    home_lng: Optional[float],
    radius_meters: Optional[float] = None
) -> Optional[HomeZone]:
    """Build a member's home zone from stored profile fields, if one is set"""
    if home_lat is None or home_lng is None:
        return None
    return HomeZone(
        center=GeoPoint(home_lat, home_lng),
        radius_meters=settings.DEFAULT_PRIVACY_RADIUS_M if radius_meters is None else radius_meters
    )

def validate_coordinates(latitude: float, longitude: float) -> Dict[str, Any]:
    """
    Basic coordinate validation
    Returns validation result with details
    """
    result: Dict[str, Any] = {
        "valid": False,
        "errors": []
    }

    if latitude is None or math.isnan(latitude) or not (-90 <= latitude <= 90):
        result["errors"].append("Invalid latitude: must be between -90 and 90")

    if longitude is None or math.isnan(longitude) or not (-180 <= longitude <= 180):
        result["errors"].append("Invalid longitude: must be between -180 and 180")

    result["valid"] = not result["errors"]
    return result
