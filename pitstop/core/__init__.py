"""
Core modules for the Pitstop presence and notification service

This package contains the core business logic:
- geofencing: distances, proximity radius and home privacy zone
- settings_gate: per-user notification eligibility and quiet hours
- exceptions: domain errors for beacons, location tracking and delivery
- presence_session / beacon_engine / notification_router: the live features
"""

from .geofencing import (
    GeoPoint,
    HomeZone,
    distance_meters,
    within_radius,
    home_zone_for,
    validate_coordinates
)

from .settings_gate import (
    is_eligible,
    is_quiet_now,
    local_now
)

from .exceptions import (
    PitstopError,
    BeaconError,
    BeaconNotFound,
    AlreadyActiveBeacon,
    AlreadyClaimed,
    InvalidBeaconTransition,
    NotBeaconOwner,
    LocationPermissionDenied
)

__all__ = [
    # Geofencing
    "GeoPoint",
    "HomeZone",
    "distance_meters",
    "within_radius",
    "home_zone_for",
    "validate_coordinates",

    # Settings gate
    "is_eligible",
    "is_quiet_now",
    "local_now",

    # Errors
    "PitstopError",
    "BeaconError",
    "BeaconNotFound",
    "AlreadyActiveBeacon",
    "AlreadyClaimed",
    "InvalidBeaconTransition",
    "NotBeaconOwner",
    "LocationPermissionDenied"
]
