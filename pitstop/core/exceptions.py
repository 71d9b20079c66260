"""Domain-level exceptions for beacons, location tracking and push delivery."""


class PitstopError(Exception):
    """Base class for domain errors."""

    reason: str = "unknown"

    def __init__(self, message: str | None = None) -> None:
        # `reason` is fixed per class; the message is for humans
        super().__init__(message or self.reason)


# Beacon state conflicts: typed rejections, the caller must not blindly retry

class BeaconError(PitstopError):
    reason = "beacon_error"


class BeaconNotFound(BeaconError):
    reason = "not_found"


class BeaconConflict(BeaconError):
    reason = "conflict"


class AlreadyActiveBeacon(BeaconConflict):
    reason = "already_active"


class AlreadyClaimed(BeaconConflict):
    reason = "already_claimed"


class InvalidBeaconTransition(BeaconConflict):
    reason = "invalid_transition"


class NotBeaconOwner(BeaconError):
    reason = "forbidden"


# Location acquisition

class LocationPermissionDenied(PitstopError):
    """Fatal to the current tracking session; requires explicit re-opt-in."""

    reason = "permission_denied"


# Push delivery

class DeliveryError(PitstopError):
    reason = "delivery_failed"


class InvalidTokenError(DeliveryError):
    """The delivery token is permanently unregistered."""

    reason = "invalid_token"


class TransientDeliveryError(DeliveryError):
    reason = "transient"
