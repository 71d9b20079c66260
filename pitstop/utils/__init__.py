"""
Utility modules for the Pitstop presence and notification service

This package contains utility functions and services:
- notifications: push delivery over FCM and concurrent fan-out
- location_utils: location samples, errors and sources
- feeds: latest-wins snapshot feeds
"""

from .notifications import (
    PushMessage,
    PushTransport,
    FcmTransport,
    Dispatcher,
    DeliveryOutcome,
    DeliveryResult,
    FanOutReport
)

from .location_utils import (
    LocationFix,
    LocationError,
    LocationErrorKind,
    QueueLocationSource,
    parse_location_message
)

from .feeds import SnapshotFeed

__all__ = [
    # Notification services
    "PushMessage",
    "PushTransport",
    "FcmTransport",
    "Dispatcher",
    "DeliveryOutcome",
    "DeliveryResult",
    "FanOutReport",

    # Location utilities
    "LocationFix",
    "LocationError",
    "LocationErrorKind",
    "QueueLocationSource",
    "parse_location_message",

    # Feeds
    "SnapshotFeed"
]
