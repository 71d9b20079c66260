import asyncio
from typing import AsyncIterator, Dict, Optional, Protocol, Union
from datetime import datetime, timezone
from dataclasses import dataclass, field
from enum import Enum

from pitstop.core.geofencing import GeoPoint, validate_coordinates

class LocationErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"

@dataclass
class LocationFix:
    """Structured location sample produced by a device"""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)

@dataclass
class LocationError:
    """Failed fix reported by the platform location API"""
    kind: LocationErrorKind
    message: str = ""

    @property
    def is_fatal(self) -> bool:
        return self.kind == LocationErrorKind.PERMISSION_DENIED

LocationEvent = Union[LocationFix, LocationError]

class LocationSource(Protocol):
    def watch(self) -> AsyncIterator[LocationEvent]:
        """Lazy, unbounded stream of samples; every call starts a new watch"""
        ...

def parse_location_message(message: Dict) -> LocationEvent:
    """
    Turn a client message into a location event.

    Accepts {"type": "location", "latitude", "longitude", "accuracy"?} and
    {"type": "location_error", "code": "permission_denied" | "timeout" | ...}.
    Malformed samples become transient errors rather than crashing the watch.
    """
    if message.get("type") == "location_error":
        try:
            kind = LocationErrorKind(message.get("code"))
        except ValueError:
            kind = LocationErrorKind.UNAVAILABLE
        return LocationError(kind=kind, message=str(message.get("message", "")))

    try:
        latitude = float(message["latitude"])
        longitude = float(message["longitude"])
    except (KeyError, TypeError, ValueError):
        return LocationError(LocationErrorKind.UNAVAILABLE, "Malformed location sample")

    validation = validate_coordinates(latitude, longitude)
    if not validation["valid"]:
        return LocationError(LocationErrorKind.UNAVAILABLE, "; ".join(validation["errors"]))

    accuracy = message.get("accuracy")
    return LocationFix(
        latitude=latitude,
        longitude=longitude,
        accuracy=float(accuracy) if accuracy is not None else None
    )

_END = object()

def _is_terminal(event) -> bool:
    return event is _END or (isinstance(event, LocationError) and event.is_fatal)

@dataclass
class QueueLocationSource:
    """
    Location source fed by a transport, e.g. samples arriving on a WebSocket.

    Holds at most one pending sample; a newer fix replaces an unprocessed one,
    but never a pending permission denial or end of stream.
    """
    _queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=1))

    def push(self, event: LocationEvent) -> None:
        if self._queue.full():
            try:
                pending = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pending = None
            if _is_terminal(pending) and not _is_terminal(event):
                self._queue.put_nowait(pending)
                return
        self._queue.put_nowait(event)

    def close(self) -> None:
        self.push(_END)  # type: ignore[arg-type]

    async def watch(self) -> AsyncIterator[LocationEvent]:
        while True:
            event = await self._queue.get()
            if event is _END:
                return
            yield event
