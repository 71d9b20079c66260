"""
Live presence for one device: the watch-and-publish loop.

A session consumes location samples, keeps the member's presence record in
sync with their privacy preferences and raises a local alert the first time
each peer comes within the member's proximity radius.
"""
import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set

from pitstop.config import settings
from pitstop.core.exceptions import LocationPermissionDenied
from pitstop.core.geofencing import GeoPoint, HomeZone, distance_meters, home_zone_for
from pitstop.core.presence_store import PresenceStore
from pitstop.models.notification import NotificationSettings
from pitstop.models.presence import PresenceRead
from pitstop.models.user import UserProfile
from pitstop.utils.clock import utc_now
from pitstop.utils.location_utils import LocationError, LocationFix, LocationSource

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "Location access was denied. Live tracking has been turned off."

@dataclass
class TrackerProfile:
    """What a session needs to know about its owner"""
    user_id: str
    display_name: str = "Anonymous"
    avatar_ref: Optional[str] = None
    status_text: Optional[str] = None
    allow_contact: bool = False
    visible: bool = False
    home_zone: Optional[HomeZone] = None
    proximity_alerts: bool = False
    proximity_radius_km: float = settings.DEFAULT_PROXIMITY_RADIUS_KM

    @classmethod
    def from_user(cls, user: UserProfile) -> "TrackerProfile":
        notification_settings = NotificationSettings.merged(user.notification_settings)
        return cls(
            user_id=user.id,
            display_name=user.display_name or "Anonymous",
            avatar_ref=user.avatar_ref,
            status_text=user.tracker_status,
            allow_contact=user.allow_contact,
            visible=user.tracker_visible,
            home_zone=home_zone_for(user.home_lat, user.home_lng, user.privacy_radius_m),
            # Alerts need the master switch as well as the proximity toggle
            proximity_alerts=notification_settings.enabled and notification_settings.proximity_alerts,
            proximity_radius_km=notification_settings.proximity_radius_km
        )

@dataclass
class ProximityAlert:
    peer_id: str
    display_name: str
    distance_meters: float
    status_text: Optional[str] = None

    @property
    def title(self) -> str:
        return "Someone is nearby!"

    @property
    def body(self) -> str:
        km = round(self.distance_meters / 1000)
        return f"{self.display_name} is in your area ({km} km away). Status: {self.status_text or 'Just cruising'}"

    def to_dict(self) -> dict:
        return {
            "peer_id": self.peer_id,
            "display_name": self.display_name,
            "distance_meters": round(self.distance_meters),
            "title": self.title,
            "body": self.body
        }

ProximityHandler = Callable[[ProximityAlert], Awaitable[None]]
PeersHandler = Callable[[List[PresenceRead]], Awaitable[None]]
StoppedHandler = Callable[[str, Optional[str]], Awaitable[None]]

@dataclass
class PresenceSession:
    profile: TrackerProfile
    store: PresenceStore
    source: LocationSource
    on_proximity: Optional[ProximityHandler] = None
    on_peers: Optional[PeersHandler] = None
    on_stopped: Optional[StoppedHandler] = None
    # Peers already alerted this session; never pruned so GPS jitter around
    # the radius cannot re-trigger an alert
    notified: Set[str] = field(default_factory=set)

    peers: List[PresenceRead] = field(default_factory=list, init=False)
    my_position: Optional[GeoPoint] = field(default=None, init=False)
    near_home: bool = field(default=False, init=False)
    transient_errors: int = field(default=0, init=False)
    stop_reason: Optional[str] = field(default=None, init=False)

    _watch_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _peers_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _record_present: Optional[bool] = field(default=None, init=False, repr=False)
    _released: bool = field(default=True, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @property
    def running(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    async def start(self) -> None:
        if self.running:
            return
        self.stop_reason = None
        self._released = False
        self._record_present = None
        self._peers_task = asyncio.create_task(self._follow_peers())
        self._watch_task = asyncio.create_task(self._run())
        logger.info(f"Presence session started for user {self.profile.user_id}")

    async def stop(self) -> None:
        """Tear down the location watch and remove the presence record before returning"""
        task = self._watch_task
        if task is not None and not task.done():
            self.stop_reason = "stopped"
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await self._release()

    async def wait(self) -> None:
        """Block until the session ends on its own (stream end or fatal error)"""
        if self._watch_task is not None:
            await asyncio.shield(self._watch_task)

    async def __aenter__(self) -> "PresenceSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def handle_fix(self, fix: LocationFix) -> List[ProximityAlert]:
        """Process a single accepted sample: mask or publish, then look for peers"""
        point = fix.point
        self.my_position = point

        async with self._lock:
            zone = self.profile.home_zone
            self.near_home = zone is not None and zone.contains(point)
            if self.near_home or not self.profile.visible:
                await self._withdraw()
            else:
                await self._publish(fix)

        # Noticing others does not depend on being visible ourselves
        alerts = self.check_proximity(point)
        for alert in alerts:
            await self._deliver_alert(alert)
        return alerts

    async def update_profile(self, profile: TrackerProfile) -> None:
        """Apply preferences changed while the session is live; revoking visibility withdraws at once"""
        async with self._lock:
            self.profile = profile
            if self.my_position is not None:
                zone = profile.home_zone
                self.near_home = zone is not None and zone.contains(self.my_position)
            if self.near_home or not profile.visible:
                await self._withdraw()

    def check_proximity(self, point: GeoPoint) -> List[ProximityAlert]:
        if not self.profile.proximity_alerts:
            return []

        radius_meters = self.profile.proximity_radius_km * 1000
        alerts: List[ProximityAlert] = []

        for peer in self.peers:
            if peer.user_id == self.profile.user_id or not peer.has_position:
                continue
            if peer.user_id in self.notified:
                continue

            distance = distance_meters(point, GeoPoint(peer.latitude, peer.longitude))
            if distance <= radius_meters:
                self.notified.add(peer.user_id)
                alerts.append(ProximityAlert(
                    peer_id=peer.user_id,
                    display_name=peer.display_name,
                    distance_meters=distance,
                    status_text=peer.status_text
                ))

        return alerts

    async def _run(self) -> None:
        message: Optional[str] = None
        try:
            async for event in self.source.watch():
                if isinstance(event, LocationError):
                    if event.is_fatal:
                        raise LocationPermissionDenied()
                    self.transient_errors += 1
                    logger.warning(
                        f"Transient location error for user {self.profile.user_id}: "
                        f"{event.kind.value} {event.message}".rstrip()
                    )
                    continue
                await self.handle_fix(event)
            self.stop_reason = "stream_ended"
        except LocationPermissionDenied:
            logger.warning(f"Location permission denied for user {self.profile.user_id}, stopping tracker")
            self.stop_reason = "permission_denied"
            message = PERMISSION_DENIED_MESSAGE
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Presence session for user {self.profile.user_id} failed: {e}")
            self.stop_reason = "error"
            raise
        finally:
            await self._release()

        if self.on_stopped is not None:
            await self.on_stopped(self.stop_reason, message)

    async def _follow_peers(self) -> None:
        async for snapshot in self.store.subscribe():
            self.peers = [
                peer for peer in snapshot
                if peer.user_id != self.profile.user_id and peer.has_position
            ]
            if self.on_peers is not None:
                try:
                    await self.on_peers(self.peers)
                except Exception as e:
                    logger.error(f"Peer snapshot handler failed: {e}")

    async def _publish(self, fix: LocationFix) -> None:
        record = PresenceRead(
            user_id=self.profile.user_id,
            display_name=self.profile.display_name,
            avatar_ref=self.profile.avatar_ref,
            status_text=self.profile.status_text,
            latitude=fix.latitude,
            longitude=fix.longitude,
            allow_contact=self.profile.allow_contact,
            last_active_at=fix.timestamp or utc_now()
        )
        try:
            await self.store.upsert(record)
            self._record_present = True
        except Exception as e:
            logger.error(f"Failed to update presence for user {self.profile.user_id}: {e}")

    async def _withdraw(self) -> None:
        if self._record_present is False:
            return
        try:
            await self.store.delete(self.profile.user_id)
            self._record_present = False
        except Exception as e:
            logger.error(f"Failed to remove presence for user {self.profile.user_id}: {e}")

    async def _deliver_alert(self, alert: ProximityAlert) -> None:
        logger.info(f"Proximity alert for user {self.profile.user_id}: {alert.peer_id} at {round(alert.distance_meters)}m")
        if self.on_proximity is None:
            return
        try:
            await self.on_proximity(alert)
        except Exception as e:
            logger.error(f"Error delivering proximity alert: {e}")

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True

        peers_task, self._peers_task = self._peers_task, None
        if peers_task is not None:
            if not peers_task.done():
                peers_task.cancel()
            try:
                await peers_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Peer feed for user {self.profile.user_id} failed: {e}")

        await self.store.delete(self.profile.user_id)
        self._record_present = False
        logger.info(f"Presence session released for user {self.profile.user_id} ({self.stop_reason})")

class PresenceSessions:
    """Live sessions by member, one per member; the newest attach wins"""

    def __init__(self):
        self._sessions: Dict[str, PresenceSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: str) -> Optional[PresenceSession]:
        return self._sessions.get(user_id)

    def attach(self, session: PresenceSession) -> Optional[PresenceSession]:
        """Register `session` and return the one it replaces, if any"""
        user_id = session.profile.user_id
        previous = self._sessions.get(user_id)
        self._sessions[user_id] = session
        return previous if previous is not session else None

    def detach(self, session: PresenceSession) -> None:
        user_id = session.profile.user_id
        if self._sessions.get(user_id) is session:
            del self._sessions[user_id]

    async def apply_profile(self, profile: TrackerProfile) -> bool:
        session = self._sessions.get(profile.user_id)
        if session is None:
            return False
        await session.update_profile(profile)
        return True
