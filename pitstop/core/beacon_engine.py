"""
Emergency beacon state machine.

    active --respond--> help_coming --resolve--> resolved (row deleted)
    active --------------resolve---------------> resolved (row deleted)

The engine only mutates state and returns the transition; reacting to it
(push notifications) is the notification router's job.
"""
import logging
from typing import AsyncIterator, Callable, Dict, FrozenSet, Iterable, List, Optional

from pitstop.config import settings
from pitstop.core.beacon_store import BeaconStore
from pitstop.core.exceptions import (
    AlreadyActiveBeacon,
    AlreadyClaimed,
    BeaconNotFound,
    InvalidBeaconTransition,
    NotBeaconOwner,
)
from pitstop.core.geofencing import GeoPoint, within_radius
from pitstop.models.beacon import Beacon, BeaconKind, BeaconRead, BeaconStatus, BeaconTransition

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[BeaconStatus, FrozenSet[BeaconStatus]] = {
    BeaconStatus.ACTIVE: frozenset({BeaconStatus.HELP_COMING, BeaconStatus.RESOLVED}),
    BeaconStatus.HELP_COMING: frozenset({BeaconStatus.RESOLVED}),
    BeaconStatus.RESOLVED: frozenset(),
}

# A resolve can race with a respond; re-read and retry this many times
RESOLVE_ATTEMPTS = 3

def ensure_transition(before: BeaconStatus, after: BeaconStatus) -> None:
    if after not in ALLOWED_TRANSITIONS[before]:
        raise InvalidBeaconTransition(f"cannot move beacon from {before.value} to {after.value}")

def visible_beacons(
    beacons: Iterable[BeaconRead],
    viewer_id: Optional[str],
    viewer_position: Optional[GeoPoint],
    radius_km: float = settings.BEACON_VISIBILITY_RADIUS_KM
) -> List[BeaconRead]:
    """
    Beacons a viewer should see on the map.

    The viewer's own beacon is left out. Without a known viewer position
    every beacon is shown.
    """
    radius_meters = radius_km * 1000
    visible = []
    for beacon in beacons:
        if viewer_id is not None and beacon.user_id == viewer_id:
            continue
        if viewer_position is not None and not within_radius(
            viewer_position, GeoPoint(beacon.latitude, beacon.longitude), radius_meters
        ):
            continue
        visible.append(beacon)
    return visible

class BeaconEngine:
    def __init__(self, store: BeaconStore):
        self.store = store

    async def create(
        self,
        user_id: str,
        display_name: str,
        kind: BeaconKind,
        position: GeoPoint,
        description: Optional[str] = None,
        avatar_ref: Optional[str] = None
    ) -> BeaconTransition:
        existing = await self.store.active_for_user(user_id)
        if existing is not None:
            raise AlreadyActiveBeacon()

        beacon = await self.store.create(Beacon(
            user_id=user_id,
            display_name=display_name,
            avatar_ref=avatar_ref,
            kind=kind,
            description=description or None,
            latitude=position.lat,
            longitude=position.lng,
            status=BeaconStatus.ACTIVE
        ))

        logger.warning(f"SOS beacon {beacon.id} created by {user_id} ({kind.value})")
        return BeaconTransition(before=None, after=beacon)

    async def respond(self, beacon_id: str, helper_id: str, helper_name: str) -> BeaconTransition:
        """Claim a beacon; only the first responder wins"""
        before = await self._require(beacon_id)

        if before.user_id == helper_id:
            raise InvalidBeaconTransition("cannot respond to your own beacon")
        if before.status != BeaconStatus.ACTIVE:
            raise AlreadyClaimed()

        ensure_transition(before.status, BeaconStatus.HELP_COMING)
        claimed = await self.store.transactional_update(
            beacon_id,
            BeaconStatus.ACTIVE,
            {
                "status": BeaconStatus.HELP_COMING,
                "helper_id": helper_id,
                "helper_name": helper_name
            }
        )
        if not claimed:
            if await self.store.get(beacon_id) is None:
                raise BeaconNotFound()
            raise AlreadyClaimed()

        after = before.model_copy(update={
            "status": BeaconStatus.HELP_COMING,
            "helper_id": helper_id,
            "helper_name": helper_name
        })
        logger.info(f"Beacon {beacon_id} claimed by helper {helper_id}")
        return BeaconTransition(before=before, after=after)

    async def resolve(self, beacon_id: str, actor_id: str) -> BeaconTransition:
        """Mark a beacon resolved, then delete it to keep the live feed small"""
        for _ in range(RESOLVE_ATTEMPTS):
            before = await self._require(beacon_id)
            if before.user_id != actor_id:
                raise NotBeaconOwner()

            ensure_transition(before.status, BeaconStatus.RESOLVED)
            if await self.store.transactional_update(
                beacon_id, before.status, {"status": BeaconStatus.RESOLVED}
            ):
                await self.store.delete(beacon_id)
                logger.info(f"Beacon {beacon_id} resolved from {before.status.value}")
                return BeaconTransition(
                    before=before,
                    after=before.model_copy(update={"status": BeaconStatus.RESOLVED})
                )

        raise InvalidBeaconTransition("beacon changed while resolving, try again")

    async def visible_for(
        self,
        viewer_id: Optional[str],
        viewer_position: Optional[GeoPoint]
    ) -> List[BeaconRead]:
        return visible_beacons(await self.store.list_active(), viewer_id, viewer_position)

    async def watch_visible(
        self,
        viewer_id: Optional[str],
        position_provider: Callable[[], Optional[GeoPoint]]
    ) -> AsyncIterator[List[BeaconRead]]:
        """Live feed filtered for a viewer whose position may change between snapshots"""
        async for beacons in self.store.subscribe():
            yield visible_beacons(beacons, viewer_id, position_provider())

    async def _require(self, beacon_id: str) -> BeaconRead:
        beacon = await self.store.get(beacon_id)
        if beacon is None:
            raise BeaconNotFound()
        return beacon
