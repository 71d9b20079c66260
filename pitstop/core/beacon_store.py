import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from pitstop.core.exceptions import AlreadyActiveBeacon
from pitstop.models.beacon import Beacon, BeaconRead, BeaconStatus
from pitstop.utils.clock import as_utc, utc_now
from pitstop.utils.feeds import SnapshotFeed

logger = logging.getLogger(__name__)

OPEN_STATUSES = (BeaconStatus.ACTIVE, BeaconStatus.HELP_COMING)

class BeaconStore(Protocol):
    async def create(self, beacon: Beacon) -> BeaconRead: ...

    async def get(self, beacon_id: str) -> Optional[BeaconRead]: ...

    async def active_for_user(self, user_id: str) -> Optional[BeaconRead]: ...

    async def list_active(self) -> List[BeaconRead]: ...

    async def transactional_update(
        self, beacon_id: str, expected_status: BeaconStatus, patch: Dict[str, Any]
    ) -> bool: ...

    async def delete(self, beacon_id: str) -> bool: ...

    def subscribe(self) -> AsyncIterator[List[BeaconRead]]: ...

def _to_read(row: Beacon) -> BeaconRead:
    data = row.model_dump()
    data["created_at"] = as_utc(row.created_at)
    data["updated_at"] = as_utc(row.updated_at)
    return BeaconRead(**data)

class SqlBeaconStore:
    """
    Beacon table with a live feed of open beacons.

    Status changes go through `transactional_update`, a single conditional
    UPDATE keyed on the expected status: whichever writer commits first wins,
    later writers match zero rows and get a conflict.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._publish_lock = asyncio.Lock()
        self.feed: SnapshotFeed[List[BeaconRead]] = SnapshotFeed()

    async def create(self, beacon: Beacon) -> BeaconRead:
        async with self._session_factory() as db:
            db.add(beacon)
            try:
                await db.commit()
            except IntegrityError:
                # Lost a race with another create by the same member
                await db.rollback()
                raise AlreadyActiveBeacon()
            await db.refresh(beacon)
            created = _to_read(beacon)
        await self._publish()
        return created

    async def get(self, beacon_id: str) -> Optional[BeaconRead]:
        async with self._session_factory() as db:
            result = await db.execute(select(Beacon).where(Beacon.id == beacon_id))
            row = result.scalar_one_or_none()
            return _to_read(row) if row else None

    async def active_for_user(self, user_id: str) -> Optional[BeaconRead]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Beacon)
                .where(Beacon.user_id == user_id, Beacon.status.in_(OPEN_STATUSES))
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_read(row) if row else None

    async def list_active(self) -> List[BeaconRead]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Beacon)
                .where(Beacon.status.in_(OPEN_STATUSES))
                .order_by(Beacon.created_at)
            )
            return [_to_read(row) for row in result.scalars().all()]

    async def transactional_update(
        self,
        beacon_id: str,
        expected_status: BeaconStatus,
        patch: Dict[str, Any]
    ) -> bool:
        values = {**patch, "updated_at": utc_now()}
        async with self._session_factory() as db:
            result = await db.execute(
                update(Beacon)
                .where(Beacon.id == beacon_id, Beacon.status == expected_status)
                .values(**values)
            )
            await db.commit()

        if result.rowcount != 1:
            logger.info(f"Beacon {beacon_id} update rejected: status is no longer {expected_status.value}")
            return False

        await self._publish()
        return True

    async def delete(self, beacon_id: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(delete(Beacon).where(Beacon.id == beacon_id))
            await db.commit()
        await self._publish()
        return bool(result.rowcount)

    async def subscribe(self) -> AsyncIterator[List[BeaconRead]]:
        if self.feed.latest is None:
            await self._publish()
        async for snapshot in self.feed.subscribe():
            yield snapshot

    async def _publish(self) -> None:
        async with self._publish_lock:
            self.feed.publish(await self.list_active())

    def close(self) -> None:
        self.feed.close()
