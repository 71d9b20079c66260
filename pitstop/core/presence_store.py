import asyncio
import logging
from typing import AsyncIterator, List, Protocol

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from pitstop.models.presence import PresenceRead, PresenceRecord
from pitstop.utils.clock import as_utc
from pitstop.utils.feeds import SnapshotFeed

logger = logging.getLogger(__name__)

class PresenceStore(Protocol):
    """Key-value table of live positions addressed by user id"""

    async def upsert(self, record: PresenceRead) -> None: ...

    async def delete(self, user_id: str) -> None: ...

    async def snapshot(self) -> List[PresenceRead]: ...

    def subscribe(self) -> AsyncIterator[List[PresenceRead]]: ...

def _to_read(row: PresenceRecord) -> PresenceRead:
    data = row.model_dump()
    data["last_active_at"] = as_utc(row.last_active_at)
    return PresenceRead(**data)

class SqlPresenceStore:
    """
    Presence table on the application database.

    Every write republishes the whole table to subscribers; consumers compute
    their own diffs.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self.feed: SnapshotFeed[List[PresenceRead]] = SnapshotFeed()

    async def upsert(self, record: PresenceRead) -> None:
        async with self._lock:
            async with self._session_factory() as db:
                await db.merge(PresenceRecord(**record.model_dump()))
                await db.commit()
            await self._publish()

    async def delete(self, user_id: str) -> None:
        async with self._lock:
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(PresenceRecord).where(PresenceRecord.user_id == user_id)
                )
                await db.commit()
            if result.rowcount:
                logger.info(f"Presence removed for user {user_id}")
            await self._publish()

    async def snapshot(self) -> List[PresenceRead]:
        async with self._session_factory() as db:
            result = await db.execute(select(PresenceRecord).order_by(PresenceRecord.user_id))
            return [_to_read(row) for row in result.scalars().all()]

    async def subscribe(self) -> AsyncIterator[List[PresenceRead]]:
        if self.feed.latest is None:
            async with self._lock:
                if self.feed.latest is None:
                    await self._publish()
        async for snapshot in self.feed.subscribe():
            yield snapshot

    async def _publish(self) -> None:
        self.feed.publish(await self.snapshot())

    def close(self) -> None:
        self.feed.close()
