from datetime import datetime
from typing import List, Protocol

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from pitstop.models.vehicle import Car, ServiceRecord
from pitstop.utils.clock import as_utc

class VehicleRegistry(Protocol):
    async def cars_for_owner(self, owner_id: str) -> List[Car]: ...

    async def service_records(self, car_id: str) -> List[ServiceRecord]: ...

    async def mark_service_notified(self, service_id: str, at: datetime) -> None: ...

class SqlVehicleRegistry:
    """Garage data the reminder sweep reads; written by the garage service"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def cars_for_owner(self, owner_id: str) -> List[Car]:
        async with self._session_factory() as db:
            result = await db.execute(select(Car).where(Car.owner_id == owner_id))
            return list(result.scalars().all())

    async def service_records(self, car_id: str) -> List[ServiceRecord]:
        async with self._session_factory() as db:
            result = await db.execute(select(ServiceRecord).where(ServiceRecord.car_id == car_id))
            records = list(result.scalars().all())
        for record in records:
            record.next_service_date = as_utc(record.next_service_date)
            record.last_service_notification_sent = as_utc(record.last_service_notification_sent)
        return records

    async def mark_service_notified(self, service_id: str, at: datetime) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(ServiceRecord)
                .where(ServiceRecord.id == service_id)
                .values(last_service_notification_sent=at)
            )
            await db.commit()
