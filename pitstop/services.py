import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request, WebSocket
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pitstop.core.beacon_engine import BeaconEngine
from pitstop.core.beacon_store import SqlBeaconStore
from pitstop.core.notification_router import NotificationRouter
from pitstop.core.presence_session import PresenceSessions
from pitstop.core.presence_store import SqlPresenceStore
from pitstop.core.user_directory import SqlNotificationLocks, SqlUserDirectory
from pitstop.core.vehicle_registry import SqlVehicleRegistry
from pitstop.utils.notifications import Dispatcher, FcmTransport, PushTransport

logger = logging.getLogger(__name__)

@dataclass
class Services:
    """Long-lived collaborators shared by the HTTP routes and the WebSocket"""
    session_factory: async_sessionmaker[AsyncSession]
    presence: SqlPresenceStore
    beacons: SqlBeaconStore
    engine: BeaconEngine
    directory: SqlUserDirectory
    dispatcher: Dispatcher
    router: NotificationRouter
    transport: PushTransport
    # Live WebSocket sessions, reachable from the HTTP settings endpoints
    sessions: PresenceSessions = field(default_factory=PresenceSessions)

    async def close(self) -> None:
        self.presence.close()
        self.beacons.close()
        if isinstance(self.transport, FcmTransport):
            await self.transport.close()

def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    transport: Optional[PushTransport] = None
) -> Services:
    transport = transport or FcmTransport()
    if isinstance(transport, FcmTransport) and not transport.configured:
        logger.warning("FCM credentials not configured, push notifications will fail")

    directory = SqlUserDirectory(session_factory)
    dispatcher = Dispatcher(transport, on_invalid_token=directory.clear_token)
    beacons = SqlBeaconStore(session_factory)

    return Services(
        session_factory=session_factory,
        presence=SqlPresenceStore(session_factory),
        beacons=beacons,
        engine=BeaconEngine(beacons),
        directory=directory,
        dispatcher=dispatcher,
        router=NotificationRouter(
            directory,
            dispatcher,
            locks=SqlNotificationLocks(session_factory),
            vehicles=SqlVehicleRegistry(session_factory)
        ),
        transport=transport
    )

def get_services(request: Request) -> Services:
    return request.app.state.services

def websocket_services(websocket: WebSocket) -> Services:
    return websocket.app.state.services
