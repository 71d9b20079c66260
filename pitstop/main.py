from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import json
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pitstop import database
from pitstop.api import beacons, hooks, notifications, presence
from pitstop.api.auth import decode_access_token
from pitstop.core.presence_session import PresenceSession, ProximityAlert, TrackerProfile
from pitstop.models.presence import PresenceRead
from pitstop.models.user import UserProfile
from pitstop.services import Services, build_services, websocket_services
from pitstop.utils.location_utils import QueueLocationSource, parse_location_message

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Lifespan manager for startup/shutdown events
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await database.create_db_and_tables()
    logger.info("Database tables created")
    services = build_services(database.AsyncSessionLocal)
    app.state.services = services
    logger.info("Application starting up")
    yield
    # Shutdown
    await services.close()
    logger.info("Application shutting down")

app = FastAPI(
    title="Pitstop API",
    description="Live presence, SOS beacons and push notifications for a car community",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(beacons.router, prefix="/api/beacons", tags=["Beacons"])
app.include_router(presence.router, prefix="/api/presence", tags=["Presence"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(hooks.router, prefix="/api/hooks", tags=["Internal hooks"])

# Close code sent to a socket superseded by a newer one from the same member
REPLACED_CLOSE_CODE = 4000

@dataclass
class Connection:
    user_id: str
    websocket: WebSocket
    # Feeds and alerts write from separate tasks
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False

    async def send(self, data: dict[str, Any]):
        async with self.lock:
            if self.closed:
                return
            try:
                await self.websocket.send_text(json.dumps(data, default=str))
            except Exception as e:
                logger.error(f"Error sending to {self.user_id}: {e}")

    async def close(self, code: int):
        async with self.lock:
            if self.closed:
                return
            self.closed = True
            try:
                await self.websocket.close(code=code)
            except Exception as e:
                logger.error(f"Error closing WebSocket for {self.user_id}: {e}")

# WebSocket connection manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, Connection] = {}

    async def connect(self, websocket: WebSocket, user_id: str) -> Connection:
        await websocket.accept()
        connection = Connection(user_id, websocket)
        previous = self.active_connections.get(user_id)
        self.active_connections[user_id] = connection
        logger.info(f"WebSocket connected: {user_id}")
        if previous is not None:
            logger.info(f"Closing superseded WebSocket for {user_id}")
            await previous.close(REPLACED_CLOSE_CODE)
        return connection

    def disconnect(self, connection: Connection):
        # A superseded socket must not unregister its replacement
        if self.active_connections.get(connection.user_id) is connection:
            del self.active_connections[connection.user_id]
            logger.info(f"WebSocket disconnected: {connection.user_id}")

manager = ConnectionManager()

async def _load_user(services: Services, user_id: str) -> Optional[UserProfile]:
    async with services.session_factory() as db:
        return await db.get(UserProfile, user_id)

@app.websocket("/ws/presence")
async def presence_websocket(websocket: WebSocket, token: Optional[str] = None):
    user_id = decode_access_token(token) if token else None
    services = websocket_services(websocket)
    user = await _load_user(services, user_id) if user_id else None
    if user is None:
        await websocket.close(code=1008)
        return

    connection = await manager.connect(websocket, user.id)
    source = QueueLocationSource()

    async def send_peers(peers: list[PresenceRead]):
        await connection.send({
            "type": "presence_snapshot",
            "peers": [peer.model_dump(mode="json") for peer in peers]
        })

    async def send_alert(alert: ProximityAlert):
        await connection.send({"type": "proximity_alert", **alert.to_dict()})

    async def send_stopped(reason: str, message: Optional[str]):
        await connection.send({
            "type": "tracking_stopped",
            "reason": reason,
            "message": message
        })

    session = PresenceSession(
        profile=TrackerProfile.from_user(user),
        store=services.presence,
        source=source,
        on_proximity=send_alert,
        on_peers=send_peers,
        on_stopped=send_stopped
    )

    # The superseded session releases its record before this one publishes
    previous = services.sessions.attach(session)
    if previous is not None:
        await previous.stop()

    async def forward_beacons():
        async for visible in services.engine.watch_visible(user.id, lambda: session.my_position):
            await connection.send({
                "type": "beacons",
                "beacons": [beacon.model_dump(mode="json") for beacon in visible]
            })

    beacon_task = asyncio.create_task(forward_beacons())
    await session.start()

    async def release():
        beacon_task.cancel()
        try:
            await beacon_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Beacon feed for {user.id} failed: {e}")
        await session.stop()
        services.sessions.detach(session)
        manager.disconnect(connection)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except ValueError:
                logger.warning(f"Ignoring malformed message from {user.id}")
                continue

            message_type = message.get("type") if isinstance(message, dict) else None
            if message_type in ("location", "location_error"):
                source.push(parse_location_message(message))
            elif message_type == "ping":
                await connection.send({
                    "type": "pong",
                    "timestamp": datetime.now(timezone.utc).isoformat()
                })
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for {user.id}: {e}")
    finally:
        # Cleanup completes even when the handler itself is cancelled
        await asyncio.shield(release())

@app.get("/")
async def root():
    return {
        "message": "Pitstop API",
        "status": "active",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

# Health check endpoint
@app.get("/health")
async def health_check() -> dict[str, Any]:
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active_connections": len(manager.active_connections)
    }

if __name__ == "__main__":
    import uvicorn
    from pitstop.config import settings

    uvicorn.run(
        "pitstop.main:app",
        host="0.0.0.0",
        port=8000,
        ws_ping_interval=settings.WEBSOCKET_PING_INTERVAL,
        ws_ping_timeout=settings.WEBSOCKET_PING_TIMEOUT
    )
