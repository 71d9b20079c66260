from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field, Column, DateTime
from datetime import datetime, timezone
from typing import Optional
from enum import Enum
import uuid

class BeaconKind(str, Enum):
    BREAKDOWN = "breakdown"
    EMPTY_TANK = "empty_tank"
    ACCIDENT = "accident"
    FLAT_TIRE = "flat_tire"
    OTHER = "other"

class BeaconStatus(str, Enum):
    ACTIVE = "active"
    HELP_COMING = "help_coming"
    RESOLVED = "resolved"

OPEN_STATUS_SQL = "status IN ('ACTIVE', 'HELP_COMING')"

class BeaconBase(SQLModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    kind: BeaconKind = BeaconKind.OTHER
    description: Optional[str] = None

class Beacon(BeaconBase, table=True):
    # At most one open beacon per member; enum columns store member names
    __table_args__ = (
        Index(
            "uq_beacon_open_per_user",
            "user_id",
            unique=True,
            sqlite_where=text(OPEN_STATUS_SQL),
            postgresql_where=text(OPEN_STATUS_SQL)
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    display_name: str = "Anonymous"
    avatar_ref: Optional[str] = None
    status: BeaconStatus = Field(default=BeaconStatus.ACTIVE, index=True)
    helper_id: Optional[str] = None
    helper_name: Optional[str] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

class BeaconCreate(BeaconBase):
    pass

class BeaconRead(BeaconBase):
    id: str
    user_id: str
    display_name: str
    avatar_ref: Optional[str]
    status: BeaconStatus
    helper_id: Optional[str]
    helper_name: Optional[str]
    created_at: datetime
    updated_at: datetime

class BeaconTransition(SQLModel):
    """State delta produced by the beacon engine; `before` is None on create"""
    before: Optional[BeaconRead] = None
    after: BeaconRead
