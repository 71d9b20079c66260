from sqlmodel import SQLModel, Field, Column, DateTime
from datetime import datetime, timezone
from typing import Optional

class PresenceRecordBase(SQLModel):
    display_name: str = "Anonymous"
    avatar_ref: Optional[str] = None
    status_text: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    allow_contact: bool = False

class PresenceRecord(PresenceRecordBase, table=True):
    """Latest known position of a visible member; one row per user"""

    user_id: str = Field(primary_key=True)
    last_active_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

class PresenceRead(PresenceRecordBase):
    user_id: str
    last_active_at: datetime

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None
