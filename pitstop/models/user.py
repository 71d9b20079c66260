from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

class UserProfileBase(SQLModel):
    display_name: Optional[str] = None
    avatar_ref: Optional[str] = None

    # Tracker preferences
    tracker_visible: bool = False
    tracker_status: Optional[str] = None
    allow_contact: bool = False
    home_lat: Optional[float] = None
    home_lng: Optional[float] = None
    privacy_radius_m: Optional[float] = None

class UserProfile(UserProfileBase, table=True):
    """
    Read model of a community member, owned by the account service.

    Only the fields the presence and notification core reads are mapped here.
    """

    id: str = Field(primary_key=True)
    fcm_token: Optional[str] = Field(default=None, index=True)
    notification_settings: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON)
    )
    friends: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

class TrackerSettingsUpdate(SQLModel):
    tracker_visible: Optional[bool] = None
    tracker_status: Optional[str] = None
    allow_contact: Optional[bool] = None
    home_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    home_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    privacy_radius_m: Optional[float] = Field(default=None, gt=0)
    clear_home: bool = False

class TrackerSettingsRead(UserProfileBase):
    id: str

class DeliveryTokenUpdate(SQLModel):
    token: Optional[str] = None
