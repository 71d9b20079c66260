from sqlmodel import SQLModel, Field, Column, DateTime
from pydantic import field_validator
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum

class NotificationCategory(str, Enum):
    """Notification classes a user can toggle individually"""
    SOS_ALERTS = "sos_alerts"
    FRIEND_REQUESTS = "friend_requests"
    EVENT_COMMENTS = "event_comments"
    EVENT_CHANGES = "event_changes"
    EVENT_PARTICIPATION = "event_participation"
    BADGE_NOTIFICATIONS = "badge_notifications"
    VEHICLE_REMINDERS = "vehicle_reminders"
    MARKETPLACE = "marketplace_notifications"
    CHAT_MESSAGES = "chat_messages"
    PROXIMITY_ALERTS = "proximity_alerts"
    NEW_EVENTS = "new_events"

class PushChannel(str, Enum):
    """Client-side grouping / sound profile, never used for routing"""
    DEFAULT = "default"
    ALERTS = "alerts"
    MESSAGES = "messages"
    MARKETPLACE = "marketplace"
    EVENTS = "events"
    REMINDERS = "reminders"

class QuietHours(SQLModel):
    enabled: bool = False
    start_hour: int = 22
    end_hour: int = 7

    @field_validator("start_hour", "end_hour")
    @classmethod
    def _hour_of_day(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError("hour must be between 0 and 23")
        return value

class NewEventsSettings(SQLModel):
    enabled: bool = False
    types: List[str] = Field(default_factory=list)

class NotificationSettings(SQLModel):
    """
    Per-user notification preferences.

    Stored partially on the user profile; validating a partial dict fills
    every missing field (nested ones included) from the defaults below.
    """
    enabled: bool = True
    quiet_hours: QuietHours = Field(default_factory=QuietHours)

    sos_alerts: bool = True
    friend_requests: bool = True
    event_comments: bool = True
    event_changes: bool = True
    event_participation: bool = True
    badge_notifications: bool = True
    vehicle_reminders: bool = True
    marketplace_notifications: bool = False
    chat_messages: bool = True
    app_updates: bool = True
    digest_mode: bool = False

    proximity_alerts: bool = False
    proximity_radius_km: float = Field(default=20.0, gt=0)

    new_events: NewEventsSettings = Field(default_factory=NewEventsSettings)

    @classmethod
    def merged(cls, stored: Optional[Dict[str, Any]]) -> "NotificationSettings":
        """Overlay stored preferences on the defaults"""
        return cls.model_validate(stored or {})

    def category_enabled(self, category: NotificationCategory) -> bool:
        if category == NotificationCategory.NEW_EVENTS:
            return self.new_events.enabled
        return bool(getattr(self, category.value))

class NotificationSettingsUpdate(SQLModel):
    enabled: Optional[bool] = None
    quiet_hours: Optional[QuietHours] = None
    sos_alerts: Optional[bool] = None
    friend_requests: Optional[bool] = None
    event_comments: Optional[bool] = None
    event_changes: Optional[bool] = None
    event_participation: Optional[bool] = None
    badge_notifications: Optional[bool] = None
    vehicle_reminders: Optional[bool] = None
    marketplace_notifications: Optional[bool] = None
    chat_messages: Optional[bool] = None
    app_updates: Optional[bool] = None
    digest_mode: Optional[bool] = None
    proximity_alerts: Optional[bool] = None
    proximity_radius_km: Optional[float] = Field(default=None, gt=0)
    new_events: Optional[NewEventsSettings] = None

class NotificationLock(SQLModel, table=True):
    """Cooldown marker, e.g. one friend notification per pair per day"""

    key: str = Field(primary_key=True)
    acquired_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )
