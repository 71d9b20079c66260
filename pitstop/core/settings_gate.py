from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from pitstop.config import settings as app_settings
from pitstop.models.notification import NotificationCategory, NotificationSettings, QuietHours

def local_now(now: Optional[datetime] = None) -> datetime:
    """Wall-clock time in the community's timezone"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(app_settings.TIMEZONE))

def is_quiet_now(quiet_hours: Optional[QuietHours], hour: int) -> bool:
    """
    Check if the given local hour falls into the quiet window.
    The window is [start, end); when start > end it wraps past midnight.
    """
    if quiet_hours is None or not quiet_hours.enabled:
        return False

    start, end = quiet_hours.start_hour, quiet_hours.end_hour

    # Handle overnight quiet hours (e.g., 22:00 - 07:00)
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end

def is_eligible(
    settings: Optional[NotificationSettings],
    category: NotificationCategory,
    *,
    now: Optional[datetime] = None,
    respect_quiet_hours: bool = True,
    event_type: Optional[str] = None
) -> bool:
    """
    Decide whether a notification of `category` may be delivered to a user.

    `event_type` only applies to NEW_EVENTS, where the user subscribes to a
    set of event types rather than a plain toggle.
    """
    if settings is None or not settings.enabled:
        return False

    if not settings.category_enabled(category):
        return False

    if category == NotificationCategory.NEW_EVENTS and event_type is not None:
        if event_type not in settings.new_events.types:
            return False

    if respect_quiet_hours and is_quiet_now(settings.quiet_hours, local_now(now).hour):
        return False

    return True
