import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Protocol

from sqlalchemy import false, func, true, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from pitstop.models.notification import NotificationCategory, NotificationLock, NotificationSettings
from pitstop.models.user import UserProfile
from pitstop.utils.clock import as_utc, utc_now

logger = logging.getLogger(__name__)

FALLBACK_NAME = "User"

@dataclass
class Recipient:
    user_id: str
    display_name: str
    token: Optional[str]
    settings: Optional[NotificationSettings]

class UserDirectory(Protocol):
    async def get(self, user_id: str) -> Optional[Recipient]: ...

    async def users_with_setting(self, category: NotificationCategory) -> List[Recipient]: ...

    async def clear_token(self, token: str) -> None: ...

class NotificationLocks(Protocol):
    async def acquire(self, key: str, window: timedelta, now: Optional[datetime] = None) -> bool: ...

def to_recipient(user: UserProfile) -> Recipient:
    return Recipient(
        user_id=user.id,
        display_name=user.display_name or FALLBACK_NAME,
        token=user.fcm_token or None,
        settings=NotificationSettings.merged(user.notification_settings)
    )

def setting_on(*path: str):
    """SQL truth of a stored toggle, falling back to its default when absent"""
    default = NotificationSettings.model_validate({})
    for key in path:
        default = getattr(default, key)
    stored = UserProfile.notification_settings[path if len(path) > 1 else path[0]].as_boolean()
    return func.coalesce(stored, true() if default else false())

def _category_path(category: NotificationCategory) -> tuple:
    if category == NotificationCategory.NEW_EVENTS:
        return ("new_events", "enabled")
    return (category.value,)

class SqlUserDirectory:
    """Read access to member profiles for recipient resolution"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, user_id: str) -> Optional[Recipient]:
        async with self._session_factory() as db:
            user = await db.get(UserProfile, user_id)
            return to_recipient(user) if user else None

    async def users_with_setting(self, category: NotificationCategory) -> List[Recipient]:
        """Members with a delivery token, notifications on and `category` toggled on"""
        async with self._session_factory() as db:
            result = await db.execute(
                select(UserProfile).where(
                    UserProfile.fcm_token.is_not(None),
                    setting_on("enabled"),
                    setting_on(*_category_path(category))
                )
            )
            users = result.scalars().all()

        recipients = []
        for user in users:
            recipient = to_recipient(user)
            if not recipient.token or not recipient.settings.enabled:
                continue
            if recipient.settings.category_enabled(category):
                recipients.append(recipient)
        return recipients

    async def clear_token(self, token: str) -> None:
        async with self._session_factory() as db:
            result = await db.execute(
                update(UserProfile).where(UserProfile.fcm_token == token).values(fcm_token=None)
            )
            await db.commit()
        if result.rowcount:
            logger.info(f"Cleared stale delivery token for {result.rowcount} user(s)")

class SqlNotificationLocks:
    """Cooldown markers; a lock is granted when absent or older than the window"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def acquire(self, key: str, window: timedelta, now: Optional[datetime] = None) -> bool:
        now = as_utc(now) or utc_now()
        async with self._session_factory() as db:
            lock = await db.get(NotificationLock, key)
            if lock is not None and now - as_utc(lock.acquired_at) < window:
                return False
            if lock is None:
                db.add(NotificationLock(key=key, acquired_at=now))
            else:
                lock.acquired_at = now
                db.add(lock)
            await db.commit()
            return True
