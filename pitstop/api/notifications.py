from fastapi import APIRouter, Depends
from typing import Any

from pitstop.database import SessionDep
from pitstop.api.auth import get_current_user
from pitstop.core.presence_session import TrackerProfile
from pitstop.models.notification import NotificationSettings, NotificationSettingsUpdate
from pitstop.models.user import DeliveryTokenUpdate, UserProfile
from pitstop.services import Services, get_services

router = APIRouter()

@router.get("/settings", response_model=NotificationSettings)
async def get_notification_settings(
    current_user: UserProfile = Depends(get_current_user)
):
    return NotificationSettings.merged(current_user.notification_settings)

@router.put("/settings", response_model=NotificationSettings)
async def update_notification_settings(
    db: SessionDep,
    settings_data: NotificationSettingsUpdate,
    services: Services = Depends(get_services),
    current_user: UserProfile = Depends(get_current_user)
):
    current = NotificationSettings.merged(current_user.notification_settings)
    merged = NotificationSettings.model_validate({
        **current.model_dump(),
        **settings_data.model_dump(exclude_unset=True)
    })

    # Reassign so the JSON column is flagged dirty
    current_user.notification_settings = merged.model_dump()
    db.add(current_user)
    await db.commit()

    # Proximity preferences feed a live tracking session
    await services.sessions.apply_profile(TrackerProfile.from_user(current_user))

    return merged

@router.put("/token")
async def register_delivery_token(
    db: SessionDep,
    token_data: DeliveryTokenUpdate,
    current_user: UserProfile = Depends(get_current_user)
) -> dict[str, Any]:
    current_user.fcm_token = token_data.token or None
    db.add(current_user)
    await db.commit()

    return {"message": "Delivery token updated", "registered": current_user.fcm_token is not None}

@router.delete("/token")
async def clear_delivery_token(
    db: SessionDep,
    current_user: UserProfile = Depends(get_current_user)
) -> dict[str, Any]:
    current_user.fcm_token = None
    db.add(current_user)
    await db.commit()

    return {"message": "Delivery token cleared", "registered": False}
