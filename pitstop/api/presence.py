from fastapi import APIRouter, Depends
from typing import Any, List

from pitstop.database import SessionDep
from pitstop.api.auth import get_current_user
from pitstop.core.presence_session import TrackerProfile
from pitstop.models.presence import PresenceRead
from pitstop.models.user import TrackerSettingsRead, TrackerSettingsUpdate, UserProfile
from pitstop.services import Services, get_services

router = APIRouter()

@router.get("", response_model=List[PresenceRead])
async def get_presence_snapshot(
    services: Services = Depends(get_services),
    current_user: UserProfile = Depends(get_current_user)
) -> list[Any]:
    # Other visible members with a known position
    return [
        record for record in await services.presence.snapshot()
        if record.user_id != current_user.id and record.has_position
    ]

@router.get("/settings", response_model=TrackerSettingsRead)
async def get_tracker_settings(
    current_user: UserProfile = Depends(get_current_user)
):
    return current_user

@router.put("/settings", response_model=TrackerSettingsRead)
async def update_tracker_settings(
    db: SessionDep,
    settings_data: TrackerSettingsUpdate,
    services: Services = Depends(get_services),
    current_user: UserProfile = Depends(get_current_user)
):
    update = settings_data.model_dump(exclude_unset=True, exclude={"clear_home"})
    for key, value in update.items():
        setattr(current_user, key, value)

    if settings_data.clear_home:
        current_user.home_lat = None
        current_user.home_lng = None

    db.add(current_user)
    await db.commit()
    await db.refresh(current_user)

    # Going invisible takes effect immediately, not on the next location fix
    if not current_user.tracker_visible:
        await services.presence.delete(current_user.id)
    await services.sessions.apply_profile(TrackerProfile.from_user(current_user))

    return current_user

@router.delete("")
async def stop_sharing_location(
    db: SessionDep,
    services: Services = Depends(get_services),
    current_user: UserProfile = Depends(get_current_user)
) -> dict[str, Any]:
    current_user.tracker_visible = False
    db.add(current_user)
    await db.commit()

    await services.presence.delete(current_user.id)
    await services.sessions.apply_profile(TrackerProfile.from_user(current_user))

    return {"message": "Location sharing stopped", "tracker_visible": False}
