from fastapi import APIRouter, Depends, HTTPException, BackgroundTasks, Query, status
from typing import List, Optional

from pitstop.api.auth import get_current_user
from pitstop.core.exceptions import BeaconConflict, BeaconError, BeaconNotFound, NotBeaconOwner
from pitstop.core.geofencing import GeoPoint
from pitstop.models.beacon import BeaconCreate, BeaconRead
from pitstop.models.user import UserProfile
from pitstop.services import Services, get_services

router = APIRouter()

def beacon_http_error(error: BeaconError) -> HTTPException:
    if isinstance(error, BeaconNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, NotBeaconOwner):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, BeaconConflict):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail={"reason": error.reason, "message": str(error)})

@router.post("", response_model=BeaconRead, status_code=status.HTTP_201_CREATED)
async def create_beacon(
    beacon_data: BeaconCreate,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
    current_user: UserProfile = Depends(get_current_user)
):
    try:
        transition = await services.engine.create(
            user_id=current_user.id,
            display_name=current_user.display_name or "Anonymous",
            kind=beacon_data.kind,
            position=GeoPoint(beacon_data.latitude, beacon_data.longitude),
            description=beacon_data.description,
            avatar_ref=current_user.avatar_ref
        )
    except BeaconError as e:
        raise beacon_http_error(e)

    # Fan out SOS push notifications in background
    background_tasks.add_task(services.router.on_beacon_transition, transition)
    return transition.after

@router.get("", response_model=List[BeaconRead])
async def list_visible_beacons(
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    services: Services = Depends(get_services),
    current_user: UserProfile = Depends(get_current_user)
):
    position = GeoPoint(lat, lng) if lat is not None and lng is not None else None
    return await services.engine.visible_for(current_user.id, position)

@router.post("/{beacon_id}/respond", response_model=BeaconRead)
async def respond_to_beacon(
    beacon_id: str,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
    current_user: UserProfile = Depends(get_current_user)
):
    try:
        transition = await services.engine.respond(
            beacon_id,
            helper_id=current_user.id,
            helper_name=current_user.display_name or "Someone"
        )
    except BeaconError as e:
        raise beacon_http_error(e)

    background_tasks.add_task(services.router.on_beacon_transition, transition)
    return transition.after

@router.post("/{beacon_id}/resolve", response_model=BeaconRead)
async def resolve_beacon(
    beacon_id: str,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
    current_user: UserProfile = Depends(get_current_user)
):
    try:
        transition = await services.engine.resolve(beacon_id, actor_id=current_user.id)
    except BeaconError as e:
        raise beacon_http_error(e)

    background_tasks.add_task(services.router.on_beacon_transition, transition)
    return transition.after
