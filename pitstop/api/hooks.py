"""
Internal triggers called by neighbouring services after they commit a change.

Every hook waits for the whole fan-out and answers with its delivery report,
so the caller can log or retry on its side.
"""
import secrets
from fastapi import APIRouter, Depends, Header, HTTPException, status
from typing import Any, Optional

from pitstop.config import settings
from pitstop.models.beacon import BeaconTransition
from pitstop.models.events import (
    BadgesChanged,
    CarChanged,
    ChatMessageCreated,
    EventChanged,
    EventCommentCreated,
    EventCreated,
    FriendsChanged,
    MarketplaceListing,
    ReminderSweepRequest,
)
from pitstop.services import Services, get_services
from pitstop.utils.notifications import FanOutReport

async def verify_hook_key(x_hook_key: Optional[str] = Header(default=None)) -> None:
    if not x_hook_key or not secrets.compare_digest(x_hook_key, settings.HOOK_SECRET):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid hook key"
        )

router = APIRouter(dependencies=[Depends(verify_hook_key)])

@router.post("/beacon-transition")
async def beacon_transition_hook(
    transition: BeaconTransition,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.router.on_beacon_transition(transition)
    return report.to_dict()

@router.post("/chat-message")
async def chat_message_hook(
    payload: ChatMessageCreated,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.router.on_chat_message(payload.room, payload.message)
    return report.to_dict()

@router.post("/event-comment")
async def event_comment_hook(
    payload: EventCommentCreated,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.router.on_event_comment(payload.event, payload.comment)
    return report.to_dict()

@router.post("/event-created")
async def event_created_hook(
    payload: EventCreated,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.router.on_event_created(payload.event)
    return report.to_dict()

@router.post("/event-changed")
async def event_changed_hook(
    payload: EventChanged,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    # One event document change can carry both detail edits and sign-ups
    updated = await services.router.on_event_updated(payload.before, payload.after)
    participation = await services.router.on_event_participation(payload.before, payload.after)
    return FanOutReport(trigger="event_changed").merge(updated).merge(participation).to_dict()

@router.post("/friends-changed")
async def friends_changed_hook(
    payload: FriendsChanged,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.router.on_friends_changed(payload)
    return report.to_dict()

@router.post("/badges-changed")
async def badges_changed_hook(
    payload: BadgesChanged,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.router.on_badges_changed(payload)
    return report.to_dict()

@router.post("/marketplace-listing")
async def marketplace_listing_hook(
    listing: MarketplaceListing,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.router.on_marketplace_listing(listing)
    return report.to_dict()

@router.post("/car-changed")
async def car_changed_hook(
    payload: CarChanged,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.router.on_car_changed(payload)
    return report.to_dict()

@router.post("/reminder-sweep")
async def reminder_sweep_hook(
    payload: ReminderSweepRequest,
    services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.router.run_reminder_sweep(payload.now)
    return report.to_dict()
