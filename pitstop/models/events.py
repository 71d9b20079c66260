"""
Domain-state changes published by neighbouring services.

These are the payloads of the internal hooks; each one describes a single
create or a before/after pair the notification router reacts to.
"""
from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional, List, Dict
from enum import Enum

class ChatRoom(SQLModel):
    id: str
    participants: List[str]
    participant_names: Dict[str, str] = Field(default_factory=dict)

class ChatMessage(SQLModel):
    sender_id: str
    text: str

class ChatMessageCreated(SQLModel):
    room: ChatRoom
    message: ChatMessage

class AppEvent(SQLModel):
    id: str
    title: str
    date: str
    end_date: Optional[str] = None
    location: str = ""
    event_type: str = ""
    creator_id: str
    participants: List[str] = Field(default_factory=list)
    description: Optional[str] = None

class EventComment(SQLModel):
    user_id: str
    user_name: str
    text: str

class EventCommentCreated(SQLModel):
    event: AppEvent
    comment: EventComment

class EventChanged(SQLModel):
    before: AppEvent
    after: AppEvent

class EventCreated(SQLModel):
    event: AppEvent

class FriendsChanged(SQLModel):
    user_id: str
    display_name: Optional[str] = None
    before: List[str] = Field(default_factory=list)
    after: List[str] = Field(default_factory=list)

class EarnedBadge(SQLModel):
    id: str
    earned_at: Optional[datetime] = None

class BadgesChanged(SQLModel):
    user_id: str
    before: List[EarnedBadge] = Field(default_factory=list)
    after: List[EarnedBadge] = Field(default_factory=list)

class ListingType(str, Enum):
    WANTED_CAR = "wanted_car"
    WANTED_PARTS = "wanted_parts"
    SELLING_PARTS = "selling_parts"
    SERVICE = "service"

class MarketplaceListing(SQLModel):
    id: str
    user_id: str
    user_name: str
    type: ListingType
    title: str
    description: str = ""
    price: Optional[int] = None
    is_active: bool = True

class CarSnapshot(SQLModel):
    owner_id: str
    name: str
    make: str = ""
    model: str = ""
    for_sale: Optional[bool] = None
    sale_price: Optional[int] = None

class CarChanged(SQLModel):
    car_id: str
    before: Optional[CarSnapshot] = None
    after: CarSnapshot

class ReminderSweepRequest(SQLModel):
    now: Optional[datetime] = None
