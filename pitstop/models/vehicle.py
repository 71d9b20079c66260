from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum

class ReminderType(str, Enum):
    STK = "stk"
    FIRST_AID_KIT = "first_aid_kit"
    HIGHWAY_VIGNETTE = "highway_vignette"
    LIABILITY_INSURANCE = "liability_insurance"

class VehicleReminder(SQLModel):
    type: ReminderType
    expiration_date: Optional[datetime] = None
    notify_enabled: bool = True

class CarBase(SQLModel):
    owner_id: str = Field(index=True)
    name: str
    make: str = ""
    model: str = ""
    current_mileage: Optional[int] = None
    for_sale: bool = False
    sale_price: Optional[int] = None

class Car(CarBase, table=True):
    """Garage entry as written by the garage service"""

    id: str = Field(primary_key=True)
    reminders: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))

    def parsed_reminders(self) -> List[VehicleReminder]:
        return [VehicleReminder.model_validate(item) for item in self.reminders or []]

class ServiceRecord(SQLModel, table=True):

    id: str = Field(primary_key=True)
    car_id: str = Field(index=True)
    owner_id: str
    title: str
    next_service_date: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True))
    )
    next_service_mileage: Optional[int] = None
    last_service_notification_sent: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True))
    )
