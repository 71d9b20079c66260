"""
Vehicle and service reminder rules for the daily sweep.

The sweep runs once a day (09:00 local, scheduled externally), so each rule
fires on exact day counts rather than "at most N days left": a reminder due
in 30 days fires on that day only, not again on every following day.
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Sequence, Tuple, Union
from zoneinfo import ZoneInfo

from pitstop.config import settings
from pitstop.models.vehicle import Car, ReminderType, ServiceRecord, VehicleReminder
from pitstop.utils.clock import as_utc

@dataclass(frozen=True)
class ReminderRule:
    label: str
    warning_days: Tuple[int, ...]

REMINDER_CONFIG: Dict[ReminderType, ReminderRule] = {
    ReminderType.STK: ReminderRule("Technical inspection (STK)", (90, 30)),
    ReminderType.FIRST_AID_KIT: ReminderRule("First aid kit", (30,)),
    ReminderType.HIGHWAY_VIGNETTE: ReminderRule("Highway vignette", (30,)),
    ReminderType.LIABILITY_INSURANCE: ReminderRule("Liability insurance", (60,)),
}

SERVICE_WARNING_DAYS = (7, 3, 1)
SERVICE_WARNING_MILEAGE = (500, 200)

DAY = timedelta(days=1)

@dataclass
class ReminderNotice:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    # Overdue service notices are rate limited and must be recorded once sent
    overdue_service_id: Optional[str] = None

def _local_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=ZoneInfo(settings.TIMEZONE))

def days_remaining(expiration: Union[date, datetime], now: datetime) -> int:
    """ceil((expiration - now) / 1 day); plain dates count from local midnight"""
    if not isinstance(expiration, datetime):
        expiration = _local_midnight(expiration)
    delta = as_utc(expiration) - as_utc(now)
    return math.ceil(delta / DAY)

def _format_date(value: datetime) -> str:
    return as_utc(value).astimezone(ZoneInfo(settings.TIMEZONE)).strftime("%d.%m.%Y")

def _car_label(car: Car) -> str:
    model = " ".join(part for part in (car.make, car.model) if part)
    return f"{car.name} ({model})" if model else car.name

def reminder_notices(car: Car, reminder: VehicleReminder, now: datetime) -> List[ReminderNotice]:
    """Notices a single document reminder produces today (zero or one)"""
    if not reminder.notify_enabled or reminder.expiration_date is None:
        return []

    rule = REMINDER_CONFIG.get(reminder.type)
    if rule is None:
        return []

    days_left = days_remaining(reminder.expiration_date, now)
    data = {
        "type": "vehicle_reminder",
        "car_id": car.id,
        "reminder_type": reminder.type.value
    }

    if days_left in rule.warning_days:
        return [ReminderNotice(
            title=f"{rule.label} expires in {days_left} days",
            body=f"{_car_label(car)} - {rule.label} expires {_format_date(reminder.expiration_date)}",
            data=data
        )]

    # Same-day alert for every reminder type
    if days_left == 0:
        return [ReminderNotice(
            title=f"{rule.label} expires today!",
            body=f"{_car_label(car)} - {rule.label} expires today!",
            data=data
        )]

    return []

def should_send_overdue(last_sent: Optional[datetime], now: datetime) -> bool:
    """Overdue service notices repeat at most every SERVICE_OVERDUE_COOLOFF_DAYS"""
    if last_sent is None:
        return True
    days_since = math.ceil((as_utc(now) - as_utc(last_sent)) / DAY)
    return days_since >= settings.SERVICE_OVERDUE_COOLOFF_DAYS

def _day_word(days: int) -> str:
    return "day" if days == 1 else "days"

def _mileage_band(km_left: int, thresholds: Sequence[int]) -> Optional[int]:
    for index, warning_km in enumerate(thresholds):
        next_threshold = thresholds[index + 1] if index + 1 < len(thresholds) else 0
        if next_threshold < km_left <= warning_km:
            return warning_km
    return None

def service_notices(car: Car, service: ServiceRecord, now: datetime) -> List[ReminderNotice]:
    """Date-based check first; mileage is skipped only when the date is overdue"""
    data = {
        "type": "service_reminder",
        "car_id": car.id,
        "service_id": service.id
    }
    overdue_allowed = should_send_overdue(service.last_service_notification_sent, now)
    notices: List[ReminderNotice] = []

    if service.next_service_date is not None:
        days_until = days_remaining(service.next_service_date, now)
        due = _format_date(service.next_service_date)

        if days_until <= 0:
            if not overdue_allowed:
                return []
            return [ReminderNotice(
                title="🔧 Service overdue!",
                body=f"{car.name}: {service.title} - was due {due}",
                data=data,
                overdue_service_id=service.id
            )]

        if days_until in SERVICE_WARNING_DAYS:
            notices.append(ReminderNotice(
                title=f"🔧 Service in {days_until} {_day_word(days_until)}",
                body=f"{car.name}: {service.title} - {due}",
                data=data
            ))

    if service.next_service_mileage and car.current_mileage:
        km_left = service.next_service_mileage - car.current_mileage

        if km_left <= 0:
            if overdue_allowed:
                notices.append(ReminderNotice(
                    title="🔧 Service overdue!",
                    body=f"{car.name}: {service.title} - mileage exceeded by {abs(km_left)} km",
                    data=data,
                    overdue_service_id=service.id
                ))
        elif _mileage_band(km_left, SERVICE_WARNING_MILEAGE) is not None:
            notices.append(ReminderNotice(
                title=f"🔧 Service in {km_left} km",
                body=f"{car.name}: {service.title} - at {service.next_service_mileage:,} km",
                data=data
            ))

    return notices
