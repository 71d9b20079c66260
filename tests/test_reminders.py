from datetime import date, timedelta

import pytest

from pitstop.core.notification_router import NotificationRouter
from pitstop.core.reminders import (
    days_remaining,
    reminder_notices,
    service_notices,
    should_send_overdue,
)
from pitstop.models.notification import PushChannel
from pitstop.models.vehicle import Car, ReminderType, ServiceRecord, VehicleReminder
from pitstop.utils.notifications import Dispatcher

from tests.fakes import MORNING, FakeTransport, FakeVehicles, InMemoryDirectory, recipient

NOW = MORNING


def car(**fields) -> Car:
    data = dict(id="car-1", owner_id="alice", name="Blue Thunder", make="Skoda", model="Octavia", current_mileage=120_000)
    data.update(fields)
    return Car(**data)


def stk(expires) -> VehicleReminder:
    return VehicleReminder(type=ReminderType.STK, expiration_date=expires)


def service(**fields) -> ServiceRecord:
    data = dict(id="svc-1", car_id="car-1", owner_id="alice", title="Oil change")
    data.update(fields)
    return ServiceRecord(**data)


def test_days_remaining_rounds_up():
    assert days_remaining(NOW + timedelta(days=30), NOW) == 30
    assert days_remaining(NOW + timedelta(days=29, hours=1), NOW) == 30
    assert days_remaining(NOW - timedelta(hours=3), NOW) == 0
    assert days_remaining(NOW - timedelta(days=1, hours=3), NOW) == -1


def test_days_remaining_for_plain_dates():
    # 2026-01-15 10:00 local; the 16th starts in 14 hours
    assert days_remaining(date(2026, 1, 16), NOW) == 1


def test_stk_fires_on_exact_warning_day_only():
    expires = NOW + timedelta(days=30)

    notices = reminder_notices(car(), stk(expires), NOW)
    assert len(notices) == 1
    assert notices[0].title == "Technical inspection (STK) expires in 30 days"
    assert notices[0].data == {"type": "vehicle_reminder", "car_id": "car-1", "reminder_type": "stk"}

    assert reminder_notices(car(), stk(expires), NOW + timedelta(days=1)) == []


@pytest.mark.parametrize(
    "reminder_type, days, fires",
    [
        (ReminderType.STK, 90, True),
        (ReminderType.STK, 60, False),
        (ReminderType.LIABILITY_INSURANCE, 60, True),
        (ReminderType.FIRST_AID_KIT, 30, True),
        (ReminderType.HIGHWAY_VIGNETTE, 7, False),
    ],
)
def test_warning_days_per_type(reminder_type, days, fires):
    reminder = VehicleReminder(type=reminder_type, expiration_date=NOW + timedelta(days=days))
    assert bool(reminder_notices(car(), reminder, NOW)) is fires


def test_day_zero_always_fires():
    reminder = VehicleReminder(type=ReminderType.HIGHWAY_VIGNETTE, expiration_date=NOW - timedelta(hours=2))
    notices = reminder_notices(car(), reminder, NOW)
    assert [n.title for n in notices] == ["Highway vignette expires today!"]


def test_disabled_reminder_is_silent():
    reminder = VehicleReminder(type=ReminderType.STK, expiration_date=NOW + timedelta(days=30), notify_enabled=False)
    assert reminder_notices(car(), reminder, NOW) == []


def test_service_date_warnings():
    for days in (7, 3, 1):
        notices = service_notices(car(), service(next_service_date=NOW + timedelta(days=days)), NOW)
        assert len(notices) == 1
    assert service_notices(car(), service(next_service_date=NOW + timedelta(days=5)), NOW) == []

    one_day = service_notices(car(), service(next_service_date=NOW + timedelta(days=1)), NOW)
    assert one_day[0].title == "🔧 Service in 1 day"


def test_overdue_service_repeats_weekly():
    overdue = service(next_service_date=NOW - timedelta(days=2))

    first = service_notices(car(), overdue, NOW)
    assert first[0].overdue_service_id == "svc-1"

    overdue.last_service_notification_sent = NOW - timedelta(days=3)
    assert service_notices(car(), overdue, NOW) == []

    overdue.last_service_notification_sent = NOW - timedelta(days=7)
    assert len(service_notices(car(), overdue, NOW)) == 1


def test_should_send_overdue():
    assert should_send_overdue(None, NOW)
    assert not should_send_overdue(NOW - timedelta(days=6), NOW)
    assert should_send_overdue(NOW - timedelta(days=7), NOW)


def test_mileage_warnings():
    assert service_notices(car(current_mileage=119_600), service(next_service_mileage=120_000), NOW)[0].title == (
        "🔧 Service in 400 km"
    )
    assert service_notices(car(current_mileage=119_850), service(next_service_mileage=120_000), NOW)[0].title == (
        "🔧 Service in 150 km"
    )
    assert service_notices(car(current_mileage=119_000), service(next_service_mileage=120_000), NOW) == []

    exceeded = service_notices(car(current_mileage=120_300), service(next_service_mileage=120_000), NOW)
    assert exceeded[0].body == "Blue Thunder: Oil change - mileage exceeded by 300 km"


def test_date_and_mileage_warnings_on_the_same_day():
    record = service(next_service_date=NOW + timedelta(days=7), next_service_mileage=120_400)

    titles = [n.title for n in service_notices(car(), record, NOW)]

    assert titles == ["🔧 Service in 7 days", "🔧 Service in 400 km"]


def test_overdue_date_suppresses_mileage_check():
    record = service(
        next_service_date=NOW - timedelta(days=1),
        next_service_mileage=120_100,
        last_service_notification_sent=NOW - timedelta(days=1),
    )
    assert service_notices(car(), record, NOW) == []


async def test_sweep_sends_reminders_and_records_overdue_services():
    reminders_car = car(reminders=[
        {"type": "stk", "expiration_date": (NOW + timedelta(days=30)).isoformat()},
        {"type": "first_aid_kit", "expiration_date": (NOW + timedelta(days=12)).isoformat()},
    ])
    vehicles = FakeVehicles(
        cars={"alice": [reminders_car]},
        services={"car-1": [service(next_service_date=NOW - timedelta(days=3))]},
    )
    transport = FakeTransport()
    directory = InMemoryDirectory(recipient("alice"), recipient("bob", vehicle_reminders=False))
    router = NotificationRouter(directory, Dispatcher(transport), vehicles=vehicles, clock=lambda: NOW)

    report = await router.run_reminder_sweep()

    assert report.attempted == 2
    assert {m.data["type"] for m in transport.sent} == {"vehicle_reminder", "service_reminder"}
    assert all(m.channel == PushChannel.REMINDERS for m in transport.sent)
    assert vehicles.marked == [("svc-1", NOW)]


async def test_sweep_does_not_record_failed_overdue_delivery():
    vehicles = FakeVehicles(
        cars={"alice": [car()]},
        services={"car-1": [service(next_service_date=NOW - timedelta(days=3))]},
    )
    transport = FakeTransport(failing={"token-alice"})
    router = NotificationRouter(
        InMemoryDirectory(recipient("alice")), Dispatcher(transport), vehicles=vehicles, clock=lambda: NOW
    )

    report = await router.run_reminder_sweep()

    assert report.attempted == 1 and report.delivered == 0
    assert vehicles.marked == []
