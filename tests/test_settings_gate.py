from datetime import datetime, timezone

from pitstop.core.settings_gate import is_eligible, is_quiet_now, local_now
from pitstop.models.notification import NotificationCategory, NotificationSettings, QuietHours

from tests.fakes import LATE_NIGHT, MORNING


def test_quiet_hours_wrap_midnight():
    window = QuietHours(enabled=True, start_hour=22, end_hour=7)
    assert is_quiet_now(window, 23)
    assert is_quiet_now(window, 3)
    assert not is_quiet_now(window, 10)
    assert not is_quiet_now(window, 7)


def test_quiet_hours_same_day_window():
    window = QuietHours(enabled=True, start_hour=13, end_hour=15)
    assert is_quiet_now(window, 14)
    assert not is_quiet_now(window, 15)


def test_disabled_quiet_hours_never_quiet():
    assert not is_quiet_now(QuietHours(enabled=False), 23)
    assert not is_quiet_now(None, 23)


def test_local_now_uses_community_timezone():
    assert local_now(datetime(2026, 1, 15, 22, 30, tzinfo=timezone.utc)).hour == 23
    assert local_now(datetime(2026, 7, 15, 22, 30, tzinfo=timezone.utc)).hour == 0


def test_missing_settings_are_ineligible():
    assert not is_eligible(None, NotificationCategory.SOS_ALERTS, now=MORNING)


def test_master_switch_off_blocks_everything():
    settings = NotificationSettings(enabled=False)
    assert not is_eligible(settings, NotificationCategory.SOS_ALERTS, now=MORNING)


def test_category_toggle():
    settings = NotificationSettings.merged({"chat_messages": False})
    assert not is_eligible(settings, NotificationCategory.CHAT_MESSAGES, now=MORNING)
    assert is_eligible(settings, NotificationCategory.EVENT_COMMENTS, now=MORNING)


def test_quiet_hours_respected_unless_bypassed():
    settings = NotificationSettings.merged({"quiet_hours": {"enabled": True}})
    assert not is_eligible(settings, NotificationCategory.CHAT_MESSAGES, now=LATE_NIGHT)
    assert is_eligible(
        settings, NotificationCategory.CHAT_MESSAGES, now=LATE_NIGHT, respect_quiet_hours=False
    )
    assert is_eligible(settings, NotificationCategory.CHAT_MESSAGES, now=MORNING)


def test_new_events_filtered_by_type():
    settings = NotificationSettings.merged({"new_events": {"enabled": True, "types": ["trackday"]}})
    assert is_eligible(settings, NotificationCategory.NEW_EVENTS, now=MORNING, event_type="trackday")
    assert not is_eligible(settings, NotificationCategory.NEW_EVENTS, now=MORNING, event_type="minisraz")


def test_stored_settings_merge_onto_defaults():
    settings = NotificationSettings.merged({"quiet_hours": {"enabled": True, "start_hour": 21}})
    assert settings.quiet_hours.end_hour == 7
    assert settings.marketplace_notifications is False
    assert settings.sos_alerts is True
    assert settings.proximity_radius_km == 20
