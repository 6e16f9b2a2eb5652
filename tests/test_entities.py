"""Tests for reminder value types and time parsing."""
from datetime import date, datetime, timedelta, timezone

import pytest

from config import (
    DEFAULT_PREFERRED_TIME_LOCAL,
    REMINDER_DEEP_LINK,
    REMINDER_NOTIFICATION_KIND,
    SETTING_PERMISSION_STATUS,
    SETTING_PREFERRED_TIME,
    SETTING_REMINDERS_ENABLED,
    PermissionStatus,
)
from models.entities import (
    DeliveryRecord,
    FiredNotification,
    InvalidTimeFormat,
    LocalTime,
    QuietHoursWindow,
    ReminderPayload,
    ReminderSettings,
    format_utc,
    parse_utc,
)
from conftest import LOCAL_TZ


def at(hour: int, minute: int = 0, day: int = 10) -> datetime:
    return datetime(2024, 3, day, hour, minute, tzinfo=LOCAL_TZ)


# ===========================================================================
# LocalTime
# ===========================================================================

class TestLocalTime:
    @pytest.mark.parametrize("text,expected", [
        ("00:00", (0, 0)),
        ("09:05", (9, 5)),
        ("20:00", (20, 0)),
        ("23:59", (23, 59)),
    ])
    def test_parses_strict_hhmm(self, text, expected):
        parsed = LocalTime.parse(text)
        assert (parsed.hours, parsed.minutes) == expected
        assert parsed.format() == text

    @pytest.mark.parametrize("text", ["9:00", "24:00", "12:60", " 09:00", "09:00 ", "0900", "", None, 900])
    def test_rejects_malformed_input(self, text):
        with pytest.raises(InvalidTimeFormat):
            LocalTime.parse(text)

    def test_invalid_time_is_a_value_error(self):
        with pytest.raises(ValueError):
            LocalTime.parse("7pm")

    def test_on_builds_aware_datetime(self):
        moment = LocalTime.parse("06:30").on(date(2024, 3, 10), LOCAL_TZ)
        assert moment == at(6, 30)
        assert moment.tzinfo is LOCAL_TZ


# ===========================================================================
# QuietHoursWindow
# ===========================================================================

class TestQuietHoursWindow:
    def test_inactive_without_both_bounds(self):
        assert not QuietHoursWindow.from_strings("22:00", None).is_active
        assert not QuietHoursWindow.from_strings(None, "07:00").is_active
        assert not QuietHoursWindow().contains(at(3))

    def test_equal_bounds_are_inactive(self):
        window = QuietHoursWindow.from_strings("22:00", "22:00")
        assert not window.is_active
        assert not window.contains(at(22))

    def test_same_day_window(self):
        window = QuietHoursWindow.from_strings("12:00", "14:00")
        assert not window.crosses_midnight
        assert not window.contains(at(11, 59))
        assert window.contains(at(12, 0))
        assert window.contains(at(13, 59))
        assert not window.contains(at(14, 0))

    def test_cross_midnight_window_late_side(self):
        window = QuietHoursWindow.from_strings("22:00", "07:00")
        assert window.crosses_midnight
        assert not window.contains(at(21, 59))
        assert window.contains(at(22, 0))
        assert window.contains(at(23, 59))

    def test_cross_midnight_window_early_side(self):
        window = QuietHoursWindow.from_strings("22:00", "07:00")
        assert window.contains(at(0, 0))
        assert window.contains(at(6, 59))
        assert not window.contains(at(7, 0))
        assert not window.contains(at(12, 0))

    def test_end_after_same_day(self):
        window = QuietHoursWindow.from_strings("12:00", "14:00")
        assert window.end_after(at(13, 15)) == at(14, 0)

    def test_end_after_early_side_is_same_day(self):
        window = QuietHoursWindow.from_strings("22:00", "07:00")
        assert window.end_after(at(5, 0)) == at(7, 0)

    def test_end_after_late_side_is_next_day(self):
        window = QuietHoursWindow.from_strings("22:00", "07:00")
        assert window.end_after(at(23, 0)) == at(7, 0, day=11)

    def test_rejects_malformed_bounds(self):
        with pytest.raises(InvalidTimeFormat):
            QuietHoursWindow.from_strings("22:00", "7:00")


# ===========================================================================
# UTC helpers and delivery record
# ===========================================================================

class TestUtcHelpers:
    def test_parse_utc_accepts_z_suffix(self):
        parsed = parse_utc("2024-03-10T06:00:00.000Z")
        assert parsed == datetime(2024, 3, 10, 6, tzinfo=timezone.utc)

    def test_parse_utc_treats_naive_as_utc(self):
        assert parse_utc("2024-03-10T06:00:00") == datetime(2024, 3, 10, 6, tzinfo=timezone.utc)

    def test_parse_utc_normalizes_offsets(self):
        parsed = parse_utc("2024-03-10T08:00:00+02:00")
        assert parsed == datetime(2024, 3, 10, 6, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_parse_utc_returns_none_for_bad_input(self, value):
        assert parse_utc(value) is None

    def test_format_utc_uses_milliseconds_and_z(self):
        assert format_utc(at(8, 0)) == "2024-03-10T06:00:00.000Z"

    def test_earliest_next_adds_spacing(self):
        delivered = datetime(2024, 3, 10, 6, tzinfo=timezone.utc)
        record = DeliveryRecord(last_delivered_at_utc=delivered)
        assert record.has_delivery
        assert record.earliest_next(timedelta(hours=12)) == delivered + timedelta(hours=12)

    def test_earliest_next_without_history(self):
        assert DeliveryRecord().earliest_next(timedelta(hours=12)) is None


# ===========================================================================
# ReminderSettings
# ===========================================================================

class TestReminderSettings:
    def test_defaults_from_empty_store(self):
        settings = ReminderSettings.from_dict({})
        assert settings.reminders_enabled is False
        assert settings.preferred_time_local == DEFAULT_PREFERRED_TIME_LOCAL
        assert settings.permission_status == PermissionStatus.UNDETERMINED
        assert not settings.permission_granted

    def test_unknown_permission_value_is_undetermined(self):
        settings = ReminderSettings.from_dict({SETTING_PERMISSION_STATUS: "maybe"})
        assert settings.permission_status == PermissionStatus.UNDETERMINED

    def test_round_trip_through_setting_keys(self):
        settings = ReminderSettings(
            reminders_enabled=True,
            preferred_time_local="07:45",
            permission_status=PermissionStatus.GRANTED,
        )
        data = settings.to_dict()
        assert data[SETTING_REMINDERS_ENABLED] is True
        assert data[SETTING_PREFERRED_TIME] == "07:45"
        assert ReminderSettings.from_dict(data) == settings

    def test_policy_parses_preferences(self):
        settings = ReminderSettings(
            preferred_time_local="09:00",
            quiet_hours_start="22:00",
            quiet_hours_end="07:00",
        )
        policy = settings.policy(minimum_spacing_hours=6)
        assert policy.preferred_time == LocalTime(9, 0)
        assert policy.quiet_hours.crosses_midnight
        assert policy.minimum_spacing == timedelta(hours=6)

    def test_policy_raises_on_corrupted_time(self):
        with pytest.raises(InvalidTimeFormat):
            ReminderSettings(preferred_time_local="25:00").policy()

    def test_delivery_record_parses_stored_strings(self):
        settings = ReminderSettings(
            last_delivered_at_utc="2024-03-10T06:00:00.000Z",
            last_delivered_local_date="2024-03-10",
        )
        record = settings.delivery_record()
        assert record.last_delivered_at_utc == datetime(2024, 3, 10, 6, tzinfo=timezone.utc)
        assert record.last_delivered_local_date == date(2024, 3, 10)


# ===========================================================================
# ReminderPayload
# ===========================================================================

class TestReminderPayload:
    def test_default_payload_is_real_reminder(self):
        payload = ReminderPayload()
        assert payload.to_dict() == {
            "kind": REMINDER_NOTIFICATION_KIND,
            "deepLink": REMINDER_DEEP_LINK,
            "isTest": False,
        }
        assert payload.is_reminder
        assert payload.counts_as_real_delivery

    def test_test_payload_does_not_count(self):
        payload = ReminderPayload(is_test=True)
        assert not payload.counts_as_real_delivery

    def test_test_payload_can_count_as_real(self):
        payload = ReminderPayload(is_test=True, test_counts_as_real=True)
        assert payload.to_dict()["testCountsAsReal"] is True
        assert payload.counts_as_real_delivery

    def test_foreign_payload_is_not_a_reminder(self):
        fired = FiredNotification(identifier="x", data={"kind": "budget_alert"})
        assert not fired.payload.is_reminder

    def test_missing_data_is_not_a_reminder(self):
        assert not ReminderPayload.from_dict(None).is_reminder
