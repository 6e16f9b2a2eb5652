import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Dict, Any

from config import (
    DEFAULT_PREFERRED_TIME_LOCAL,
    MIN_REMINDER_SPACING_HOURS,
    REMINDER_DEEP_LINK,
    REMINDER_NOTIFICATION_KIND,
    SETTING_LAST_DELIVERED_AT,
    SETTING_LAST_DELIVERED_DATE,
    SETTING_NEXT_SCHEDULED_AT,
    SETTING_PERMISSION_STATUS,
    SETTING_PREFERRED_TIME,
    SETTING_QUIET_HOURS_END,
    SETTING_QUIET_HOURS_START,
    SETTING_REMINDERS_ENABLED,
    GateReason,
    PermissionStatus,
)

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class InvalidTimeFormat(ValueError):
    """Raised when a time-of-day string is not strict 24-hour HH:MM."""
    pass


def parse_utc(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 instant. Naive values are taken as UTC.

    Returns None for empty or unparseable input.
    """
    if not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_utc(moment: datetime) -> str:
    """Format an aware instant as ISO-8601 UTC with millisecond precision."""
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_local_date(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD calendar date, None for empty or invalid input."""
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def format_local_date(moment: datetime) -> str:
    """Calendar date of a local moment as YYYY-MM-DD."""
    return moment.date().isoformat()


def minutes_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


@dataclass(frozen=True)
class LocalTime:
    """Wall-clock time of day with minute precision."""
    hours: int
    minutes: int

    @classmethod
    def parse(cls, text: Any) -> "LocalTime":
        """Parse a strict "HH:MM" string.

        Raises:
            InvalidTimeFormat: If text is not a zero-padded 24-hour time
        """
        match = _HHMM_PATTERN.match(text) if isinstance(text, str) else None
        if match is None:
            raise InvalidTimeFormat(f'Invalid time format "{text}". Expected HH:MM.')
        return cls(hours=int(match.group(1)), minutes=int(match.group(2)))

    @property
    def minutes_of_day(self) -> int:
        return self.hours * 60 + self.minutes

    def to_time(self) -> time:
        return time(self.hours, self.minutes)

    def on(self, day: date, tz: Optional[tzinfo]) -> datetime:
        """This time of day on the given calendar date in zone tz."""
        return datetime.combine(day, self.to_time(), tzinfo=tz)

    def format(self) -> str:
        return f"{self.hours:02d}:{self.minutes:02d}"

    def __str__(self) -> str:
        return self.format()


@dataclass(frozen=True)
class QuietHoursWindow:
    """Half-open [start, end) time-of-day interval that may wrap past midnight.

    The window is inactive when either bound is missing or start == end,
    so a misconfigured window can never lock reminders out all day.
    """
    start: Optional[LocalTime] = None
    end: Optional[LocalTime] = None

    @classmethod
    def from_strings(cls, start: Optional[str], end: Optional[str]) -> "QuietHoursWindow":
        if not start or not end:
            return cls()
        return cls(start=LocalTime.parse(start), end=LocalTime.parse(end))

    @property
    def is_active(self) -> bool:
        return (
            self.start is not None
            and self.end is not None
            and self.start.minutes_of_day != self.end.minutes_of_day
        )

    @property
    def crosses_midnight(self) -> bool:
        return self.is_active and self.start.minutes_of_day > self.end.minutes_of_day

    def contains(self, moment: datetime) -> bool:
        """Check whether the local wall-clock minute of moment is inside the window."""
        if not self.is_active:
            return False
        value = minutes_of_day(moment)
        start = self.start.minutes_of_day
        end = self.end.minutes_of_day
        if start < end:
            return start <= value < end
        return value >= start or value < end

    def end_after(self, moment: datetime) -> datetime:
        """End instant of the window occurrence that contains moment.

        Same calendar day for a same-day window and for the early side of a
        cross-midnight window; the following day for the late side.
        """
        day = moment.date()
        if self.crosses_midnight and minutes_of_day(moment) >= self.start.minutes_of_day:
            day = day + timedelta(days=1)
        return self.end.on(day, moment.tzinfo)


@dataclass(frozen=True)
class ReminderPolicy:
    """User-configured scheduling rules, read from the settings store."""
    preferred_time: LocalTime
    quiet_hours: QuietHoursWindow = field(default_factory=QuietHoursWindow)
    minimum_spacing_hours: int = MIN_REMINDER_SPACING_HOURS

    @property
    def minimum_spacing(self) -> timedelta:
        return timedelta(hours=self.minimum_spacing_hours)


@dataclass(frozen=True)
class DeliveryRecord:
    """Last confirmed, gate-approved delivery."""
    last_delivered_at_utc: Optional[datetime] = None
    last_delivered_local_date: Optional[date] = None

    @property
    def has_delivery(self) -> bool:
        return self.last_delivered_at_utc is not None

    def earliest_next(self, spacing: timedelta) -> Optional[datetime]:
        """Earliest UTC instant the spacing rule allows, or None without history."""
        if self.last_delivered_at_utc is None:
            return None
        return self.last_delivered_at_utc + spacing


@dataclass(frozen=True)
class EligibilityResult:
    candidate_local: datetime
    candidate_utc: datetime
    candidate_local_date: date
    minimum_spacing_applied: bool = False
    daily_gate_applied: bool = False
    quiet_hours_adjusted: bool = False

    @property
    def candidate_utc_iso(self) -> str:
        return format_utc(self.candidate_utc)


@dataclass(frozen=True)
class DeliveryGateDecision:
    allowed: bool
    reason: GateReason

    @classmethod
    def ok(cls) -> "DeliveryGateDecision":
        return cls(allowed=True, reason=GateReason.OK)

    @classmethod
    def blocked(cls, reason: GateReason) -> "DeliveryGateDecision":
        return cls(allowed=False, reason=reason)


@dataclass
class ReminderSettings:
    """Snapshot of every reminder key held by the settings store.

    Values keep their persisted string form; policy() and delivery_record()
    parse them into the typed inputs of the calculator and the gate.
    """
    reminders_enabled: bool = False
    preferred_time_local: str = DEFAULT_PREFERRED_TIME_LOCAL
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    last_delivered_at_utc: Optional[str] = None
    last_delivered_local_date: Optional[str] = None
    next_scheduled_at_utc: Optional[str] = None
    permission_status: PermissionStatus = PermissionStatus.UNDETERMINED

    def policy(self, minimum_spacing_hours: int = MIN_REMINDER_SPACING_HOURS) -> ReminderPolicy:
        return ReminderPolicy(
            preferred_time=LocalTime.parse(self.preferred_time_local),
            quiet_hours=QuietHoursWindow.from_strings(self.quiet_hours_start, self.quiet_hours_end),
            minimum_spacing_hours=minimum_spacing_hours,
        )

    def delivery_record(self) -> DeliveryRecord:
        return DeliveryRecord(
            last_delivered_at_utc=parse_utc(self.last_delivered_at_utc),
            last_delivered_local_date=parse_local_date(self.last_delivered_local_date),
        )

    @property
    def permission_granted(self) -> bool:
        return self.permission_status == PermissionStatus.GRANTED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a settings-key dictionary for storage."""
        return {
            SETTING_REMINDERS_ENABLED: self.reminders_enabled,
            SETTING_PREFERRED_TIME: self.preferred_time_local,
            SETTING_QUIET_HOURS_START: self.quiet_hours_start,
            SETTING_QUIET_HOURS_END: self.quiet_hours_end,
            SETTING_LAST_DELIVERED_AT: self.last_delivered_at_utc,
            SETTING_LAST_DELIVERED_DATE: self.last_delivered_local_date,
            SETTING_NEXT_SCHEDULED_AT: self.next_scheduled_at_utc,
            SETTING_PERMISSION_STATUS: self.permission_status.value,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ReminderSettings":
        try:
            permission = PermissionStatus(d.get(SETTING_PERMISSION_STATUS))
        except ValueError:
            permission = PermissionStatus.UNDETERMINED
        return cls(
            reminders_enabled=bool(d.get(SETTING_REMINDERS_ENABLED, False)),
            preferred_time_local=d.get(SETTING_PREFERRED_TIME) or DEFAULT_PREFERRED_TIME_LOCAL,
            quiet_hours_start=d.get(SETTING_QUIET_HOURS_START),
            quiet_hours_end=d.get(SETTING_QUIET_HOURS_END),
            last_delivered_at_utc=d.get(SETTING_LAST_DELIVERED_AT),
            last_delivered_local_date=d.get(SETTING_LAST_DELIVERED_DATE),
            next_scheduled_at_utc=d.get(SETTING_NEXT_SCHEDULED_AT),
            permission_status=permission,
        )


@dataclass
class ReminderPayload:
    """Data attached to every notification scheduled by the reminder engine."""
    kind: Optional[str] = REMINDER_NOTIFICATION_KIND
    deep_link: Optional[str] = REMINDER_DEEP_LINK
    is_test: bool = False
    test_counts_as_real: Optional[bool] = None

    @property
    def is_reminder(self) -> bool:
        return self.kind == REMINDER_NOTIFICATION_KIND

    @property
    def counts_as_real_delivery(self) -> bool:
        if self.test_counts_as_real:
            return True
        return not self.is_test

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind,
            "deepLink": self.deep_link,
            "isTest": self.is_test,
        }
        if self.test_counts_as_real is not None:
            data["testCountsAsReal"] = self.test_counts_as_real
        return data

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "ReminderPayload":
        d = d or {}
        return cls(
            kind=d.get("kind"),
            deep_link=d.get("deepLink"),
            is_test=bool(d.get("isTest", False)),
            test_counts_as_real=d.get("testCountsAsReal"),
        )


@dataclass
class NotificationContent:
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    channel_id: Optional[str] = None


@dataclass
class PendingNotification:
    """A notification waiting in the platform scheduler."""
    identifier: str
    data: Dict[str, Any] = field(default_factory=dict)
    trigger_at: Optional[datetime] = None


@dataclass
class FiredNotification:
    """A notification the platform is about to present."""
    identifier: str
    title: str = ""
    body: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def payload(self) -> ReminderPayload:
        return ReminderPayload.from_dict(self.data)
