"""Application configuration - single source of truth for reminder constants.

Contains enums (PermissionStatus, GateReason, ReminderState, NotificationBackend),
notification identifiers and the magic values of the scheduling rules.
Import from here instead of hardcoding values elsewhere to ensure consistency.
"""
import os
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")


class PermissionStatus(Enum):
    """OS notification permission as seen by the reminder engine."""
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


class GateReason(Enum):
    """Why the delivery gate allowed or blocked a fired reminder."""
    OK = "ok"
    DISABLED = "disabled"
    PERMISSION_DENIED = "permission_denied"
    SAME_LOCAL_DAY = "same_local_day"
    SPACING_NOT_ELAPSED = "spacing_not_elapsed"
    INSIDE_QUIET_HOURS = "inside_quiet_hours"


class ReminderState(Enum):
    """Lifecycle states of the reminder orchestrator."""
    UNINITIALIZED = "uninitialized"
    DISABLED = "disabled"
    SCHEDULED = "scheduled"
    FIRING = "firing"
    DELIVERED = "delivered"
    BLOCKED = "blocked"
    UNRESOLVED = "unresolved"


class NotificationBackend(Enum):
    """Available notification backends."""
    FLET_EXTENSION = "flet_extension"
    PLYER = "plyer"


# Scheduling rules
MIN_REMINDER_SPACING_HOURS = 12
DAILY_GATE_MAX_ITERATIONS = 10
DEFAULT_PREFERRED_TIME_LOCAL = "20:00"
TEST_NOTIFICATION_DELAY_SECONDS = 3
OUTCOME_DRAIN_TIMEOUT_SECONDS = 5

# Notification identity
REMINDER_NOTIFICATION_KIND = "expense_log_reminder"
REMINDER_DEEP_LINK = "/transactions/add?type=expense"
REMINDER_CHANNEL_ID = "expense-log-reminder"
# Fixed platform identifier for the single pending reminder slot.
# Scheduling with the same identifier replaces the previous alarm.
REMINDER_SLOT_ID = "expense-log-reminder-slot"

# Desktop backend polls the scheduled_notifications table
SCHEDULER_INTERVAL_SECONDS = 60

# Settings store keys
SETTING_REMINDERS_ENABLED = "remindersEnabled"
SETTING_PREFERRED_TIME = "reminderPreferredTimeLocal"
SETTING_QUIET_HOURS_START = "reminderQuietHoursStart"
SETTING_QUIET_HOURS_END = "reminderQuietHoursEnd"
SETTING_LAST_DELIVERED_AT = "reminderLastDeliveredAtUtc"
SETTING_LAST_DELIVERED_DATE = "reminderLastDeliveredLocalDate"
SETTING_NEXT_SCHEDULED_AT = "reminderNextScheduledAtUtc"
SETTING_PERMISSION_STATUS = "reminderPermissionStatus"

# Environment overrides (desktop only, .env is not bundled in mobile builds)
DB_PATH = Path(os.getenv("LEDGERNUDGE_DB_PATH", "") or "ledgernudge.db")
LOG_LEVEL = os.getenv("LEDGERNUDGE_LOG_LEVEL", "") or "INFO"
# IANA zone name; empty means the system local zone
TIMEZONE = os.getenv("LEDGERNUDGE_TIMEZONE", "")
