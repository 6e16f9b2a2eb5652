from datetime import datetime
from typing import Optional

from config import (
    SETTING_LAST_DELIVERED_AT,
    SETTING_LAST_DELIVERED_DATE,
    SETTING_NEXT_SCHEDULED_AT,
    SETTING_PERMISSION_STATUS,
    SETTING_PREFERRED_TIME,
    SETTING_QUIET_HOURS_END,
    SETTING_QUIET_HOURS_START,
    SETTING_REMINDERS_ENABLED,
    PermissionStatus,
)
from database import db
from events import event_bus, AppEvent
from models.entities import (
    LocalTime,
    ReminderSettings,
    format_local_date,
    format_utc,
)

_REMINDER_KEYS = list(ReminderSettings().to_dict().keys())


class SettingsService:
    """Reminder settings backed by the settings table.

    Preference setters validate HH:MM input before anything is persisted,
    so a malformed time never reaches the store. All data operations are async.
    """

    async def load(self) -> ReminderSettings:
        """Snapshot every reminder setting in one read."""
        await db.init_db()
        return ReminderSettings.from_dict(await db.get_settings(_REMINDER_KEYS))

    async def set_enabled(self, enabled: bool) -> None:
        await db.init_db()
        await db.set_setting(SETTING_REMINDERS_ENABLED, bool(enabled))

    async def set_permission_status(self, status: PermissionStatus) -> None:
        await db.init_db()
        await db.set_setting(SETTING_PERMISSION_STATUS, status.value)

    async def set_next_scheduled_at(self, at_utc: Optional[datetime]) -> None:
        await db.init_db()
        await db.set_setting(SETTING_NEXT_SCHEDULED_AT, format_utc(at_utc) if at_utc else None)

    async def record_delivery(self, delivered_at: datetime) -> None:
        """Persist a confirmed delivery and clear the pending slot marker."""
        await db.init_db()
        await db.set_settings({
            SETTING_LAST_DELIVERED_AT: format_utc(delivered_at),
            SETTING_LAST_DELIVERED_DATE: format_local_date(delivered_at),
            SETTING_NEXT_SCHEDULED_AT: None,
        })

    async def save_preferences(
        self,
        preferred_time_local: str,
        quiet_hours_start: Optional[str] = None,
        quiet_hours_end: Optional[str] = None,
    ) -> None:
        """Validate and save the preferred time and quiet hours.

        Quiet hours are stored only as a pair; passing a single bound
        disables the window.

        Raises:
            InvalidTimeFormat: If any provided time is not strict HH:MM
        """
        preferred = LocalTime.parse(preferred_time_local)
        start = LocalTime.parse(quiet_hours_start) if quiet_hours_start else None
        end = LocalTime.parse(quiet_hours_end) if quiet_hours_end else None
        if start is None or end is None:
            start = end = None

        await db.init_db()
        await db.set_settings({
            SETTING_PREFERRED_TIME: preferred.format(),
            SETTING_QUIET_HOURS_START: start.format() if start else None,
            SETTING_QUIET_HOURS_END: end.format() if end else None,
        })
        event_bus.emit(AppEvent.REMINDER_SETTINGS_CHANGED, {
            "preferred_time_local": preferred.format(),
            "quiet_hours_start": start.format() if start else None,
            "quiet_hours_end": end.format() if end else None,
        })
