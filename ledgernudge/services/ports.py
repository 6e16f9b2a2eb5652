"""Ports consumed by the reminder orchestrator.

The orchestrator never talks to SQLite or the OS notification API directly;
it goes through these two narrow interfaces so desktop, Android and test
doubles are interchangeable.
"""
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Protocol

from config import PermissionStatus
from models.entities import (
    FiredNotification,
    NotificationContent,
    PendingNotification,
    ReminderSettings,
)

# Returns True when the platform should present the notification
FireHandler = Callable[[FiredNotification], Awaitable[bool]]


class SettingsStore(Protocol):
    """Persistent reminder settings (see services.settings_service)."""

    async def load(self) -> ReminderSettings:
        ...

    async def set_enabled(self, enabled: bool) -> None:
        ...

    async def set_permission_status(self, status: PermissionStatus) -> None:
        ...

    async def set_next_scheduled_at(self, at_utc: Optional[datetime]) -> None:
        ...

    async def record_delivery(self, delivered_at: datetime) -> None:
        ...


class NotificationPlatform(Protocol):
    """OS notification scheduler.

    Implementations raise NotificationPlatformError on backend failures.
    """

    async def get_permissions(self) -> PermissionStatus:
        ...

    async def can_ask_again(self) -> bool:
        ...

    async def request_permissions(self) -> PermissionStatus:
        ...

    async def ensure_channel(self, channel_id: str, name: str = "", description: str = "") -> None:
        """Register a notification channel. Must be safe to call repeatedly."""

    async def schedule_at(
        self,
        content: NotificationContent,
        when: datetime,
        identifier: Optional[str] = None,
    ) -> str:
        """Schedule content at when. Reusing an identifier replaces that notification."""

    async def cancel(self, identifier: str) -> None:
        ...

    async def list_pending(self) -> List[PendingNotification]:
        ...

    def set_fire_handler(self, handler: Optional[FireHandler]) -> None:
        """Install the callback invoked for every notification about to be shown."""


class NotificationPlatformError(Exception):
    """Raised by platform adapters when the notification backend fails."""
    pass
