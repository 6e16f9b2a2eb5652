"""Shared fixtures for LedgerNudge tests."""
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

import database as db_module
from config import PermissionStatus
from database import db
from events import AppEvent, event_bus
from models.entities import (
    FiredNotification,
    NotificationContent,
    PendingNotification,
)
from services.ports import FireHandler, NotificationPlatformError
from services.reminder_service import ReminderService
from services.settings_service import SettingsService

# Fixed +02:00 zone so wall-clock expectations do not depend on the host
LOCAL_TZ = timezone(timedelta(hours=2))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class EventCollector:
    """Subscribe to events and record them for assertions."""

    def __init__(self, *events: AppEvent):
        self.received: list[tuple[AppEvent, object]] = []
        self._subs = []
        for ev in events:
            sub = event_bus.subscribe(ev, lambda data, _ev=ev: self.received.append((_ev, data)))
            self._subs.append(sub)

    def count(self, event: AppEvent) -> int:
        return sum(1 for ev, _ in self.received if ev == event)

    def last(self, event: AppEvent) -> object:
        matches = [data for ev, data in self.received if ev == event]
        return matches[-1] if matches else None

    def cleanup(self):
        for sub in self._subs:
            sub.unsubscribe()


class FakeClock:
    """Settable clock returning aware datetimes in LOCAL_TZ."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeNotificationPlatform:
    """In-memory NotificationPlatform with switchable permission and failures."""

    def __init__(self):
        self.permission = PermissionStatus.GRANTED
        self.request_result = PermissionStatus.GRANTED
        self.ask_again = True
        self.pending: Dict[str, tuple] = {}
        self.channels: List[str] = []
        self.ensure_channel_calls = 0
        self.cancelled: List[str] = []
        self.fire_handler: Optional[FireHandler] = None
        self.fail_schedule = False
        self.fail_list = False
        self._counter = 0

    async def get_permissions(self) -> PermissionStatus:
        return self.permission

    async def can_ask_again(self) -> bool:
        return self.ask_again

    async def request_permissions(self) -> PermissionStatus:
        self.permission = self.request_result
        return self.permission

    async def ensure_channel(self, channel_id: str, name: str = "", description: str = "") -> None:
        self.ensure_channel_calls += 1
        if channel_id not in self.channels:
            self.channels.append(channel_id)

    async def schedule_at(
        self,
        content: NotificationContent,
        when: datetime,
        identifier: Optional[str] = None,
    ) -> str:
        if self.fail_schedule:
            raise NotificationPlatformError("scheduler unavailable")
        if identifier is None:
            self._counter += 1
            identifier = f"fake-{self._counter}"
        self.pending[identifier] = (content, when)
        return identifier

    async def cancel(self, identifier: str) -> None:
        self.cancelled.append(identifier)
        self.pending.pop(identifier, None)

    async def list_pending(self) -> List[PendingNotification]:
        if self.fail_list:
            raise NotificationPlatformError("scheduler unavailable")
        return [
            PendingNotification(identifier=identifier, data=dict(content.data), trigger_at=when)
            for identifier, (content, when) in self.pending.items()
        ]

    def set_fire_handler(self, handler: Optional[FireHandler]) -> None:
        self.fire_handler = handler

    # Test-only helpers

    def reminder_slots(self) -> List[str]:
        """Identifiers of pending real (non-test) reminders."""
        return [
            identifier for identifier, (content, _) in self.pending.items()
            if content.data.get("kind") == "expense_log_reminder" and not content.data.get("isTest")
        ]

    async def fire(self, identifier: str) -> bool:
        """Remove a pending notification and run it through the fire handler."""
        content, _ = self.pending.pop(identifier)
        fired = FiredNotification(
            identifier=identifier,
            title=content.title,
            body=content.body,
            data=dict(content.data),
        )
        if self.fire_handler is None:
            return True
        return await self.fire_handler(fired)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def fresh_db():
    """Point the db singleton at a fresh in-memory database for every test.

    Each test runs on its own event loop, so connection and locks are reset.
    """
    await db.close()
    db._initialized = False
    db._conn_lock = None
    db._init_lock = None
    event_bus.clear()

    db_module.DB_PATH = Path(":memory:")

    yield db

    await db.close()
    db._conn_lock = None
    db._init_lock = None
    event_bus.clear()


@pytest.fixture
def settings() -> SettingsService:
    return SettingsService()


@pytest.fixture
def platform() -> FakeNotificationPlatform:
    return FakeNotificationPlatform()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 10, 8, 0, tzinfo=LOCAL_TZ))


@pytest_asyncio.fixture
async def reminders(settings, platform, clock):
    """ReminderService over the real settings store and the fake platform."""
    service = ReminderService(settings, platform, clock=clock)
    yield service
    await service.shutdown()
