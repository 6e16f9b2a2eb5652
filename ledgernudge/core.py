"""Headless bootstrap for the LedgerNudge reminder engine.

Initializes the reminder services without any UI, suitable for the desktop
runner, scripts, and testing.

Usage:
    from core import bootstrap, shutdown

    svc = await bootstrap(db_path=Path("my.db"))
    await svc.reminders.set_enabled_and_reschedule(True)
    await shutdown(svc)
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from config import NotificationBackend
from database import db, configure_db_path
from services.desktop_notifications import DesktopNotificationPlatform
from services.ports import NotificationPlatform
from services.reminder_service import ReminderService
from services.settings_service import SettingsService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Container holding all initialized services for headless use."""
    settings: SettingsService
    platform: NotificationPlatform
    reminders: ReminderService


def create_platform(
    backend: NotificationBackend = NotificationBackend.PLYER,
    page: Optional[Any] = None,
) -> NotificationPlatform:
    """Build the notification platform for a backend.

    The Flet backend needs the running page: the extension control is added
    to page.services and async work is scheduled through page.run_task.
    """
    if backend == NotificationBackend.FLET_EXTENSION:
        if page is None:
            raise ValueError("The Flet notification backend needs a page")
        from flet_local_notifications import FletLocalNotifications
        from services.flet_notifications import FletNotificationPlatform

        extension = FletLocalNotifications()
        page.services.append(extension)
        return FletNotificationPlatform(extension, page.run_task)
    return DesktopNotificationPlatform()


async def bootstrap(
    db_path: Optional[Path] = None,
    platform: Optional[NotificationPlatform] = None,
    backend: NotificationBackend = NotificationBackend.PLYER,
    page: Optional[Any] = None,
) -> ServiceContainer:
    """Initialize the reminder services.

    Args:
        db_path: Custom database path. Uses the configured path if None.
        platform: Notification platform to use. Built from backend if None.
        backend: Which platform to build when none is given.
        page: Flet page, required by the Flet backend.

    Returns:
        ServiceContainer with all services ready to use. The caller still
        has to await reminders.initialize() once the event loop runs.
    """
    if db_path is not None:
        configure_db_path(db_path)

    await db.init_db()

    platform = platform or create_platform(backend, page)
    settings = SettingsService()
    scheduler = page.run_task if page is not None else None
    reminders = ReminderService(settings, platform, async_scheduler=scheduler)

    logger.info(f"Reminder services bootstrapped ({type(platform).__name__})")
    return ServiceContainer(settings=settings, platform=platform, reminders=reminders)


async def shutdown(container: Optional[ServiceContainer] = None) -> None:
    """Detach the reminder service, stop polling and close the database."""
    if container is not None:
        await container.reminders.shutdown()
        if isinstance(container.platform, DesktopNotificationPlatform):
            container.platform.stop()
    await db.close()
