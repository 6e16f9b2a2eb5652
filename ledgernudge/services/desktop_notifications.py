"""Desktop notification platform.

Desktop operating systems have no alarm scheduler reachable from Python and
no runtime notification permission, so this backend:
- assumes permission is granted
- stores pending notifications in the scheduled_notifications table
- polls that table every SCHEDULER_INTERVAL_SECONDS and fires due rows
  through the installed fire handler
- presents notifications the handler approves with plyer
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Set

from plyer import notification as plyer_notification

from config import SCHEDULER_INTERVAL_SECONDS, PermissionStatus
from database import db, DatabaseError
from i18n import t
from models.entities import FiredNotification, NotificationContent, PendingNotification
from services import notification_ledger
from services.ports import FireHandler

logger = logging.getLogger(__name__)

DisplayFn = Callable[[str, str], Awaitable[bool]]


async def deliver_plyer_notification(title: str, body: str) -> bool:
    """Show a notification via plyer.

    Returns:
        True if notification was delivered successfully, False otherwise.
    """
    try:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: plyer_notification.notify(
                title=title,
                message=body,
                app_name=t("app_name"),
                timeout=10,
            )
        )
        return True
    except (OSError, RuntimeError, NotImplementedError) as e:
        logger.error(f"Error showing plyer notification: {e}")
        return False


class DesktopNotificationPlatform:
    """NotificationPlatform backed by SQLite storage and a polling loop."""

    def __init__(
        self,
        display: Optional[DisplayFn] = None,
        interval_seconds: float = SCHEDULER_INTERVAL_SECONDS,
    ) -> None:
        self._display = display or deliver_plyer_notification
        self._interval = interval_seconds
        self._fire_handler: Optional[FireHandler] = None
        self._channels: Set[str] = set()

        # Async control
        self._running = False
        self._stop_event: asyncio.Event = asyncio.Event()

    async def get_permissions(self) -> PermissionStatus:
        return PermissionStatus.GRANTED

    async def can_ask_again(self) -> bool:
        return True

    async def request_permissions(self) -> PermissionStatus:
        logger.info("Plyer backend - assuming permission granted")
        return PermissionStatus.GRANTED

    async def ensure_channel(self, channel_id: str, name: str = "", description: str = "") -> None:
        # Desktop notifications have no channels; remember the id for parity
        if channel_id not in self._channels:
            self._channels.add(channel_id)
            logger.debug(f"Desktop channel registered: {channel_id}")

    async def schedule_at(
        self,
        content: NotificationContent,
        when: datetime,
        identifier: Optional[str] = None,
    ) -> str:
        identifier = identifier or uuid.uuid4().hex
        return await notification_ledger.record_pending(identifier, content, when)

    async def cancel(self, identifier: str) -> None:
        await notification_ledger.forget_pending(identifier)

    async def list_pending(self) -> List[PendingNotification]:
        return await notification_ledger.pending_notifications()

    def set_fire_handler(self, handler: Optional[FireHandler]) -> None:
        self._fire_handler = handler

    # ── Polling loop ───────────────────────────────────────────────────

    def start(self, async_scheduler: Callable[..., Any]) -> None:
        """Start the polling loop on the given scheduler (e.g. page.run_task)."""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        async_scheduler(self._scheduler_loop)
        logger.info("Desktop notification scheduler started")

    def stop(self) -> None:
        self._running = False
        self._stop_event.set()
        logger.info("Desktop notification scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _scheduler_loop(self) -> None:
        logger.info("Desktop notification scheduler loop started")
        try:
            while self._running and not self._stop_event.is_set():
                await self.process_due()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Desktop notification scheduler loop cancelled")
        except (DatabaseError, OSError, RuntimeError) as e:
            logger.error(f"Error in desktop notification scheduler loop: {e}")
            self._running = False

    async def process_due(self, now: Optional[datetime] = None) -> int:
        """Fire every stored notification that is due.

        Rows are deleted before the handler runs, so a notification fires at
        most once even if the handler reschedules into the same identifier.

        Returns:
            Number of notifications presented to the user
        """
        now = now or datetime.now(timezone.utc)
        await db.init_db()
        shown = 0
        for row in await db.load_due_notifications(now):
            if await db.delete_scheduled_notification(row["identifier"]) == 0:
                continue
            fired = FiredNotification(
                identifier=row["identifier"],
                title=row["title"],
                body=row["body"],
                data=row["payload"],
            )
            should_show = True
            if self._fire_handler is not None:
                should_show = await self._fire_handler(fired)
            if should_show and await self._display(fired.title, fired.body):
                shown += 1
        return shown
