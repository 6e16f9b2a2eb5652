"""Pending notification ledger in the scheduled_notifications table.

Neither backend can ask its OS for the list of pending alarms, so both keep
their own record: the desktop poller fires from it, the Android adapter uses
it to answer list_pending() and to sweep stale alarms on cancel.
"""
from datetime import datetime
from typing import List

from database import db, DatabaseError
from models.entities import NotificationContent, PendingNotification
from services.ports import NotificationPlatformError


async def record_pending(identifier: str, content: NotificationContent, when: datetime) -> str:
    """Insert or replace the ledger row for identifier."""
    try:
        await db.init_db()
        return await db.save_scheduled_notification({
            "identifier": identifier,
            "title": content.title,
            "body": content.body,
            "channel_id": content.channel_id,
            "trigger_time": when,
            "payload": content.data,
        })
    except DatabaseError as e:
        raise NotificationPlatformError(f"Cannot record notification {identifier}: {e}") from e


async def forget_pending(identifier: str) -> int:
    """Drop the ledger row for identifier; returns the number of rows removed."""
    try:
        await db.init_db()
        return await db.delete_scheduled_notification(identifier)
    except DatabaseError as e:
        raise NotificationPlatformError(f"Cannot forget notification {identifier}: {e}") from e


async def pending_notifications() -> List[PendingNotification]:
    try:
        await db.init_db()
        rows = await db.load_scheduled_notifications()
    except DatabaseError as e:
        raise NotificationPlatformError(f"Cannot list pending notifications: {e}") from e
    return [
        PendingNotification(
            identifier=row["identifier"],
            data=row["payload"],
            trigger_at=row["trigger_time"],
        )
        for row in rows
    ]
