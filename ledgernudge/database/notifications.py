import json
import sqlite3
import logging
from datetime import datetime
from typing import Any, Dict, List

from database.helpers import (
    DatabaseError,
    _deserialize_notification_row,
    _serialize_trigger_time,
)

logger = logging.getLogger(__name__)


class NotificationsMixin:
    """Scheduled notification operations mixin (desktop backend storage)."""

    async def save_scheduled_notification(self, notification: Dict[str, Any]) -> str:
        """Insert or replace a scheduled notification keyed by its identifier."""
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    "INSERT OR REPLACE INTO scheduled_notifications "
                    "(identifier, title, body, channel_id, trigger_time, payload) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        notification["identifier"],
                        notification["title"],
                        notification["body"],
                        notification.get("channel_id"),
                        _serialize_trigger_time(notification["trigger_time"]),
                        json.dumps(notification.get("payload") or {}),
                    )
                )
                await conn.commit()
                return notification["identifier"]
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error saving scheduled notification: {e}")
            raise DatabaseError(f"Failed to save notification: {e}") from e

    async def load_scheduled_notifications(self) -> List[Dict[str, Any]]:
        """Load every pending notification, earliest first."""
        try:
            async with self._get_connection() as conn:
                async with conn.execute(
                    "SELECT * FROM scheduled_notifications ORDER BY trigger_time ASC"
                ) as cursor:
                    return [_deserialize_notification_row(r) async for r in cursor]
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading scheduled notifications: {e}")
            raise DatabaseError(f"Failed to load scheduled notifications: {e}") from e

    async def load_due_notifications(self, trigger_before: datetime) -> List[Dict[str, Any]]:
        """Load pending notifications whose trigger time is at or before the given instant."""
        try:
            async with self._get_connection() as conn:
                async with conn.execute(
                    "SELECT * FROM scheduled_notifications "
                    "WHERE trigger_time <= ? ORDER BY trigger_time ASC",
                    (_serialize_trigger_time(trigger_before),)
                ) as cursor:
                    return [_deserialize_notification_row(r) async for r in cursor]
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading due notifications: {e}")
            raise DatabaseError(f"Failed to load due notifications: {e}") from e

    async def delete_scheduled_notification(self, identifier: str) -> int:
        """Delete a pending notification.

        Returns:
            Number of notifications deleted (0 if it already fired or never existed)
        """
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(
                    "DELETE FROM scheduled_notifications WHERE identifier = ?",
                    (identifier,)
                )
                await conn.commit()
                return cursor.rowcount
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error deleting notification {identifier}: {e}")
            raise DatabaseError(f"Failed to delete notification: {e}") from e
