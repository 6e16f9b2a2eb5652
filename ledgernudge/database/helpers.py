import json
from datetime import datetime
from typing import Any, Dict

from models.entities import format_utc, parse_utc


class DatabaseError(Exception):
    """Custom exception for database operations."""
    pass


def _serialize_trigger_time(trigger_time: datetime) -> str:
    """Fixed-width UTC text, so SQL string comparison orders by instant."""
    return format_utc(trigger_time)


def _deserialize_notification_row(row) -> Dict[str, Any]:
    """Convert a raw scheduled_notifications row into a plain dict.

    Parses the JSON payload and turns trigger_time back into an aware datetime.
    """
    notification = dict(row)
    payload = notification.get("payload")
    notification["payload"] = json.loads(payload) if payload else {}
    notification["trigger_time"] = parse_utc(notification.get("trigger_time"))
    return notification
