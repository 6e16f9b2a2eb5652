"""Database package - async SQLite with mixin-based composition.

``from database import db, DatabaseError`` is the public API. The reminder
settings live in the ``settings`` key/value table; the desktop notification
backend keeps its pending alarms in ``scheduled_notifications``.
"""
from pathlib import Path

from config import DB_PATH as _CONFIGURED_DB_PATH

DB_PATH: Path = _CONFIGURED_DB_PATH

from database.helpers import DatabaseError  # noqa: E402
from database.core import DatabaseCore  # noqa: E402
from database.notifications import NotificationsMixin  # noqa: E402


class Database(DatabaseCore, NotificationsMixin):
    """Composed database class combining all mixins."""
    pass


def configure_db_path(path: Path) -> None:
    """Set a custom database path before any connection is opened.

    Raises:
        RuntimeError: If the database connection is already open.
    """
    global DB_PATH
    if Database._instance is not None and Database._instance._conn is not None:
        raise RuntimeError(
            "Cannot change DB_PATH after a database connection has been opened. "
            "Call configure_db_path() before any database operations."
        )
    DB_PATH = path


db = Database()
