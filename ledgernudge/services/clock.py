"""Local time zone resolution.

Reminder dates are shifted day by day in the user's zone, so the zone must
carry its DST rules: a fixed UTC offset taken from "now" would move every
candidate on the far side of a DST change by an hour.

Lookup order: LEDGERNUDGE_TIMEZONE, the TZ environment variable, the host's
/etc/localtime link, /etc/timezone. Only when none of them names an IANA zone
does the fixed offset of the current moment get used.
"""
import logging
import os
from datetime import datetime, tzinfo
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import TIMEZONE

logger = logging.getLogger(__name__)

LOCALTIME_LINK = Path("/etc/localtime")
TIMEZONE_FILE = Path("/etc/timezone")
_ZONEINFO_MARKER = "zoneinfo/"


def _zone(key: Optional[str]) -> Optional[ZoneInfo]:
    if not key:
        return None
    key = key.strip().lstrip(":")
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {key!r}, ignoring it")
        return None


def _host_zone_key() -> Optional[str]:
    """IANA key of the host zone from /etc/localtime or /etc/timezone."""
    if LOCALTIME_LINK.is_symlink():
        target = str(LOCALTIME_LINK.resolve())
        if _ZONEINFO_MARKER in target:
            return target.split(_ZONEINFO_MARKER, 1)[1]
    try:
        return TIMEZONE_FILE.read_text(encoding="utf-8").strip() or None
    except OSError:
        return None


@lru_cache(maxsize=1)
def local_zone() -> tzinfo:
    """The user's zone, resolved once per process."""
    for key in (TIMEZONE, os.environ.get("TZ"), _host_zone_key()):
        zone = _zone(key)
        if zone is not None:
            return zone
    logger.warning("No IANA zone found for this host, falling back to the current UTC offset")
    return datetime.now().astimezone().tzinfo


def local_now() -> datetime:
    """Current time as an aware datetime in local_zone()."""
    return datetime.now(local_zone())
