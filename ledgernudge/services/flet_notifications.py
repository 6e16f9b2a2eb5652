"""Android notification platform over the flet_local_notifications extension.

Alarms are registered with AlarmManager through schedule_notification(), so a
reminder fires even if the app is killed. While the app is in the foreground
the extension reports each alarm through on_notification_received instead of
presenting it, and this adapter asks the fire handler whether to show it.

Android notification ids are integers; string identifiers are mapped to a
stable 31-bit id and echoed back in the payload under "_identifier".
"""
import json
import logging
import zlib
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import PermissionStatus
from events import event_bus, AppEvent
from models.entities import (
    FiredNotification,
    NotificationContent,
    PendingNotification,
)
from services import notification_ledger
from services.ports import FireHandler, NotificationPlatformError

logger = logging.getLogger(__name__)

_IDENTIFIER_KEY = "_identifier"


def permission_from_flags(granted: bool, provisional: bool, can_ask_again: bool) -> PermissionStatus:
    """Map raw OS permission flags onto PermissionStatus.

    Provisional authorization counts as granted; a refusal the OS will still
    prompt for again is undetermined rather than denied.
    """
    if granted or provisional:
        return PermissionStatus.GRANTED
    return PermissionStatus.UNDETERMINED if can_ask_again else PermissionStatus.DENIED


def platform_id_for(identifier: str) -> int:
    """Stable Android notification id for a string identifier."""
    if identifier.isdigit():
        return int(identifier)
    return zlib.crc32(identifier.encode("utf-8")) & 0x7FFFFFFF


class FletNotificationPlatform:
    """NotificationPlatform adapter for the Flet Android extension."""

    def __init__(self, extension: Any, async_scheduler: Callable[..., Any]) -> None:
        """
        Args:
            extension: FletLocalNotifications service instance
            async_scheduler: Function to schedule async work (page.run_task)
        """
        self._ext = extension
        self._schedule_async = async_scheduler
        self._fire_handler: Optional[FireHandler] = None
        self._channels: Dict[str, Tuple[str, str]] = {}
        self._can_ask_again = True

        extension.on_notification_received = self._on_notification_received
        extension.on_notification_tap = self._on_notification_tapped

    @staticmethod
    def _ensure_ok(result: str, action: str) -> None:
        if str(result).lower() != "ok":
            logger.warning(f"[NOTIF] {action} answered {result!r}")
            raise NotificationPlatformError(f"{action} failed: {result}")

    def _parse_permissions(self, raw: str) -> PermissionStatus:
        """Accept the JSON flag object or a bare "true"/"false" answer."""
        try:
            flags = json.loads(str(raw).strip().lower())
        except (TypeError, ValueError) as e:
            raise NotificationPlatformError(f"Unexpected permission answer {raw!r}") from e
        if isinstance(flags, bool):
            flags = {"granted": flags}
        if not isinstance(flags, dict):
            raise NotificationPlatformError(f"Unexpected permission answer {raw!r}")
        self._can_ask_again = bool(flags.get("can_ask_again", False))
        return permission_from_flags(
            bool(flags.get("granted", False)),
            bool(flags.get("provisional", False)),
            self._can_ask_again,
        )

    async def get_permissions(self) -> PermissionStatus:
        return self._parse_permissions(await self._ext.check_permissions())

    async def can_ask_again(self) -> bool:
        await self.get_permissions()
        return self._can_ask_again

    async def request_permissions(self) -> PermissionStatus:
        raw = await self._ext.request_permissions()
        logger.debug(f"[NOTIF] request_permissions raw result: {raw!r}")
        return self._parse_permissions(raw)

    async def ensure_channel(self, channel_id: str, name: str = "", description: str = "") -> None:
        # The extension creates the channel with the first alarm scheduled into it
        self._channels[channel_id] = (name or channel_id, description)

    async def schedule_at(
        self,
        content: NotificationContent,
        when: datetime,
        identifier: Optional[str] = None,
    ) -> str:
        identifier = identifier or f"n{int(when.timestamp() * 1000)}"
        channel_id = content.channel_id or ""
        channel_name, channel_description = self._channels.get(channel_id, (channel_id, ""))
        payload = dict(content.data)
        payload[_IDENTIFIER_KEY] = identifier
        result = await self._ext.schedule_notification(
            notification_id=platform_id_for(identifier),
            title=content.title,
            body=content.body,
            scheduled_time=when,
            payload=json.dumps(payload),
            channel_id=channel_id,
            channel_name=channel_name,
            channel_description=channel_description,
            schedule_mode="inexact_allow_while_idle",
            actions=[],
        )
        logger.debug(f"[NOTIF] schedule_notification raw result: {result!r}, id={identifier}, at={when}")
        self._ensure_ok(result, f"schedule_notification({identifier})")
        return await notification_ledger.record_pending(identifier, content, when)

    async def cancel(self, identifier: str) -> None:
        self._ensure_ok(await self._ext.cancel(platform_id_for(identifier)), f"cancel({identifier})")
        await notification_ledger.forget_pending(identifier)

    async def list_pending(self) -> List[PendingNotification]:
        """Alarms this adapter registered and has not seen fire or cancelled.

        An alarm that fired while the app was not running stays listed until
        the slot is cancelled or rescheduled; cancelling it again is harmless.
        """
        return await notification_ledger.pending_notifications()

    def set_fire_handler(self, handler: Optional[FireHandler]) -> None:
        self._fire_handler = handler

    @staticmethod
    def _decode_payload(payload: Any) -> Dict[str, Any]:
        if isinstance(payload, dict):
            return dict(payload)
        try:
            decoded = json.loads(payload) if payload else {}
        except (TypeError, ValueError):
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def _fired_from_event(self, e: Any) -> Optional[FiredNotification]:
        try:
            outer = json.loads(e.data) if getattr(e, "data", "") else {}
        except (TypeError, ValueError) as ex:
            logger.error(f"Malformed notification event: {ex}")
            return None
        data = self._decode_payload(outer.get("payload"))
        identifier = data.pop(_IDENTIFIER_KEY, None) or str(outer.get("id", ""))
        return FiredNotification(
            identifier=identifier,
            title=outer.get("title", ""),
            body=outer.get("body", ""),
            data=data,
        )

    async def _forget(self, identifier: str) -> None:
        try:
            await notification_ledger.forget_pending(identifier)
        except NotificationPlatformError as e:
            logger.error(f"[NOTIF] {e}")

    def _on_notification_received(self, e: Any) -> None:
        """Foreground alarm from the extension; decide presentation off the callback."""
        fired = self._fired_from_event(e)
        if fired is None:
            return

        # Flet requires a coroutine function, not a coroutine object
        async def dispatch() -> None:
            # Drop the ledger row first; the handler may reschedule into the same identifier
            await self._forget(fired.identifier)
            should_show = True
            if self._fire_handler is not None:
                should_show = await self._fire_handler(fired)
            if not should_show:
                return
            payload = dict(fired.data)
            payload[_IDENTIFIER_KEY] = fired.identifier
            result = await self._ext.show_notification(
                notification_id=platform_id_for(fired.identifier),
                title=fired.title,
                body=fired.body,
                payload=json.dumps(payload),
            )
            if str(result).lower() != "ok":
                logger.error(f"[NOTIF] show_notification failed: {result}")

        self._schedule_async(dispatch)

    def _on_notification_tapped(self, e: Any) -> None:
        fired = self._fired_from_event(e)
        if fired is not None:
            event_bus.emit(AppEvent.REMINDER_TAPPED, fired)
