import flet as ft
from datetime import datetime, timezone
from typing import Optional


@ft.control("flet_local_notifications")
class FletLocalNotifications(ft.Service):
    on_notification_tap: Optional[ft.ControlEventHandler["FletLocalNotifications"]] = None
    on_notification_received: Optional[ft.ControlEventHandler["FletLocalNotifications"]] = None

    def before_update(self):
        super().before_update()

    async def _call(self, method_name: str, arguments: Optional[dict] = None) -> str:
        result = await self._invoke_method(method_name=method_name, arguments=arguments or {})
        return str(result) if result is not None else "error:no_response"

    async def show_notification(self, notification_id: int, title: str, body: str, payload: str = "") -> str:
        return await self._call(
            "show_notification",
            {"id": notification_id, "title": title, "body": body, "payload": payload},
        )

    async def schedule_notification(
        self,
        notification_id: int,
        title: str,
        body: str,
        scheduled_time: datetime,
        payload: str = "",
        channel_id: str = "",
        channel_name: str = "",
        channel_description: str = "",
        schedule_mode: str = "inexact_allow_while_idle",
        actions: Optional[list] = None,
    ) -> str:
        """Register an AlarmManager alarm; the channel is created on first use."""
        return await self._call(
            "schedule_notification",
            {
                "id": notification_id,
                "title": title,
                "body": body,
                "scheduled_time": scheduled_time.astimezone(timezone.utc).isoformat(),
                "payload": payload,
                "channel_id": channel_id,
                "channel_name": channel_name,
                "channel_description": channel_description,
                "schedule_mode": schedule_mode,
                "actions": actions or [],
            },
        )

    async def cancel(self, notification_id: int) -> str:
        return await self._call("cancel", {"id": notification_id})

    async def request_permissions(self) -> str:
        return await self._call("request_permissions")

    async def check_permissions(self) -> str:
        return await self._call("check_permissions")
