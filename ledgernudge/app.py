import flet as ft
import logging

from typing import List, Optional

logger = logging.getLogger(__name__)

from config import NotificationBackend
from core import ServiceContainer, bootstrap, shutdown
from events import event_bus, AppEvent, Subscription
from i18n import t
from models.entities import FiredNotification, InvalidTimeFormat
from services.reminder_service import ReminderService


def _backend_for(page: ft.Page) -> NotificationBackend:
    if page.platform in (ft.PagePlatform.ANDROID, ft.PagePlatform.IOS):
        return NotificationBackend.FLET_EXTENSION
    return NotificationBackend.PLYER


class ReminderSettingsApp:
    """Reminder preferences screen wired to the reminder engine."""

    def __init__(self, page: ft.Page) -> None:
        self.page = page
        self.svc: Optional[ServiceContainer] = None
        self._subscriptions: List[Subscription] = []

        self.enabled_switch = ft.Switch(label="Daily expense reminder", on_change=self._on_toggle)
        self.preferred_field = ft.TextField(label="Preferred time (HH:MM)", width=220)
        self.quiet_start_field = ft.TextField(label="Quiet hours start", width=220)
        self.quiet_end_field = ft.TextField(label="Quiet hours end", width=220)
        self.status_text = ft.Text("")

        self.page.title = t("app_name")
        self.page.add(ft.Column([
            self.enabled_switch,
            self.preferred_field,
            ft.Row([self.quiet_start_field, self.quiet_end_field]),
            ft.Row([
                ft.FilledButton("Save", on_click=self._on_save),
                ft.OutlinedButton("Send test", on_click=self._on_test),
            ]),
            self.status_text,
        ]))

        self.page.on_close = self._on_page_close
        # Permission can be revoked in OS settings while the app is in the background
        self.page.on_app_lifecycle_state_change = self._on_app_lifecycle_state_change
        self.page.run_task(self._start)

    @property
    def reminders(self) -> ReminderService:
        return self.svc.reminders

    async def _start(self) -> None:
        self.svc = await bootstrap(backend=_backend_for(self.page), page=self.page)
        self._subscriptions.append(event_bus.subscribe(AppEvent.REMINDER_TAPPED, self._on_tapped))
        self._subscriptions.append(event_bus.subscribe(AppEvent.REMINDER_SCHEDULED, self._on_scheduled))

        await self.reminders.initialize()
        await self.reminders.runtime_gate_check("startup")
        if hasattr(self.svc.platform, "start"):
            self.svc.platform.start(self.page.run_task)
        await self._load_form()

    async def _load_form(self) -> None:
        settings = await self.svc.settings.load()
        self.enabled_switch.value = settings.reminders_enabled
        self.preferred_field.value = settings.preferred_time_local or ""
        self.quiet_start_field.value = settings.quiet_hours_start or ""
        self.quiet_end_field.value = settings.quiet_hours_end or ""
        self.page.update()

    def _set_status(self, message: str) -> None:
        self.status_text.value = message
        self.page.update()

    def _on_toggle(self, e: ft.ControlEvent) -> None:
        async def apply() -> None:
            enabled = await self.reminders.set_enabled_and_reschedule(bool(self.enabled_switch.value))
            self.enabled_switch.value = enabled
            if not enabled and e.control.value:
                self._set_status("Notifications are not allowed for this app")
            else:
                self.page.update()
        self.page.run_task(apply)

    def _on_save(self, e: ft.ControlEvent) -> None:
        async def save() -> None:
            try:
                await self.svc.settings.save_preferences(
                    self.preferred_field.value,
                    self.quiet_start_field.value or None,
                    self.quiet_end_field.value or None,
                )
            except InvalidTimeFormat as ex:
                self._set_status(str(ex))
                return
            await self.reminders.schedule_next_eligible_reminder("preferences_saved")
        self.page.run_task(save)

    def _on_test(self, e: ft.ControlEvent) -> None:
        async def send() -> None:
            if await self.reminders.schedule_reminder_test_notification() is None:
                self._set_status("Could not schedule a test reminder")
        self.page.run_task(send)

    def _on_scheduled(self, data: dict) -> None:
        self._set_status(f"Next reminder: {data.get('candidate_utc')} (UTC)")

    def _on_tapped(self, notification: FiredNotification) -> None:
        link = ReminderService.extract_deep_link(notification)
        if link:
            logger.info(f"[REMINDER] Opening {link}")
            self.page.route = link
            self.page.update()

    def _on_app_lifecycle_state_change(self, e: ft.AppLifecycleStateChangeEvent) -> None:
        if self.svc is None:
            return
        if e.state in (ft.AppLifecycleState.RESUME, ft.AppLifecycleState.SHOW):
            self.page.run_task(self.reminders.runtime_gate_check, "foreground")

    def _on_page_close(self, e: ft.ControlEvent) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        self.page.run_task(shutdown, self.svc)


def create_app(page: ft.Page) -> ReminderSettingsApp:
    """Factory function to create the application."""
    return ReminderSettingsApp(page)


if __name__ == "__main__":
    ft.app(target=create_app)
