"""
Expense-log reminder orchestration.

Owns the single pending reminder slot in the platform scheduler and keeps it
coherent with settings, OS permission and delivery history:

- initialize() registers the channel and the fire-time handler (idempotent)
- schedule_next_eligible_reminder() cancels every pending non-test reminder,
  computes the next eligible instant and schedules exactly one notification
  under the fixed REMINDER_SLOT_ID
- handle_notification() runs when the platform is about to present a
  notification; it re-validates the delivery gate from current settings
- runtime_gate_check() reconciles drift (permission revoked in OS settings,
  app killed and relaunched) and is meant to run on every app foreground

Rescheduling after a fire is never done inside the platform callback. The
handler pushes a DeliveryOutcome onto a queue and a separate consumer task
performs the reschedule.

There is no in-process lock around scheduling: every call performs
cancel-all-then-schedule-one on the same slot identifier, so concurrent
calls converge on whichever finishes last.

Every public operation catches and logs backend failures with its reason
string; the next reconciliation cycle retries. Permission problems always
fail closed (reminders are forced off).
"""
import asyncio
import concurrent.futures
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from config import (
    MIN_REMINDER_SPACING_HOURS,
    OUTCOME_DRAIN_TIMEOUT_SECONDS,
    REMINDER_CHANNEL_ID,
    REMINDER_SLOT_ID,
    TEST_NOTIFICATION_DELAY_SECONDS,
    PermissionStatus,
    ReminderState,
)
from database import DatabaseError
from events import event_bus, AppEvent
from i18n import t
from models.entities import (
    FiredNotification,
    InvalidTimeFormat,
    NotificationContent,
    ReminderPayload,
    format_utc,
)
from services.clock import local_now
from services.eligibility import (
    UnresolvedReminderPolicy,
    compute_next_eligible_reminder,
    evaluate_delivery_gate,
)
from services.ports import NotificationPlatform, NotificationPlatformError, SettingsStore

logger = logging.getLogger(__name__)

# Failures that are logged and left for the next reconciliation cycle
RECOVERABLE_ERRORS = (
    NotificationPlatformError,
    DatabaseError,
    InvalidTimeFormat,
    OSError,
    RuntimeError,
)


def _default_scheduler(fn: Callable[..., Any], *args: Any) -> asyncio.Task:
    return asyncio.get_running_loop().create_task(fn(*args))


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one fire-time gate evaluation, consumed by the reschedule task."""
    identifier: str
    delivered: bool
    reason: str
    occurred_at: datetime = field(default_factory=local_now)

    @property
    def reschedule_reason(self) -> str:
        if self.delivered:
            return "delivery_success"
        return f"delivery_gate_blocked_{self.reason}"


class ReminderService:
    """Stateful owner of the expense-log reminder schedule.

    One instance per app session; the caller constructs it, calls
    initialize() once the event loop runs, and shutdown() on exit.
    """

    def __init__(
        self,
        settings: SettingsStore,
        platform: NotificationPlatform,
        clock: Callable[[], datetime] = local_now,
        async_scheduler: Optional[Callable[..., Any]] = None,
        minimum_spacing_hours: int = MIN_REMINDER_SPACING_HOURS,
    ) -> None:
        """
        Args:
            settings: Reminder settings store
            platform: Notification platform adapter
            clock: Returns the current aware local datetime
            async_scheduler: Function to schedule async work (page.run_task);
                defaults to creating a task on the running loop
            minimum_spacing_hours: Minimum gap between two deliveries
        """
        self._settings = settings
        self._platform = platform
        self._clock = clock
        self._schedule_async = async_scheduler or _default_scheduler
        self._minimum_spacing_hours = minimum_spacing_hours

        self._state = ReminderState.UNINITIALIZED
        self._channel_ready = False
        self._handler_wired = False
        self._init_lock = asyncio.Lock()
        self._outcomes: "asyncio.Queue[Optional[DeliveryOutcome]]" = asyncio.Queue()
        self._outcome_task: Any = None

    @property
    def state(self) -> ReminderState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._channel_ready and self._handler_wired

    def _set_state(self, state: ReminderState) -> None:
        if state != self._state:
            logger.debug(f"[REMINDER] state {self._state.value} -> {state.value}")
            self._state = state

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Register the reminder channel and wire the fire-time handler.

        Safe to call any number of times; a failed channel registration is
        retried on the next call.
        """
        async with self._init_lock:
            if not self._channel_ready:
                try:
                    await self._platform.ensure_channel(
                        REMINDER_CHANNEL_ID,
                        t("reminder_channel_name"),
                        t("reminder_channel_description"),
                    )
                    self._channel_ready = True
                except RECOVERABLE_ERRORS as e:
                    logger.error(f"[REMINDER] Failed to register reminder channel: {e}")

            if not self._handler_wired:
                self._platform.set_fire_handler(self.handle_notification)
                self._outcome_task = self._schedule_async(self._outcome_loop)
                self._handler_wired = True

            if self._state == ReminderState.UNINITIALIZED:
                self._set_state(ReminderState.DISABLED)

    async def shutdown(self) -> None:
        """Detach from the platform and stop the reschedule consumer.

        The pending reminder is left in place so it can still fire while
        the app is not running.
        """
        if self._handler_wired:
            self._platform.set_fire_handler(None)
            await self._outcomes.put(None)
            self._handler_wired = False
            await self._stop_outcome_task()
        self._channel_ready = False
        self._set_state(ReminderState.UNINITIALIZED)

    async def _stop_outcome_task(self) -> None:
        task, self._outcome_task = self._outcome_task, None
        # page.run_task hands back a concurrent future
        if isinstance(task, concurrent.futures.Future):
            task = asyncio.wrap_future(task)
        if not isinstance(task, asyncio.Future):
            return
        try:
            await asyncio.wait_for(task, timeout=OUTCOME_DRAIN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("[REMINDER] Reschedule consumer did not stop in time, cancelled it")

    async def settle(self) -> None:
        """Wait until every queued delivery outcome has been rescheduled."""
        await self._outcomes.join()

    async def _outcome_loop(self) -> None:
        while True:
            outcome = await self._outcomes.get()
            try:
                if outcome is None:
                    return
                await self.schedule_next_eligible_reminder(outcome.reschedule_reason)
            finally:
                self._outcomes.task_done()

    # ── Permission ─────────────────────────────────────────────────────

    async def _store_permission(self, status: PermissionStatus) -> PermissionStatus:
        previous = (await self._settings.load()).permission_status
        await self._settings.set_permission_status(status)
        if status != previous:
            event_bus.emit(AppEvent.REMINDER_PERMISSION_CHANGED, {
                "previous": previous.value,
                "status": status.value,
            })
        return status

    async def _sync_permission_status(self) -> PermissionStatus:
        return await self._store_permission(await self._platform.get_permissions())

    async def _request_permission(self) -> PermissionStatus:
        return await self._store_permission(await self._platform.request_permissions())

    async def sync_permission_status(self) -> PermissionStatus:
        """Read OS permission without prompting and persist it.

        Returns UNDETERMINED if the platform cannot be queried.
        """
        try:
            return await self._sync_permission_status()
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Failed to sync permission status: {e}")
            return PermissionStatus.UNDETERMINED

    async def request_permission(self) -> PermissionStatus:
        """Prompt for OS permission (when the OS still allows it) and persist the answer."""
        try:
            return await self._request_permission()
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Failed to request permission: {e}")
            return PermissionStatus.UNDETERMINED

    # ── Scheduling ─────────────────────────────────────────────────────

    @staticmethod
    def _build_content(payload: Optional[ReminderPayload] = None) -> NotificationContent:
        payload = payload or ReminderPayload(is_test=False)
        return NotificationContent(
            title=t("reminder_title"),
            body=t("reminder_body"),
            data=payload.to_dict(),
            channel_id=REMINDER_CHANNEL_ID,
        )

    async def _cancel_pending(self, reason: str) -> int:
        pending = await self._platform.list_pending()
        targets = []
        for item in pending:
            payload = ReminderPayload.from_dict(item.data)
            # Test pings are never swept by a real reschedule
            if payload.is_reminder and not payload.is_test:
                targets.append(item)

        await asyncio.gather(*(self._platform.cancel(item.identifier) for item in targets))
        await self._settings.set_next_scheduled_at(None)
        logger.info(f"[REMINDER] Cancelled {len(targets)} scheduled reminder(s): {reason}")
        return len(targets)

    async def cancel_reminder_schedule(self, reason: str = "cancelled") -> int:
        """Cancel every pending non-test reminder and clear the next-scheduled marker.

        Returns:
            Number of pending reminders canceled (0 on failure)
        """
        try:
            count = await self._cancel_pending(reason)
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Failed to cancel scheduled reminders (reason={reason}): {e}")
            return 0
        if self._state != ReminderState.UNINITIALIZED:
            self._set_state(ReminderState.DISABLED)
        event_bus.emit(AppEvent.REMINDER_CANCELLED, {"reason": reason, "count": count})
        return count

    async def _force_disable(self, reason: str) -> None:
        """Fail closed: turn reminders off and drop the pending slot."""
        try:
            await self._settings.set_enabled(False)
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Failed to force-disable reminders (reason={reason}): {e}")
        await self.cancel_reminder_schedule(reason)

    async def schedule_next_eligible_reminder(self, reason: str = "reschedule"):
        """Replace the pending reminder with one at the next eligible instant.

        Returns:
            The EligibilityResult that was scheduled, or None if nothing was
        """
        try:
            await self.initialize()
            settings = await self._settings.load()

            if not settings.reminders_enabled:
                await self.cancel_reminder_schedule("reminders_disabled")
                return None

            await self._cancel_pending("single_slot_reschedule")

            permission = await self._sync_permission_status()
            if permission != PermissionStatus.GRANTED:
                # Keep state coherent when permission was revoked outside the app
                await self._force_disable("permission_not_granted")
                return None

            try:
                eligibility = compute_next_eligible_reminder(
                    self._clock(),
                    settings.policy(self._minimum_spacing_hours),
                    settings.delivery_record(),
                )
            except UnresolvedReminderPolicy as e:
                logger.warning(
                    f"[REMINDER] Policy cannot be satisfied (reason={reason}): {e}; "
                    f"best effort was {e.best_effort.candidate_local.isoformat()}"
                )
                self._set_state(ReminderState.UNRESOLVED)
                event_bus.emit(AppEvent.REMINDER_UNRESOLVED, {
                    "reason": reason,
                    "best_effort_utc": e.best_effort.candidate_utc_iso,
                })
                return None

            await self._platform.schedule_at(
                self._build_content(),
                eligibility.candidate_local,
                identifier=REMINDER_SLOT_ID,
            )
            await self._settings.set_next_scheduled_at(eligibility.candidate_utc)
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Failed to schedule next reminder (reason={reason}): {e}")
            return None

        self._set_state(ReminderState.SCHEDULED)
        logger.info(
            f"[REMINDER] Scheduled next eligible reminder (reason={reason}): "
            f"local={eligibility.candidate_local.isoformat()} utc={eligibility.candidate_utc_iso} "
            f"quiet_hours_adjusted={eligibility.quiet_hours_adjusted} "
            f"minimum_spacing_applied={eligibility.minimum_spacing_applied} "
            f"daily_gate_applied={eligibility.daily_gate_applied}"
        )
        event_bus.emit(AppEvent.REMINDER_SCHEDULED, {
            "reason": reason,
            "candidate_utc": eligibility.candidate_utc_iso,
        })
        return eligibility

    async def set_enabled_and_reschedule(self, enabled: bool) -> bool:
        """Apply the user's reminder toggle.

        Enabling prompts for permission; a refusal forces reminders back off.

        Returns:
            Whether reminders are enabled afterwards
        """
        try:
            await self._settings.set_enabled(enabled)
            if not enabled:
                await self.cancel_reminder_schedule("user_disabled")
                return False

            status = await self._request_permission()
            if status != PermissionStatus.GRANTED:
                await self._force_disable("permission_denied_on_enable")
                return False
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Failed to apply reminder toggle (enabled={enabled}): {e}")
            if enabled:
                await self._force_disable("enable_failed")
            return False

        await self.schedule_next_eligible_reminder("user_enabled")
        return True

    async def runtime_gate_check(self, source: str = "runtime") -> None:
        """Reconcile the schedule with OS permission and settings (e.g. on app foreground)."""
        try:
            await self.initialize()
            status = await self._sync_permission_status()
            settings = await self._settings.load()
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Runtime gate check failed (source={source}): {e}")
            return

        if status != PermissionStatus.GRANTED and settings.reminders_enabled:
            await self._force_disable("permission_revoked_runtime")
            return

        if not settings.reminders_enabled:
            await self.cancel_reminder_schedule("runtime_disabled")
            return

        await self.schedule_next_eligible_reminder(f"runtime_{source}")

    async def schedule_reminder_test_notification(self, count_as_real: bool = False) -> Optional[str]:
        """Schedule a test reminder a few seconds from now.

        Test reminders bypass the delivery gate unless count_as_real is set,
        in which case they are gated and recorded like a real delivery.

        Returns:
            Platform identifier of the test notification, or None on failure
        """
        try:
            await self.initialize()
            trigger_at = self._clock() + timedelta(seconds=TEST_NOTIFICATION_DELAY_SECONDS)
            content = self._build_content(
                ReminderPayload(is_test=True, test_counts_as_real=count_as_real)
            )
            return await self._platform.schedule_at(content, trigger_at)
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Failed to schedule test notification: {e}")
            return None

    # ── Fire-time handling ─────────────────────────────────────────────

    async def handle_notification(self, notification: FiredNotification) -> bool:
        """Fire-time handler invoked by the platform for every app notification.

        Returns:
            True if the platform should present the notification
        """
        payload = notification.payload
        if not payload.is_reminder:
            return True

        if not payload.counts_as_real_delivery:
            logger.info(f"[REMINDER] Presenting test reminder {notification.identifier}")
            return True

        self._set_state(ReminderState.FIRING)
        now = self._clock()
        try:
            settings = await self._settings.load()
            decision = evaluate_delivery_gate(
                now,
                settings.policy(self._minimum_spacing_hours),
                settings.reminders_enabled,
                settings.permission_status,
                settings.delivery_record(),
            )
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Delivery gate could not be evaluated: {e}")
            self._set_state(ReminderState.BLOCKED)
            await self._outcomes.put(DeliveryOutcome(notification.identifier, False, "gate_error", now))
            return False

        if not decision.allowed:
            logger.warning(f"[REMINDER] Delivery blocked by gate: {decision.reason.value}")
            self._set_state(ReminderState.BLOCKED)
            event_bus.emit(AppEvent.REMINDER_BLOCKED, {
                "identifier": notification.identifier,
                "reason": decision.reason.value,
            })
            await self._outcomes.put(
                DeliveryOutcome(notification.identifier, False, decision.reason.value, now)
            )
            return False

        try:
            await self._settings.record_delivery(now)
        except RECOVERABLE_ERRORS as e:
            logger.error(f"[REMINDER] Failed to record delivery at {format_utc(now)}: {e}")

        self._set_state(ReminderState.DELIVERED)
        event_bus.emit(AppEvent.REMINDER_DELIVERED, {
            "identifier": notification.identifier,
            "delivered_at_utc": format_utc(now),
        })
        await self._outcomes.put(
            DeliveryOutcome(notification.identifier, True, decision.reason.value, now)
        )
        return True

    @staticmethod
    def extract_deep_link(notification: Any) -> Optional[str]:
        """Deep link carried by a reminder notification, None for anything else."""
        data = getattr(notification, "data", notification)
        if not isinstance(data, dict):
            return None
        payload = ReminderPayload.from_dict(data)
        if not payload.is_reminder:
            return None
        return payload.deep_link if isinstance(payload.deep_link, str) else None
