"""Reminder eligibility rules.

Pure functions that decide when the expense-log reminder may fire:

- compute_next_eligible_reminder(): next instant worth scheduling
- evaluate_delivery_gate(): authoritative re-check at the moment a scheduled
  reminder fires (the OS may fire late, settings may have changed since)

Rules, in order of application:
- preferred time: the next local occurrence strictly after now
- quiet hours: a candidate inside the window moves to the window end
- spacing: never earlier than last delivery + minimum spacing (absolute UTC)
- daily gate: at most one delivery per local calendar day

Each adjustment can reintroduce a violation of an earlier rule, so the rules
are re-applied until the candidate is stable, with a hard iteration ceiling.

All datetimes are timezone-aware. The zone of `now` is the user's local zone;
a naive `now` is read as wall time in services.clock.local_zone().
"""
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Tuple

from config import DAILY_GATE_MAX_ITERATIONS, GateReason, PermissionStatus
from models.entities import (
    DeliveryGateDecision,
    DeliveryRecord,
    EligibilityResult,
    LocalTime,
    QuietHoursWindow,
    ReminderPolicy,
    format_local_date,
)
from services.clock import local_zone


class UnresolvedReminderPolicy(Exception):
    """Raised when no candidate satisfies every rule within the iteration ceiling.

    The best-effort candidate is kept on the exception for logging.
    """

    def __init__(self, message: str, best_effort: EligibilityResult) -> None:
        super().__init__(message)
        self.best_effort = best_effort


def _localize(now: datetime) -> datetime:
    """Return now as an aware datetime in the user's local zone."""
    if now.tzinfo is None:
        return now.replace(tzinfo=local_zone())
    return now


def is_inside_quiet_hours(moment: datetime, window: Optional[QuietHoursWindow]) -> bool:
    if window is None:
        return False
    return window.contains(moment)


def next_occurrence_of_preferred_time(now: datetime, preferred: LocalTime) -> datetime:
    """Today's preferred instant if still strictly ahead of now, otherwise tomorrow's."""
    today = preferred.on(now.date(), now.tzinfo)
    if today > now:
        return today
    return preferred.on(now.date() + timedelta(days=1), now.tzinfo)


def move_out_of_quiet_hours(
    candidate: datetime, window: QuietHoursWindow
) -> Tuple[datetime, bool]:
    """Push a candidate inside quiet hours forward to the window end."""
    if not window.contains(candidate):
        return candidate, False
    return window.end_after(candidate), True


def _apply_spacing_and_quiet_hours(
    candidate: datetime,
    minimum_next: Optional[datetime],
    window: QuietHoursWindow,
    tz: Optional[tzinfo],
) -> Tuple[datetime, bool, bool]:
    spacing_applied = False
    # Spacing only ever moves the candidate later; preferred time wins otherwise.
    if minimum_next is not None and candidate < minimum_next:
        candidate = minimum_next.astimezone(tz)
        spacing_applied = True
    candidate, quiet_adjusted = move_out_of_quiet_hours(candidate, window)
    return candidate, spacing_applied, quiet_adjusted


def _violations(
    candidate: datetime,
    policy: ReminderPolicy,
    record: DeliveryRecord,
    minimum_next: Optional[datetime],
) -> list:
    found = []
    if record.last_delivered_local_date == candidate.date():
        found.append(GateReason.SAME_LOCAL_DAY.value)
    if minimum_next is not None and candidate < minimum_next:
        found.append(GateReason.SPACING_NOT_ELAPSED.value)
    if policy.quiet_hours.contains(candidate):
        found.append(GateReason.INSIDE_QUIET_HOURS.value)
    return found


def compute_next_eligible_reminder(
    now: datetime,
    policy: ReminderPolicy,
    record: Optional[DeliveryRecord] = None,
) -> EligibilityResult:
    """Compute the next instant at which the reminder should be scheduled.

    Deterministic for identical inputs. The returned candidate is strictly
    after now, outside active quiet hours, on a different local date than
    the last delivery, and at least minimum_spacing_hours after it.

    Raises:
        UnresolvedReminderPolicy: If the rules cannot be jointly satisfied
            within DAILY_GATE_MAX_ITERATIONS date shifts.
    """
    now = _localize(now)
    record = record or DeliveryRecord()
    tz = now.tzinfo
    window = policy.quiet_hours
    minimum_next = record.earliest_next(policy.minimum_spacing)

    candidate = next_occurrence_of_preferred_time(now, policy.preferred_time)
    candidate, quiet_hours_adjusted = move_out_of_quiet_hours(candidate, window)

    candidate, spacing, quiet = _apply_spacing_and_quiet_hours(candidate, minimum_next, window, tz)
    minimum_spacing_applied = spacing
    quiet_hours_adjusted = quiet_hours_adjusted or quiet

    daily_gate_applied = False
    iterations = 0
    while (
        record.last_delivered_local_date is not None
        and candidate.date() == record.last_delivered_local_date
        and iterations < DAILY_GATE_MAX_ITERATIONS
    ):
        daily_gate_applied = True
        candidate = policy.preferred_time.on(candidate.date() + timedelta(days=1), tz)
        candidate, shifted = move_out_of_quiet_hours(candidate, window)
        candidate, spacing, quiet = _apply_spacing_and_quiet_hours(candidate, minimum_next, window, tz)
        minimum_spacing_applied = minimum_spacing_applied or spacing
        quiet_hours_adjusted = quiet_hours_adjusted or shifted or quiet
        iterations += 1

    result = EligibilityResult(
        candidate_local=candidate,
        candidate_utc=candidate.astimezone(timezone.utc),
        candidate_local_date=candidate.date(),
        minimum_spacing_applied=minimum_spacing_applied,
        daily_gate_applied=daily_gate_applied,
        quiet_hours_adjusted=quiet_hours_adjusted,
    )

    violations = _violations(candidate, policy, record, minimum_next)
    if violations:
        raise UnresolvedReminderPolicy(
            f"No eligible reminder time after {iterations} date shifts "
            f"(still violates: {', '.join(violations)})",
            best_effort=result,
        )
    return result


def evaluate_delivery_gate(
    now: datetime,
    policy: ReminderPolicy,
    enabled: bool,
    permission: PermissionStatus,
    record: Optional[DeliveryRecord] = None,
) -> DeliveryGateDecision:
    """Decide whether a reminder that is firing right now may be shown.

    Checks short-circuit in a fixed order, so a disabled reminder always
    reports DISABLED regardless of the other inputs.
    """
    now = _localize(now)
    record = record or DeliveryRecord()

    if not enabled:
        return DeliveryGateDecision.blocked(GateReason.DISABLED)

    if permission != PermissionStatus.GRANTED:
        return DeliveryGateDecision.blocked(GateReason.PERMISSION_DENIED)

    if (
        record.last_delivered_local_date is not None
        and format_local_date(now) == record.last_delivered_local_date.isoformat()
    ):
        return DeliveryGateDecision.blocked(GateReason.SAME_LOCAL_DAY)

    minimum_next = record.earliest_next(policy.minimum_spacing)
    if minimum_next is not None and now < minimum_next:
        return DeliveryGateDecision.blocked(GateReason.SPACING_NOT_ELAPSED)

    if is_inside_quiet_hours(now, policy.quiet_hours):
        return DeliveryGateDecision.blocked(GateReason.INSIDE_QUIET_HOURS)

    return DeliveryGateDecision.ok()
