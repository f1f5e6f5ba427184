"""
RoutineFlow — Reminder Sweep.

One sweep is a single read-decide-write pass over every task and goal:
read the latest snapshot, decide which entities are due, record all of
them with one dedup merge, then deliver a notification for each.

Every wake-up trigger (bot start, the foreground timer, one-shot wake-up
jobs, the background cron process) calls run_sweep(); nothing else delivers
reminders.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from src.core.eligibility import is_goal_due, is_task_due
from src.core.recurrence import resolve_next_due
from src.data.models import (
    LastNotified,
    MalformedRecord,
    Repeat,
    from_ms,
    parse_goal,
    parse_task,
    to_ms,
)
from src.ports.notification_port import DeliveryUnavailable
from src.ports.schedule_port import StorageUnavailable

if TYPE_CHECKING:
    from datetime import tzinfo

    from src.data.models import Goal, Schedule
    from src.ports.notification_port import NotificationPort
    from src.ports.schedule_port import ScheduleStore

logger = logging.getLogger(__name__)

DEFAULT_TASK_BODY = "Reminder is due."


@dataclass
class SweepResult:
    """What a single sweep did."""

    notified_tasks: list[str] = field(default_factory=list)
    notified_goals: list[str] = field(default_factory=list)
    failed_deliveries: list[str] = field(default_factory=list)
    skipped_records: list[str] = field(default_factory=list)
    gated: bool = False      # notifications disabled (or nothing stored yet)
    aborted: bool = False    # storage unavailable; retried on next wake-up

    @property
    def delivered(self) -> int:
        return len(self.notified_tasks) + len(self.notified_goals) - len(self.failed_deliveries)


def current_time() -> datetime:
    """Now, in the configured local timezone."""
    from zoneinfo import ZoneInfo

    from src.config import settings

    return datetime.now(ZoneInfo(settings.TIMEZONE))


def _last(records: dict[str, int], entity_id: str, tz: tzinfo | None) -> datetime | None:
    ms = records.get(entity_id)
    return from_ms(ms, tz) if ms is not None else None


def goal_body(goal: Goal) -> str:
    amount = f"{goal.remaining} {goal.unit}".strip()
    return f"Add {amount} to reach {goal.target} today."


async def _deliver(
    notifier: NotificationPort, title: str, body: str, label: str, result: SweepResult,
) -> None:
    """Submit one notification. Failures are logged, never raised."""
    try:
        await notifier.deliver(title, body)
        logger.info("Reminder delivered for %s: %s", label, title)
    except DeliveryUnavailable as exc:
        logger.warning("Delivery unavailable for %s: %s", label, exc)
        result.failed_deliveries.append(label)
    except Exception as exc:
        logger.error("Delivery failed for %s: %s", label, exc)
        result.failed_deliveries.append(label)


async def run_sweep(
    store: ScheduleStore,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> SweepResult:
    """Run one reminder sweep.

    Storage errors abort the sweep with no dedup mutation and no delivery.
    Malformed records are skipped individually. Due entities are recorded
    before anything is delivered, so a failed delivery is not retried until
    the window or interval elapses.
    """
    if now is None:
        now = current_time()
    result = SweepResult()

    try:
        schedule = store.read()
    except StorageUnavailable as exc:
        logger.error("Sweep aborted, schedule unreadable: %s", exc)
        result.aborted = True
        return result

    if schedule is None or not schedule.settings.notifications:
        logger.debug("Sweep skipped: notifications disabled")
        result.gated = True
        return result

    tz = now.tzinfo
    stamp = to_ms(now)
    dedup = schedule.last_notified
    patch = LastNotified()
    outbox: list[tuple[str, str, str]] = []

    for raw in schedule.tasks:
        try:
            task = parse_task(raw)
        except MalformedRecord as exc:
            logger.warning("Skipping task: %s", exc)
            result.skipped_records.append(f"task:{exc.record_id}")
            continue

        if task.done or not task.alarm:
            continue
        if not is_task_due(task, now, _last(dedup.tasks, task.id, tz)):
            continue

        patch.tasks[task.id] = stamp
        result.notified_tasks.append(task.id)
        outbox.append(
            (task.title or "Reminder", task.notes or DEFAULT_TASK_BODY, f"task:{task.id}")
        )

    for raw in schedule.goals:
        try:
            goal = parse_goal(raw)
        except MalformedRecord as exc:
            logger.warning("Skipping goal: %s", exc)
            result.skipped_records.append(f"goal:{exc.record_id}")
            continue

        if not is_goal_due(goal, now, _last(dedup.goals, goal.id, tz)):
            continue

        patch.goals[goal.id] = stamp
        result.notified_goals.append(goal.id)
        outbox.append((goal.title or "Goal", goal_body(goal), f"goal:{goal.id}"))

    if patch.is_empty():
        return result

    # Claim before dispatch: no await between the read and this write, so
    # another sweep in the same process sees these records.
    try:
        store.merge_dedup(patch)
    except StorageUnavailable as exc:
        logger.error("Sweep aborted, could not record dedup state: %s", exc)
        return SweepResult(skipped_records=result.skipped_records, aborted=True)

    for title, body, label in outbox:
        await _deliver(notifier, title, body, label, result)
    return result


def plan_wakeups(schedule: Schedule, now: datetime) -> list[tuple[str, datetime]]:
    """Future due instants of alarm-enabled tasks that are one-shot or snoozed.

    The foreground schedules a one-shot sweep at each instant; the sweep
    still makes the actual eligibility and dedup decision.
    """
    wakeups: list[tuple[str, datetime]] = []
    for raw in schedule.tasks:
        try:
            task = parse_task(raw)
        except MalformedRecord:
            continue
        if task.done or not task.alarm:
            continue
        if task.repeat is not Repeat.NONE and task.snooze_until is None:
            continue
        due = resolve_next_due(task, now)
        if due is not None and due > now:
            wakeups.append((task.id, due))
    wakeups.sort(key=lambda item: item[1])
    return wakeups
