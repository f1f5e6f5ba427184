"""Notification eligibility — decides whether a task or goal should fire now.

Pure functions; the sweep supplies ``now`` and the last-notified instant
read from the dedup store.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from src.core.recurrence import resolve_next_due
from src.data.models import Goal, Task

# Both the tolerance around a due instant and the minimum re-fire spacing.
DUE_WINDOW = timedelta(minutes=10)


def is_task_due(task: Task, now: datetime, last_notified: datetime | None) -> bool:
    """True if the task's next occurrence is within DUE_WINDOW of ``now``
    and it was not already notified within the last DUE_WINDOW."""
    if not task.alarm or task.done:
        return False

    # Search from the start of the window so an occurrence a few minutes
    # past is still found instead of the following one.
    due = resolve_next_due(task, now - DUE_WINDOW)
    if due is None:
        return False

    if abs(now - due) > DUE_WINDOW:
        return False

    if last_notified is not None and now - last_notified < DUE_WINDOW:
        return False
    return True


def is_goal_due(goal: Goal, now: datetime, last_notified: datetime | None) -> bool:
    """True if the goal is unsatisfied and its reminder interval has elapsed."""
    if goal.satisfied:
        return False
    if last_notified is None:
        return True
    return now - last_notified >= timedelta(minutes=goal.interval)
