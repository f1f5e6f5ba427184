"""
RoutineFlow — Foreground Actions.

The mutations a user can make from the foreground context: completing,
reopening and snoozing tasks, moving goal progress, and the daily goal
reset. Each function works on parsed models; persisting the result is the
caller's job (ScheduleDB.save_user_state).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from src.core.eligibility import DUE_WINDOW
from src.core.recurrence import advance_repeat, rebase_due_date
from src.data.models import Goal, MalformedRecord, Repeat, Task, day_label, parse_goal, to_ms

logger = logging.getLogger(__name__)


def complete_task(task: Task, now: datetime) -> Task:
    """Mark a task done.

    Repeating tasks are not closed: their due date moves to the next
    occurrence and any snooze is cleared. The occurrence being completed is
    searched from the start of the reminder window, so completing just
    after a reminder does not skip the following occurrence.
    """
    if task.repeat is not Repeat.NONE:
        reference = now - DUE_WINDOW
        next_day = advance_repeat(task, reference)
        if next_day is None and task.due_date is not None and task.due_date < now.date():
            rebased = task.model_copy(
                update={"due_date": rebase_due_date(task, now.date())},
            )
            next_day = advance_repeat(rebased, reference)
        update: dict[str, Any] = {"snooze_until": None, "done": False}
        if next_day is not None:
            update["due_date"] = next_day
        else:
            logger.warning("Task %s has no next occurrence; due date unchanged", task.id)
        return task.model_copy(update=update)

    return task.model_copy(
        update={"done": True, "completed_at": to_ms(now), "snooze_until": None},
    )


def reopen_task(task: Task) -> Task:
    return task.model_copy(update={"done": False, "completed_at": None})


def snooze_task(task: Task, now: datetime, minutes: int = 60) -> Task:
    return task.model_copy(update={"snooze_until": now + timedelta(minutes=minutes)})


def adjust_goal(goal: Goal, delta: int) -> Goal:
    """Move progress by ``delta``, clamped to [0, target]."""
    progress = max(0, min(goal.target, goal.progress + delta))
    return goal.model_copy(update={"progress": progress})


def reset_goal(goal: Goal, today: date) -> Goal:
    return goal.model_copy(update={"progress": 0, "last_reset": day_label(today)})


def needs_daily_reset(goal: Goal, today: date) -> bool:
    return goal.last_reset != day_label(today)


def reset_goal_records(records: list[Any], today: date, only_stale: bool = True) -> bool:
    """Reset goal progress in place on raw records.

    With ``only_stale`` only goals whose lastReset is not today are reset.
    Malformed records are left as they are. Returns whether anything changed.
    """
    changed = False
    for i, raw in enumerate(records):
        try:
            goal = parse_goal(raw)
        except MalformedRecord:
            continue
        if only_stale and not needs_daily_reset(goal, today):
            continue
        records[i] = reset_goal(goal, today).to_record()
        changed = True
    return changed


def update_records(
    records: list[Any],
    parse: Any,
    entity_id: str,
    change: Any,
) -> Any | None:
    """Apply ``change`` to the record with ``entity_id`` in place.

    Malformed records are left untouched. Returns the changed model, or
    None if no valid record matched.
    """
    for i, raw in enumerate(records):
        if not isinstance(raw, dict) or str(raw.get("id")) != entity_id:
            continue
        try:
            model = parse(raw)
        except MalformedRecord as exc:
            logger.warning("Cannot update %s: %s", entity_id, exc)
            return None
        changed = change(model)
        records[i] = changed.to_record()
        return changed
    return None
