"""Recurrence resolver — pure business logic.

Turns a task's date/time/repeat fields into the concrete instant of its next
occurrence relative to a reference time.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time as dt_time, timedelta, tzinfo

from dateutil.relativedelta import relativedelta

from src.data.models import WEEKDAY_LABELS, Repeat, Task

logger = logging.getLogger(__name__)

DEFAULT_TIME = dt_time(9, 0)

# Upper bound on forward steps when searching for a repeat occurrence.
MAX_SEARCH_STEPS = 370

_STEPS = {
    Repeat.DAILY: relativedelta(days=1),
    Repeat.WEEKLY: relativedelta(days=7),
    Repeat.MONTHLY: relativedelta(months=1),
    Repeat.CUSTOM: relativedelta(days=1),
}


def _localize(instant: datetime, tz: tzinfo | None) -> datetime:
    """Express an instant in the reference's timezone (or naivety)."""
    if tz is None:
        return instant.replace(tzinfo=None) if instant.tzinfo is not None else instant
    if instant.tzinfo is None:
        return instant.replace(tzinfo=tz)
    return instant.astimezone(tz)


def _at(day: date, at: dt_time, tz: tzinfo | None) -> datetime:
    return datetime.combine(day, at, tzinfo=tz)


def _qualifies(task: Task, day: date) -> bool:
    if task.repeat is Repeat.CUSTOM:
        return WEEKDAY_LABELS[day.weekday()] in task.repeat_days
    return True


def resolve_next_due(task: Task, reference: datetime) -> datetime | None:
    """Return the task's next due instant relative to ``reference``.

    - snooze_until, when set, is returned verbatim
    - undated and untimed tasks have no due instant (None)
    - time-only tasks fire today at that time, or tomorrow if already past
    - repeat=none tasks return their candidate even if it is in the past
    - repeating tasks search forward for the first occurrence >= reference,
      giving up (None) after MAX_SEARCH_STEPS steps
    """
    tz = reference.tzinfo

    if task.snooze_until is not None:
        return _localize(task.snooze_until, tz)

    if task.due_date is None and task.time is None:
        return None

    start_day = task.due_date if task.due_date is not None else reference.date()
    at = task.time_of_day or DEFAULT_TIME
    candidate = _at(start_day, at, tz)

    if task.due_date is None:
        if candidate < reference:
            candidate = _at(start_day + timedelta(days=1), at, tz)
        return candidate

    if task.repeat is Repeat.NONE:
        return candidate

    step = _STEPS[task.repeat]
    day = start_day
    for _ in range(MAX_SEARCH_STEPS):
        occurrence = _at(day, at, tz)
        if occurrence >= reference and _qualifies(task, day):
            return occurrence
        day = day + step

    logger.debug(
        "No %s occurrence for task %s within %d steps",
        task.repeat.value, task.id, MAX_SEARCH_STEPS,
    )
    return None


def advance_repeat(task: Task, now: datetime) -> date | None:
    """Return the due date of the occurrence after the current one.

    Used when a repeating task is completed: the next occurrence is searched
    from one minute past the current due instant.
    """
    current = resolve_next_due(task.model_copy(update={"snooze_until": None}), now)
    if current is None:
        return None
    following = resolve_next_due(
        task.model_copy(update={"snooze_until": None}),
        current + timedelta(minutes=1),
    )
    if following is None:
        return None
    return following.date()


def rebase_due_date(task: Task, day: date) -> date | None:
    """Move a stale repeating task's dueDate to its last anchor on or before ``day``.

    Keeps the weekday for weekly tasks and the day of month (clamped) for
    monthly ones; daily and custom tasks restart on ``day``.
    """
    start = task.due_date
    if start is None or start >= day or task.repeat is Repeat.NONE:
        return start
    if task.repeat is Repeat.WEEKLY:
        return start + timedelta(days=7 * ((day - start).days // 7))
    if task.repeat is Repeat.MONTHLY:
        months = (day.year - start.year) * 12 + day.month - start.month
        rebased = start + relativedelta(months=months)
        return rebased if rebased <= day else start + relativedelta(months=months - 1)
    return day
