"""
RoutineFlow — Telegram Bot.

The foreground execution context. It runs the reminder sweep on start and
on a repeating job-queue timer, schedules one-shot wake-ups for upcoming
non-repeating reminders, and handles the user's commands (complete, snooze,
goal progress, notification toggle).

Every reminder, including those from one-shot wake-ups, goes through
run_sweep() so the dedup store is always consulted.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import asyncio
import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

from src.config import settings
from src.core import actions
from src.core.recurrence import resolve_next_due
from src.core.sweep import SweepResult, current_time, plan_wakeups, run_sweep
from src.data.models import MalformedRecord, parse_goal, parse_task
from src.ports.schedule_port import StorageUnavailable

if TYPE_CHECKING:
    from src.data.db import ScheduleDB
    from src.data.models import Schedule
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

SWEEP_JOB_NAME = "reminder_sweep"
SWEEP_LOCK_KEY = "sweep_lock"
WAKEUP_PREFIX = "wakeup:"

HELP_TEXT = (
    "RoutineFlow commands:\n"
    "/tasks — reminders and when they are next due\n"
    "/goals — daily goals and progress\n"
    "/done <id> — complete a reminder (repeating ones move to the next occurrence)\n"
    "/undo <id> — reopen a completed reminder\n"
    "/snooze <id> — snooze a reminder\n"
    "/plus <id>, /minus <id> — move goal progress\n"
    "/resetday — reset all goal progress\n"
    "/deletetask <id>, /deletegoal <id> — remove an entry\n"
    "/notifications on|off — toggle reminders\n"
    "/sweep — check for due reminders now"
)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _store(context: ContextTypes.DEFAULT_TYPE) -> ScheduleDB:
    return context.bot_data["store"]


def _notifier(context: ContextTypes.DEFAULT_TYPE) -> NotificationPort:
    return context.bot_data["notifier"]


async def _locked_sweep(context: ContextTypes.DEFAULT_TYPE) -> SweepResult:
    """Run a sweep; foreground sweeps never overlap each other."""
    lock = context.bot_data.setdefault(SWEEP_LOCK_KEY, asyncio.Lock())
    async with lock:
        return await run_sweep(context.bot_data["store"], context.bot_data["notifier"])


def _arg_id(context: ContextTypes.DEFAULT_TYPE) -> str | None:
    if not context.args:
        return None
    return context.args[0].strip() or None


def _format_due(task_raw: Any, now: Any) -> str:
    try:
        task = parse_task(task_raw)
    except MalformedRecord:
        return "(invalid record)"
    if task.done:
        return "done"
    due = resolve_next_due(task, now)
    if due is None:
        return "no date"
    label = due.strftime("%a %d %b %H:%M")
    if task.snooze_until is not None:
        label += " (snoozed)"
    return label


async def _persist(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    mutate: Callable[[Schedule], None],
) -> Schedule | None:
    """Save a user action and refresh one-shot wake-ups.

    Replies with an error and returns None if the store is unavailable.
    """
    try:
        schedule = _store(context).save_user_state(mutate)
    except StorageUnavailable as exc:
        logger.error("Failed to save user action: %s", exc)
        await update.message.reply_text("Sorry, I couldn't save that. Please try again.")
        return None
    _replan_wakeups(context.application, schedule)
    return schedule


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(HELP_TEXT)


@authorized_only
async def cmd_tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        schedule = _store(context).read()
    except StorageUnavailable as exc:
        logger.error("Failed to read schedule: %s", exc)
        await update.message.reply_text("Sorry, I couldn't load your reminders.")
        return

    if schedule is None or not schedule.tasks:
        await update.message.reply_text("No reminders yet.")
        return

    now = current_time()
    lines = ["Your reminders:"]
    for raw in schedule.tasks:
        title = raw.get("title", "(untitled)") if isinstance(raw, dict) else "(invalid)"
        task_id = raw.get("id", "?") if isinstance(raw, dict) else "?"
        lines.append(f"  [{task_id}] {title} — {_format_due(raw, now)}")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_goals(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        schedule = _store(context).read()
    except StorageUnavailable as exc:
        logger.error("Failed to read schedule: %s", exc)
        await update.message.reply_text("Sorry, I couldn't load your goals.")
        return

    if schedule is None or not schedule.goals:
        await update.message.reply_text("No goals yet.")
        return

    lines = ["Your goals:"]
    for raw in schedule.goals:
        try:
            goal = parse_goal(raw)
        except MalformedRecord:
            continue
        mark = "✅" if goal.satisfied else "•"
        unit = f" {goal.unit}" if goal.unit else ""
        lines.append(f"  {mark} [{goal.id}] {goal.title}: {goal.progress}/{goal.target}{unit}")
    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# Task actions
# ---------------------------------------------------------------------------


async def _task_action(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    usage: str,
    change: Callable[[Any], Any],
    reply: Callable[[Any], str],
) -> None:
    task_id = _arg_id(context)
    if task_id is None:
        await update.message.reply_text(f"Usage: {usage}")
        return

    changed: list[Any] = []

    def _mutate(schedule: Schedule) -> None:
        result = actions.update_records(schedule.tasks, parse_task, task_id, change)
        if result is not None:
            changed.append(result)

    if await _persist(update, context, _mutate) is None:
        return
    if not changed:
        await update.message.reply_text(f"Reminder {task_id} not found.")
        return
    await update.message.reply_text(reply(changed[0]))


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    now = current_time()

    def _reply(task: Any) -> str:
        if task.done:
            return f"Completed: {task.title}"
        return f"Done for now: {task.title}. Next: {_format_due(task.to_record(), now)}"

    await _task_action(
        update, context, "/done <id>", lambda t: actions.complete_task(t, now), _reply,
    )


@authorized_only
async def cmd_undo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _task_action(
        update, context, "/undo <id>", actions.reopen_task,
        lambda t: f"Reopened: {t.title}",
    )


@authorized_only
async def cmd_snooze(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    now = current_time()
    minutes = settings.SNOOZE_MINUTES
    await _task_action(
        update, context, "/snooze <id>",
        lambda t: actions.snooze_task(t, now, minutes),
        lambda t: f"Snoozed {t.title} for {minutes} min.",
    )


@authorized_only
async def cmd_deletetask(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _delete(update, context, "task")


@authorized_only
async def cmd_deletegoal(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _delete(update, context, "goal")


async def _delete(update: Update, context: ContextTypes.DEFAULT_TYPE, kind: str) -> None:
    entity_id = _arg_id(context)
    if entity_id is None:
        await update.message.reply_text(f"Usage: /delete{kind} <id>")
        return
    store = _store(context)
    try:
        deleted = store.delete_task(entity_id) if kind == "task" else store.delete_goal(entity_id)
    except StorageUnavailable as exc:
        logger.error("Failed to delete %s %s: %s", kind, entity_id, exc)
        await update.message.reply_text("Sorry, I couldn't delete that. Please try again.")
        return
    if deleted:
        await update.message.reply_text(f"Deleted {kind} {entity_id}.")
    else:
        await update.message.reply_text(f"{kind.capitalize()} {entity_id} not found.")


# ---------------------------------------------------------------------------
# Goal actions
# ---------------------------------------------------------------------------


async def _goal_delta(update: Update, context: ContextTypes.DEFAULT_TYPE, delta: int) -> None:
    goal_id = _arg_id(context)
    if goal_id is None:
        await update.message.reply_text("Usage: /plus <id> or /minus <id>")
        return

    changed: list[Any] = []

    def _mutate(schedule: Schedule) -> None:
        result = actions.update_records(
            schedule.goals, parse_goal, goal_id, lambda g: actions.adjust_goal(g, delta),
        )
        if result is not None:
            changed.append(result)

    if await _persist(update, context, _mutate) is None:
        return
    if not changed:
        await update.message.reply_text(f"Goal {goal_id} not found.")
        return
    goal = changed[0]
    await update.message.reply_text(f"{goal.title}: {goal.progress}/{goal.target}")


@authorized_only
async def cmd_plus(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _goal_delta(update, context, 1)


@authorized_only
async def cmd_minus(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _goal_delta(update, context, -1)


@authorized_only
async def cmd_resetday(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    today = current_time().date()

    def _reset(schedule: Schedule) -> None:
        actions.reset_goal_records(schedule.goals, today, only_stale=False)

    if await _persist(update, context, _reset) is None:
        return
    await update.message.reply_text("Goal progress reset for today.")


# ---------------------------------------------------------------------------
# Settings & manual sweep
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_notifications(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    choice = (context.args[0].lower() if context.args else "")
    if choice not in ("on", "off"):
        await update.message.reply_text("Usage: /notifications on|off")
        return

    enabled = choice == "on"
    if enabled and not await _notifier(context).request_permission():
        await update.message.reply_text(
            "Notifications are blocked. Make sure the bot can message this chat."
        )
        return

    def _toggle(schedule: Schedule) -> None:
        schedule.settings.notifications = enabled

    if await _persist(update, context, _toggle) is None:
        return
    await update.message.reply_text(f"Notifications {'enabled' if enabled else 'disabled'}.")


@authorized_only
async def cmd_sweep(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    result = await _locked_sweep(context)
    if result.aborted:
        await update.message.reply_text("Couldn't check reminders right now.")
    elif result.gated:
        await update.message.reply_text("Notifications are off. Use /notifications on.")
    else:
        count = len(result.notified_tasks) + len(result.notified_goals)
        await update.message.reply_text(f"Checked reminders: {count} sent.")


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------


def _reset_goals_if_new_day(store: ScheduleDB) -> None:
    schedule = store.read()
    if schedule is None or not schedule.goals:
        return
    today = current_time().date()
    if not actions.reset_goal_records(list(schedule.goals), today):
        return
    store.save_user_state(lambda s: actions.reset_goal_records(s.goals, today))
    logger.info("Daily goal progress reset")


def _replan_wakeups(app: Application, schedule: Schedule | None) -> None:
    """Replace the one-shot wake-up jobs with the schedule's upcoming reminders."""
    job_queue = app.job_queue
    if job_queue is None:
        return
    for job in job_queue.jobs():
        if job.name and job.name.startswith(WAKEUP_PREFIX):
            job.schedule_removal()
    if schedule is None:
        return
    for task_id, due in plan_wakeups(schedule, current_time()):
        job_queue.run_once(_wakeup_job, when=due, name=f"{WAKEUP_PREFIX}{task_id}")


async def _wakeup_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    await _locked_sweep(context)


async def _sweep_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Foreground tick: daily goal reset, sweep, then refresh wake-ups."""
    store = context.bot_data["store"]
    try:
        _reset_goals_if_new_day(store)
    except StorageUnavailable as exc:
        logger.error("Daily goal reset skipped: %s", exc)

    await _locked_sweep(context)

    try:
        schedule = store.read()
    except StorageUnavailable as exc:
        logger.error("Wake-up planning skipped: %s", exc)
        return
    _replan_wakeups(context.application, schedule)


def _setup_reminder_jobs(app: Application) -> None:
    """Register the repeating sweep; first run fires right after start-up."""
    app.job_queue.run_repeating(
        _sweep_job,
        interval=settings.SWEEP_INTERVAL_SECONDS,
        first=0,
        name=SWEEP_JOB_NAME,
    )
    logger.info("Reminder sweep scheduled every %ds", settings.SWEEP_INTERVAL_SECONDS)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def build_app(
    store: ScheduleDB | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: Schedule store. Defaults to ScheduleDB at DATABASE_PATH.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if store is None:
        from src.data.db import ScheduleDB
        store = ScheduleDB()

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    app.bot_data["store"] = store
    app.bot_data["notifier"] = notifier
    app.bot_data[SWEEP_LOCK_KEY] = asyncio.Lock()

    app.add_handler(CommandHandler(["start", "help"], cmd_start))
    app.add_handler(CommandHandler("tasks", cmd_tasks))
    app.add_handler(CommandHandler("goals", cmd_goals))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("undo", cmd_undo))
    app.add_handler(CommandHandler("snooze", cmd_snooze))
    app.add_handler(CommandHandler("deletetask", cmd_deletetask))
    app.add_handler(CommandHandler("deletegoal", cmd_deletegoal))
    app.add_handler(CommandHandler("plus", cmd_plus))
    app.add_handler(CommandHandler("minus", cmd_minus))
    app.add_handler(CommandHandler("resetday", cmd_resetday))
    app.add_handler(CommandHandler("notifications", cmd_notifications))
    app.add_handler(CommandHandler("sweep", cmd_sweep))

    _setup_reminder_jobs(app)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting RoutineFlow bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
