"""Tests for src.bot.telegram_bot — Telegram bot handlers and jobs.

Handlers run against a real temp-file ScheduleDB; Telegram objects and the
notification port are mocked.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.bot.telegram_bot import (
    SWEEP_LOCK_KEY,
    SWEEP_JOB_NAME,
    WAKEUP_PREFIX,
    _replan_wakeups,
    _reset_goals_if_new_day,
    _wakeup_job,
    build_app,
    cmd_done,
    cmd_goals,
    cmd_notifications,
    cmd_plus,
    cmd_snooze,
    cmd_start,
    cmd_sweep,
    cmd_tasks,
)
from src.core.sweep import SweepResult
from src.data.models import NotificationSettings, Schedule, parse_goal, parse_task
from src.ports.schedule_port import StorageUnavailable


NOW = datetime(2024, 3, 1, 9, 5, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_update(user_id=12345):
    update = MagicMock()
    update.effective_user.id = user_id
    update.message.reply_text = AsyncMock()
    return update


def _make_context(store, notifier=None, args=None):
    context = MagicMock()
    context.args = args or []
    context.bot_data = {"store": store, "notifier": notifier or AsyncMock()}
    context.application.job_queue.jobs.return_value = []
    return context


def _reply(update) -> str:
    return update.message.reply_text.call_args.args[0]


def _seed(db, notifications=True):
    db.replace_user_state(
        tasks=[
            {"id": "t1", "title": "Stretch", "dueDate": "2024-03-01", "time": "09:00",
             "repeat": "daily", "alarm": True},
            {"id": "t2", "title": "Dentist", "dueDate": "2099-01-01", "time": "10:00",
             "alarm": True},
        ],
        goals=[{"id": "g1", "title": "Water", "unit": "glasses", "target": 2, "progress": 1,
                "interval": 30}],
        notification_settings=NotificationSettings(notifications=notifications),
    )


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_unauthorized_user_is_ignored(self, schedule_db):
        update = _make_update(user_id=999)
        await cmd_start(update, _make_context(schedule_db))
        update.message.reply_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_user_is_ignored(self, schedule_db):
        update = _make_update()
        update.effective_user = None
        await cmd_start(update, _make_context(schedule_db))
        update.message.reply_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_authorized_user_gets_help(self, schedule_db):
        update = _make_update()
        await cmd_start(update, _make_context(schedule_db))
        assert "/done" in _reply(update)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListing:
    @pytest.mark.asyncio
    async def test_tasks_empty(self, schedule_db):
        update = _make_update()
        await cmd_tasks(update, _make_context(schedule_db))
        assert _reply(update) == "No reminders yet."

    @pytest.mark.asyncio
    async def test_tasks_lists_each_entry(self, schedule_db):
        _seed(schedule_db)
        update = _make_update()
        await cmd_tasks(update, _make_context(schedule_db))
        text = _reply(update)
        assert "[t1] Stretch" in text
        assert "[t2] Dentist" in text

    @pytest.mark.asyncio
    async def test_tasks_storage_error(self):
        store = MagicMock()
        store.read.side_effect = StorageUnavailable("locked")
        update = _make_update()
        await cmd_tasks(update, _make_context(store))
        assert "couldn't load" in _reply(update)

    @pytest.mark.asyncio
    async def test_goals_show_progress(self, schedule_db):
        _seed(schedule_db)
        update = _make_update()
        await cmd_goals(update, _make_context(schedule_db))
        assert "Water: 1/2 glasses" in _reply(update)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class TestTaskActions:
    @pytest.mark.asyncio
    async def test_done_requires_id(self, schedule_db):
        update = _make_update()
        await cmd_done(update, _make_context(schedule_db))
        assert _reply(update) == "Usage: /done <id>"

    @pytest.mark.asyncio
    async def test_done_one_shot(self, schedule_db):
        _seed(schedule_db)
        update = _make_update()
        await cmd_done(update, _make_context(schedule_db, args=["t2"]))
        assert _reply(update) == "Completed: Dentist"
        assert parse_task(schedule_db.read().tasks[1]).done is True

    @pytest.mark.asyncio
    async def test_done_repeating_stays_open(self, schedule_db):
        _seed(schedule_db)
        update = _make_update()
        with patch("src.bot.telegram_bot.current_time", return_value=NOW):
            await cmd_done(update, _make_context(schedule_db, args=["t1"]))
        assert _reply(update).startswith("Done for now: Stretch")
        task = parse_task(schedule_db.read().tasks[0])
        assert task.done is False
        assert task.due_date == date(2024, 3, 2)

    @pytest.mark.asyncio
    async def test_unknown_task(self, schedule_db):
        _seed(schedule_db)
        update = _make_update()
        await cmd_done(update, _make_context(schedule_db, args=["nope"]))
        assert _reply(update) == "Reminder nope not found."

    @pytest.mark.asyncio
    async def test_snooze_sets_snooze_until(self, schedule_db):
        _seed(schedule_db)
        update = _make_update()
        await cmd_snooze(update, _make_context(schedule_db, args=["t2"]))
        assert "Snoozed Dentist" in _reply(update)
        assert parse_task(schedule_db.read().tasks[1]).snooze_until is not None

    @pytest.mark.asyncio
    async def test_save_failure_is_reported(self):
        store = MagicMock()
        store.save_user_state.side_effect = StorageUnavailable("locked")
        update = _make_update()
        await cmd_done(update, _make_context(store, args=["t1"]))
        assert "couldn't save" in _reply(update)


class TestGoalActions:
    @pytest.mark.asyncio
    async def test_plus_increments(self, schedule_db):
        _seed(schedule_db)
        update = _make_update()
        await cmd_plus(update, _make_context(schedule_db, args=["g1"]))
        assert _reply(update) == "Water: 2/2"
        assert parse_goal(schedule_db.read().goals[0]).progress == 2

    def test_new_day_resets_stale_goals(self, schedule_db):
        _seed(schedule_db)
        _reset_goals_if_new_day(schedule_db)
        goal = parse_goal(schedule_db.read().goals[0])
        assert goal.progress == 0
        assert goal.last_reset is not None

        # Second call on the same day leaves progress alone
        schedule_db.save_user_state(lambda s: s.goals[0].update(progress=1))
        _reset_goals_if_new_day(schedule_db)
        assert parse_goal(schedule_db.read().goals[0]).progress == 1


# ---------------------------------------------------------------------------
# Notifications toggle & manual sweep
# ---------------------------------------------------------------------------


class TestNotifications:
    @pytest.mark.asyncio
    async def test_usage(self, schedule_db):
        update = _make_update()
        await cmd_notifications(update, _make_context(schedule_db, args=["maybe"]))
        assert _reply(update) == "Usage: /notifications on|off"

    @pytest.mark.asyncio
    async def test_enable_requires_permission(self, schedule_db):
        _seed(schedule_db, notifications=False)
        notifier = AsyncMock()
        notifier.request_permission.return_value = False
        update = _make_update()

        await cmd_notifications(update, _make_context(schedule_db, notifier, args=["on"]))

        assert "blocked" in _reply(update)
        assert schedule_db.read().settings.notifications is False

    @pytest.mark.asyncio
    async def test_enable_when_permitted(self, schedule_db):
        _seed(schedule_db, notifications=False)
        notifier = AsyncMock()
        notifier.request_permission.return_value = True
        update = _make_update()

        await cmd_notifications(update, _make_context(schedule_db, notifier, args=["ON"]))

        assert _reply(update) == "Notifications enabled."
        assert schedule_db.read().settings.notifications is True

    @pytest.mark.asyncio
    async def test_disable_skips_permission(self, schedule_db):
        _seed(schedule_db)
        notifier = AsyncMock()
        update = _make_update()

        await cmd_notifications(update, _make_context(schedule_db, notifier, args=["off"]))

        notifier.request_permission.assert_not_called()
        assert schedule_db.read().settings.notifications is False


class TestSweepCommand:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("result, expected", [
        (SweepResult(aborted=True), "Couldn't check reminders right now."),
        (SweepResult(gated=True), "Notifications are off. Use /notifications on."),
        (SweepResult(notified_tasks=["t1"], notified_goals=["g1"]), "Checked reminders: 2 sent."),
    ])
    async def test_replies_with_outcome(self, schedule_db, result, expected):
        update = _make_update()
        with patch("src.bot.telegram_bot.run_sweep", AsyncMock(return_value=result)):
            await cmd_sweep(update, _make_context(schedule_db))
        assert _reply(update) == expected


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class TestForegroundSweepLock:
    @pytest.mark.asyncio
    async def test_wakeups_never_overlap(self, schedule_db):
        running = []
        overlaps = []

        async def _slow_sweep(store, notifier):
            if running:
                overlaps.append(True)
            running.append(True)
            await asyncio.sleep(0.02)
            running.pop()
            return SweepResult()

        context = _make_context(schedule_db)
        with patch("src.bot.telegram_bot.run_sweep", _slow_sweep):
            await asyncio.gather(*(_wakeup_job(context) for _ in range(3)))

        assert overlaps == []
        assert SWEEP_LOCK_KEY in context.bot_data


class TestReplanWakeups:
    def test_replaces_old_wakeups(self):
        old_wakeup = MagicMock()
        old_wakeup.name = f"{WAKEUP_PREFIX}old"
        sweep_job = MagicMock()
        sweep_job.name = SWEEP_JOB_NAME
        app = MagicMock()
        app.job_queue.jobs.return_value = [old_wakeup, sweep_job]

        due = datetime.now(timezone.utc) + timedelta(hours=2)
        schedule = Schedule.model_validate({
            "tasks": [{"id": "t9", "alarm": True, "snoozeUntil": due.isoformat()}],
        })

        _replan_wakeups(app, schedule)

        old_wakeup.schedule_removal.assert_called_once()
        sweep_job.schedule_removal.assert_not_called()
        app.job_queue.run_once.assert_called_once()
        kwargs = app.job_queue.run_once.call_args.kwargs
        assert kwargs["name"] == f"{WAKEUP_PREFIX}t9"
        assert kwargs["when"] == due

    def test_no_job_queue(self):
        app = MagicMock()
        app.job_queue = None
        _replan_wakeups(app, Schedule())


class TestBuildApp:
    def test_registers_handlers_and_sweep_job(self, schedule_db):
        notifier = AsyncMock()
        with patch("src.bot.telegram_bot._setup_reminder_jobs") as mock_setup:
            app = build_app(store=schedule_db, notifier=notifier)

        mock_setup.assert_called_once_with(app)
        assert app.bot_data["store"] is schedule_db
        assert app.bot_data["notifier"] is notifier
        commands = set()
        for handler in app.handlers[0]:
            commands |= set(handler.commands)
        assert {"start", "done", "snooze", "plus", "notifications", "sweep"} <= commands
