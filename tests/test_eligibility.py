"""Tests for src.core.eligibility — task window and goal cadence decisions."""

from datetime import datetime, timedelta, timezone

import pytest

from src.core.eligibility import DUE_WINDOW, is_goal_due, is_task_due
from src.data.models import Goal, Task

UTC = timezone.utc


def _make_task(**fields) -> Task:
    data = {"id": "t1", "title": "Stretch", "alarm": True}
    data.update(fields)
    return Task.model_validate(data)


def _make_goal(**fields) -> Goal:
    data = {"id": "g1", "title": "Water", "unit": "glasses", "target": 8, "progress": 2, "interval": 30}
    data.update(fields)
    return Goal.model_validate(data)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestTaskGates:
    def test_alarm_off_never_due(self):
        task = _make_task(dueDate="2024-03-01", time="09:00", alarm=False)
        assert is_task_due(task, _utc(2024, 3, 1, 9, 0), None) is False

    def test_done_never_due(self):
        task = _make_task(dueDate="2024-03-01", time="09:00", done=True)
        assert is_task_due(task, _utc(2024, 3, 1, 9, 0), None) is False

    def test_undated_never_due(self):
        assert is_task_due(_make_task(), _utc(2024, 3, 1, 9, 0), None) is False

    def test_custom_without_days_never_due(self):
        task = _make_task(dueDate="2024-03-01", time="09:00", repeat="custom", repeatDays=[])
        assert is_task_due(task, _utc(2024, 3, 1, 9, 0), None) is False


class TestTaskWindow:
    def test_weekly_example_three_minutes_late(self):
        task = _make_task(dueDate="2024-03-01", time="09:00", repeat="weekly")
        assert is_task_due(task, _utc(2024, 3, 8, 9, 3), None) is True

    def test_early_within_window(self):
        task = _make_task(dueDate="2024-03-01", time="09:00")
        assert is_task_due(task, _utc(2024, 3, 1, 8, 51), None) is True

    def test_window_edge_is_inclusive(self):
        task = _make_task(dueDate="2024-03-01", time="09:00")
        assert is_task_due(task, _utc(2024, 3, 1, 9, 10), None) is True
        assert is_task_due(task, _utc(2024, 3, 1, 8, 50), None) is True

    def test_outside_window(self):
        task = _make_task(dueDate="2024-03-01", time="09:00")
        assert is_task_due(task, _utc(2024, 3, 1, 9, 10, 1), None) is False
        assert is_task_due(task, _utc(2024, 3, 1, 8, 49), None) is False

    def test_time_only_task_late_within_window(self):
        task = _make_task(time="07:00")
        assert is_task_due(task, _utc(2024, 3, 1, 7, 5), None) is True

    def test_snoozed_task_fires_at_snooze(self):
        task = _make_task(
            dueDate="2024-03-01", time="09:00", snoozeUntil="2024-03-01T10:00:00+00:00",
        )
        assert is_task_due(task, _utc(2024, 3, 1, 9, 0), None) is False
        assert is_task_due(task, _utc(2024, 3, 1, 10, 2), None) is True


class TestTaskDedup:
    def test_recently_notified_is_suppressed(self):
        task = _make_task(dueDate="2024-03-01", time="09:00")
        now = _utc(2024, 3, 1, 9, 0, 30)
        assert is_task_due(task, now, now - timedelta(seconds=30)) is False

    def test_notified_a_window_ago_is_not_suppressed(self):
        task = _make_task(dueDate="2024-03-01", time="09:00", repeat="daily")
        now = _utc(2024, 3, 2, 9, 0)
        assert is_task_due(task, now, now - DUE_WINDOW) is True

    def test_one_shot_never_eligible_twice(self):
        task = _make_task(dueDate="2024-03-01", time="09:00")
        t0 = _utc(2024, 3, 1, 9, 0)
        assert is_task_due(task, t0, None) is True
        later = t0 + DUE_WINDOW + timedelta(seconds=1)
        assert is_task_due(task, later, t0) is False

    def test_daily_refires_next_occurrence(self):
        task = _make_task(dueDate="2024-03-01", time="09:00", repeat="daily")
        t0 = _utc(2024, 3, 1, 9, 0)
        assert is_task_due(task, t0 + DUE_WINDOW + timedelta(seconds=1), t0) is False
        assert is_task_due(task, t0 + timedelta(days=1), t0) is True


class TestGoal:
    def test_satisfied_goal_never_due(self):
        goal = _make_goal(target=8, progress=8, interval=20)
        assert is_goal_due(goal, _utc(2024, 3, 1), None) is False
        assert is_goal_due(goal, _utc(2024, 3, 1), _utc(2020, 1, 1)) is False

    def test_never_notified_is_due(self):
        assert is_goal_due(_make_goal(), _utc(2024, 3, 1), None) is True

    @pytest.mark.parametrize("minutes, expected", [(29, False), (30, True), (45, True)])
    def test_cadence(self, minutes, expected):
        t0 = _utc(2024, 3, 1, 12, 0)
        goal = _make_goal(interval=30)
        assert is_goal_due(goal, t0 + timedelta(minutes=minutes), t0) is expected
