"""
RoutineFlow — Data Models.

The schedule blob is a JSON document shared by the foreground bot and the
background sweep. Tasks and goals are kept as raw dicts inside the blob and
only parsed into models when the core needs them, so a single malformed
record never prevents the rest of the schedule from loading.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time as dt_time, tzinfo
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


class MalformedRecord(Exception):
    """Raised when a task or goal record fails its invariants."""

    def __init__(self, kind: str, record_id: Any, reason: str) -> None:
        super().__init__(f"Malformed {kind} {record_id!r}: {reason}")
        self.kind = kind
        self.record_id = record_id
        self.reason = reason


class Repeat(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class Task(BaseModel):
    """A reminder, optionally dated, timed and recurring.

    JSON example:
    {
        "id": "task-1",
        "title": "Water plants",
        "notes": "",
        "dueDate": "2024-03-01",
        "time": "09:00",
        "repeat": "weekly",
        "repeatDays": [],
        "snoozeUntil": null,
        "alarm": true,
        "done": false
    }
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    title: str = ""
    notes: str = ""
    due_date: date | None = Field(default=None, alias="dueDate")
    time: str | None = None  # HH:MM local
    repeat: Repeat = Repeat.NONE
    repeat_days: list[str] = Field(default_factory=list, alias="repeatDays")
    snooze_until: datetime | None = Field(default=None, alias="snoozeUntil")
    alarm: bool = False
    done: bool = False
    completed_at: int | None = Field(default=None, alias="completedAt")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("due_date", "snooze_until", mode="before")
    @classmethod
    def blank_is_unset(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("repeat", mode="before")
    @classmethod
    def default_repeat(cls, v: Any) -> Any:
        return _blank_to_none(v) or Repeat.NONE

    @field_validator("repeat_days", mode="before")
    @classmethod
    def default_repeat_days(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("time", mode="before")
    @classmethod
    def validate_time(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if v is None:
            return None
        m = _TIME_RE.match(str(v).strip())
        if not m:
            raise ValueError(f"time must be HH:MM, got {v!r}")
        hour, minute = int(m.group(1)), int(m.group(2))
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"Hour/minute out of range: {hour}:{minute}")
        return f"{hour:02d}:{minute:02d}"

    @property
    def time_of_day(self) -> dt_time | None:
        if self.time is None:
            return None
        hour, minute = map(int, self.time.split(":"))
        return dt_time(hour, minute)

    def to_record(self) -> dict[str, Any]:
        """Serialize back to the camelCase wire format."""
        return self.model_dump(by_alias=True, mode="json")


class Goal(BaseModel):
    """A numeric daily goal that pulses a reminder every `interval` minutes."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    title: str = ""
    unit: str = ""
    target: int = Field(gt=0)
    progress: int = Field(default=0, ge=0)
    interval: int = Field(gt=0)  # minutes
    last_reset: str | None = Field(default=None, alias="lastReset")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def satisfied(self) -> bool:
        return self.progress >= self.target

    @property
    def remaining(self) -> int:
        return max(0, self.target - self.progress)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class NotificationSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    notifications: bool = False


class LastNotified(BaseModel):
    """Dedup records: entity id -> last-notified epoch milliseconds.

    Also used as the patch type for ScheduleDB.merge_dedup().
    """

    tasks: dict[str, int] = Field(default_factory=dict)
    goals: dict[str, int] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.tasks and not self.goals


class Schedule(BaseModel):
    """Snapshot of the durable schedule blob."""

    model_config = ConfigDict(populate_by_name=True)

    tasks: list[Any] = Field(default_factory=list)
    goals: list[Any] = Field(default_factory=list)
    settings: NotificationSettings = Field(default_factory=NotificationSettings)
    last_notified: LastNotified = Field(default_factory=LastNotified, alias="lastNotified")
    updated_at: int | None = Field(default=None, alias="updatedAt")

    @field_validator("tasks", "goals", "settings", "last_notified", mode="before")
    @classmethod
    def null_is_default(cls, v: Any, info: Any) -> Any:
        if v is not None:
            return v
        return [] if info.field_name in ("tasks", "goals") else {}

    def to_blob(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _record_id(raw: Any) -> Any:
    return raw.get("id") if isinstance(raw, dict) else None


def parse_task(raw: Any) -> Task:
    """Validate a raw task dict. Raises MalformedRecord on failure."""
    if not isinstance(raw, dict):
        raise MalformedRecord("task", None, f"expected object, got {type(raw).__name__}")
    try:
        return Task.model_validate(raw)
    except ValidationError as exc:
        raise MalformedRecord("task", _record_id(raw), str(exc)) from exc


def parse_goal(raw: Any) -> Goal:
    """Validate a raw goal dict. Raises MalformedRecord on failure."""
    if not isinstance(raw, dict):
        raise MalformedRecord("goal", None, f"expected object, got {type(raw).__name__}")
    try:
        return Goal.model_validate(raw)
    except ValidationError as exc:
        raise MalformedRecord("goal", _record_id(raw), str(exc)) from exc


# ---------------------------------------------------------------------------
# Time helpers (the blob stores epoch milliseconds)
# ---------------------------------------------------------------------------


def to_ms(instant: datetime) -> int:
    return int(instant.timestamp() * 1000)


def from_ms(ms: int, tz: tzinfo | None = None) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz)


def day_label(day: date) -> str:
    """Calendar-day label stored in Goal.lastReset, e.g. 'Fri Mar 01 2024'."""
    return day.strftime("%a %b %d %Y")
