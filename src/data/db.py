"""
RoutineFlow — Schedule Database.

The schedule blob (tasks, goals, settings, dedup records) lives in a single
SQLite row shared by the foreground bot and the background sweep. Neither
process holds a lock on the other, so every read-modify-write runs inside a
BEGIN IMMEDIATE transaction against the latest stored row.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from src.data.models import LastNotified, NotificationSettings, Schedule, to_ms
from src.ports.schedule_port import StorageUnavailable

logger = logging.getLogger(__name__)

_BLOB_KEY = "data"


def _now_ms() -> int:
    return to_ms(datetime.now(timezone.utc))


def _same_id(raw: Any, entity_id: str) -> bool:
    return isinstance(raw, dict) and str(raw.get("id")) == entity_id


class ScheduleDB:
    """SQLite-backed storage for the shared schedule blob."""

    def __init__(self, db_path: str | None = None, timeout: float | None = None) -> None:
        if db_path is None or timeout is None:
            from src.config import settings
            db_path = db_path or settings.DATABASE_PATH
            timeout = settings.DB_TIMEOUT_SECONDS if timeout is None else timeout

        self._db_path = db_path
        self._timeout = timeout
        try:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
        except (OSError, sqlite3.Error) as exc:
            raise StorageUnavailable(f"Cannot open schedule DB at {db_path}: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly below.
        conn = sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            with contextlib.suppress(sqlite3.Error):
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schedule (
                    key        TEXT    PRIMARY KEY,
                    data       TEXT    NOT NULL,
                    updated_at INTEGER NOT NULL
                )
            """)
        finally:
            conn.close()
        logger.debug("Schedule table initialized at %s", self._db_path)

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a write-locked transaction; sqlite errors become StorageUnavailable."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open schedule DB: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.rollback()
            raise StorageUnavailable(f"Schedule DB transaction failed: {exc}") from exc
        except BaseException:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _load(conn: sqlite3.Connection) -> Schedule | None:
        row = conn.execute(
            "SELECT data FROM schedule WHERE key = ?", (_BLOB_KEY,)
        ).fetchone()
        if row is None:
            return None
        try:
            return Schedule.model_validate(json.loads(row["data"]))
        except (ValueError, ValidationError) as exc:
            raise StorageUnavailable(f"Stored schedule blob is unreadable: {exc}") from exc

    @staticmethod
    def _store(conn: sqlite3.Connection, schedule: Schedule) -> None:
        schedule.updated_at = _now_ms()
        conn.execute(
            """
            INSERT INTO schedule (key, data, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET data = excluded.data,
                                           updated_at = excluded.updated_at
            """,
            (_BLOB_KEY, json.dumps(schedule.to_blob(), ensure_ascii=False), schedule.updated_at),
        )

    # ---- shared-resource API (both contexts) ----

    def read(self) -> Schedule | None:
        """Return the latest snapshot, or None on first run."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open schedule DB: {exc}") from exc
        try:
            return self._load(conn)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot read schedule: {exc}") from exc
        finally:
            conn.close()

    def merge_dedup(self, patch: LastNotified) -> None:
        """Set only lastNotified keys on the latest row.

        tasks, goals and settings are re-read inside the transaction and
        written back untouched. A record never moves backwards in time.
        """
        if patch.is_empty():
            return

        with self._transaction() as conn:
            schedule = self._load(conn) or Schedule()
            dedup = schedule.last_notified
            for target, updates in ((dedup.tasks, patch.tasks), (dedup.goals, patch.goals)):
                for entity_id, ms in updates.items():
                    current = target.get(entity_id)
                    target[entity_id] = ms if current is None else max(current, ms)
            self._store(conn, schedule)

        logger.info(
            "Dedup merged: %d task(s), %d goal(s)", len(patch.tasks), len(patch.goals),
        )

    # ---- foreground API ----

    def save_user_state(self, mutate: Callable[[Schedule], None]) -> Schedule:
        """Apply a user action to the latest tasks/goals/settings.

        Whatever lastNotified is stored at write time is preserved, so a
        foreground save never resets dedup records written by a sweep.
        """
        with self._transaction() as conn:
            schedule = self._load(conn) or Schedule()
            dedup = schedule.last_notified.model_copy(deep=True)
            mutate(schedule)
            schedule.last_notified = dedup
            self._store(conn, schedule)
        return schedule

    def replace_user_state(
        self,
        tasks: list[dict[str, Any]],
        goals: list[dict[str, Any]],
        notification_settings: NotificationSettings | None = None,
    ) -> Schedule:
        """Bulk import of tasks and goals (dedup records are kept)."""

        def _replace(schedule: Schedule) -> None:
            schedule.tasks = list(tasks)
            schedule.goals = list(goals)
            if notification_settings is not None:
                schedule.settings = notification_settings

        schedule = self.save_user_state(_replace)
        logger.info("Schedule imported: %d task(s), %d goal(s)", len(tasks), len(goals))
        return schedule

    def delete_task(self, task_id: str) -> bool:
        """Remove a task and its dedup record."""
        return self._delete("tasks", task_id)

    def delete_goal(self, goal_id: str) -> bool:
        """Remove a goal and its dedup record."""
        return self._delete("goals", goal_id)

    def _delete(self, kind: str, entity_id: str) -> bool:
        with self._transaction() as conn:
            schedule = self._load(conn)
            if schedule is None:
                return False
            records: list[Any] = getattr(schedule, kind)
            kept = [raw for raw in records if not _same_id(raw, entity_id)]
            deleted = len(kept) != len(records)
            if deleted:
                setattr(schedule, kind, kept)
                getattr(schedule.last_notified, kind).pop(entity_id, None)
                self._store(conn, schedule)
        if deleted:
            logger.info("Deleted %s %s and its dedup record", kind[:-1], entity_id)
        return deleted
