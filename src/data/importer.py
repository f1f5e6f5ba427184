"""
RoutineFlow — Schedule Import.

Tasks and goals are authored outside the bot (an exported backup or a
hand-written JSON file) and loaded with:

    python main.py import schedule.json

The file uses the blob's wire format; only tasks and goals are taken from
it. Stored settings and dedup records are kept: notifications are only
turned on through /notifications on, which asks for permission first.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from src.data.models import MalformedRecord, parse_goal, parse_task

if TYPE_CHECKING:
    from src.data.db import ScheduleDB
    from src.data.models import Schedule

logger = logging.getLogger(__name__)


def import_schedule(path: str | Path, store: ScheduleDB) -> Schedule:
    """Replace tasks and goals with the file's content.

    Invalid records are still imported but logged, so the user can fix them;
    the sweep skips them individually.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Schedule file must contain a JSON object")

    tasks = data.get("tasks") or []
    goals = data.get("goals") or []
    if not isinstance(tasks, list) or not isinstance(goals, list):
        raise ValueError("'tasks' and 'goals' must be lists")

    for raw in tasks:
        try:
            parse_task(raw)
        except MalformedRecord as exc:
            logger.warning("Imported invalid record: %s", exc)
    for raw in goals:
        try:
            parse_goal(raw)
        except MalformedRecord as exc:
            logger.warning("Imported invalid record: %s", exc)

    settings = data.get("settings")
    if isinstance(settings, dict) and settings.get("notifications"):
        logger.warning("Import ignores notifications=true; use /notifications on")

    return store.replace_user_state(tasks, goals)
