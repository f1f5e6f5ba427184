"""
RoutineFlow — Background Sweep.

The background execution context: a short-lived process woken by an
external scheduler (cron, a systemd timer) that runs exactly one sweep and
exits. It only reads the schedule and merges dedup records; it never edits
tasks, goals or settings.

Example crontab entry (every 5 minutes):
    */5 * * * * cd /opt/routineflow && python main.py sweep
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from src.core.sweep import SweepResult, run_sweep
from src.ports.schedule_port import StorageUnavailable

if TYPE_CHECKING:
    from src.ports.notification_port import NotificationPort
    from src.ports.schedule_port import ScheduleStore

logger = logging.getLogger(__name__)


async def run_background_sweep(
    store: ScheduleStore | None = None,
    notifier: NotificationPort | None = None,
) -> SweepResult:
    """Run a single sweep with default adapters wired in."""
    if store is None:
        from src.data.db import ScheduleDB

        try:
            store = ScheduleDB()
        except StorageUnavailable as exc:
            logger.error("Background sweep aborted: %s", exc)
            return SweepResult(aborted=True)

    if notifier is not None:
        return await run_sweep(store, notifier)

    from telegram import Bot
    from telegram.error import TelegramError

    from src.adapters.telegram_notifier import TelegramNotifier
    from src.config import settings

    bot = Bot(settings.TELEGRAM_BOT_TOKEN)
    try:
        await bot.initialize()
    except TelegramError as exc:
        # Nothing delivered, nothing recorded: the next wake-up retries.
        logger.error("Background sweep aborted, Telegram unreachable: %s", exc)
        return SweepResult(aborted=True)
    try:
        return await run_sweep(store, TelegramNotifier(bot))
    finally:
        await bot.shutdown()


def main() -> None:
    """Entry point for `python main.py sweep`."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    result = asyncio.run(run_background_sweep())
    logger.info(
        "Background sweep finished: %d task(s), %d goal(s) notified%s",
        len(result.notified_tasks),
        len(result.notified_goals),
        " (aborted)" if result.aborted else "",
    )


if __name__ == "__main__":
    main()
