"""
RoutineFlow — Entry Point.

    python main.py                   start the Telegram bot (foreground context)
    python main.py sweep             run one background sweep and exit (cron)
    python main.py import FILE.json  load tasks and goals from a JSON file
"""

import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def run(argv: list[str]) -> int:
    command = argv[0] if argv else "bot"

    if command == "bot":
        from src.bot.telegram_bot import main as bot_main
        bot_main()
        return 0

    if command == "sweep":
        from src.background import main as sweep_main
        sweep_main()
        return 0

    if command == "import" and len(argv) == 2:
        from src.data.db import ScheduleDB
        from src.data.importer import import_schedule
        schedule = import_schedule(argv[1], ScheduleDB())
        print(f"Imported {len(schedule.tasks)} task(s) and {len(schedule.goals)} goal(s).")
        return 0

    print(__doc__, file=sys.stderr)
    return 2


if __name__ == "__main__":
    sys.exit(run(sys.argv[1:]))
