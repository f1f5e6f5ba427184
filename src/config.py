"""
RoutineFlow — Centralized configuration.

Loads all settings from .env and validates required keys.
Both execution contexts (the Telegram bot and the background sweep)
import the same singleton.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (foreground bot + notification delivery)
    TELEGRAM_BOT_TOKEN: str

    # Security; also the chats that receive reminders
    ALLOWED_USER_IDS: list[int] = []

    # SQLite schedule blob shared by both contexts
    DATABASE_PATH: str = "data/routineflow.db"
    # SQLite busy timeout; waiting blocks the event loop
    DB_TIMEOUT_SECONDS: float = 2.0

    # Local wall-clock used for due dates and HH:MM times
    TIMEZONE: str = "UTC"

    # Foreground sweep cadence
    SWEEP_INTERVAL_SECONDS: int = 60

    # "Snooze" button length
    SNOOZE_MINUTES: int = 60

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("SWEEP_INTERVAL_SECONDS", "SNOOZE_MINUTES", mode="before")
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError(f"must be positive, got {value}")
        return value


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/routineflow.db"),
        DB_TIMEOUT_SECONDS=os.getenv("DB_TIMEOUT_SECONDS", "2"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        SWEEP_INTERVAL_SECONDS=os.getenv("SWEEP_INTERVAL_SECONDS", "60"),
        SNOOZE_MINUTES=os.getenv("SNOOZE_MINUTES", "60"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
