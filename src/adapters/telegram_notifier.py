"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance and delivers each reminder to every
configured chat.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import Forbidden, TelegramError

from src.ports.notification_port import DeliveryUnavailable

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot, chat_ids: list[int] | None = None) -> None:
        if chat_ids is None:
            from src.config import settings
            chat_ids = settings.ALLOWED_USER_IDS
        self._bot = bot
        self._chat_ids = list(chat_ids)

    async def deliver(self, title: str, body: str) -> None:
        """Send the reminder; raises DeliveryUnavailable if no chat received it."""
        if not self._chat_ids:
            raise DeliveryUnavailable("No chat configured to receive reminders")

        text = f"🔔 {title}\n{body}"
        sent = 0
        for chat_id in self._chat_ids:
            try:
                await self._bot.send_message(chat_id=chat_id, text=text)
                sent += 1
            except Forbidden as exc:
                logger.warning("Chat %d blocked the bot: %s", chat_id, exc)
            except TelegramError as exc:
                logger.error("Failed to send reminder to %d: %s", chat_id, exc)

        if sent == 0:
            raise DeliveryUnavailable(f"Reminder {title!r} reached no chat")

    async def request_permission(self) -> bool:
        """True if at least one configured chat is reachable."""
        for chat_id in self._chat_ids:
            try:
                await self._bot.get_chat(chat_id)
                return True
            except TelegramError as exc:
                logger.warning("Chat %d is not reachable: %s", chat_id, exc)
        return False
