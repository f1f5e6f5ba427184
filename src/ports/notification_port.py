"""Notification port — abstract interface for delivering reminders.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class DeliveryUnavailable(Exception):
    """Raised when the notification capability is missing or denied."""


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def deliver(self, title: str, body: str) -> None: ...

    async def request_permission(self) -> bool: ...
