"""Schedule port — abstract interface for the shared schedule blob.

The background sweep only ever sees read() and merge_dedup(); it never
overwrites tasks, goals or settings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from src.data.models import LastNotified, Schedule


class StorageUnavailable(Exception):
    """Raised when the durable store cannot be opened, read or written."""


class ScheduleStore(Protocol):
    """Shared-resource interface used by the sweep."""

    def read(self) -> Schedule | None: ...

    def merge_dedup(self, patch: LastNotified) -> None: ...
