"""Time sources used by the services."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone


class Clock(ABC):
    """A source of the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""


class SystemClock(Clock):
    """Clock backed by the system's wall time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FixedClock(Clock):
    """Clock that always reports the same instant."""

    time: datetime

    def now(self) -> datetime:
        return self.time