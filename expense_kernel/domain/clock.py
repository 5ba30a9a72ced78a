"""
Clock -- injectable time source for the expense services.

Responsibility:
    Services stamp decisions (``decided_at``), expenses (``created_at``,
    ``resolved_at``) and rules from a Clock handed to their constructor.
    The approval evaluator never sees a clock: outcomes depend on ledger
    order, not on time.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place that reads the
    wall clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    Every call to ``now()`` returns the same instant until ``advance()``
    moves it forward, so two decisions recorded back to back share a
    timestamp and only their ledger sequence orders them.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move the clock forward and return the new time."""
        self._current += timedelta(seconds=seconds)
        return self._current
