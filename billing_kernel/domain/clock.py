"""
Clock -- Injectable time source for billing jobs.

Responsibility:
    Provides an injectable clock interface so that the expansion engine never
    calls ``datetime.now()`` directly.  The single ``now()`` read taken at the
    start of a run becomes that run's execution time: the upper bound of its
    scan window, the synthetic creation time of every event it writes, and
    the value the checkpoint advances to.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).

Failure modes:
    - DeterministicClock raises ValueError if given a naive datetime.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time must receive a Clock instance
        via constructor injection.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()`` or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        """
        Args:
            fixed_time: Initial time. Defaults to 2024-01-01T12:00Z.
        """
        fixed_time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._check_aware(fixed_time)
        self._fixed_time = fixed_time
        self._offset = timedelta(0)

    @staticmethod
    def _check_aware(value: datetime) -> None:
        if value.tzinfo is None:
            raise ValueError(f"DeterministicClock requires an aware datetime: {value!r}")

    def now(self) -> datetime:
        return self._fixed_time + self._offset

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._check_aware(time)
        self._fixed_time = time
        self._offset = timedelta(0)

    def advance(self, seconds: int | float = 1, *, delta: timedelta | None = None) -> None:
        """Advance the clock by ``seconds`` (or by an explicit ``delta``)."""
        self._offset += delta if delta is not None else timedelta(seconds=seconds)
