"""Clock implementations."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from .models import ensure_utc
from .ports import IClock


class SystemClock(IClock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(IClock):
    """Manually controlled clock for tests and replays.

    Example:
        ```python
        clock = FrozenClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(seconds=30)
        ```
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = ensure_utc(start) if start else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = ensure_utc(value)

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new time."""
        self._now = self._now + timedelta(**delta)
        return self._now


__all__: list[str] = ["SystemClock", "FrozenClock"]
