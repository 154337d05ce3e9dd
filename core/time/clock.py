"""
Kirana Core Time — Explicit Clock Protocol
============================================
Engine code never calls datetime.now() or date.today() directly.
Every service receives a Clock at construction time so that
ledger dates are reproducible in tests.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


# ══════════════════════════════════════════════════════════════
# CLOCK PROTOCOL
# ══════════════════════════════════════════════════════════════

class Clock(Protocol):
    """Injectable time source."""

    def now_utc(self) -> datetime:
        """Return current UTC time."""
        ...  # pragma: no cover

    def today(self) -> date:
        """Return the current business date."""
        ...  # pragma: no cover


# ══════════════════════════════════════════════════════════════
# IMPLEMENTATIONS
# ══════════════════════════════════════════════════════════════

class SystemClock:
    """Production clock — real system time."""

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now_utc().date()


class FixedClock:
    """
    Test clock — returns a fixed timestamp until advanced.

    Usage:
        clock = FixedClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        clock.advance(days=1)
        assert clock.today() == date(2026, 1, 2)
    """

    def __init__(self, fixed_dt: datetime) -> None:
        if fixed_dt.tzinfo is None:
            raise ValueError("FixedClock requires timezone-aware datetime.")
        self._fixed_dt = fixed_dt

    def now_utc(self) -> datetime:
        return self._fixed_dt

    def today(self) -> date:
        return self._fixed_dt.date()

    def advance(self, *, days: int = 0, seconds: float = 0) -> None:
        self._fixed_dt = self._fixed_dt + timedelta(days=days, seconds=seconds)
