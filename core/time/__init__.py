"""
Kirana Core Time — Public API
===============================
Explicit clock protocol. No wall-clock reads inside engine logic.
"""

from core.time.clock import Clock, FixedClock, SystemClock

__all__ = [
    "Clock",
    "FixedClock",
    "SystemClock",
]
