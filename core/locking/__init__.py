"""
Kirana Core Locking — Public API
==================================
Per-key critical sections with bounded waits.
"""

from core.locking.errors import Busy, LockError
from core.locking.keyed import KeyedLockRegistry

__all__ = [
    "Busy",
    "KeyedLockRegistry",
    "LockError",
]
