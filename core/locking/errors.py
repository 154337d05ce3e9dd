"""
Kirana Core Locking — Errors
==============================
"""


class LockError(Exception):
    """Base error for keyed critical sections."""
    pass


class Busy(LockError, TimeoutError):
    """
    The critical section for a key could not be entered in time.

    Safe to retry: nothing was read or written under the key.
    """

    code = "BUSY"

    def __init__(self, key, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(
            f"Resource {key!r} is busy; could not acquire its lock "
            f"within {timeout:g}s. Retry the operation."
        )

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "key": repr(self.key),
            "timeout_seconds": self.timeout,
            "message": str(self),
        }
