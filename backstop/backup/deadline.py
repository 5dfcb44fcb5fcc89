"""
Run deadline shared by every network call of one backup run.
"""

import time
from typing import Optional

from .errors import RunError


class DeadlineExceeded(RunError):
    """Raised when a backup run outlives its deadline."""

    def __init__(self, message: str):
        Exception.__init__(self, message)
        self.step = 'deadline'
        self.cause = None


class RunDeadline:
    """
    Wall-clock budget for a backup run.

    Components call timeout() to size each HTTP request so that no single
    call can outlive the run, and check() between steps.
    """

    def __init__(self, seconds: Optional[float], clock=time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self._expires = None if seconds is None else clock() + seconds

    def remaining(self) -> Optional[float]:
        if self._expires is None:
            return None
        return max(0.0, self._expires - self._clock())

    def check(self, what: str = 'backup run'):
        """Raise DeadlineExceeded if the budget is spent."""
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceeded(f"Deadline of {self.seconds}s exceeded during {what}")

    def timeout(self, default: float, what: str = 'request') -> float:
        """Per-call timeout: the smaller of default and the time left."""
        self.check(what)
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)


def unbounded() -> RunDeadline:
    return RunDeadline(None)
