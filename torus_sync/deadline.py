import time
from typing import Callable, Optional

from .errors import SyncTimeout


class Deadline:
    """Wall-clock budget for one sync run. None/0 seconds means unlimited."""

    def __init__(self, seconds: Optional[float], clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self.clock = clock
        self.started = clock()

    @property
    def expires_at(self) -> Optional[float]:
        if not self.seconds:
            return None
        return self.started + self.seconds

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self.clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, stage: str = ""):
        if self.expired():
            where = f" while {stage}" if stage else ""
            raise SyncTimeout(f"run exceeded its {self.seconds:.0f}s budget{where}")
