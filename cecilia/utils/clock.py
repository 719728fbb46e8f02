"""Injectable time source.

Components that wait or timestamp things take a Clock so tests can swap in
a fake that advances instantly instead of sleeping.
"""

import time
from datetime import datetime


class Clock:
    """Wall-clock + monotonic time and sleeping, backed by the time module."""

    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.time())

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


SYSTEM_CLOCK = Clock()
