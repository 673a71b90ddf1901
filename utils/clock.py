import time
from datetime import datetime


class SystemClock:
    """Wall time for persisted timestamps, monotonic time for cooldowns."""

    def now(self) -> datetime:
        return datetime.utcnow()

    def monotonic(self) -> float:
        return time.monotonic()
