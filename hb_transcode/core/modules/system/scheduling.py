"""
Operating-hours scheduling for hb_transcode.

Batch runs are unattended; during the configured quiet window the
orchestrator suspends between files (never mid-encode) until the window ends.
"""

import random
from datetime import datetime, timedelta
from typing import Callable, Optional

from .system_utils import CancellableTimer
from ....utils.logging import get_logger

logger = get_logger("scheduling")


class SleepScheduler:
    """Suspends work while the wall clock is inside the quiet window."""

    def __init__(self, enabled: bool = False, from_hour: int = 23, to_hour: int = 7,
                 to_minute: int = 30, clock: Callable[[], datetime] = datetime.now,
                 timer: Optional[CancellableTimer] = None, max_jitter_seconds: int = 30):
        if not (0 <= from_hour <= 23 and 0 <= to_hour <= 23 and 0 <= to_minute <= 59):
            raise ValueError(f"Invalid sleep window {from_hour}:00-{to_hour}:{to_minute:02d}")
        self.enabled = enabled
        self.from_hour = from_hour
        self.to_hour = to_hour
        self.to_minute = to_minute
        self.clock = clock
        self.timer = timer or CancellableTimer()
        self.max_jitter_seconds = max_jitter_seconds

    @classmethod
    def from_config(cls, config, **kwargs) -> 'SleepScheduler':
        return cls(enabled=config.respect_sleep_hours, from_hour=config.sleep_from_hour,
                   to_hour=config.sleep_to_hour, to_minute=config.sleep_to_minute, **kwargs)

    def in_sleep_window(self, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        minutes = now.hour * 60 + now.minute
        start = self.from_hour * 60
        end = self.to_hour * 60 + self.to_minute
        if start <= end:
            return start <= minutes < end
        # Window wraps past midnight
        return minutes >= start or minutes < end

    def wake_time(self, now: Optional[datetime] = None) -> datetime:
        """Next moment the quiet window ends, relative to ``now``."""
        now = now or self.clock()
        target = now.replace(hour=self.to_hour, minute=self.to_minute, second=0, microsecond=0)
        if target <= now:
            target += timedelta(days=1)
        return target

    def wait_if_sleeping(self) -> float:
        """Block until the quiet window is over. Returns seconds waited."""
        if not self.enabled:
            return 0.0
        now = self.clock()
        if not self.in_sleep_window(now):
            return 0.0

        target = self.wake_time(now)
        if self.max_jitter_seconds > 0:
            target += timedelta(seconds=random.randint(1, self.max_jitter_seconds))
        seconds = (target - now).total_seconds()

        logger.schedule(f"Inside sleep hours, sleeping until {target:%Y-%m-%d %H:%M:%S}")
        if not self.timer.wait(seconds):
            logger.schedule("Sleep interrupted")
        return seconds
