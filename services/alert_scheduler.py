import time
from typing import Callable, Optional
from models.schemas import PostureStatus
import config as cfg


def wall_clock_ms() -> float:
    return time.time() * 1000


class AlertScheduler:
    """
    Decides when sustained bad posture should notify the user.

    Two gates: posture must have been non-good for alert_delay seconds
    (the timer restarts after each firing, so alerts repeat at most once per
    delay while posture stays bad), and at least cooldown_ms must have passed
    since the last dispatched alert.
    """

    def __init__(self, cooldown_ms: float = cfg.ALERT_COOLDOWN_MS, clock: Callable[[], float] = wall_clock_ms):
        self.cooldown_ms = cooldown_ms
        self.clock = clock
        self.bad_posture_start: Optional[float] = None
        self.last_alert_time: Optional[float] = None

    def check(self, status: PostureStatus, alert_delay_seconds: float) -> bool:
        """Advance the sustained-bad timer. True when it fires."""
        now = self.clock()
        if status == PostureStatus.GOOD:
            self.bad_posture_start = None
            return False

        if self.bad_posture_start is None:
            self.bad_posture_start = now
            return False

        if (now - self.bad_posture_start) / 1000 >= alert_delay_seconds:
            self.bad_posture_start = now
            return True
        return False

    def try_dispatch(self) -> bool:
        """Cooldown gate. True if an alert may be dispatched now (and records it)."""
        now = self.clock()
        if self.last_alert_time is not None and now - self.last_alert_time < self.cooldown_ms:
            return False
        self.last_alert_time = now
        return True

    def reset(self):
        self.bad_posture_start = None


class BreakReminder:
    """Fires once per interval while a monitoring session is running."""

    def __init__(self, clock: Callable[[], float] = wall_clock_ms):
        self.clock = clock
        self.last_reminder: Optional[float] = None

    def start(self):
        self.last_reminder = self.clock()

    def check(self, interval_minutes: float) -> bool:
        if self.last_reminder is None or interval_minutes <= 0:
            return False
        now = self.clock()
        if now - self.last_reminder >= interval_minutes * 60 * 1000:
            self.last_reminder = now
            return True
        return False

    def stop(self):
        self.last_reminder = None
