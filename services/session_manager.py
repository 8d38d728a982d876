import math
import uuid
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Iterable, List, Optional
from models.schemas import IssueLabel, PostureStatus, SessionResult, SessionStats, TimelineEntry, ViewMode
from services.alert_scheduler import wall_clock_ms
import config as cfg


class SessionManager:
    """
    Manages the lifecycle of a single posture monitoring session.
    Accumulates good/bad ticks, confirmed issue counts and a bounded timeline.
    """

    def __init__(self, max_timeline_entries: int = cfg.MAX_TIMELINE_ENTRIES, clock: Callable[[], float] = wall_clock_ms):
        self.clock = clock
        self.session_id: Optional[str] = None
        self.start_time: Optional[float] = None  # ms
        self.stats = SessionStats()
        self.timeline: Deque[TimelineEntry] = deque(maxlen=max_timeline_entries)
        self.is_active: bool = False

    def start(self) -> str:
        self.session_id = str(uuid.uuid4())
        self.start_time = self.clock()
        self.stats = SessionStats()
        self.timeline.clear()
        self.is_active = True
        return self.session_id

    def update_stats(self, status: PostureStatus, persistent_new_issues: Iterable[IssueLabel] = ()):
        """Record one sampling tick."""
        if not self.is_active:
            return

        if status == PostureStatus.GOOD:
            self.stats.good_ticks += 1
        else:
            self.stats.bad_ticks += 1

        for issue in persistent_new_issues:
            self.stats.issue_counts[issue] = self.stats.issue_counts.get(issue, 0) + 1

    def record_timeline(self, status: PostureStatus, issues: Iterable[IssueLabel]):
        if not self.is_active:
            return
        # deque(maxlen) evicts the oldest entry when full
        self.timeline.append(TimelineEntry(timestamp=self.clock(), status=status, issues=list(issues)))

    def increment_alerts(self):
        if self.is_active:
            self.stats.alert_count += 1

    def get_timeline(self) -> List[TimelineEntry]:
        return list(self.timeline)

    def reset(self):
        """Discard the running session without producing a result (recalibration)."""
        self.session_id = None
        self.start_time = None
        self.stats = SessionStats()
        self.timeline.clear()
        self.is_active = False

    def stop(self, view_mode: Optional[ViewMode]) -> SessionResult:
        now = self.clock()
        stats = self.stats

        duration_sec = int((now - self.start_time) // 1000) if self.start_time is not None else 0
        total_ticks = stats.good_ticks + stats.bad_ticks
        # Half-up rounding
        good_percentage = math.floor(stats.good_ticks / total_ticks * 100 + 0.5) if total_ticks > 0 else 0

        result = SessionResult(
            duration=duration_sec,
            good_time=stats.good_ticks,
            bad_time=stats.bad_ticks,
            alerts=stats.alert_count,
            good_percentage=good_percentage,
            issue_count=dict(stats.issue_counts),
            view_mode=view_mode or ViewMode.FRONT,
            timestamp=datetime.fromtimestamp(now / 1000),
            start_time=datetime.fromtimestamp(self.start_time / 1000) if self.start_time is not None else None,
            timeline=self.get_timeline(),
        )

        self.reset()
        return result
