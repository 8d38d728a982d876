from dataclasses import dataclass, field
from typing import Callable, List, Optional
from models.schemas import CalibrationProfile, IssueLabel, Keypoint, PostureStatus, ViewMode
from services.alert_scheduler import AlertScheduler, BreakReminder, wall_clock_ms
from services.issue_tracker import IssuePersistenceFilter
from services.session_manager import SessionManager
import config as cfg


@dataclass
class DetectionSession:
    """
    All cross-frame state of one detection loop.

    Owned by exactly one PostureMonitor; nothing here is shared between
    loops, so no locking is needed.
    """
    clock: Callable[[], float] = wall_clock_ms

    smoothed: Optional[List[Keypoint]] = None
    view_mode: Optional[ViewMode] = None
    pose_in_guide: bool = False
    instruction: Optional[str] = None
    calibration: Optional[CalibrationProfile] = None

    frame_count: int = 0
    last_detection_time: Optional[float] = None  # monotonic ms
    last_status: PostureStatus = PostureStatus.GOOD
    last_issues: List[IssueLabel] = field(default_factory=list)

    # Built in __post_init__ from the clock unless supplied
    issue_filter: Optional[IssuePersistenceFilter] = None
    alert_scheduler: Optional[AlertScheduler] = None
    break_reminder: Optional[BreakReminder] = None
    session: Optional[SessionManager] = None

    def __post_init__(self):
        if self.issue_filter is None:
            self.issue_filter = IssuePersistenceFilter(cfg.ISSUE_MIN_DURATION_MS)
        if self.alert_scheduler is None:
            self.alert_scheduler = AlertScheduler(cfg.ALERT_COOLDOWN_MS, clock=self.clock)
        if self.break_reminder is None:
            self.break_reminder = BreakReminder(clock=self.clock)
        if self.session is None:
            self.session = SessionManager(cfg.MAX_TIMELINE_ENTRIES, clock=self.clock)

    def reset_detection(self):
        """Clear per-frame tracking so nothing leaks into the next session."""
        self.smoothed = None
        self.view_mode = None
        self.pose_in_guide = False
        self.instruction = None
        self.calibration = None
        self.frame_count = 0
        self.last_status = PostureStatus.GOOD
        self.last_issues = []
        self.issue_filter.reset()
        self.alert_scheduler.reset()
        self.break_reminder.stop()
