import asyncio
import time
from typing import Any, Callable, List, Optional
from core.calibration import Calibrator, GuideRegion, check_pose_in_guide
from core.errors import CalibrationError, InvalidTransitionError
from core.posture_analyzer import analyze_posture
from core.smoother import smooth_landmarks
from core.view_classifier import detect_view_mode
from models.schemas import (
    AppState, DetectionSettings, EvaluationResult, IssueLabel, Keypoint,
    PostureStatus, SessionResult, SessionStats, ViewMode,
)
from services.alert_scheduler import wall_clock_ms
from services.audit_logger import SessionAuditLogger, create_audit_logger
from services.detection_session import DetectionSession
from utils.debug import debug_log as _debug_log
import config as cfg


def monotonic_ms() -> float:
    return time.monotonic() * 1000


# Audit log id until calibration succeeds and the session gets its uuid
PENDING_SESSION_ID = "pending"

# Allowed state machine transitions
TRANSITIONS = {
    AppState.IDLE: {AppState.CALIBRATING},
    AppState.CALIBRATING: {AppState.MONITORING, AppState.IDLE},
    AppState.MONITORING: {AppState.CALIBRATING, AppState.RESULT, AppState.IDLE},
    AppState.RESULT: {AppState.CALIBRATING, AppState.IDLE},
}


class PostureMonitor:
    """
    Runs the detection loop and the idle/calibrating/monitoring/result state machine.

    The loop is a chain of event-loop callbacks: each iteration schedules the
    next one, skips work until the detection interval has elapsed, and never
    lets an exception from one frame end the chain.

    Collaborators:
        perception(frame, timestamp_ms) -> keypoints or None (no person)
        frame_source() -> frame handle or None (not ready)
        on_render(status, issues, view_mode)
        on_alert()
        on_session_result(SessionResult)
        on_session_audit(dict), the session audit log, once per finished session
    """

    def __init__(
        self,
        perception: Callable[[Any, float], Optional[List[Keypoint]]],
        frame_source: Optional[Callable[[], Any]] = None,
        settings: Optional[DetectionSettings] = None,
        on_render: Optional[Callable] = None,
        on_alert: Optional[Callable] = None,
        on_session_result: Optional[Callable[[SessionResult], Any]] = None,
        on_posture_change: Optional[Callable[[EvaluationResult], Any]] = None,
        on_stats_update: Optional[Callable[[SessionStats], Any]] = None,
        on_view_mode_change: Optional[Callable[[ViewMode], Any]] = None,
        on_pose_in_guide_change: Optional[Callable[[bool], Any]] = None,
        on_break_reminder: Optional[Callable] = None,
        on_instruction: Optional[Callable[[str], Any]] = None,
        on_session_audit: Optional[Callable[[dict], Any]] = None,
        guide: Optional[GuideRegion] = None,
        clock: Callable[[], float] = wall_clock_ms,
        monotonic: Callable[[], float] = monotonic_ms,
        detection_interval_ms: float = cfg.DETECTION_INTERVAL_MS,
        audit_factory: Callable[[str, Callable[[], float]], SessionAuditLogger] = create_audit_logger,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.perception = perception
        self.frame_source = frame_source
        self.settings = settings or DetectionSettings()
        self.on_render = on_render
        self.on_alert = on_alert
        self.on_session_result = on_session_result
        self.on_posture_change = on_posture_change
        self.on_stats_update = on_stats_update
        self.on_view_mode_change = on_view_mode_change
        self.on_pose_in_guide_change = on_pose_in_guide_change
        self.on_break_reminder = on_break_reminder
        self.on_instruction = on_instruction
        self.on_session_audit = on_session_audit
        self.guide = guide or GuideRegion.centered()
        self.clock = clock
        self.monotonic = monotonic
        self.detection_interval_ms = detection_interval_ms

        self.calibrator = Calibrator()
        self.session = DetectionSession(clock=clock)
        self.audit_factory = audit_factory
        self.audit = audit_factory(PENDING_SESSION_ID, clock)
        self.state = AppState.IDLE

        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._running = False

    # === LOOP CONTROL ===

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Start the detection loop. No-op if it is already running."""
        if self._running:
            return
        if self.frame_source is None:
            raise ValueError("A frame source is required to run the detection loop")
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._running = True
        self._schedule(0)
        _debug_log("[MONITOR] Detection loop started")

    def stop(self):
        """Cancel the pending iteration. Safe to call repeatedly."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._running:
            _debug_log("[MONITOR] Detection loop stopped")
        self._running = False

    def _schedule(self, delay: float = cfg.IDLE_RESCHEDULE_SECONDS):
        if self._running:
            self._handle = self._loop.call_later(delay, self._run_once)

    def _run_once(self):
        self._handle = None
        if not self._running:
            return
        try:
            now = self.monotonic()
            last = self.session.last_detection_time
            if last is None or now - last >= self.detection_interval_ms:
                frame = self.frame_source()
                if frame is not None:
                    self.session.last_detection_time = now
                    self.process_frame(frame, self.clock())
        except Exception as e:
            _debug_log(f"[MONITOR] Detection loop error: {e}")
            self.audit.log_error("frame", str(e))
        finally:
            self._schedule()

    # === STATE MACHINE ===

    def _check_transition(self, to_state: AppState):
        if to_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, to_state.value)

    def _transition(self, to_state: AppState):
        self._check_transition(to_state)
        self.audit.log_state_change(self.state.value, to_state.value)
        _debug_log(f"[MONITOR] {self.state.value} -> {to_state.value}")
        self.state = to_state

    def _open_audit(self):
        """Start a fresh audit log for the next calibration attempt and session."""
        self.audit = self.audit_factory(PENDING_SESSION_ID, self.clock)

    def _close_audit(self):
        """Hand the finished session's audit log to the sink and, if enabled, to disk."""
        record = self.audit.to_dict()
        if cfg.AUDIT_LOG_ENABLED:
            try:
                self.audit.save()
            except OSError as e:
                _debug_log(f"[AUDIT] Could not save audit log: {e}")
        self._notify(self.on_session_audit, record)

    def begin_calibration(self):
        """Enter calibration (from idle, result, or a running session via recalibrate)."""
        if self.state == AppState.MONITORING:
            self.recalibrate()
            return
        self._check_transition(AppState.CALIBRATING)
        self._open_audit()
        self._transition(AppState.CALIBRATING)
        self.session.reset_detection()

    def confirm_calibration(self):
        """
        Capture the baseline from the current smoothed frame and start monitoring.

        Raises CalibrationError (and stays in calibration) when no person is in
        view, the pose is outside the guide, or required landmarks are hidden.
        """
        if self.state != AppState.CALIBRATING:
            raise InvalidTransitionError(self.state.value, AppState.MONITORING.value)

        session = self.session
        try:
            if session.smoothed is None or session.view_mode is None:
                raise CalibrationError("No person detected")
            profile = self.calibrator.build(session.smoothed, session.view_mode, session.pose_in_guide)
        except CalibrationError as e:
            self.audit.log_calibration_failed(str(e))
            _debug_log(f"[CALIBRATION] Failed: {e}")
            raise

        self._transition(AppState.MONITORING)
        session.calibration = profile
        session.frame_count = 0
        session.last_status = PostureStatus.GOOD
        session.last_issues = []
        session.issue_filter.reset()
        session.alert_scheduler.reset()
        self.audit.session_id = session.session.start()
        session.break_reminder.start()
        self.audit.log_calibration(profile.view_mode)
        _debug_log(f"[CALIBRATION] Complete: {profile.view_mode} (session {self.audit.session_id})")
        return profile

    def recalibrate(self):
        """Drop the current baseline, statistics and audit log without producing a result."""
        self._check_transition(AppState.CALIBRATING)
        self._open_audit()
        self._transition(AppState.CALIBRATING)
        self.session.session.reset()
        self.session.reset_detection()

    def stop_session(self) -> SessionResult:
        """Finish monitoring, deliver the session result and audit log, tear down session state."""
        if self.state != AppState.MONITORING:
            raise InvalidTransitionError(self.state.value, AppState.RESULT.value)

        self.stop()
        view_mode = self.session.calibration.view_mode if self.session.calibration is not None else None
        result = self.session.session.stop(view_mode)
        self.session.reset_detection()
        self._transition(AppState.RESULT)

        self.audit.log_session_end(result.model_dump(mode="json", by_alias=True, exclude={"timeline"}))
        self._notify(self.on_session_result, result)
        self._close_audit()
        return result

    def reset(self):
        """Stop everything and return to idle."""
        self.stop()
        if self.state != AppState.IDLE:
            self._transition(AppState.IDLE)
        self.session.session.reset()
        self.session.reset_detection()

    def update_settings(self, **changes) -> DetectionSettings:
        """Apply settings between frames."""
        merged = {**self.settings.model_dump(), **changes}
        self.settings = DetectionSettings(**merged)
        return self.settings

    # === FRAME PROCESSING ===

    def _notify(self, callback: Optional[Callable], *args):
        """Invoke a collaborator; its failures never affect the engine."""
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            _debug_log(f"[MONITOR] Callback {getattr(callback, '__name__', callback)} failed: {e}")
            self.audit.log_error("callback", str(e))

    def process_frame(self, frame: Any, timestamp_ms: float) -> Optional[EvaluationResult]:
        """Run one detection iteration on a frame. Returns the evaluation while monitoring."""
        if self.state not in (AppState.CALIBRATING, AppState.MONITORING):
            return None

        landmarks = self.perception(frame, timestamp_ms)
        session = self.session

        if not landmarks:
            # No person: keep the last view mode to avoid flapping on occlusion
            if self.state == AppState.CALIBRATING:
                self._set_pose_in_guide(False)
                self._set_instruction(self.calibrator.get_instruction(None, None, False))
            return None

        session.smoothed = smooth_landmarks(landmarks, session.smoothed)

        if self.state == AppState.MONITORING and session.calibration is not None:
            return self._monitor(session.smoothed)

        self._calibrate_preview(session.smoothed)
        return None

    def _set_pose_in_guide(self, in_guide: bool):
        if in_guide != self.session.pose_in_guide:
            self.session.pose_in_guide = in_guide
            self._notify(self.on_pose_in_guide_change, in_guide)

    def _set_instruction(self, instruction: str):
        if instruction != self.session.instruction:
            self.session.instruction = instruction
            self._notify(self.on_instruction, instruction)

    def _calibrate_preview(self, smoothed: List[Keypoint]):
        view_mode = detect_view_mode(smoothed)
        if view_mode != self.session.view_mode:
            self.session.view_mode = view_mode
            self.audit.log_view_change(view_mode.value)
            self._notify(self.on_view_mode_change, view_mode)

        in_guide = check_pose_in_guide(smoothed, self.guide)
        self._set_pose_in_guide(in_guide)
        self._set_instruction(self.calibrator.get_instruction(smoothed, view_mode, in_guide))

        preview_status = PostureStatus.GOOD if in_guide else PostureStatus.WARNING
        self._notify(self.on_render, preview_status, [], view_mode)

    def _monitor(self, smoothed: List[Keypoint]) -> EvaluationResult:
        session = self.session
        calibration = session.calibration
        result = analyze_posture(smoothed, calibration, self.settings.sensitivity)
        status, issues = result.status, list(result.issues)

        self._notify(self.on_render, status, issues, ViewMode(calibration.view_mode))

        if status != session.last_status or issues != session.last_issues:
            session.last_status = status
            session.last_issues = issues
            self._notify(self.on_posture_change, result)

        session.frame_count += 1
        if session.frame_count % cfg.STATS_UPDATE_INTERVAL == 0:
            new_issues = session.issue_filter.update(issues, self.clock())
            session.session.update_stats(status, new_issues)
            # Snapshot: the live stats keep changing after the callback returns
            self._notify(self.on_stats_update, session.session.stats.model_copy(deep=True))

        if session.frame_count % cfg.TIMELINE_UPDATE_INTERVAL == 0:
            session.session.record_timeline(status, issues)

        if session.alert_scheduler.check(status, self.settings.alert_delay_seconds):
            self._trigger_alert(status, issues)

        if session.break_reminder.check(self.settings.break_interval_minutes):
            self.audit.log_break_reminder()
            self._notify(self.on_break_reminder)

        return result

    def _trigger_alert(self, status: PostureStatus, issues: List[IssueLabel]):
        dispatched = self.session.alert_scheduler.try_dispatch()
        self.audit.log_alert(dispatched, status.value, [i.value for i in issues])
        if not dispatched:
            return

        self.session.session.increment_alerts()
        if self.settings.alert_enabled:
            self._notify(self.on_alert)
