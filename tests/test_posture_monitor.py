import asyncio

import pytest
from pydantic import ValidationError

from conftest import FRONT_POSE, FakeClock, build_frame, shifted
from core import landmarks as lmk
from core.calibration import VIEW_MODE_TIPS
from core.errors import CalibrationError, InvalidTransitionError
from models.schemas import AppState, DetectionSettings, FrontCalibration, IssueLabel, PostureStatus, ViewMode
from services.posture_monitor import PENDING_SESSION_ID, PostureMonitor
import config as cfg


def identity_perception(frame, timestamp_ms):
    return frame


class Recorder:
    """Collects callback invocations."""

    def __init__(self):
        self.renders = []
        self.alerts = 0
        self.results = []
        self.changes = []
        self.stats = []
        self.views = []
        self.guides = []
        self.instructions = []
        self.audits = []

    def kwargs(self):
        return dict(
            on_render=lambda status, issues, view: self.renders.append((status, issues, view)),
            on_alert=self._alert,
            on_session_result=self.results.append,
            on_posture_change=self.changes.append,
            on_stats_update=self.stats.append,
            on_view_mode_change=self.views.append,
            on_pose_in_guide_change=self.guides.append,
            on_instruction=self.instructions.append,
            on_session_audit=self.audits.append,
        )

    def _alert(self):
        self.alerts += 1


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def monitor(clock, recorder):
    return PostureMonitor(identity_perception, clock=clock, monotonic=clock, **recorder.kwargs())


def calibrate(monitor, clock, frame):
    monitor.begin_calibration()
    monitor.process_frame(frame, clock.now)
    return monitor.confirm_calibration()


def run_frames(monitor, clock, frame, count, step_ms=100):
    for _ in range(count):
        clock.advance(step_ms)
        monitor.process_frame(frame, clock.now)


SLOUCHED = build_frame(shifted(FRONT_POSE, dy=0.06))


def test_calibration_preview_reports_view_and_guide(monitor, clock, recorder, front_frame):
    monitor.begin_calibration()
    monitor.process_frame(front_frame, clock.now)

    assert monitor.state == AppState.CALIBRATING
    assert recorder.views == [ViewMode.FRONT]
    assert recorder.guides == [True]
    assert recorder.renders[-1] == (PostureStatus.GOOD, [], ViewMode.FRONT)


def test_confirm_calibration_starts_monitoring(monitor, clock, front_frame):
    profile = calibrate(monitor, clock, front_frame)

    assert isinstance(profile, FrontCalibration)
    assert monitor.state == AppState.MONITORING
    assert monitor.session.calibration is profile
    assert monitor.session.session.is_active


def test_confirm_without_person_stays_calibrating(monitor):
    monitor.begin_calibration()

    with pytest.raises(CalibrationError):
        monitor.confirm_calibration()

    assert monitor.state == AppState.CALIBRATING
    assert monitor.audit.get_summary().failed_calibrations == 1


def test_confirm_outside_guide_is_rejected(monitor, clock):
    monitor.begin_calibration()
    monitor.process_frame(build_frame(shifted(FRONT_POSE, dy=-0.25)), clock.now)

    with pytest.raises(CalibrationError):
        monitor.confirm_calibration()
    assert monitor.state == AppState.CALIBRATING


def test_illegal_transitions_raise(monitor):
    with pytest.raises(InvalidTransitionError):
        monitor.stop_session()
    with pytest.raises(InvalidTransitionError):
        monitor.confirm_calibration()
    assert monitor.state == AppState.IDLE


def test_frames_are_ignored_while_idle(monitor, clock, recorder, front_frame):
    assert monitor.process_frame(front_frame, clock.now) is None
    assert recorder.renders == []


def test_sustained_slouch_raises_alerts_and_counts_issues(monitor, clock, recorder, front_frame):
    calibrate(monitor, clock, front_frame)

    run_frames(monitor, clock, SLOUCHED, 100)

    assert [c.status for c in recorder.changes] == [PostureStatus.WARNING, PostureStatus.BAD]
    assert recorder.alerts == 3
    assert len(recorder.stats) == 33
    assert len(monitor.session.session.get_timeline()) == 3

    result = monitor.stop_session()

    assert monitor.state == AppState.RESULT
    assert recorder.results == [result]
    assert result.alerts == 3
    assert result.view_mode == ViewMode.FRONT
    assert result.issue_count == {IssueLabel.SLOUCHING: 1, IssueLabel.HEAD_DROP: 1}
    assert result.good_time + result.bad_time == 33
    assert result.timeline[-1].status == PostureStatus.BAD


def test_disabled_alerts_are_counted_but_not_sent(monitor, clock, recorder, front_frame):
    monitor.update_settings(alert_enabled=False)
    calibrate(monitor, clock, front_frame)

    run_frames(monitor, clock, SLOUCHED, 100)
    result = monitor.stop_session()

    assert recorder.alerts == 0
    assert result.alerts == 3


def test_good_posture_never_alerts(monitor, clock, recorder, front_frame):
    calibrate(monitor, clock, front_frame)

    run_frames(monitor, clock, front_frame, 100)

    assert recorder.alerts == 0
    assert recorder.changes == []
    assert monitor.stop_session().good_percentage == 100


def test_missing_person_skips_evaluation(clock, recorder, front_frame):
    frames = {"person": front_frame}
    monitor = PostureMonitor(lambda frame, ts: frames["person"], clock=clock, monotonic=clock, **recorder.kwargs())
    calibrate(monitor, clock, "camera")

    frames["person"] = None
    assert monitor.process_frame("camera", clock.now) is None
    assert monitor.session.frame_count == 0
    # View mode is kept while nobody is in frame
    assert monitor.session.calibration.view_mode == ViewMode.FRONT


def test_missing_person_while_calibrating_leaves_guide(clock, recorder, front_frame):
    frames = {"person": front_frame}
    monitor = PostureMonitor(lambda frame, ts: frames["person"], clock=clock, monotonic=clock, **recorder.kwargs())
    monitor.begin_calibration()
    monitor.process_frame("camera", clock.now)

    frames["person"] = []
    monitor.process_frame("camera", clock.now)

    assert recorder.guides == [True, False]
    assert monitor.session.view_mode == ViewMode.FRONT


def test_recalibrate_discards_session(monitor, clock, front_frame):
    calibrate(monitor, clock, front_frame)
    run_frames(monitor, clock, SLOUCHED, 40)
    last_alert = monitor.session.alert_scheduler.last_alert_time
    assert last_alert is not None

    monitor.recalibrate()

    assert monitor.state == AppState.CALIBRATING
    assert monitor.session.calibration is None
    assert monitor.session.smoothed is None
    assert monitor.session.frame_count == 0
    assert monitor.session.session.stats.bad_ticks == 0
    assert monitor.session.issue_filter.occurrences == {}
    # Cooldown carries across recalibration
    assert monitor.session.alert_scheduler.last_alert_time == last_alert


def test_begin_calibration_while_monitoring_recalibrates(monitor, clock, front_frame):
    calibrate(monitor, clock, front_frame)

    monitor.begin_calibration()

    assert monitor.state == AppState.CALIBRATING
    assert monitor.session.calibration is None


def test_reset_returns_to_idle(monitor, clock, front_frame):
    calibrate(monitor, clock, front_frame)

    monitor.reset()
    monitor.reset()

    assert monitor.state == AppState.IDLE
    assert monitor.session.session.is_active is False


def test_callback_errors_do_not_break_processing(clock, front_frame):
    def broken_render(*args):
        raise RuntimeError("display gone")

    monitor = PostureMonitor(identity_perception, clock=clock, monotonic=clock, on_render=broken_render)
    calibrate(monitor, clock, front_frame)

    result = monitor.process_frame(front_frame, clock.now)

    assert result.status == PostureStatus.GOOD
    assert "display gone" in monitor.audit.get_summary().errors


def test_sensitivity_change_applies_between_frames(monitor, clock, front_frame):
    calibrate(monitor, clock, front_frame)
    run_frames(monitor, clock, SLOUCHED, 20)
    assert monitor.session.last_status == PostureStatus.BAD

    monitor.update_settings(sensitivity=2.0)
    run_frames(monitor, clock, SLOUCHED, 1)

    assert monitor.session.last_status == PostureStatus.GOOD


def test_update_settings_validates(monitor):
    assert monitor.update_settings(sensitivity=5).sensitivity == 2.0
    assert monitor.update_settings(sensitivity=0.1).sensitivity == 0.5

    with pytest.raises(ValidationError):
        monitor.update_settings(alert_delay_seconds=-1)
    assert isinstance(monitor.settings, DetectionSettings)


def test_break_reminder_during_monitoring(clock, front_frame):
    reminders = []
    monitor = PostureMonitor(
        identity_perception, clock=clock, monotonic=clock,
        settings=DetectionSettings(break_interval_minutes=1),
        on_break_reminder=lambda: reminders.append(clock.now),
    )
    calibrate(monitor, clock, front_frame)

    run_frames(monitor, clock, front_frame, 25, step_ms=5000)

    assert reminders == [60_000, 120_000]


def test_stats_updates_are_snapshots(monitor, clock, recorder, front_frame):
    calibrate(monitor, clock, front_frame)

    run_frames(monitor, clock, front_frame, 6)

    assert [s.good_ticks for s in recorder.stats] == [1, 2]
    assert recorder.stats[0] is not recorder.stats[1]
    assert recorder.stats[-1] is not monitor.session.session.stats


# === Calibration instructions ===

def test_calibration_preview_sends_instructions(clock, recorder, front_frame):
    frames = {"person": front_frame}
    monitor = PostureMonitor(lambda frame, ts: frames["person"], clock=clock, monotonic=clock, **recorder.kwargs())
    monitor.begin_calibration()

    monitor.process_frame("camera", clock.now)
    monitor.process_frame("camera", clock.now)
    frames["person"] = None
    monitor.process_frame("camera", clock.now)

    assert recorder.instructions == [
        f"Ready! {VIEW_MODE_TIPS[ViewMode.FRONT]}",
        "Position yourself so your head and shoulders are visible",
    ]


def test_instruction_asks_to_fit_inside_guide(monitor, clock, recorder):
    monitor.begin_calibration()

    monitor.process_frame(build_frame(shifted(FRONT_POSE, dy=-0.25)), clock.now)

    assert recorder.instructions == ["Fit your upper body inside the guide"]


def test_no_instructions_while_monitoring(monitor, clock, recorder, front_frame):
    calibrate(monitor, clock, front_frame)
    sent = len(recorder.instructions)

    run_frames(monitor, clock, SLOUCHED, 5)

    assert len(recorder.instructions) == sent


# === Session audit log ===

def test_audit_log_takes_the_session_id(monitor, clock, front_frame):
    monitor.begin_calibration()
    assert monitor.audit.session_id == PENDING_SESSION_ID

    calibrate(monitor, clock, front_frame)

    assert monitor.audit.session_id == monitor.session.session.session_id


def test_session_audit_is_delivered_on_stop(monitor, clock, recorder, front_frame):
    calibrate(monitor, clock, front_frame)
    session_id = monitor.session.session.session_id
    run_frames(monitor, clock, SLOUCHED, 40)

    monitor.stop_session()

    [record] = recorder.audits
    assert record["sessionId"] == session_id
    assert record["summary"]["calibrations"] == 1
    assert record["summary"]["alertsDispatched"] >= 1
    assert record["events"][-1]["type"] == "session_end"


def test_each_session_gets_its_own_audit_log(monitor, clock, recorder, front_frame):
    calibrate(monitor, clock, front_frame)
    monitor.stop_session()
    calibrate(monitor, clock, front_frame)
    monitor.stop_session()

    first, second = recorder.audits
    assert first["sessionId"] != second["sessionId"]
    assert second["summary"]["calibrations"] == 1
    assert [e["type"] for e in second["events"]].count("session_end") == 1


def test_recalibration_starts_a_new_audit_log(monitor, clock, recorder, front_frame):
    calibrate(monitor, clock, front_frame)

    monitor.recalibrate()

    assert recorder.audits == []
    assert monitor.audit.session_id == PENDING_SESSION_ID
    assert monitor.audit.get_summary().calibrations == 0


def test_audit_log_saved_when_enabled(monkeypatch, tmp_path, monitor, clock, front_frame):
    monkeypatch.setattr(cfg, "AUDIT_LOG_ENABLED", True)
    monkeypatch.setattr(cfg, "AUDIT_LOG_DIR", str(tmp_path))
    calibrate(monitor, clock, front_frame)
    session_id = monitor.session.session.session_id

    monitor.stop_session()

    [path] = list(tmp_path.glob("audit_*.json"))
    assert session_id in path.name


def test_audit_log_not_saved_when_disabled(monkeypatch, tmp_path, monitor, clock, recorder, front_frame):
    monkeypatch.setattr(cfg, "AUDIT_LOG_ENABLED", False)
    monkeypatch.setattr(cfg, "AUDIT_LOG_DIR", str(tmp_path))
    calibrate(monitor, clock, front_frame)

    monitor.stop_session()

    assert list(tmp_path.iterdir()) == []
    assert len(recorder.audits) == 1


# === Detection loop ===

def test_start_requires_frame_source():
    monitor = PostureMonitor(identity_perception)

    with pytest.raises(ValueError):
        asyncio.run(_start(monitor))


async def _start(monitor):
    monitor.start()


def test_loop_survives_frame_errors():
    calls = []

    def flaky_perception(frame, timestamp_ms):
        calls.append(frame)
        if len(calls) == 1:
            raise RuntimeError("detector crashed")
        return None

    async def run():
        monitor = PostureMonitor(flaky_perception, frame_source=lambda: "frame", detection_interval_ms=0)
        monitor.begin_calibration()
        monitor.start()
        monitor.start()
        await asyncio.sleep(0.1)
        monitor.stop()
        monitor.stop()
        stopped_at = len(calls)
        await asyncio.sleep(0.05)
        return monitor, stopped_at

    monitor, stopped_at = asyncio.run(run())

    assert stopped_at >= 2
    assert len(calls) == stopped_at
    assert monitor.is_running is False
    assert monitor.audit.get_summary().errors == ["detector crashed"]


def test_loop_is_rate_limited():
    calls = []

    async def run():
        monitor = PostureMonitor(
            lambda frame, ts: calls.append(frame),
            frame_source=lambda: "frame",
            detection_interval_ms=10_000,
        )
        monitor.begin_calibration()
        monitor.start()
        await asyncio.sleep(0.1)
        monitor.stop()

    asyncio.run(run())

    assert calls == ["frame"]


def test_loop_waits_for_frames():
    calls = []

    async def run():
        monitor = PostureMonitor(
            lambda frame, ts: calls.append(frame),
            frame_source=lambda: None,
            detection_interval_ms=0,
        )
        monitor.begin_calibration()
        monitor.start()
        await asyncio.sleep(0.05)
        monitor.stop()
        return monitor

    monitor = asyncio.run(run())

    assert calls == []
    assert monitor.session.last_detection_time is None
