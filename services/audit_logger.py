"""
Audit Logger Service
Per-session event log for debugging calibration, alerting and loop errors.
"""

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from services.alert_scheduler import wall_clock_ms
from utils.debug import debug_log as _debug_log
import config as cfg


class EventType(str, Enum):
    """Types of audit events."""
    STATE_CHANGE = "state_change"
    VIEW_CHANGE = "view_change"
    CALIBRATION = "calibration"
    CALIBRATION_FAILED = "calibration_failed"
    ALERT = "alert"
    ALERT_SUPPRESSED = "alert_suppressed"
    BREAK_REMINDER = "break_reminder"
    SESSION_END = "session_end"
    ERROR = "error"


@dataclass
class AuditEvent:
    """A single audit event."""
    ts: int  # Timestamp in ms since logger creation
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "ts": self.ts,
            "type": self.type,
            **self.data
        }


@dataclass
class AuditSummary:
    """Summary statistics for the session."""
    calibrations: int = 0
    failed_calibrations: int = 0
    alerts_dispatched: int = 0
    alerts_suppressed: int = 0
    frame_errors: int = 0
    errors: List[str] = field(default_factory=list)


class SessionAuditLogger:
    """Audit logger for a monitoring session."""

    def __init__(self, session_id: str, clock: Callable[[], float] = wall_clock_ms, max_events: int = 5000):
        self.session_id = session_id
        self.clock = clock
        self.max_events = max_events
        self.events: List[AuditEvent] = []
        self.start_time_ms = int(clock())

    def _now_ms(self) -> int:
        """Get current timestamp in ms since logger creation."""
        return int(self.clock()) - self.start_time_ms

    def _append(self, event_type: EventType, data: Dict):
        if len(self.events) >= self.max_events:
            self.events.pop(0)
        self.events.append(AuditEvent(ts=self._now_ms(), type=event_type.value, data=data))

    def log_state_change(self, from_state: str, to_state: str):
        """Log a state machine transition."""
        self._append(EventType.STATE_CHANGE, {"from": from_state, "to": to_state})

    def log_view_change(self, view_mode: str):
        self._append(EventType.VIEW_CHANGE, {"viewMode": view_mode})

    def log_calibration(self, view_mode: str):
        self._append(EventType.CALIBRATION, {"viewMode": view_mode})

    def log_calibration_failed(self, reason: str):
        self._append(EventType.CALIBRATION_FAILED, {"reason": reason})

    def log_alert(self, dispatched: bool, status: str, issues: List[str]):
        """Log a sustained-bad trigger and whether the cooldown let it through."""
        event_type = EventType.ALERT if dispatched else EventType.ALERT_SUPPRESSED
        self._append(event_type, {"status": status, "issues": issues})

    def log_break_reminder(self):
        self._append(EventType.BREAK_REMINDER, {})

    def log_session_end(self, result: Dict):
        self._append(EventType.SESSION_END, {"result": result})

    def log_error(self, error_type: str, message: str, details: Optional[Dict] = None):
        """Log an error event."""
        self._append(EventType.ERROR, {
            "errorType": error_type,
            "message": message,
            "details": details or {}
        })

    def get_summary(self) -> AuditSummary:
        """Generate summary statistics."""
        def count(event_type: EventType) -> int:
            return sum(1 for e in self.events if e.type == event_type.value)

        errors = [
            e.data.get("message", "Unknown error")
            for e in self.events
            if e.type == EventType.ERROR.value
        ]

        frame_errors = sum(
            1 for e in self.events
            if e.type == EventType.ERROR.value and e.data.get("errorType") == "frame"
        )

        return AuditSummary(
            calibrations=count(EventType.CALIBRATION),
            failed_calibrations=count(EventType.CALIBRATION_FAILED),
            alerts_dispatched=count(EventType.ALERT),
            alerts_suppressed=count(EventType.ALERT_SUPPRESSED),
            frame_errors=frame_errors,
            errors=errors
        )

    def to_dict(self) -> Dict:
        """Export audit log as dictionary."""
        summary = self.get_summary()
        return {
            "sessionId": self.session_id,
            "generatedAt": datetime.now().isoformat(),
            "events": [e.to_dict() for e in self.events],
            "summary": {
                "calibrations": summary.calibrations,
                "failedCalibrations": summary.failed_calibrations,
                "alertsDispatched": summary.alerts_dispatched,
                "alertsSuppressed": summary.alerts_suppressed,
                "frameErrors": summary.frame_errors,
                "errors": summary.errors
            }
        }

    def save(self, output_dir: Optional[Path] = None) -> Path:
        """Save audit log to file."""
        if output_dir is None:
            output_dir = Path(cfg.AUDIT_LOG_DIR)
        output_dir.mkdir(parents=True, exist_ok=True)

        filename = f"audit_{self.session_id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        output_path = output_dir / filename

        with open(output_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        _debug_log(f"[AUDIT] Saved audit log to {output_path}")
        return output_path


# Factory function for creating audit loggers
def create_audit_logger(session_id: str, clock: Callable[[], float] = wall_clock_ms) -> SessionAuditLogger:
    """Create a new audit logger for a session."""
    return SessionAuditLogger(session_id, clock)
