"""
Services package for the posture monitor.
Provides issue persistence, alert scheduling, session aggregation and the detection loop.
"""

from services.issue_tracker import IssuePersistenceFilter
from services.alert_scheduler import AlertScheduler, BreakReminder
from services.session_manager import SessionManager
from services.detection_session import DetectionSession
from services.audit_logger import SessionAuditLogger, create_audit_logger
from services.posture_monitor import PostureMonitor

__all__ = [
    # Temporal filtering
    'IssuePersistenceFilter',
    'AlertScheduler',
    'BreakReminder',
    # Session state
    'SessionManager',
    'DetectionSession',
    # Audit logging
    'SessionAuditLogger',
    'create_audit_logger',
    # Detection loop
    'PostureMonitor',
]
