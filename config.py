import os

from dotenv import load_dotenv

load_dotenv()

# Base directory
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Landmarks below this visibility are treated as not detected
MIN_VISIBILITY = 0.5

# Landmark smoothing (EMA weight of the previous frame)
SMOOTHING_FACTOR = 0.85

# Per-view deviation thresholds (normalized image units, multiplied by sensitivity)
THRESHOLDS = {
    "front": {
        "shoulder_drop": 0.035,
        "shoulder_rise_ratio": 0.8,
        "shoulder_width": 0.12,
        "shoulder_tilt": 0.02,
        "head_drop": 0.04,
        "chin_rest_distance": 0.12,
        "elbow_raise_margin": 0.05,
    },
    "side": {
        "head_forward": 0.04,
        "head_drop": 0.05,
        "shoulder_drop": 0.04,
        "head_tilt": 0.03,
    },
    "diagonal": {
        "neck_forward": 0.025,
        "shoulder_drop": 0.045,
        "shoulder_width": 0.12,
        "head_drop": 0.05,
        "head_tilt": 0.02,
        "bend": 0.03,
        "chin_rest_distance": 0.15,
    },
    "back": {
        "shoulder_drop": 0.035,
        "shoulder_width": 0.12,
        "shoulder_tilt": 0.02,
    },
}

# Camera angle classification
VIEW_DETECTION = {
    "back_shoulder_visibility": 0.5,
    "back_shoulder_visibility_with_ears": 0.6,
    "side_max_shoulder_width": 0.10,
    "side_one_ear_max_shoulder_width": 0.15,
    "side_one_ear_visibility_diff": 0.2,
    "side_visibility_diff": 0.4,
    "front_min_shoulder_width": 0.22,
    "front_max_nose_offset": 0.06,
    "front_max_visibility_diff": 0.15,
}

# Calibration guide box (normalized), shoulder must sit inside this vertical band of it
GUIDE_BOX_SCALE = 0.92
GUIDE_SHOULDER_BAND = (0.30, 0.75)

# Sensitivity bounds
SENSITIVITY_MIN = 0.5
SENSITIVITY_MAX = 2.0

# Detection loop
DETECTION_FPS = int(os.getenv("DETECTION_FPS", "15"))
DETECTION_INTERVAL_MS = 1000.0 / DETECTION_FPS
IDLE_RESCHEDULE_SECONDS = 1 / 60  # Poll interval while waiting for frames

# Alert Persistence
ALERT_COOLDOWN_MS = int(os.getenv("ALERT_COOLDOWN_MS", "3000"))
ISSUE_MIN_DURATION_MS = int(os.getenv("ISSUE_MIN_DURATION_MS", "1000"))
STATS_UPDATE_INTERVAL = 3  # frames
TIMELINE_UPDATE_INTERVAL = 30  # frames
MAX_TIMELINE_ENTRIES = 360

# Default user settings
DEFAULT_SETTINGS = {
    "sensitivity": 1.0,
    "alert_delay_seconds": 3.0,
    "alert_enabled": True,
    "break_interval_minutes": 30,
}

# WebSocket limits
WEBSOCKET_TIMEOUT = float(os.getenv("WEBSOCKET_TIMEOUT", "60"))
MAX_MESSAGE_SIZE = int(os.getenv("MAX_MESSAGE_SIZE", "65536"))
WS_RATE_LIMIT_MESSAGES = int(os.getenv("WS_RATE_LIMIT_MESSAGES", "30"))  # landmark frames per second
WS_CONTROL_RATE_LIMIT = int(os.getenv("WS_CONTROL_RATE_LIMIT", "10"))  # other actions per second
WS_OUTBOX_SIZE = 256
WS_MAX_PENDING_UPDATES = 64  # per-frame updates are dropped beyond this backlog

# CORS - Restrict in production
if ENVIRONMENT == "production":
    _origins = os.getenv("ALLOWED_ORIGINS", "")
    ALLOWED_ORIGINS = [o.strip() for o in _origins.split(",") if o.strip()]
else:
    # Development: allow all for testing
    ALLOWED_ORIGINS = ["*"]

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Session audit logs, written when a monitoring session stops
AUDIT_LOG_ENABLED = os.getenv("AUDIT_LOG_ENABLED", "false").lower() == "true"
AUDIT_LOG_DIR = os.getenv("AUDIT_LOG_DIR", os.path.join(BASE_DIR, "logs", "posture_audit"))
