from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
import config as cfg


class PostureStatus(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    BAD = "bad"


class ViewMode(str, Enum):
    FRONT = "front"
    SIDE = "side"
    DIAGONAL = "diagonal"
    BACK = "back"


class AppState(str, Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"
    MONITORING = "monitoring"
    RESULT = "result"


class IssueLabel(str, Enum):
    SLOUCHING = "slouching"
    SHOULDER_TENSION = "shoulder-tension"
    LEANING_FORWARD = "leaning-forward"
    LEANING_BACK = "leaning-back"
    SHOULDER_TILT = "shoulder-tilt"
    HEAD_DROP = "head-drop"
    HEAD_TILT = "head-tilt"
    FORWARD_NECK = "forward-neck"
    CHIN_RESTING = "chin-resting"
    ROUNDED_BACK = "rounded-back"


def status_from_issues(issues) -> PostureStatus:
    """0 issues is good, 1 is a warning, 2 or more is bad."""
    count = len(issues)
    if count >= 2:
        return PostureStatus.BAD
    if count == 1:
        return PostureStatus.WARNING
    return PostureStatus.GOOD


class Keypoint(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: float = 0.0


# 33 keypoints at fixed MediaPipe pose indices
KeypointFrame = List[Keypoint]


# === Calibration profiles (tagged by view mode) ===

class ShoulderMetrics(BaseModel):
    """Dual-shoulder baseline geometry."""
    model_config = ConfigDict(frozen=True)

    left_shoulder_x: float
    left_shoulder_y: float
    right_shoulder_x: float
    right_shoulder_y: float
    shoulder_center_y: float
    shoulder_width: float
    shoulder_tilt: float


class FrontCalibration(ShoulderMetrics):
    view_mode: Literal["front"] = "front"
    created_at: datetime
    nose_x: Optional[float] = None
    nose_y: Optional[float] = None


class BackCalibration(ShoulderMetrics):
    view_mode: Literal["back"] = "back"
    created_at: datetime
    # Face is not visible from behind
    nose_x: Optional[float] = None
    nose_y: Optional[float] = None


class SideCalibration(BaseModel):
    model_config = ConfigDict(frozen=True)

    view_mode: Literal["side"] = "side"
    created_at: datetime
    shoulder_x: float
    shoulder_y: float
    ear_x: Optional[float] = None
    ear_y: Optional[float] = None
    nose_x: Optional[float] = None
    nose_y: Optional[float] = None
    ear_shoulder_x: Optional[float] = None
    ear_nose_y: Optional[float] = None


class DiagonalCalibration(BaseModel):
    model_config = ConfigDict(frozen=True)

    view_mode: Literal["diagonal"] = "diagonal"
    created_at: datetime
    shoulder_x: float
    shoulder_y: float
    nose_x: Optional[float] = None
    nose_y: Optional[float] = None
    ear_x: Optional[float] = None
    ear_y: Optional[float] = None
    ear_nose_x: Optional[float] = None
    ear_eye_y: Optional[float] = None
    nose_ear_y_diff: Optional[float] = None
    # Only captured when both shoulders were visible at calibration time
    dual_shoulder: Optional[ShoulderMetrics] = None


CalibrationProfile = Annotated[
    Union[FrontCalibration, SideCalibration, DiagonalCalibration, BackCalibration],
    Field(discriminator="view_mode"),
]


# === Evaluation ===

class EvaluationResult(BaseModel):
    issues: List[IssueLabel] = Field(default_factory=list)
    metrics: Dict[str, Any] = Field(default_factory=dict)

    @computed_field
    @property
    def status(self) -> PostureStatus:
        return status_from_issues(self.issues)


class IssueOccurrence(BaseModel):
    label: IssueLabel
    first_observed_at: float  # ms


# === Session ===

class SessionStats(BaseModel):
    good_ticks: int = 0
    bad_ticks: int = 0
    alert_count: int = 0
    issue_counts: Dict[IssueLabel, int] = Field(default_factory=dict)


class TimelineEntry(BaseModel):
    timestamp: float  # ms
    status: PostureStatus
    issues: List[IssueLabel]


class SessionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    duration: int  # seconds
    good_time: int = Field(alias="goodTime")
    bad_time: int = Field(alias="badTime")
    alerts: int
    good_percentage: int = Field(alias="goodPercentage")
    issue_count: Dict[IssueLabel, int] = Field(alias="issueCount")
    view_mode: ViewMode = Field(alias="viewMode")
    timestamp: datetime
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    timeline: List[TimelineEntry] = Field(default_factory=list)


class DetectionSettings(BaseModel):
    sensitivity: float = cfg.DEFAULT_SETTINGS["sensitivity"]
    alert_delay_seconds: float = Field(default=cfg.DEFAULT_SETTINGS["alert_delay_seconds"], ge=0)
    alert_enabled: bool = cfg.DEFAULT_SETTINGS["alert_enabled"]
    break_interval_minutes: float = Field(default=cfg.DEFAULT_SETTINGS["break_interval_minutes"], ge=0)

    @field_validator("sensitivity")
    @classmethod
    def clamp_sensitivity(cls, value: float) -> float:
        return max(cfg.SENSITIVITY_MIN, min(cfg.SENSITIVITY_MAX, value))
