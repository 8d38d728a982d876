from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple
from core import landmarks as lmk
from core.errors import CalibrationError
from core.landmarks import first_valid, is_landmark_valid
from models.schemas import (
    BackCalibration, DiagonalCalibration, FrontCalibration, Keypoint,
    ShoulderMetrics, SideCalibration, ViewMode,
)
import config as cfg


# What each view is best at detecting, shown while the user lines up
VIEW_MODE_TIPS = {
    ViewMode.FRONT: "Front view detects shoulder balance and head drop",
    ViewMode.SIDE: "Side view detects forward neck posture",
    ViewMode.DIAGONAL: "Diagonal view detects overall posture",
    ViewMode.BACK: "Back view detects shoulder tilt and rounded back",
}


@dataclass(frozen=True)
class GuideRegion:
    """On-screen calibration guide box in normalized image coordinates."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def centered(cls, scale: float = cfg.GUIDE_BOX_SCALE) -> "GuideRegion":
        margin = (1.0 - scale) / 2
        return cls(x=margin, y=margin, width=scale, height=scale)


def check_pose_in_guide(
    landmarks: Sequence[Keypoint],
    guide: Optional[GuideRegion] = None,
    band: Tuple[float, float] = cfg.GUIDE_SHOULDER_BAND,
) -> bool:
    """True when the primary visible shoulder sits inside the guide's shoulder band."""
    if guide is None:
        guide = GuideRegion.centered()

    shoulder = first_valid(landmarks, lmk.LEFT_SHOULDER, lmk.RIGHT_SHOULDER)
    if shoulder is None:
        return False

    top = guide.y + guide.height * band[0]
    bottom = guide.y + guide.height * band[1]
    return top < shoulder.y < bottom


class Calibrator:
    """
    Captures a per-view baseline from a single smoothed frame.

    A profile is either built completely or not at all: every failure raises
    CalibrationError before anything is returned.
    """

    def __init__(self, min_visibility: float = cfg.MIN_VISIBILITY):
        self.min_visibility = min_visibility

    def _valid(self, lm: Optional[Keypoint]) -> bool:
        return is_landmark_valid(lm, self.min_visibility)

    def _pick(self, landmarks: Sequence[Keypoint], *indices: int) -> Optional[Keypoint]:
        for idx in indices:
            lm = lmk.get_landmark(landmarks, idx)
            if self._valid(lm):
                return lm
        return None

    def _shoulder_metrics(self, landmarks: Sequence[Keypoint]) -> Optional[dict]:
        left_sh = lmk.get_landmark(landmarks, lmk.LEFT_SHOULDER)
        right_sh = lmk.get_landmark(landmarks, lmk.RIGHT_SHOULDER)
        if not self._valid(left_sh) or not self._valid(right_sh):
            return None

        return {
            'left_shoulder_x': left_sh.x,
            'left_shoulder_y': left_sh.y,
            'right_shoulder_x': right_sh.x,
            'right_shoulder_y': right_sh.y,
            'shoulder_center_y': (left_sh.y + right_sh.y) / 2,
            'shoulder_width': abs(left_sh.x - right_sh.x),
            'shoulder_tilt': abs(left_sh.y - right_sh.y),
        }

    def _build_front(self, landmarks, created_at) -> FrontCalibration:
        shoulders = self._shoulder_metrics(landmarks)
        if shoulders is None:
            raise CalibrationError("Front view calibration requires both shoulders")

        nose = lmk.get_landmark(landmarks, lmk.NOSE)
        nose_ok = self._valid(nose)
        return FrontCalibration(
            created_at=created_at,
            nose_x=nose.x if nose_ok else None,
            nose_y=nose.y if nose_ok else None,
            **shoulders,
        )

    def _build_back(self, landmarks, created_at) -> BackCalibration:
        shoulders = self._shoulder_metrics(landmarks)
        if shoulders is None:
            raise CalibrationError("Back view calibration requires both shoulders")
        return BackCalibration(created_at=created_at, **shoulders)

    def _build_side(self, landmarks, created_at) -> SideCalibration:
        shoulder = self._pick(landmarks, lmk.LEFT_SHOULDER, lmk.RIGHT_SHOULDER)
        if shoulder is None:
            raise CalibrationError("Side view calibration requires a visible shoulder")

        ear = self._pick(landmarks, lmk.LEFT_EAR, lmk.RIGHT_EAR)
        nose = self._pick(landmarks, lmk.NOSE)

        return SideCalibration(
            created_at=created_at,
            shoulder_x=shoulder.x,
            shoulder_y=shoulder.y,
            ear_x=ear.x if ear else None,
            ear_y=ear.y if ear else None,
            nose_x=nose.x if nose else None,
            nose_y=nose.y if nose else None,
            ear_shoulder_x=ear.x - shoulder.x if ear else None,
            ear_nose_y=ear.y - nose.y if (ear and nose) else None,
        )

    def _build_diagonal(self, landmarks, created_at) -> DiagonalCalibration:
        shoulder = self._pick(landmarks, lmk.LEFT_SHOULDER, lmk.RIGHT_SHOULDER)
        if shoulder is None:
            raise CalibrationError("Diagonal view calibration requires a visible shoulder")

        ear = self._pick(landmarks, lmk.LEFT_EAR, lmk.RIGHT_EAR)
        eye = self._pick(landmarks, lmk.LEFT_EYE, lmk.RIGHT_EYE)
        nose = self._pick(landmarks, lmk.NOSE)

        shoulders = self._shoulder_metrics(landmarks)

        return DiagonalCalibration(
            created_at=created_at,
            shoulder_x=shoulder.x,
            shoulder_y=shoulder.y,
            nose_x=nose.x if nose else None,
            nose_y=nose.y if nose else None,
            ear_x=ear.x if ear else None,
            ear_y=ear.y if ear else None,
            ear_nose_x=ear.x - nose.x if (ear and nose) else None,
            ear_eye_y=ear.y - eye.y if (ear and eye) else None,
            nose_ear_y_diff=nose.y - ear.y if (ear and nose) else None,
            dual_shoulder=ShoulderMetrics(**shoulders) if shoulders else None,
        )

    def build(
        self,
        landmarks: Sequence[Keypoint],
        view_mode: ViewMode,
        pose_in_guide: bool,
        created_at: Optional[datetime] = None,
    ):
        """
        Build the calibration profile for view_mode.

        Raises CalibrationError if the pose was not confirmed inside the guide
        or the landmarks the view depends on are not visible.
        """
        if not landmarks:
            raise CalibrationError("No person detected")
        if not pose_in_guide:
            raise CalibrationError("Pose is not inside the guide")

        builders = {
            ViewMode.FRONT: self._build_front,
            ViewMode.SIDE: self._build_side,
            ViewMode.DIAGONAL: self._build_diagonal,
            ViewMode.BACK: self._build_back,
        }
        builder = builders.get(ViewMode(view_mode))
        return builder(landmarks, created_at or datetime.now())

    def get_instruction(self, landmarks: Optional[Sequence[Keypoint]], view_mode: Optional[ViewMode], in_guide: bool) -> str:
        """Short hint for the user while lining up for calibration."""
        if not landmarks:
            return "Position yourself so your head and shoulders are visible"
        if not in_guide:
            return "Fit your upper body inside the guide"
        if view_mode is not None:
            return f"Ready! {VIEW_MODE_TIPS[ViewMode(view_mode)]}"
        return "Ready!"


def build_calibration(
    landmarks: Sequence[Keypoint],
    view_mode: ViewMode,
    pose_in_guide: bool,
    created_at: Optional[datetime] = None,
):
    """Module-level shortcut for Calibrator().build()."""
    return Calibrator().build(landmarks, view_mode, pose_in_guide, created_at)
