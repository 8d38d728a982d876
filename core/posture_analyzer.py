import numpy as np
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence
from core import landmarks as lmk
from core.errors import CalibrationError
from models.schemas import EvaluationResult, IssueLabel, Keypoint, ViewMode
import config as cfg


class PostureEvaluator(ABC):
    """
    Compares a live frame against the calibrated baseline for one camera view.

    Every signal follows the same pattern: compute a deviation from the
    baseline, compare it with base_threshold * sensitivity, and record an
    issue when it is exceeded. Higher sensitivity means more tolerance.
    """

    view_mode: ViewMode

    def __init__(self, thresholds: Optional[Dict[str, float]] = None, min_visibility: float = cfg.MIN_VISIBILITY):
        self.thresholds = thresholds or cfg.THRESHOLDS[self.view_mode.value]
        self.min_visibility = min_visibility

    def _valid(self, lm: Optional[Keypoint]) -> bool:
        return lmk.is_landmark_valid(lm, self.min_visibility)

    def _pick(self, landmarks: Sequence[Keypoint], *indices: int) -> Optional[Keypoint]:
        for idx in indices:
            lm = lmk.get_landmark(landmarks, idx)
            if self._valid(lm):
                return lm
        return None

    def _threshold(self, key: str, sensitivity: float) -> float:
        return self.thresholds[key] * sensitivity

    def _not_detected(self, reason: str) -> EvaluationResult:
        """Required landmarks missing: never guess, report good with a marker."""
        return EvaluationResult(issues=[], metrics={'view_mode': self.view_mode.value, 'error': reason})

    @staticmethod
    def _add(issues: List[IssueLabel], label: IssueLabel):
        if label not in issues:
            issues.append(label)

    def _wrist_near_nose(self, landmarks, nose: Keypoint, max_distance: float, metrics: Dict) -> bool:
        near = False
        for name, idx in (('left', lmk.LEFT_WRIST), ('right', lmk.RIGHT_WRIST)):
            wrist = lmk.get_landmark(landmarks, idx)
            if not self._valid(wrist):
                continue
            dist = float(np.hypot(wrist.x - nose.x, wrist.y - nose.y))
            metrics[f'{name}_wrist_dist'] = round(dist, 3)
            if dist < max_distance:
                near = True
        return near

    @abstractmethod
    def evaluate(self, landmarks: Sequence[Keypoint], calibration, sensitivity: float) -> EvaluationResult:
        pass


class FrontPostureEvaluator(PostureEvaluator):
    view_mode = ViewMode.FRONT

    def evaluate(self, landmarks, calibration, sensitivity):
        issues: List[IssueLabel] = []
        metrics: Dict = {'view_mode': self.view_mode.value}

        left_sh = lmk.get_landmark(landmarks, lmk.LEFT_SHOULDER)
        right_sh = lmk.get_landmark(landmarks, lmk.RIGHT_SHOULDER)
        nose = lmk.get_landmark(landmarks, lmk.NOSE)

        if not self._valid(left_sh) or not self._valid(right_sh):
            return self._not_detected('shoulders not detected')

        shoulder_center_y = (left_sh.y + right_sh.y) / 2
        shoulder_width = abs(left_sh.x - right_sh.x)
        shoulder_tilt = abs(left_sh.y - right_sh.y)

        # Shoulders dropping (slouch) or rising (tension, looser threshold)
        shoulder_y_diff = shoulder_center_y - calibration.shoulder_center_y
        drop_threshold = self._threshold('shoulder_drop', sensitivity)
        metrics['shoulder_y'] = round(shoulder_y_diff, 4)
        metrics['shoulder_y_threshold'] = round(drop_threshold, 4)

        if shoulder_y_diff > drop_threshold:
            self._add(issues, IssueLabel.SLOUCHING)
        elif shoulder_y_diff < -drop_threshold * self.thresholds['shoulder_rise_ratio']:
            self._add(issues, IssueLabel.SHOULDER_TENSION)

        # Shoulders narrowing means leaning towards the camera
        if calibration.shoulder_width > 0:
            width_ratio = shoulder_width / calibration.shoulder_width
            width_threshold = 1 - self._threshold('shoulder_width', sensitivity)
            metrics['shoulder_width'] = round(width_ratio, 3)
            metrics['width_threshold'] = round(width_threshold, 3)

            if width_ratio < width_threshold:
                self._add(issues, IssueLabel.LEANING_FORWARD)

        tilt_diff = shoulder_tilt - calibration.shoulder_tilt
        tilt_threshold = self._threshold('shoulder_tilt', sensitivity)
        metrics['shoulder_tilt'] = round(tilt_diff, 4)
        metrics['tilt_threshold'] = round(tilt_threshold, 4)

        if tilt_diff > tilt_threshold:
            self._add(issues, IssueLabel.SHOULDER_TILT)

        if self._valid(nose) and calibration.nose_y is not None:
            head_drop = nose.y - calibration.nose_y
            head_threshold = self._threshold('head_drop', sensitivity)
            metrics['head_drop'] = round(head_drop, 4)
            metrics['head_threshold'] = round(head_threshold, 4)

            if head_drop > head_threshold:
                self._add(issues, IssueLabel.HEAD_DROP)

        if self._valid(nose) and self._chin_resting(landmarks, nose, shoulder_center_y, metrics):
            self._add(issues, IssueLabel.CHIN_RESTING)

        return EvaluationResult(issues=issues, metrics=metrics)

    def _chin_resting(self, landmarks, nose, shoulder_y, metrics) -> bool:
        """Raised elbow with hand above the shoulders, or a wrist close to the face."""
        raised = False
        margin = self.thresholds['elbow_raise_margin']
        for name, elbow_idx, wrist_idx in (
            ('left', lmk.LEFT_ELBOW, lmk.LEFT_WRIST),
            ('right', lmk.RIGHT_ELBOW, lmk.RIGHT_WRIST),
        ):
            elbow = lmk.get_landmark(landmarks, elbow_idx)
            wrist = lmk.get_landmark(landmarks, wrist_idx)
            if self._valid(elbow) and elbow.y < shoulder_y + margin:
                if self._valid(wrist) and wrist.y < shoulder_y:
                    metrics[f'{name}_elbow_high'] = True
                    raised = True

        near_face = self._wrist_near_nose(landmarks, nose, self.thresholds['chin_rest_distance'], metrics)
        return raised or near_face


class SidePostureEvaluator(PostureEvaluator):
    view_mode = ViewMode.SIDE

    def evaluate(self, landmarks, calibration, sensitivity):
        issues: List[IssueLabel] = []
        metrics: Dict = {'view_mode': self.view_mode.value}

        shoulder = self._pick(landmarks, lmk.LEFT_SHOULDER, lmk.RIGHT_SHOULDER)
        ear = self._pick(landmarks, lmk.LEFT_EAR, lmk.RIGHT_EAR)
        nose = self._pick(landmarks, lmk.NOSE)

        if shoulder is None:
            return self._not_detected('shoulder not detected')

        # Forward neck: ear drifting horizontally away from the shoulder
        if ear is not None and calibration.ear_shoulder_x is not None:
            ear_shoulder_x = ear.x - shoulder.x
            x_diff = ear_shoulder_x - calibration.ear_shoulder_x
            forward_threshold = self._threshold('head_forward', sensitivity)
            metrics['ear_shoulder_x'] = round(ear_shoulder_x, 4)
            metrics['x_diff'] = round(x_diff, 4)
            metrics['forward_threshold'] = round(forward_threshold, 4)

            if abs(x_diff) > forward_threshold:
                self._add(issues, IssueLabel.FORWARD_NECK)

        if calibration.shoulder_y is not None:
            shoulder_y_diff = shoulder.y - calibration.shoulder_y
            drop_threshold = self._threshold('shoulder_drop', sensitivity)
            metrics['shoulder_y'] = round(shoulder_y_diff, 4)
            metrics['shoulder_y_threshold'] = round(drop_threshold, 4)

            if shoulder_y_diff > drop_threshold:
                self._add(issues, IssueLabel.SLOUCHING)

        if nose is not None and calibration.nose_y is not None:
            head_drop = nose.y - calibration.nose_y
            head_threshold = self._threshold('head_drop', sensitivity)
            metrics['head_drop'] = round(head_drop, 4)
            metrics['head_threshold'] = round(head_threshold, 4)

            if head_drop > head_threshold:
                self._add(issues, IssueLabel.HEAD_DROP)

        if ear is not None and nose is not None and calibration.ear_nose_y is not None:
            ear_nose_y = ear.y - nose.y
            ear_nose_diff = ear_nose_y - calibration.ear_nose_y
            metrics['ear_nose_y'] = round(ear_nose_y, 4)

            if abs(ear_nose_diff) > self._threshold('head_tilt', sensitivity):
                self._add(issues, IssueLabel.HEAD_TILT)

        return EvaluationResult(issues=issues, metrics=metrics)


class DiagonalPostureEvaluator(PostureEvaluator):
    view_mode = ViewMode.DIAGONAL

    def evaluate(self, landmarks, calibration, sensitivity):
        issues: List[IssueLabel] = []
        metrics: Dict = {'view_mode': self.view_mode.value}

        left_sh = lmk.get_landmark(landmarks, lmk.LEFT_SHOULDER)
        right_sh = lmk.get_landmark(landmarks, lmk.RIGHT_SHOULDER)
        both_shoulders = self._valid(left_sh) and self._valid(right_sh)
        shoulder = self._pick(landmarks, lmk.LEFT_SHOULDER, lmk.RIGHT_SHOULDER)
        ear = self._pick(landmarks, lmk.LEFT_EAR, lmk.RIGHT_EAR)
        eye = self._pick(landmarks, lmk.LEFT_EYE, lmk.RIGHT_EYE)
        nose = self._pick(landmarks, lmk.NOSE)

        if shoulder is None:
            return self._not_detected('shoulder not detected')

        # Forward neck is the primary signal from this angle
        if ear is not None and nose is not None and calibration.ear_nose_x is not None:
            ear_nose_x = ear.x - nose.x
            x_diff = ear_nose_x - calibration.ear_nose_x
            neck_threshold = self._threshold('neck_forward', sensitivity)
            metrics['ear_nose_x'] = round(ear_nose_x, 4)
            metrics['ear_nose_x_diff'] = round(x_diff, 4)
            metrics['neck_threshold'] = round(neck_threshold, 4)

            if abs(x_diff) > neck_threshold:
                self._add(issues, IssueLabel.FORWARD_NECK)

        head_threshold = self._threshold('head_drop', sensitivity)
        if ear is not None and calibration.ear_y is not None:
            head_drop = ear.y - calibration.ear_y
            metrics['head_drop'] = round(head_drop, 4)
            metrics['head_threshold'] = round(head_threshold, 4)
            if head_drop > head_threshold:
                self._add(issues, IssueLabel.HEAD_DROP)
        elif nose is not None and calibration.nose_y is not None:
            head_drop = nose.y - calibration.nose_y
            metrics['head_drop'] = round(head_drop, 4)
            metrics['head_threshold'] = round(head_threshold, 4)
            if head_drop > head_threshold:
                self._add(issues, IssueLabel.HEAD_DROP)

        if ear is not None and eye is not None and calibration.ear_eye_y is not None:
            ear_eye_y = ear.y - eye.y
            metrics['ear_eye_y'] = round(ear_eye_y, 4)
            if abs(ear_eye_y - calibration.ear_eye_y) > self._threshold('head_tilt', sensitivity):
                self._add(issues, IssueLabel.HEAD_TILT)

        # Nose moving below/above the ear: bending forward or leaning back
        if ear is not None and nose is not None and calibration.nose_ear_y_diff is not None:
            nose_ear_y = nose.y - ear.y
            change = nose_ear_y - calibration.nose_ear_y_diff
            bend_threshold = self._threshold('bend', sensitivity)
            metrics['nose_ear_y_diff'] = round(nose_ear_y, 4)
            metrics['nose_ear_change'] = round(change, 4)
            metrics['bend_threshold'] = round(bend_threshold, 4)

            if change > bend_threshold:
                self._add(issues, IssueLabel.LEANING_FORWARD)
            elif change < -bend_threshold:
                self._add(issues, IssueLabel.LEANING_BACK)
        else:
            dual = calibration.dual_shoulder
            if both_shoulders and dual is not None:
                shoulder_y_diff = (left_sh.y + right_sh.y) / 2 - dual.shoulder_center_y
            else:
                shoulder_y_diff = shoulder.y - calibration.shoulder_y

            drop_threshold = self._threshold('shoulder_drop', sensitivity)
            metrics['shoulder_y'] = round(shoulder_y_diff, 4)
            metrics['shoulder_y_threshold'] = round(drop_threshold, 4)
            if shoulder_y_diff > drop_threshold:
                self._add(issues, IssueLabel.SLOUCHING)

        # Shoulder narrowing corroborates leaning forward
        dual = calibration.dual_shoulder
        if both_shoulders and dual is not None and dual.shoulder_width > 0:
            width_ratio = abs(left_sh.x - right_sh.x) / dual.shoulder_width
            width_threshold = 1 - self._threshold('shoulder_width', sensitivity)
            metrics['shoulder_width'] = round(width_ratio, 3)
            metrics['width_threshold'] = round(width_threshold, 3)
            if width_ratio < width_threshold and IssueLabel.LEANING_BACK not in issues:
                self._add(issues, IssueLabel.LEANING_FORWARD)

        if nose is not None and self._wrist_near_nose(landmarks, nose, self.thresholds['chin_rest_distance'], metrics):
            self._add(issues, IssueLabel.CHIN_RESTING)

        return EvaluationResult(issues=issues, metrics=metrics)


class BackPostureEvaluator(PostureEvaluator):
    view_mode = ViewMode.BACK

    def evaluate(self, landmarks, calibration, sensitivity):
        issues: List[IssueLabel] = []
        metrics: Dict = {'view_mode': self.view_mode.value}

        left_sh = lmk.get_landmark(landmarks, lmk.LEFT_SHOULDER)
        right_sh = lmk.get_landmark(landmarks, lmk.RIGHT_SHOULDER)
        if not self._valid(left_sh) or not self._valid(right_sh):
            return self._not_detected('shoulders not detected')

        shoulder_y_diff = (left_sh.y + right_sh.y) / 2 - calibration.shoulder_center_y
        drop_threshold = self._threshold('shoulder_drop', sensitivity)
        metrics['shoulder_y'] = round(shoulder_y_diff, 4)
        metrics['shoulder_y_threshold'] = round(drop_threshold, 4)
        if shoulder_y_diff > drop_threshold:
            self._add(issues, IssueLabel.SLOUCHING)

        if calibration.shoulder_width > 0:
            width_ratio = abs(left_sh.x - right_sh.x) / calibration.shoulder_width
            width_threshold = 1 - self._threshold('shoulder_width', sensitivity)
            metrics['shoulder_width'] = round(width_ratio, 3)
            metrics['width_threshold'] = round(width_threshold, 3)
            if width_ratio < width_threshold:
                self._add(issues, IssueLabel.ROUNDED_BACK)

        tilt_diff = abs(left_sh.y - right_sh.y) - calibration.shoulder_tilt
        tilt_threshold = self._threshold('shoulder_tilt', sensitivity)
        metrics['shoulder_tilt'] = round(tilt_diff, 4)
        metrics['tilt_threshold'] = round(tilt_threshold, 4)
        if tilt_diff > tilt_threshold:
            self._add(issues, IssueLabel.SHOULDER_TILT)

        return EvaluationResult(issues=issues, metrics=metrics)


# One strategy per camera view; extend by registering a new entry
EVALUATORS: Dict[ViewMode, PostureEvaluator] = {
    ViewMode.FRONT: FrontPostureEvaluator(),
    ViewMode.SIDE: SidePostureEvaluator(),
    ViewMode.DIAGONAL: DiagonalPostureEvaluator(),
    ViewMode.BACK: BackPostureEvaluator(),
}


def analyze_posture(
    landmarks: Optional[Sequence[Keypoint]],
    calibration,
    sensitivity: float,
    view_mode: Optional[ViewMode] = None,
) -> EvaluationResult:
    """
    Evaluate a frame with the strategy for the calibrated view.

    A baseline only makes sense for the view it was captured in, so an
    explicit view_mode that disagrees with the profile raises CalibrationError.
    """
    if not landmarks or calibration is None:
        return EvaluationResult()

    mode = ViewMode(calibration.view_mode)
    if view_mode is not None and ViewMode(view_mode) != mode:
        raise CalibrationError(f"Calibration was captured for the {mode.value} view, not {ViewMode(view_mode).value}")
    return EVALUATORS[mode].evaluate(landmarks, calibration, sensitivity)
