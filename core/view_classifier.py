"""Camera viewpoint classification from a single keypoint frame."""

from typing import Sequence
from core import landmarks as lmk
from core.landmarks import is_landmark_valid, visibility
from models.schemas import Keypoint, ViewMode
import config as cfg


def detect_view_mode(landmarks: Sequence[Keypoint], thresholds: dict = None) -> ViewMode:
    """
    Classify the camera angle relative to the subject.

    Checked in order: back (body present, face hidden), side (narrow or
    asymmetric shoulders), front (wide symmetric shoulders facing the camera).
    Anything else is diagonal.
    """
    t = thresholds or cfg.VIEW_DETECTION

    left_shoulder = lmk.get_landmark(landmarks, lmk.LEFT_SHOULDER)
    right_shoulder = lmk.get_landmark(landmarks, lmk.RIGHT_SHOULDER)
    nose = lmk.get_landmark(landmarks, lmk.NOSE)

    if left_shoulder is None or right_shoulder is None:
        return ViewMode.DIAGONAL

    shoulder_width = abs(left_shoulder.x - right_shoulder.x)
    left_shoulder_vis = visibility(left_shoulder)
    right_shoulder_vis = visibility(right_shoulder)
    shoulder_visibility_diff = abs(left_shoulder_vis - right_shoulder_vis)
    avg_shoulder_vis = (left_shoulder_vis + right_shoulder_vis) / 2

    left_ear_visible = is_landmark_valid(lmk.get_landmark(landmarks, lmk.LEFT_EAR))
    right_ear_visible = is_landmark_valid(lmk.get_landmark(landmarks, lmk.RIGHT_EAR))
    both_ears_visible = left_ear_visible and right_ear_visible
    no_ears_visible = not left_ear_visible and not right_ear_visible
    one_ear_visible = (left_ear_visible or right_ear_visible) and not both_ears_visible

    left_eye_visible = is_landmark_valid(lmk.get_landmark(landmarks, lmk.LEFT_EYE))
    right_eye_visible = is_landmark_valid(lmk.get_landmark(landmarks, lmk.RIGHT_EYE))
    both_eyes_visible = left_eye_visible and right_eye_visible
    no_eyes_visible = not left_eye_visible and not right_eye_visible

    nose_visible = is_landmark_valid(nose)

    shoulder_center_x = (left_shoulder.x + right_shoulder.x) / 2
    nose_offset = abs(nose.x - shoulder_center_x) if nose is not None else 0.0

    # Back view: body present, face hidden
    if not nose_visible and no_eyes_visible:
        if no_ears_visible and avg_shoulder_vis > t["back_shoulder_visibility"]:
            return ViewMode.BACK
        if avg_shoulder_vis > t["back_shoulder_visibility_with_ears"]:
            return ViewMode.BACK

    is_pure_side = (
        shoulder_width < t["side_max_shoulder_width"]
        or (
            one_ear_visible
            and shoulder_width < t["side_one_ear_max_shoulder_width"]
            and shoulder_visibility_diff > t["side_one_ear_visibility_diff"]
        )
        or shoulder_visibility_diff > t["side_visibility_diff"]
    )
    if is_pure_side:
        return ViewMode.SIDE

    is_pure_front = (
        shoulder_width >= t["front_min_shoulder_width"]
        and both_eyes_visible
        and nose_offset < t["front_max_nose_offset"]
        and shoulder_visibility_diff < t["front_max_visibility_diff"]
    )
    if is_pure_front:
        return ViewMode.FRONT

    return ViewMode.DIAGONAL
