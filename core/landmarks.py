"""MediaPipe pose landmark indices and visibility helpers."""

from typing import Optional, Sequence
from models.schemas import Keypoint
import config as cfg

NUM_LANDMARKS = 33

# Landmark indices
NOSE = 0
LEFT_EYE_INNER = 1
LEFT_EYE = 2
LEFT_EYE_OUTER = 3
RIGHT_EYE_INNER = 4
RIGHT_EYE = 5
RIGHT_EYE_OUTER = 6
LEFT_EAR = 7
RIGHT_EAR = 8
MOUTH_LEFT = 9
MOUTH_RIGHT = 10
LEFT_SHOULDER = 11
RIGHT_SHOULDER = 12
LEFT_ELBOW = 13
RIGHT_ELBOW = 14
LEFT_WRIST = 15
RIGHT_WRIST = 16
LEFT_HIP = 23
RIGHT_HIP = 24


def get_landmark(landmarks: Sequence[Keypoint], idx: int) -> Optional[Keypoint]:
    if idx < len(landmarks):
        return landmarks[idx]
    return None


def is_landmark_valid(lm: Optional[Keypoint], min_visibility: float = cfg.MIN_VISIBILITY) -> bool:
    return lm is not None and (lm.visibility or 0.0) >= min_visibility


def first_valid(landmarks: Sequence[Keypoint], *indices: int) -> Optional[Keypoint]:
    """Return the first visible landmark among indices, in order."""
    for idx in indices:
        lm = get_landmark(landmarks, idx)
        if is_landmark_valid(lm):
            return lm
    return None


def visibility(lm: Optional[Keypoint]) -> float:
    if lm is None:
        return 0.0
    return lm.visibility or 0.0
