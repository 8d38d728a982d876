"""Exponential smoothing of keypoint frames to suppress detector jitter."""

import numpy as np
from typing import List, Optional, Sequence
from models.schemas import Keypoint
import config as cfg


def smooth_landmarks(
    new_landmarks: Sequence[Keypoint],
    previous: Optional[Sequence[Keypoint]] = None,
    factor: float = cfg.SMOOTHING_FACTOR,
) -> List[Keypoint]:
    """
    Blend a new frame into the previous smoothed frame.

    x, y and z follow prev * factor + new * (1 - factor). Visibility is always
    the latest raw value so that real occlusion is never masked.
    """
    if previous is None or len(previous) != len(new_landmarks):
        return [lm.model_copy() for lm in new_landmarks]

    prev = np.array([[lm.x, lm.y, lm.z] for lm in previous], dtype=float)
    cur = np.array([[lm.x, lm.y, lm.z] for lm in new_landmarks], dtype=float)
    blended = prev * factor + cur * (1 - factor)

    return [
        Keypoint(x=float(p[0]), y=float(p[1]), z=float(p[2]), visibility=lm.visibility)
        for p, lm in zip(blended, new_landmarks)
    ]
