import sys
from pathlib import Path

import pytest

# Ensure the repo root is importable when tests are run without installing the package.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core import landmarks as lmk  # noqa: E402
from models.schemas import Keypoint  # noqa: E402


# Seated subject facing the camera (x, y, visibility)
FRONT_POSE = {
    lmk.NOSE: (0.50, 0.30, 0.99),
    lmk.LEFT_EYE: (0.47, 0.27, 0.99),
    lmk.RIGHT_EYE: (0.53, 0.27, 0.99),
    lmk.LEFT_EAR: (0.44, 0.29, 0.95),
    lmk.RIGHT_EAR: (0.56, 0.29, 0.95),
    lmk.LEFT_SHOULDER: (0.35, 0.45, 0.99),
    lmk.RIGHT_SHOULDER: (0.65, 0.45, 0.99),
}


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


def build_frame(points=None, default_visibility=0.0):
    """33 keypoints, invisible unless listed in points as idx -> (x, y, visibility)."""
    frame = [Keypoint(x=0.5, y=0.5, z=0.0, visibility=default_visibility) for _ in range(lmk.NUM_LANDMARKS)]
    for idx, (x, y, vis) in (points or {}).items():
        frame[idx] = Keypoint(x=x, y=y, z=0.0, visibility=vis)
    return frame


def shifted(points, dx=0.0, dy=0.0, only=None):
    """Copy of a pose dict with selected points moved."""
    moved = {}
    for idx, (x, y, vis) in points.items():
        if only is None or idx in only:
            moved[idx] = (x + dx, y + dy, vis)
        else:
            moved[idx] = (x, y, vis)
    return moved


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def front_frame():
    return build_frame(FRONT_POSE)
