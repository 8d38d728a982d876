import pytest

from conftest import FRONT_POSE, build_frame, shifted
from core import landmarks as lmk
from core.smoother import smooth_landmarks


def test_first_frame_is_returned_unchanged(front_frame):
    smoothed = smooth_landmarks(front_frame, None)

    assert [(p.x, p.y, p.visibility) for p in smoothed] == [(p.x, p.y, p.visibility) for p in front_frame]
    # Returned points are copies, not the caller's objects
    assert smoothed[0] is not front_frame[0]


def test_blend_weights_previous_frame():
    previous = build_frame({lmk.NOSE: (0.0, 0.0, 1.0)})
    new = build_frame({lmk.NOSE: (1.0, 1.0, 1.0)})

    smoothed = smooth_landmarks(new, previous, factor=0.85)

    assert smoothed[lmk.NOSE].x == pytest.approx(0.15)
    assert smoothed[lmk.NOSE].y == pytest.approx(0.15)


def test_visibility_is_never_smoothed():
    previous = build_frame({lmk.NOSE: (0.5, 0.3, 0.99)})
    new = build_frame({lmk.NOSE: (0.5, 0.3, 0.1)})

    smoothed = smooth_landmarks(new, previous)

    assert smoothed[lmk.NOSE].visibility == 0.1


def test_constant_input_converges():
    target = build_frame(shifted(FRONT_POSE, dy=0.1))
    smoothed = build_frame(FRONT_POSE)

    for _ in range(60):
        smoothed = smooth_landmarks(target, smoothed)

    assert smoothed[lmk.LEFT_SHOULDER].y == pytest.approx(target[lmk.LEFT_SHOULDER].y, abs=1e-4)


def test_length_mismatch_restarts_from_new_frame(front_frame):
    previous = front_frame[:10]

    smoothed = smooth_landmarks(front_frame, previous)

    assert len(smoothed) == len(front_frame)
    assert smoothed[lmk.LEFT_SHOULDER].y == front_frame[lmk.LEFT_SHOULDER].y
