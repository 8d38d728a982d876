"""Pose geometry, calibration and posture evaluation."""
