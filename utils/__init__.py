"""Shared utility functions for the posture monitor."""

from utils.debug import debug_log, is_debug

__all__ = ["debug_log", "is_debug"]
