class PostureEngineError(Exception):
    """Base class for posture engine errors."""


class CalibrationError(PostureEngineError):
    """Raised when a baseline cannot be captured from the current frame."""


class InvalidTransitionError(PostureEngineError):
    """Raised when the monitor is asked to move between incompatible states."""

    def __init__(self, from_state, to_state):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Cannot transition from {from_state} to {to_state}")
