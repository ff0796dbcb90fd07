"""Exception classes for ToricGuide."""


class ToricGuideError(Exception):
    """Base exception for all ToricGuide errors."""


class CalibrationError(ToricGuideError):
    """Raised when a calibration cannot be fitted or applied."""


class InsufficientPointsError(CalibrationError):
    """Raised when fewer than the required point correspondences are supplied."""

    def __init__(self, supplied: int | None = None, required: int = 4) -> None:
        if supplied is None:
            msg = f"At least {required} reference points are required"
        else:
            msg = f"At least {required} reference points are required, got {supplied}"
        super().__init__(msg)
        self.supplied = supplied
        self.required = required


class TrackingError(ToricGuideError):
    """Base exception for tracking session errors."""


class ReferenceNotConfiguredError(TrackingError):
    """Raised when tracking is started before a reference landmark set is set."""

    def __init__(self) -> None:
        super().__init__("Reference landmarks not configured")


class InvalidTransitionError(TrackingError):
    """Raised when a tracking operation is not allowed in the current state."""

    def __init__(self, operation: str, state: str) -> None:
        super().__init__(f"Cannot {operation} while tracking state is {state}")
        self.operation = operation
        self.state = state
