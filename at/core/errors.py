class AttendanceError(Exception):
    """Base class for failures a user action should hear about."""


class ApiError(AttendanceError):
    """Network failure or non-2xx response from the attendance backend."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class ValidationError(AttendanceError):
    """Input rejected before anything was sent (short offline reason, empty work summary)."""


class NoActiveSessionError(AttendanceError):
    """The action needs an open attendance session and there isn't one."""


class ToggleInFlightError(AttendanceError):
    """A status change is already waiting on the backend."""
