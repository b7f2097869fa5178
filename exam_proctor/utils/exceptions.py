"""
Application errors raised by the session engine and translated by the bridge
"""

from typing import Optional


class AppError(Exception):
    """Base application error carrying an HTTP-style status code"""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class ExamServiceError(AppError):
    """The Exam Service could not be reached or answered with a non-2xx status"""

    def __init__(self, message: str, status_code: int = 502, upstream_status: Optional[int] = None):
        super().__init__(message, status_code)
        self.upstream_status = upstream_status


class SubmissionError(AppError):
    """Final submission failed; the same guarded submit may be retried"""

    def __init__(self, message: str = "Failed to submit exam"):
        super().__init__(message, 502)


class GateBlockedError(AppError):
    """A pre-flight transition was refused. `reason` is shown to the student."""

    def __init__(self, reason: str):
        super().__init__(reason, 409)
        self.reason = reason


class ReadinessError(AppError):
    def __init__(self, message: str):
        super().__init__(message, 409)


class SessionStateError(AppError):
    def __init__(self, message: str):
        super().__init__(message, 409)


class InvalidAnswerError(AppError):
    def __init__(self, message: str):
        super().__init__(message, 422)


class CameraError(AppError):
    """Capture device could not be used"""

    def __init__(self, message: str, status_code: int = 503):
        super().__init__(message, status_code)


class CameraPermissionError(CameraError):
    """The platform refused camera access (user permission)"""

    def __init__(self, message: str = "Camera access was denied"):
        super().__init__(message, 403)


class CameraUnavailableError(CameraError):
    def __init__(self, message: str = "Camera is unavailable"):
        super().__init__(message, 503)


class CameraBusyError(CameraError):
    """Another holder still owns the capture device"""

    def __init__(self, owner: str):
        super().__init__(f"Camera is in use by {owner}", 409)
        self.owner = owner
