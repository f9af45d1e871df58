from __future__ import annotations

from typing import Optional


class PortalError(RuntimeError):
    """Base class for audition portal failures."""


class ValidationError(PortalError):
    """Raised synchronously when a caller request cannot be accepted."""


class PortalClosedError(ValidationError):
    pass


class DuplicateSubmissionError(ValidationError):
    pass


class NotFoundError(PortalError):
    pass


class ConversionError(PortalError):
    """Raised when uploaded audio cannot be transcoded to the canonical form."""


class UploadError(PortalError):
    """Raised when the scorer never returned a task id within the upload budget."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class PollError(PortalError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EvaluationTimeout(PortalError):
    def __init__(self, message: str, attempts: int, last_error: Optional[str] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
