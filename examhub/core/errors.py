"""
Domain error taxonomy shared by services, API handlers and the exam client.
"""
from typing import Optional
from fastapi import status


class ExamHubError(Exception):
    """Base class for failures surfaced to callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_type: str = "error"

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"message": self.message, "type": self.error_type, "status_code": self.status_code}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(ExamHubError):
    """Referenced entity is absent."""
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"


class Forbidden(ExamHubError):
    """Caller lacks ownership or role."""
    status_code = status.HTTP_403_FORBIDDEN
    error_type = "forbidden"


class InvalidState(ExamHubError):
    """Operation attempted outside its valid lifecycle state."""
    status_code = status.HTTP_409_CONFLICT
    error_type = "invalid_state"


class InvalidInput(ExamHubError):
    """Value out of its allowed range."""
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "invalid_input"



class Busy(ExamHubError):
    """Resource lock could not be taken in time; safe to retry."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_type = "busy"


ERRORS_BY_TYPE = {cls.error_type: cls for cls in (NotFound, Forbidden, InvalidState, InvalidInput, Busy)}
