"""
Typed errors raised by the subscription and trial services.

Every error is raised before any state is written. The HTTP layer maps
``status_code`` straight onto the response.
"""


class FarmboxError(Exception):
    code = "ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(FarmboxError):
    """Malformed input: unknown enum value, out-of-range number, bad dates."""
    code = "VALIDATION_ERROR"
    status_code = 422


class PreconditionError(FarmboxError):
    """The subscription or trial is in the wrong state for the transition."""
    code = "PRECONDITION_FAILED"
    status_code = 409


class QuotaExceededError(FarmboxError):
    """Pause or skip allowance for the current period is used up."""
    code = "QUOTA_EXCEEDED"
    status_code = 409


class ConflictError(FarmboxError):
    """Duplicate active subscription, skip date or trial."""
    code = "CONFLICT"
    status_code = 409


class NotFoundError(FarmboxError):
    code = "NOT_FOUND"
    status_code = 404
