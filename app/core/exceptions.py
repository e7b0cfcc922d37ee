"""Domain errors raised by the service layer.

Each error carries the HTTP status it maps to and a stable ``code`` string.
``main.py`` renders them as ``{"detail": ..., "code": ...}``.
"""


class ResultServiceError(Exception):
    """Base class for all service-level errors."""

    status_code: int = 400
    code: str = "error"
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(ResultServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class ForbiddenError(ResultServiceError):
    """Cross-school access, wrong role, or self-approval."""

    status_code = 403
    code = "forbidden"
    default_message = "Not enough permissions"


class InvalidStateError(ResultServiceError):
    """Transition not allowed from the current status."""

    status_code = 409
    code = "invalid_state"
    default_message = "Transition not allowed from the current status"


class ImmutableError(InvalidStateError):
    code = "immutable"
    default_message = "Record can no longer be edited"


class ValidationFailedError(ResultServiceError):
    status_code = 422
    code = "validation_failed"
    default_message = "Validation failed"


class EmptySheetError(ValidationFailedError):
    code = "empty_sheet"
    default_message = "Sheet has no entries"


class InvalidScoreError(ValidationFailedError):
    code = "invalid_score"
    default_message = "Scores must be non-negative numbers"


class PreconditionFailedError(ResultServiceError):
    status_code = 412
    code = "precondition_failed"
    default_message = "Precondition failed"


class ConflictError(ResultServiceError):
    status_code = 409
    code = "conflict"
    default_message = "Conflicting record exists"


# PIN verification. Messages stay generic toward anonymous callers.


# Unknown code and unknown admission number share one public code
class PinNotFoundError(NotFoundError):
    code = "invalid_credentials"
    default_message = "Invalid PIN or admission number"


class StudentNotFoundError(NotFoundError):
    code = "invalid_credentials"
    default_message = "Invalid PIN or admission number"


class ResultNotFoundError(NotFoundError):
    code = "result_not_found"
    default_message = "No result found for this session and term"


class ScopeMismatchError(ResultServiceError):
    status_code = 400
    code = "scope_mismatch"
    default_message = "PIN is not valid for this session and term"


class PinExpiredError(ResultServiceError):
    status_code = 410
    code = "expired"
    default_message = "This PIN has expired"


class AttemptsExhaustedError(ResultServiceError):
    status_code = 429
    code = "attempts_exhausted"
    default_message = "This PIN has reached its maximum number of attempts"


class UsageExhaustedError(ResultServiceError):
    status_code = 429
    code = "usage_exhausted"
    default_message = "This PIN has reached its maximum usage limit"


class NotApprovedError(ResultServiceError):
    status_code = 403
    code = "not_approved"
    default_message = "This result has not been approved yet"
