"""Error taxonomy for the buyer intake service.

Each error carries the HTTP status it is rendered with; ``main`` installs a
single exception handler that turns these into JSON responses.
"""

from dataclasses import dataclass
from typing import Any


class LeadIntakeError(Exception):
    """Base exception for the buyer intake service."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message}


@dataclass(frozen=True)
class FieldViolation:
    """One violated constraint, addressed by its wire field name."""

    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class BuyerValidationError(LeadIntakeError):
    """A buyer record failed one or more validation rules."""

    status_code = 400
    message = "Validation failed"

    def __init__(self, violations: list[FieldViolation]):
        super().__init__()
        self.violations = violations

    @property
    def fields(self) -> list[str]:
        return [v.field for v in self.violations]

    def to_body(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "details": [v.as_dict() for v in self.violations],
        }


class AuthenticationError(LeadIntakeError):
    status_code = 401
    message = "Unauthorized"


class ForbiddenError(LeadIntakeError):
    """The acting user does not own the record."""

    status_code = 403
    message = "Forbidden"


class NotFoundError(LeadIntakeError):
    status_code = 404
    message = "Buyer not found"


class ConflictError(LeadIntakeError):
    """Stale optimistic-concurrency token."""

    status_code = 409
    message = "Record has been modified by another user. Please refresh and try again."


class RateLimitExceeded(LeadIntakeError):
    status_code = 429
    message = "Too many requests. Please try again later."

    def __init__(self, limit: int, remaining: int, reset: float):
        super().__init__()
        self.limit = limit
        self.remaining = remaining
        self.reset = reset

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset)),
        }


class CsvFileError(LeadIntakeError):
    """The uploaded file as a whole cannot be imported."""

    status_code = 400


class ImportCommitError(LeadIntakeError):
    """The bulk insert transaction failed; nothing was persisted."""

    status_code = 500
    message = "Failed to import buyers. Please try again."

    def to_body(self) -> dict[str, Any]:
        return {"error": "Import failed", "details": self.message}
