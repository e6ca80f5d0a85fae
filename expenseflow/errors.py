"""
Typed errors raised by services and route handlers.

Each error carries an HTTP status and a machine-readable ``code``; the
handlers registered in ``expenseflow.main`` render them as
``{"message": ..., "code": ..., **details}``.
"""
from typing import Any, Dict, Optional


class ExpenseAppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        body = {"message": self.message, "code": self.code}
        body.update(self.details)
        return body


class ValidationFailed(ExpenseAppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationFailed(ExpenseAppError):
    status_code = 401
    code = "INVALID_TOKEN"


class PermissionDenied(ExpenseAppError):
    status_code = 403
    code = "ACCESS_DENIED"


class NotFound(ExpenseAppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, entity: str, message: Optional[str] = None):
        super().__init__(
            message or f"{entity.capitalize()} not found",
            code=f"{entity.upper()}_NOT_FOUND",
        )


class Conflict(ExpenseAppError):
    status_code = 409
    code = "CONFLICT"


class UpstreamServiceError(ExpenseAppError):
    """An external dependency (exchange rates, OCR engine) failed."""
    status_code = 500
    code = "UPSTREAM_ERROR"
