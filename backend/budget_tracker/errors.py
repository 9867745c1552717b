"""Typed failures raised by handlers and storage.

Each error carries the machine-readable ``code`` and the HTTP status the API
layer renders it with. Storage failures of any cause (network, credentials,
quota, malformed response) collapse into :class:`BackendUnavailable`.
"""

from __future__ import annotations


class FinanceError(Exception):
    code = "ERROR"
    status_code = 500

    def __init__(self, message: str, details: list[dict[str, str]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class Unauthorized(FinanceError):
    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(FinanceError):
    code = "FORBIDDEN"
    status_code = 403


class NotFound(FinanceError):
    code = "NOT_FOUND"
    status_code = 404


class ValidationFailed(FinanceError):
    code = "VALIDATION_ERROR"
    status_code = 422

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailed":
        return cls(message, details=[{"field": field, "message": message}])


class Conflict(FinanceError):
    code = "CONFLICT"
    status_code = 409


class BackendUnavailable(FinanceError):
    code = "BACKEND_UNAVAILABLE"
    status_code = 503
