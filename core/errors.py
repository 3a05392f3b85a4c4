"""
core/errors.py -- Application error taxonomy.

Every failure a client can observe maps to exactly one of these classes.
Route handlers and auth dependencies raise them; the boundary translator in
api/main.py turns them into the uniform JSON envelope:

    {"error": "<code>", "message": "<human readable text>"}

The classes carry no HTTP machinery beyond the numeric status code, so
auth/ and ioc/ can raise them without importing FastAPI.

Layer rule: no imports from api/, auth/, or ioc/.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class. Subclasses fix status_code and code; message is per-instance."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class Unauthenticated(ServiceError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required."


class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied."


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class DuplicateEntry(ServiceError):
    status_code = 409
    code = "duplicate_entry"
    default_message = "A record with this value already exists."


class Internal(ServiceError):
    pass
