"""
app/errors.py

Typed error taxonomy shared by services and routers.

Every error carries an HTTP status and a stable machine-readable code so
routers can translate it without inspecting messages.
"""

from __future__ import annotations

from typing import Any


class DictionaryServiceError(Exception):
    """
    Base class for errors surfaced to API callers.
    """

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(DictionaryServiceError):
    """Raised for missing or malformed request fields and identifiers."""

    status_code = 400
    code = "validation_error"


class NotFoundError(DictionaryServiceError):
    """Raised when a dictionary, instance or variable does not exist."""

    status_code = 404
    code = "not_found"


class ConflictError(DictionaryServiceError):
    """Raised when a processing job is already registered for a dictionary."""

    status_code = 409
    code = "conflict"


class UpstreamError(DictionaryServiceError):
    """
    Raised when the remote source answers non-2xx or cannot be reached.
    """

    status_code = 502
    code = "upstream_error"

    def __init__(self, message: str, *, upstream_status: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["upstream_status"] = self.upstream_status
        payload["body"] = (self.body or "")[:2000]
        return payload


class MappingError(DictionaryServiceError):
    """Raised when a row yields no usable identifier. Row-level, never job-fatal."""

    status_code = 422
    code = "mapping_error"


class PersistenceError(DictionaryServiceError):
    """Raised when a write to the store fails."""

    status_code = 500
    code = "persistence_error"
