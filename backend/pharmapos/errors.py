"""
Typed failures raised by the core engines.

Every engine error aborts the enclosing unit of work and reaches the caller
as one of these types. The HTTP layer maps ``status_code`` directly; other
callers can branch on the class.
"""

from __future__ import annotations


class CoreError(Exception):
    """Base class for every business failure."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(CoreError, ValueError):
    """Malformed input caught before it reaches an engine."""

    status_code = 400


class NotFoundError(CoreError):
    """A referenced product, sale, purchase, client, supplier, shift or payment does not exist."""

    status_code = 404


class ConflictError(CoreError):
    """Double-open shift, or a cash operation attempted without an open shift."""

    status_code = 409


class InvalidStateError(CoreError):
    """The document is not in a state that allows the operation."""

    status_code = 409


class InsufficientResourceError(CoreError):
    """Stock, credit limit or remaining balance cannot cover the request."""

    status_code = 422
