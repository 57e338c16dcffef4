# Overview: Typed domain errors raised by the order and inventory services.

"""
Error taxonomy for the order engine.

Services raise these; they never log-and-continue. The HTTP layer turns
them into responses with `to_dict()` and `http_status`.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error the engine reports to its callers."""

    code = "ENGINE_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def public_message(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {
            "error": self.public_message(),
            "code": self.code,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(EngineError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        details = dict(details or {})
        if field is not None:
            details.setdefault("field", field)
        super().__init__(message, details)
        self.field = field


class NotFoundError(EngineError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidStateError(EngineError):
    """Operation is not legal for the entity's current state."""

    code = "INVALID_STATE"


class InvalidTransitionError(InvalidStateError):
    """Requested status is not reachable from the current status."""

    code = "INVALID_TRANSITION"


class InsufficientStockError(EngineError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409
    retryable = True


class ConflictError(EngineError):
    """409-level uniqueness conflict (e.g., duplicate order number)."""

    code = "CONFLICT"
    http_status = 409
    retryable = True


class StorageError(EngineError):
    """Persistence failure. The unit of work has been rolled back."""

    code = "STORAGE_ERROR"
    http_status = 500

    def public_message(self) -> str:
        return "Storage failure"

    def to_dict(self) -> dict:
        # Internal detail stays in the logs
        return {
            "error": self.public_message(),
            "code": self.code,
            "details": {},
            "retryable": self.retryable,
        }
