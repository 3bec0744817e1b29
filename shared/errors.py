"""
Shared error handling for the User Service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class UserServiceException(Exception):
    """Base exception for User Service errors."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class NotFoundError(UserServiceException):
    """Entity absent from the store."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class StoreError(UserServiceException):
    """Relational store failure."""

    def __init__(self, message: str = "Store error", details: Optional[Dict[str, Any]] = None,
                 code: str = "STORE_ERROR"):
        super().__init__(code, message, details)


class ConstraintViolationError(StoreError):
    """Duplicate unique key or other integrity failure."""

    # TODO: switch to 409 once clients stop relying on 500 for duplicates
    status_code = 500

    def __init__(self, message: str = "Constraint violation", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="CONSTRAINT_VIOLATION")


class StoreUnavailableError(StoreError):
    """Store could not be reached."""

    def __init__(self, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="STORE_UNAVAILABLE")


class CacheUnavailableError(UserServiceException):
    """Cache backend could not be reached. Never surfaced to clients."""

    status_code = 503

    def __init__(self, message: str = "Cache unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_UNAVAILABLE", message, details)
