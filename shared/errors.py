"""
Shared error handling for the ICP lookup service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class IcpServiceException(Exception):
    """Base exception for ICP lookup service errors."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self, trace_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class MethodNotAllowedError(IcpServiceException):
    """Request used an HTTP method other than GET."""

    status_code = 405

    def __init__(self, message: str = "Method not allowed", details: Optional[Dict[str, Any]] = None):
        super().__init__("METHOD_NOT_ALLOWED", message, details)


class NotFoundError(IcpServiceException):
    """Request path does not name a lookup subject."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class DeadlineExceededError(IcpServiceException):
    """Lookup did not settle within its deadline budget."""

    status_code = 504

    def __init__(self, message: str = "Lookup timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("TIMEOUT", message, details)


class StoreUnavailableError(IcpServiceException):
    """Cache backing store could not be reached."""

    status_code = 503

    def __init__(self, message: str = "Cache store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", message, details)


class UpstreamError(IcpServiceException):
    """
    Failure reported by, or while talking to, the upstream ICP service.

    ``cachable`` is set by the upstream adapter for deterministic,
    subject-specific failures (unknown domain, invalid domain syntax).
    Everything else is transient and must be retried by the next caller.
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: int = 502,
        cachable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details, status_code=status_code)
        self.cachable = cachable

    def __repr__(self) -> str:
        return (
            f"UpstreamError(code={self.code!r}, status_code={self.status_code}, "
            f"cachable={self.cachable})"
        )
