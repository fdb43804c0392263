"""
Shared error handling for the local API sidecar.

Every error leaving the gateway is a JSON object with an ``error`` field and,
for handler faults and upstream failures, an optional ``reason``.
"""

from typing import Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    reason: Optional[str] = None


class SidecarError(Exception):
    """Base exception for sidecar failures that map onto an HTTP response."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None):
        self.message = message or self.default_message
        self.reason = reason
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.message, reason=self.reason)

    def to_dict(self) -> dict:
        return self.to_response().model_dump(exclude_none=True)


class NotFoundError(SidecarError):
    """No local handler and no remote fallback."""

    status_code = 404
    default_message = "No local handler for this endpoint"


class UnauthorizedError(SidecarError):
    """Missing or wrong bearer token."""

    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(SidecarError):
    """Authenticated but not permitted."""

    status_code = 403
    default_message = "Forbidden"


class SSRFViolation(ForbiddenError):
    """Outbound URL rejected by the SSRF guard."""

    default_message = "URL not allowed"


class ValidationError(SidecarError):
    """Request payload failed validation."""

    status_code = 422
    default_message = "Validation failed"


class BadRequestError(SidecarError):
    """Malformed request."""

    status_code = 400
    default_message = "Bad request"


class HandlerFault(SidecarError):
    """A local handler raised, or returned something that is not a response."""

    status_code = 502
    default_message = "Local handler error"


class UpstreamError(SidecarError):
    """An outbound call made by the gateway itself failed."""

    status_code = 502
    default_message = "Upstream request failed"


class UpstreamTimeout(UpstreamError):
    """An outbound call made by the gateway itself timed out."""

    status_code = 504
    default_message = "Upstream timeout"
