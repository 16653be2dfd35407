"""
Domain error taxonomy.

Services raise these; the handlers registered in ``portal.main`` render them
as ``{"error": <kind>, "message": <text>}`` with the matching status code.
"""

from typing import Any, Dict, Optional

from fastapi import status


class PortalError(Exception):
    """Base class for errors that map to a structured API response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_kind: str = "internal"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error_kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class UnauthorizedError(PortalError):
    """No valid principal."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_kind = "unauthorized"


class ForbiddenError(PortalError):
    """Valid principal, insufficient capability."""

    status_code = status.HTTP_403_FORBIDDEN
    error_kind = "forbidden"


class NotFoundError(PortalError):
    status_code = status.HTTP_404_NOT_FOUND
    error_kind = "not_found"


class ConflictError(PortalError):
    """Invalid state transition, e.g. ending a session that is no longer active."""

    status_code = status.HTTP_409_CONFLICT
    error_kind = "conflict"


class ValidationError(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_kind = "validation_error"


class InternalError(PortalError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_kind = "internal"


def error_for_status(status_code: int, message: str) -> PortalError:
    """Map a permission-gate status code onto the matching error type."""
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return UnauthorizedError(message)
    if status_code == status.HTTP_403_FORBIDDEN:
        return ForbiddenError(message)
    if status_code == status.HTTP_404_NOT_FOUND:
        return NotFoundError(message)
    if status_code == status.HTTP_409_CONFLICT:
        return ConflictError(message)
    if status_code == status.HTTP_400_BAD_REQUEST:
        return ValidationError(message)
    return InternalError(message)
