"""
Domain exceptions for the booking lifecycle core.

Every rejected mutation raises one of these before anything is written, so
callers always see the booking exactly as it was. The API layer converts them
to HTTP responses through a single exception handler.
"""

from typing import Any, Dict, Optional

from fastapi import status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "domain_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_detail(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class InvalidTransitionError(DomainException):
    """Requested status edge is not permitted from the current status."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "invalid_transition"


class ConflictError(DomainException):
    """Version mismatch: the booking changed since the caller last read it."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class AmountMismatchError(DomainException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "amount_mismatch"


class InvalidStateError(DomainException):
    """Operation is not legal for the current payment/refund sub-state."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "invalid_state"


class GatewayUnavailableError(DomainException):
    """Transient payment-gateway failure. Safe to retry with backoff."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "gateway_unavailable"


class StoreUnavailableError(DomainException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "store_unavailable"


class NotFoundError(DomainException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ForbiddenError(DomainException):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"
