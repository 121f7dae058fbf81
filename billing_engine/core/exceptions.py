# billing_engine/core/exceptions.py
"""
Domain-specific exceptions for the billing engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
The webhook taxonomy (AuthenticationError through EventInFlightError)
drives how the Stripe webhook endpoint answers the processor.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when the caller is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Webhook processing taxonomy


class AuthenticationError(ValidationException):
    """Missing or invalid webhook signature. The request is rejected with no side effects."""

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message, code="WEBHOOK_AUTHENTICATION_FAILED")


class EventValidationError(ValidationException):
    """A required field is missing from the event payload. Retrying will not help."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="WEBHOOK_EVENT_INVALID",
            details={"field": field} if field else {},
        )


class DuplicateEventError(DomainException):
    """The external reference was already processed; carries the stored outcome."""

    def __init__(self, reference: str, outcome: Dict[str, Any]) -> None:
        super().__init__(
            f"Reference {reference} was already processed",
            code="DUPLICATE_EVENT",
            details={"reference": reference},
        )
        self.reference = reference
        self.outcome = outcome


class DownstreamUnavailable(ServiceException):
    """An external billing, invoicing or notification system could not be reached."""

    def __init__(self, system: str, message: str) -> None:
        super().__init__(message, code="DOWNSTREAM_UNAVAILABLE", details={"system": system})
        self.system = system


class ProcessingDeferred(DownstreamUnavailable):
    """The processing budget ran out before any write was made."""

    def __init__(self, system: str, message: str = "Processing budget exhausted") -> None:
        super().__init__(system, message)
        self.code = "PROCESSING_DEFERRED"


class PersistenceError(ServiceException):
    """A storage write failed; the whole handler is aborted so the processor retries."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="PERSISTENCE_ERROR", details=details)


class ReconciliationAbort(ServiceException):
    """Payout pagination failed mid-scan; nothing was written and a full retry is safe."""

    def __init__(self, payout_id: str, message: str) -> None:
        super().__init__(message, code="RECONCILIATION_ABORTED", details={"payout_id": payout_id})
        self.payout_id = payout_id


class EventInFlightError(ConflictException):
    """Another delivery currently holds the idempotency reservation for this reference."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, reference: str) -> None:
        super().__init__(
            f"Reference {reference} is being processed by another delivery",
            code="PROCESSING_IN_PROGRESS",
            details={"reference": reference},
        )
        self.reference = reference


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
