# booking_engine/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

These exceptions carry business-focused messages and a stable code so the
API layer can render them without leaking internals.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

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
        """Convert to an HTTPException using the class status code."""
        return HTTPException(
            status_code=self.http_status,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    http_status = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    http_status = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when an operation conflicts with the current state of the data."""

    http_status = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    http_status = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.http_status,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class InvalidTransitionException(ConflictException):
    """Raised when a trigger is not allowed from the booking's current status."""

    def __init__(
        self,
        current_status: str,
        trigger: str,
        reason: Optional[str] = None,
        *,
        booking_id: Optional[str] = None,
    ):
        self.current_status = current_status
        self.trigger = trigger
        super().__init__(
            message=reason or f"Cannot apply '{trigger}' to a booking in status '{current_status}'",
            code="INVALID_TRANSITION",
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "trigger": trigger,
            },
        )


class ConcurrentModificationException(ConflictException):
    """Raised when a booking changed underneath a transition and retries ran out."""

    def __init__(self, booking_id: str, attempts: int):
        super().__init__(
            message="The booking was modified concurrently; please retry",
            code="CONCURRENT_MODIFICATION",
            details={"booking_id": booking_id, "attempts": attempts},
        )


class CapacityExceededException(ConflictException):
    """Raised when a reservation would exceed a slot's capacity."""

    def __init__(self, asset_id: str, slot_key: str, requested: int):
        self.asset_id = asset_id
        self.slot_key = slot_key
        self.requested = requested
        super().__init__(
            message=f"Not enough capacity for {slot_key}",
            code="CAPACITY_EXCEEDED",
            details={"asset_id": asset_id, "slot": slot_key, "requested": requested},
        )


class UnknownBookingException(NotFoundException):
    """
    Raised when a payment notification references a booking we cannot find.

    Providers retry non-2xx deliveries, which covers the race where the
    notification overtakes the booking's own commit.
    """

    retryable = True

    def __init__(self, booking_reference: str):
        self.booking_reference = booking_reference
        super().__init__(
            message="Booking not found for payment notification",
            code="UNKNOWN_BOOKING",
            details={"booking_reference": booking_reference},
        )


class CouponRejectedException(ValidationException):
    """Raised when a coupon cannot be applied to an order."""

    def __init__(self, code: str, reason: str, message: Optional[str] = None):
        self.coupon_code = code
        self.reason = reason
        super().__init__(
            message=message or f"Coupon {code} cannot be applied",
            code="COUPON_REJECTED",
            details={"coupon_code": code, "reason": reason},
        )


class ProviderException(ServiceException):
    """
    Raised when the payment provider fails or rejects a request.

    ``transient`` marks network failures and 5xx/429 responses that may be
    retried; business rejections are terminal.
    """

    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
    ):
        self.transient = transient
        self.status_code = status_code
        self.provider = provider
        super().__init__(
            message=message,
            code="PAYMENT_PROVIDER_ERROR",
            details={
                "provider": provider,
                "transient": transient,
                "status_code": status_code,
            },
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures, or constraint violations.
    """
