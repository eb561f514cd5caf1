# booking_engine/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService.

Endpoints:
    POST / - Create a booking and its payment preference
    GET /{booking_id} - Booking details
    POST /{booking_id}/cancel - Cancel a booking
    POST /{booking_id}/confirm - Partner accepts a paid booking
    POST /{booking_id}/start - Mark booking as started
    POST /{booking_id}/complete - Mark booking as completed
    POST /{booking_id}/no-show - Mark booking as no-show
    POST /{booking_id}/capture - Capture an authorized payment
    POST /{booking_id}/refund - Refund a paid booking
    POST /{booking_id}/release-capacity - Give back a canceled booking's capacity
"""

import asyncio
import logging
from typing import Any, Callable, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.params import Path

from ...api.dependencies import get_booking_service
from ...core.exceptions import DomainException
from ...models.booking import BookingRecord
from ...schemas.booking import (
    BookingCancelRequest,
    BookingCaptureRequest,
    BookingCreate,
    BookingCreatedResponse,
    BookingRefundRequest,
    BookingResponse,
    CapacityReleaseResponse,
    PaymentActionResponse,
)
from ...services.booking_service import BookingService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _booking_id_path() -> Any:
    return Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    )


async def _run_transition(
    action: Callable[[str], BookingRecord], booking_id: str
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(action, booking_id)
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "",
    response_model=BookingCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid request or coupon"},
        404: {"description": "Asset not found"},
        409: {"description": "Capacity exceeded"},
        502: {"description": "Payment provider unavailable"},
    },
)
async def create_booking(
    booking_data: BookingCreate = Body(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingCreatedResponse:
    """
    Create a booking for any asset type.

    The booking holds capacity for ``BOOKING_HOLD_MINUTES`` while the
    customer pays at ``payment_redirect_url``.
    """
    try:
        result = await asyncio.to_thread(booking_service.create_booking, booking_data)
        return BookingCreatedResponse.from_result(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def get_booking(
    booking_id: str = _booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Get full booking details."""
    try:
        booking = await asyncio.to_thread(booking_service.get_booking, booking_id)
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    responses={
        404: {"description": "Booking not found"},
        409: {"description": "Invalid transition"},
    },
)
async def cancel_booking(
    booking_id: str = _booking_id_path(),
    cancel_data: Optional[BookingCancelRequest] = Body(None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Cancel a booking."""
    try:
        booking = await asyncio.to_thread(
            booking_service.cancel_booking,
            booking_id,
            cancel_data.reason if cancel_data else None,
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: str = _booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Partner accepts a paid booking that awaits confirmation."""
    return await _run_transition(booking_service.confirm_booking, booking_id)


@router.post("/{booking_id}/start", response_model=BookingResponse)
async def start_booking(
    booking_id: str = _booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return await _run_transition(booking_service.start_booking, booking_id)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: str = _booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return await _run_transition(booking_service.complete_booking, booking_id)


@router.post("/{booking_id}/no-show", response_model=BookingResponse)
async def mark_no_show(
    booking_id: str = _booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Mark a confirmed or in-progress booking as a no-show."""
    return await _run_transition(booking_service.mark_no_show, booking_id)


@router.post(
    "/{booking_id}/capture",
    response_model=PaymentActionResponse,
    responses={422: {"description": "Booking has no provider payment"}},
)
async def capture_payment(
    booking_id: str = _booking_id_path(),
    capture_data: Optional[BookingCaptureRequest] = Body(None),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaymentActionResponse:
    """
    Capture an authorized payment at the provider.

    The booking changes when the provider's notification arrives.
    """
    try:
        provider_status = await asyncio.to_thread(
            booking_service.capture_payment,
            booking_id,
            capture_data.amount if capture_data else None,
        )
        return PaymentActionResponse(booking_id=booking_id, payment_status=provider_status)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/refund",
    response_model=BookingResponse,
    responses={
        409: {"description": "Booking cannot be refunded"},
        422: {"description": "Booking has no provider payment"},
    },
)
async def refund_booking(
    booking_id: str = _booking_id_path(),
    refund_data: Optional[BookingRefundRequest] = Body(None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Refund a paid booking in full or in part."""
    try:
        booking = await asyncio.to_thread(
            booking_service.request_refund,
            booking_id,
            refund_data.amount if refund_data else None,
            refund_data.reason if refund_data else None,
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/release-capacity",
    response_model=CapacityReleaseResponse,
    responses={422: {"description": "Booking still uses its capacity"}},
)
async def release_capacity(
    booking_id: str = _booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> CapacityReleaseResponse:
    """Release the capacity of a canceled or no-show booking."""
    try:
        released = await asyncio.to_thread(booking_service.release_capacity, booking_id)
        return CapacityReleaseResponse(booking_id=booking_id, released=released)
    except DomainException as e:
        handle_domain_exception(e)
