# booking_engine/routes/v1/coupons.py
"""
Coupon routes - API v1

Endpoints:
    POST / - Create a coupon (public, private, first purchase, returning customer)
    GET / - List coupons
    POST /validate - Preview a coupon against an order without redeeming it
    GET /{code} - Coupon details
    POST /{code}/deactivate - Soft-deactivate a coupon
"""

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Body, Depends, Query, status

from ...api.dependencies import get_coupon_engine
from ...core.exceptions import DomainException
from ...schemas.coupon import (
    CouponCreate,
    CouponResponse,
    CouponValidateRequest,
    CouponValidateResponse,
)
from ...services.coupon_engine import CouponEngine
from .bookings import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["coupons-v1"])


@router.post(
    "",
    response_model=CouponResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "Invalid coupon"}, 409: {"description": "Duplicate code"}},
)
async def create_coupon(
    coupon_data: CouponCreate = Body(...),
    coupon_engine: CouponEngine = Depends(get_coupon_engine),
) -> CouponResponse:
    """Create a coupon; a code is generated when none is given."""
    try:
        coupon = await asyncio.to_thread(coupon_engine.create_coupon, coupon_data)
        return CouponResponse.from_coupon(coupon)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=List[CouponResponse])
async def list_coupons(
    active_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    coupon_engine: CouponEngine = Depends(get_coupon_engine),
) -> List[CouponResponse]:
    coupons = await asyncio.to_thread(
        coupon_engine.list_coupons, active_only=active_only, limit=limit
    )
    return [CouponResponse.from_coupon(coupon) for coupon in coupons]


@router.post(
    "/validate",
    response_model=CouponValidateResponse,
    response_model_by_alias=True,
)
async def validate_coupon(
    request_data: CouponValidateRequest = Body(...),
    coupon_engine: CouponEngine = Depends(get_coupon_engine),
) -> CouponValidateResponse:
    """
    Check what a coupon would do to an order.

    Invalid coupons are a normal answer (``isValid: false`` with a reason),
    not an error.
    """
    try:
        preview = await asyncio.to_thread(
            lambda: coupon_engine.preview(
                request_data.coupon_code,
                order_value=request_data.order_value,
                user_id=request_data.user_id,
                email=request_data.email,
                asset_type=request_data.asset_type.value if request_data.asset_type else None,
                asset_id=request_data.asset_id,
                has_purchase_history=request_data.has_purchase_history,
            )
        )
    except DomainException as e:
        handle_domain_exception(e)
    return CouponValidateResponse(
        is_valid=preview.is_valid,
        code=preview.code,
        discount_amount=preview.discount_amount if preview.is_valid else None,
        final_amount=preview.final_amount,
        reason=preview.reason.value if preview.reason else None,
        message=preview.message,
    )


@router.get(
    "/{code}",
    response_model=CouponResponse,
    responses={404: {"description": "Coupon not found"}},
)
async def get_coupon(
    code: str,
    coupon_engine: CouponEngine = Depends(get_coupon_engine),
) -> CouponResponse:
    try:
        coupon = await asyncio.to_thread(coupon_engine.get_coupon, code)
        return CouponResponse.from_coupon(coupon)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{code}/deactivate",
    response_model=CouponResponse,
    responses={404: {"description": "Coupon not found"}},
)
async def deactivate_coupon(
    code: str,
    coupon_engine: CouponEngine = Depends(get_coupon_engine),
) -> CouponResponse:
    """Soft-deactivate a coupon; existing redemptions are kept."""
    try:
        coupon = await asyncio.to_thread(coupon_engine.deactivate, code)
        return CouponResponse.from_coupon(coupon)
    except DomainException as e:
        handle_domain_exception(e)
