# booking_engine/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ...integrations import PaymentGatewayClient, build_payment_gateway
from ...services.booking_service import BookingService
from ...services.capacity_guard import CapacityGuard
from ...services.coupon_engine import CouponEngine
from ...services.payment_reconciler import PaymentReconciler
from .database import get_db


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGatewayClient:
    """Process-wide gateway client; it holds no per-request state."""
    return build_payment_gateway()


def get_booking_service(
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
) -> BookingService:
    return BookingService(db, gateway)


def get_coupon_engine(db: Session = Depends(get_db)) -> CouponEngine:
    return CouponEngine(db)


def get_capacity_guard(db: Session = Depends(get_db)) -> CapacityGuard:
    return CapacityGuard(db)


def get_payment_reconciler(
    booking_service: BookingService = Depends(get_booking_service),
) -> PaymentReconciler:
    return PaymentReconciler(booking_service.db, booking_service)
