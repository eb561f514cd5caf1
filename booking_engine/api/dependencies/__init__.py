# booking_engine/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .database import get_db
from .services import (
    get_booking_service,
    get_capacity_guard,
    get_coupon_engine,
    get_payment_gateway,
    get_payment_reconciler,
)

__all__ = [
    # Database
    "get_db",
    # Services
    "get_booking_service",
    "get_capacity_guard",
    "get_coupon_engine",
    "get_payment_gateway",
    "get_payment_reconciler",
]
