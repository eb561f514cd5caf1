# booking_engine/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from . import __version__
from .core.config import is_running_tests, settings
from .errors import register_error_handlers
from .routes import health, payment_webhooks, prometheus, stripe_webhooks
from .routes.v1 import bookings as bookings_v1, coupons as coupons_v1

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info("Booking engine API starting up...")
    logger.info(
        "Environment: %s (payment gateway: %s)", settings.environment, settings.payment_gateway
    )
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")
    yield
    logger.info("Booking engine API shutting down...")


def create_app() -> FastAPI:
    application = FastAPI(
        title="Booking Engine",
        description="Booking lifecycle and payment reconciliation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    # Register unified error envelope handlers
    register_error_handlers(application)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(bookings_v1.router, prefix="/bookings")
    api_v1.include_router(coupons_v1.router, prefix="/coupons")
    application.include_router(api_v1)

    application.include_router(payment_webhooks.router)
    application.include_router(stripe_webhooks.router)
    application.include_router(health.router)
    application.include_router(prometheus.router)
    return application


app = create_app()
