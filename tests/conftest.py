# tests/conftest.py
"""
Pytest configuration for the booking engine.

Every test gets a fresh in-memory SQLite database. The engine uses a
StaticPool so API requests served from worker threads and Celery tasks run
against the same connection as the test's own session.
"""

import os

# Settings must see the test environment before any application import
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PAYMENT_GATEWAY"] = "fake"
os.environ["REDIS_URL"] = ""
os.environ["NOTIFICATION_SERVICE_URL"] = ""
os.environ["PAYMENT_WEBHOOK_SECRET"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Generator, Optional

from fastapi.testclient import TestClient
from pydantic import TypeAdapter
import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from booking_engine import models  # noqa: F401 - registers tables
from booking_engine.api.dependencies import get_db, get_payment_gateway
from booking_engine.database import Base
from booking_engine.integrations.payment_gateway import FakePaymentGatewayClient
from booking_engine.main import create_app
from booking_engine.models.bookable_asset import BookableAsset
from booking_engine.models.coupon import Coupon, CouponApplicableAsset
from booking_engine.schemas.booking import BookingCreate
from booking_engine.services.booking_service import BookingService
from booking_engine.services.payment_reconciler import PaymentReconciler

_booking_adapter: TypeAdapter[Any] = TypeAdapter(BookingCreate)


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Database session for a single test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def task_sessions(monkeypatch: pytest.MonkeyPatch, session_factory: sessionmaker) -> sessionmaker:
    """Point every Celery task module at the test database."""
    for module in ("booking_tasks", "payment_tasks", "notification_tasks"):
        monkeypatch.setattr(f"booking_engine.tasks.{module}.SessionLocal", session_factory)
    return session_factory


# ---------------------------------------------------------------------------
# Catalog and coupon factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_asset(db: Session) -> Callable[..., BookableAsset]:
    def _make(**overrides: Any) -> BookableAsset:
        values: Dict[str, Any] = {
            "asset_type": "activity",
            "name": "Sunset kayak tour",
            "unit_price": 10000,
            "currency": "BRL",
            "capacity_per_slot": 10,
            "duration_minutes": 120,
            "is_active": True,
        }
        values.update(overrides)
        asset = BookableAsset(**values)
        db.add(asset)
        db.commit()
        return asset

    return _make


@pytest.fixture
def asset(make_asset: Callable[..., BookableAsset]) -> BookableAsset:
    return make_asset()


@pytest.fixture
def make_coupon(db: Session) -> Callable[..., Coupon]:
    def _make(code: str = "SAVE10", *, assets: Optional[list] = None, **overrides: Any) -> Coupon:
        now = datetime.now(timezone.utc)
        values: Dict[str, Any] = {
            "code": code,
            "discount_type": "percentage",
            "discount_value": Decimal("10"),
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
            "coupon_type": "public",
            "allowed_users": [],
            "is_global": assets is None,
            "global_asset_types": [],
            "stackable": False,
            "is_active": True,
            "usage_count": 0,
        }
        values.update(overrides)
        coupon = Coupon(**values)
        coupon.applicable_assets = [
            CouponApplicableAsset(asset_type=item.asset_type, asset_id=item.id)
            for item in (assets or [])
        ]
        db.add(coupon)
        db.commit()
        return coupon

    return _make


# ---------------------------------------------------------------------------
# Booking helpers
# ---------------------------------------------------------------------------


def future_date(days: int = 7) -> date:
    return (datetime.now(timezone.utc) + timedelta(days=days)).date()


@pytest.fixture
def booking_request() -> Callable[..., Any]:
    """Build a validated BookingCreate from plain request data."""

    def _build(asset: BookableAsset, **overrides: Any) -> Any:
        data: Dict[str, Any] = {
            "asset_type": asset.asset_type,
            "asset_id": asset.id,
            "customer": {
                "name": "Ana Souza",
                "email": "ana@example.com",
                "phone": "+5511999990000",
            },
        }
        if asset.asset_type == "activity":
            data.update(
                participants=2,
                scheduled_date=future_date().isoformat(),
                scheduled_time="10:00",
            )
        elif asset.asset_type == "accommodation":
            data.update(
                check_in=future_date().isoformat(),
                check_out=future_date(9).isoformat(),
                rooms=1,
                guests=2,
            )
        data.update(overrides)
        return _booking_adapter.validate_python(data)

    return _build


@pytest.fixture
def gateway() -> FakePaymentGatewayClient:
    return FakePaymentGatewayClient()


@pytest.fixture
def booking_service(db: Session, gateway: FakePaymentGatewayClient) -> BookingService:
    return BookingService(db, gateway)


@pytest.fixture
def reconciler(db: Session, booking_service: BookingService) -> PaymentReconciler:
    return PaymentReconciler(db, booking_service)


@pytest.fixture
def pending_booking(
    booking_service: BookingService,
    asset: BookableAsset,
    booking_request: Callable[..., Any],
) -> Any:
    """An activity booking waiting for payment."""
    return booking_service.create_booking(booking_request(asset)).booking


@pytest.fixture
def paid_notification() -> Callable[..., Dict[str, Any]]:
    """Payment service notification body, camelCase as on the wire."""

    def _build(booking: Any, **overrides: Any) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "providerEventId": "evt_paid_1",
            "providerPaymentId": "pay_123",
            "bookingReference": booking.id,
            "status": "approved",
            "amount": booking.final_amount,
            "currency": booking.currency,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        body.update(overrides)
        return body

    return _build


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest.fixture
def client(db: Session, gateway: FakePaymentGatewayClient) -> Generator[TestClient, None, None]:
    """TestClient sharing the test session and the fake gateway."""
    app = create_app()

    def override_get_db() -> Generator[Session, None, None]:
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
