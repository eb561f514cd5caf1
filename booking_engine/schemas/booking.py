# booking_engine/schemas/booking.py
"""
Booking schemas.

Booking creation is a tagged union on ``asset_type``. Every variant knows
three things about itself: which capacity slots it occupies, how many units
are billed, and when it takes place. The service works only with those
answers, so adding an asset type means adding a variant here.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import EmailStr, Field, field_validator, model_validator

from ..domain.booking_plan import BookingSchedule, SlotRequest, at_utc, iter_days, slot_key_for
from ._strict_base import StrictModel, StrictRequestModel
from .base import StandardizedModel

DATE_ONLY_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MAX_COUPON_CODES = 5


def _ensure_date_only(value: object, field_name: str) -> object:
    if isinstance(value, str):
        candidate = value.strip()
        if not DATE_ONLY_REGEX.fullmatch(candidate):
            raise ValueError(f"{field_name} must be a YYYY-MM-DD date-only string")
        return candidate
    return value


def _parse_time(value: object) -> object:
    """Accept ``HH:MM`` strings as well as time objects."""
    if isinstance(value, str):
        try:
            hour, minute = value.strip().split(":")[:2]
            return time(int(hour), int(minute))
        except (ValueError, AttributeError):
            raise ValueError(f"Invalid time format: {value}. Expected HH:MM format.")
    return value


class CustomerContact(StrictRequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=40)
    user_id: Optional[str] = Field(None, max_length=64)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("name cannot be blank")
        return stripped

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


class _BookingCreateBase(StrictRequestModel, ABC):
    """Fields every booking request carries."""

    asset_id: str = Field(..., min_length=1, max_length=26)
    customer: CustomerContact
    coupon_codes: List[str] = Field(default_factory=list, max_length=MAX_COUPON_CODES)
    special_requests: Optional[str] = Field(None, max_length=1000)

    @field_validator("special_requests")
    @classmethod
    def _clean_requests(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v

    @abstractmethod
    def slot_requests(self) -> List[SlotRequest]:
        """Capacity slots the booking holds, one per day for multi-day variants."""

    @abstractmethod
    def billable_units(self) -> int:
        """Units the asset's unit price is multiplied by."""

    def schedule(self, duration_minutes: int) -> BookingSchedule:
        return BookingSchedule()

    @property
    @abstractmethod
    def quantity(self) -> int:
        """Headcount or unit count stored on the booking record."""

    def details(self) -> Dict[str, Any]:
        """Variant specific input, kept verbatim on the booking."""
        return self.model_dump(
            mode="json",
            exclude={"asset_id", "customer", "coupon_codes", "special_requests"},
        )


class ActivityBookingCreate(_BookingCreateBase):
    asset_type: Literal["activity"] = "activity"
    participants: int = Field(..., ge=1, le=100)
    scheduled_date: date
    scheduled_time: time

    @field_validator("scheduled_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "scheduled_date")

    @field_validator("scheduled_time", mode="before")
    @classmethod
    def _parse_time(cls, v: object) -> object:
        return _parse_time(v)

    @property
    def quantity(self) -> int:
        return self.participants

    def slot_requests(self) -> List[SlotRequest]:
        key = slot_key_for(self.scheduled_date, self.scheduled_time)
        return [SlotRequest(key, self.participants)]

    def billable_units(self) -> int:
        return self.participants

    def schedule(self, duration_minutes: int) -> BookingSchedule:
        start = at_utc(self.scheduled_date, self.scheduled_time)
        return BookingSchedule(
            scheduled_date=self.scheduled_date,
            scheduled_time=self.scheduled_time,
            start_at=start,
            end_at=start + timedelta(minutes=duration_minutes),
        )


class EventBookingCreate(_BookingCreateBase):
    """Tickets for an event; open-dated events have no schedule."""

    asset_type: Literal["event"] = "event"
    tickets: int = Field(..., ge=1, le=50)
    event_date: Optional[date] = None
    ticket_type: Optional[str] = Field(None, max_length=50)

    @field_validator("event_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "event_date")

    @property
    def quantity(self) -> int:
        return self.tickets

    def slot_requests(self) -> List[SlotRequest]:
        key = self.event_date.isoformat() if self.event_date else "general"
        return [SlotRequest(key, self.tickets)]

    def billable_units(self) -> int:
        return self.tickets

    def schedule(self, duration_minutes: int) -> BookingSchedule:
        if self.event_date is None:
            return BookingSchedule()
        start = at_utc(self.event_date)
        return BookingSchedule(
            scheduled_date=self.event_date,
            start_at=start,
            end_at=start + timedelta(minutes=duration_minutes),
        )


class RestaurantBookingCreate(_BookingCreateBase):
    """A table reservation: one table per booking, priced per reservation."""

    asset_type: Literal["restaurant"] = "restaurant"
    party_size: int = Field(..., ge=1, le=50)
    scheduled_date: date
    scheduled_time: time

    @field_validator("scheduled_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "scheduled_date")

    @field_validator("scheduled_time", mode="before")
    @classmethod
    def _parse_time(cls, v: object) -> object:
        return _parse_time(v)

    @property
    def quantity(self) -> int:
        return self.party_size

    def slot_requests(self) -> List[SlotRequest]:
        return [SlotRequest(slot_key_for(self.scheduled_date, self.scheduled_time), 1)]

    def billable_units(self) -> int:
        return 1

    def schedule(self, duration_minutes: int) -> BookingSchedule:
        start = at_utc(self.scheduled_date, self.scheduled_time)
        return BookingSchedule(
            scheduled_date=self.scheduled_date,
            scheduled_time=self.scheduled_time,
            start_at=start,
            end_at=start + timedelta(minutes=duration_minutes),
        )


class VehicleBookingCreate(_BookingCreateBase):
    """A rental: one unit of the vehicle for every day from pickup to return."""

    asset_type: Literal["vehicle"] = "vehicle"
    pickup_date: date
    return_date: date
    pickup_time: Optional[time] = None
    pickup_location: Optional[str] = Field(None, max_length=200)
    return_location: Optional[str] = Field(None, max_length=200)

    @field_validator("pickup_date", "return_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "date")

    @field_validator("pickup_time", mode="before")
    @classmethod
    def _parse_time(cls, v: object) -> object:
        return _parse_time(v)

    @model_validator(mode="after")
    def _check_range(self) -> "VehicleBookingCreate":
        if self.return_date <= self.pickup_date:
            raise ValueError("return_date must be after pickup_date")
        return self

    @property
    def quantity(self) -> int:
        return 1

    @property
    def rental_days(self) -> int:
        return (self.return_date - self.pickup_date).days

    def slot_requests(self) -> List[SlotRequest]:
        days = iter_days(self.pickup_date, self.return_date)
        return [SlotRequest(day.isoformat(), 1) for day in days]

    def billable_units(self) -> int:
        return self.rental_days

    def schedule(self, duration_minutes: int) -> BookingSchedule:
        return BookingSchedule(
            scheduled_date=self.pickup_date,
            scheduled_time=self.pickup_time,
            end_date=self.return_date,
            start_at=at_utc(self.pickup_date, self.pickup_time),
            end_at=at_utc(self.return_date, self.pickup_time),
        )


class AccommodationBookingCreate(_BookingCreateBase):
    """A stay: ``rooms`` units of every night from check-in to check-out."""

    asset_type: Literal["accommodation"] = "accommodation"
    check_in: date
    check_out: date
    rooms: int = Field(1, ge=1, le=20)
    guests: int = Field(..., ge=1, le=50)

    @field_validator("check_in", "check_out", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "date")

    @model_validator(mode="after")
    def _check_range(self) -> "AccommodationBookingCreate":
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        if self.guests < self.rooms:
            raise ValueError("every room needs at least one guest")
        return self

    @property
    def quantity(self) -> int:
        return self.rooms

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def slot_requests(self) -> List[SlotRequest]:
        nights = iter_days(self.check_in, self.check_out)
        return [SlotRequest(night.isoformat(), self.rooms) for night in nights]

    def billable_units(self) -> int:
        return self.nights * self.rooms

    def schedule(self, duration_minutes: int) -> BookingSchedule:
        return BookingSchedule(
            scheduled_date=self.check_in,
            end_date=self.check_out,
            start_at=at_utc(self.check_in),
            end_at=at_utc(self.check_out),
        )


class PackageBookingCreate(_BookingCreateBase):
    asset_type: Literal["package"] = "package"
    participants: int = Field(..., ge=1, le=100)
    departure_date: date

    @field_validator("departure_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "departure_date")

    @property
    def quantity(self) -> int:
        return self.participants

    def slot_requests(self) -> List[SlotRequest]:
        return [SlotRequest(self.departure_date.isoformat(), self.participants)]

    def billable_units(self) -> int:
        return self.participants

    def schedule(self, duration_minutes: int) -> BookingSchedule:
        start = at_utc(self.departure_date)
        return BookingSchedule(
            scheduled_date=self.departure_date,
            start_at=start,
            end_at=start + timedelta(minutes=duration_minutes),
        )


BookingCreate = Annotated[
    Union[
        ActivityBookingCreate,
        EventBookingCreate,
        RestaurantBookingCreate,
        VehicleBookingCreate,
        AccommodationBookingCreate,
        PackageBookingCreate,
    ],
    Field(discriminator="asset_type"),
]


class BookingCancelRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingRefundRequest(StrictRequestModel):
    amount: Optional[int] = Field(None, gt=0, description="Minor units; omit for a full refund")
    reason: Optional[str] = Field(None, max_length=500)


class BookingCaptureRequest(StrictRequestModel):
    amount: Optional[int] = Field(None, gt=0, description="Minor units; omit to capture in full")


class AppliedCouponResponse(StrictModel):
    code: str
    discount_amount: int


class DiscardedCouponResponse(StrictModel):
    code: str
    reason: str
    message: str


class BookingCreatedResponse(StrictModel):
    booking_id: str
    status: str
    confirmation_code: Optional[str]
    currency: str
    base_amount: int
    discount_amount: int
    final_amount: int
    payment_redirect_url: Optional[str]
    hold_expires_at: Optional[datetime]
    applied_coupons: List[AppliedCouponResponse] = Field(default_factory=list)
    discarded_coupons: List[DiscardedCouponResponse] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: Any) -> "BookingCreatedResponse":
        booking = result.booking
        return cls(
            booking_id=booking.id,
            status=booking.status,
            confirmation_code=booking.confirmation_code,
            currency=booking.currency,
            base_amount=booking.base_amount,
            discount_amount=booking.discount_amount,
            final_amount=booking.final_amount,
            payment_redirect_url=result.payment_redirect_url,
            hold_expires_at=booking.hold_expires_at,
            applied_coupons=[
                AppliedCouponResponse(code=entry.code, discount_amount=entry.discount_amount)
                for entry in booking.applied_coupons
            ],
            discarded_coupons=[
                DiscardedCouponResponse(
                    code=item.code, reason=item.reason.value, message=item.message
                )
                for item in result.discarded_coupons
            ],
        )


class BookingResponse(StandardizedModel):
    id: str
    asset_type: str
    asset_id: str
    status: str
    payment_status: Optional[str] = None
    confirmation_code: Optional[str] = None
    quantity: int
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    end_date: Optional[date] = None
    scheduled_start_at: Optional[datetime] = None
    scheduled_end_at: Optional[datetime] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    currency: str
    base_amount: int
    discount_amount: int
    final_amount: int
    amount_paid: int = 0
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    hold_expires_at: Optional[datetime] = None
    checkout_url: Optional[str] = None
    cancellation_reason: Optional[str] = None
    applied_coupons: List[AppliedCouponResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    version: int

    @classmethod
    def from_booking(cls, booking: Any) -> "BookingResponse":
        return cls(
            id=booking.id,
            asset_type=booking.asset_type,
            asset_id=booking.asset_id,
            status=booking.status,
            payment_status=booking.payment_status,
            confirmation_code=booking.confirmation_code,
            quantity=booking.quantity,
            scheduled_date=booking.scheduled_date,
            scheduled_time=booking.scheduled_time,
            end_date=booking.end_date,
            scheduled_start_at=booking.scheduled_start_at,
            scheduled_end_at=booking.scheduled_end_at,
            details=booking.details or {},
            currency=booking.currency,
            base_amount=booking.base_amount,
            discount_amount=booking.discount_amount,
            final_amount=booking.final_amount,
            amount_paid=booking.amount_paid or 0,
            customer_name=booking.customer_name,
            customer_email=booking.customer_email,
            customer_phone=booking.customer_phone,
            hold_expires_at=booking.hold_expires_at,
            checkout_url=booking.checkout_url,
            cancellation_reason=booking.cancellation_reason,
            applied_coupons=[
                AppliedCouponResponse(code=entry.code, discount_amount=entry.discount_amount)
                for entry in booking.applied_coupons
            ],
            created_at=booking.created_at,
            updated_at=booking.updated_at,
            confirmed_at=booking.confirmed_at,
            canceled_at=booking.canceled_at,
            version=booking.version,
        )


class PaymentActionResponse(StrictModel):
    booking_id: str
    payment_status: str


class CapacityReleaseResponse(StrictModel):
    booking_id: str
    released: bool
