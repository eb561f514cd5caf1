from datetime import date

import pytest
from pydantic import TypeAdapter

from booking_engine.schemas.booking import BookingCreate, _BookingCreateBase

CUSTOMER = {"name": "Ana Souza", "email": "ana@example.com"}

adapter = TypeAdapter(BookingCreate)


def test_base_request_cannot_be_built_directly():
    with pytest.raises(TypeError):
        _BookingCreateBase(asset_id="01HASSET", customer=CUSTOMER)


def test_accommodation_holds_one_slot_per_night():
    request = adapter.validate_python(
        {
            "asset_type": "accommodation",
            "asset_id": "01HASSET",
            "customer": CUSTOMER,
            "check_in": "2030-03-01",
            "check_out": "2030-03-04",
            "rooms": 2,
            "guests": 3,
        }
    )

    assert [slot.slot_key for slot in request.slot_requests()] == [
        "2030-03-01",
        "2030-03-02",
        "2030-03-03",
    ]
    assert {slot.quantity for slot in request.slot_requests()} == {2}
    assert request.quantity == 2
    assert request.billable_units() == 6


def test_open_dated_event_uses_general_slot():
    request = adapter.validate_python(
        {"asset_type": "event", "asset_id": "01HASSET", "customer": CUSTOMER, "tickets": 4}
    )

    assert [(slot.slot_key, slot.quantity) for slot in request.slot_requests()] == [
        ("general", 4)
    ]
    assert request.schedule(120).start_at is None
    assert request.details() == {
        "asset_type": "event",
        "tickets": 4,
        "event_date": None,
        "ticket_type": None,
    }


def test_activity_schedule_spans_duration():
    request = adapter.validate_python(
        {
            "asset_type": "activity",
            "asset_id": "01HASSET",
            "customer": CUSTOMER,
            "participants": 2,
            "scheduled_date": "2030-03-01",
            "scheduled_time": "10:00",
        }
    )

    schedule = request.schedule(90)
    assert schedule.scheduled_date == date(2030, 3, 1)
    assert (schedule.end_at - schedule.start_at).total_seconds() == 90 * 60
