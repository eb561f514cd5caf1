# booking_engine/schemas/payment_webhook.py
"""Payment notification schemas (camelCase on the wire)."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class PaymentWebhookPayload(BaseModel):
    """
    Normalized payment notification.

    Unknown keys are ignored so providers can send richer bodies; the raw
    body is stored separately in the webhook ledger.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    provider_event_id: str = Field(..., min_length=1, max_length=255)
    provider_payment_id: Optional[str] = Field(None, max_length=255)
    booking_reference: str = Field(..., min_length=1, max_length=64)
    status: str = Field(..., min_length=1, max_length=50)
    amount: Optional[int] = Field(None, ge=0, description="Minor units")
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    timestamp: Optional[datetime] = None
    provider: str = Field("payment_service", max_length=30)

    @field_validator("status")
    @classmethod
    def _normalize_status(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v


class PaymentWebhookAck(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    received: bool = True
    outcome: str
    booking_id: Optional[str] = None
    booking_status: Optional[str] = None
    payment_status: Optional[str] = None
