from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, Optional
from enum import Enum

from .booking import Booking


class PaymentStatus(str, Enum):
    REQUIRES_ACTION = "requires_action"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentIntent(BaseModel):
    id: str
    booking_id: str
    amount: float
    currency: str
    status: PaymentStatus
    provider: str = "manual"
    provider_payment_id: Optional[str] = None
    provider_order_id: Optional[str] = None
    amount_captured: Optional[float] = None
    amount_refunded: Optional[float] = None
    webhook_event_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: str
    updated_at: str

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        # Older rows used captured/authorized/created
        raw = str(v or "").lower()
        if raw in ("captured", "paid"):
            return PaymentStatus.SUCCEEDED
        if raw in ("created", "authorized", ""):
            return PaymentStatus.REQUIRES_ACTION
        return raw

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PaymentIntent":
        known = {key: value for key, value in row.items() if key in cls.model_fields}
        return cls.model_validate(known)


class PaymentIntentCreate(BaseModel):
    booking_id: str = Field(..., min_length=1, max_length=64)
    amount: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=255)


class PaymentConfirm(BaseModel):
    provider_payment_id: Optional[str] = Field(None, max_length=255)


class ProviderIntent(BaseModel):
    provider: str
    provider_client_secret: Optional[str] = None
    provider_payment_id: Optional[str] = None
    short_url: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    ok: bool = True
    payment: PaymentIntent
    booking: Booking
    provider: ProviderIntent
