from pydantic import BaseModel
from typing import Any, Dict, Optional


class LedgerEntry(BaseModel):
    id: str
    provider: str
    event_id: str
    status: str
    event_type: Optional[str] = None
    booking_id: Optional[str] = None
    payment_id: Optional[str] = None
    error: Optional[str] = None
    payload: Optional[Any] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LedgerEntry":
        known = {key: value for key, value in row.items() if key in cls.model_fields}
        return cls.model_validate(known)


class PaymentWebhookEvent(BaseModel):
    """Provider-neutral shape extracted from a webhook body."""
    provider: str
    event_id: str
    event_type: str
    booking_id: str
    provider_payment_id: Optional[str] = None
    provider_order_id: Optional[str] = None
    amount_captured: Optional[float] = None
    amount_refunded: Optional[float] = None
    currency: Optional[str] = None
    raw_payload: Dict[str, Any] = {}
