from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional
from enum import Enum
import re


class BookingStatus(str, Enum):
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BookingType(str, Enum):
    FLIGHT = "flight"
    HOTEL = "hotel"


# Labels written by older releases; mapped on every read, never migrated
LEGACY_STATUSES = {
    "initiated": BookingStatus.DRAFT,
    "payment_received": BookingStatus.PAID,
}


def normalize_legacy_status(value: Any) -> BookingStatus:
    if isinstance(value, BookingStatus):
        return value
    raw = str(value or "").strip().lower()
    if raw in LEGACY_STATUSES:
        return LEGACY_STATUSES[raw]
    try:
        return BookingStatus(raw)
    except ValueError:
        return BookingStatus.DRAFT


def _strip_markup(v):
    if isinstance(v, str):
        v = re.sub(r'<script[^>]*>.*?</script>', '', v, flags=re.IGNORECASE | re.DOTALL)
        v = re.sub(r'on\w+\s*=', '', v, flags=re.IGNORECASE)
    return v


class StatusEvent(BaseModel):
    status: BookingStatus
    at: str
    note: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return normalize_legacy_status(v)


class BookingContact(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=255)
    phone: str = Field(..., min_length=3, max_length=30)


class Traveler(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    dob: Optional[str] = None
    gender: Optional[str] = Field(None, pattern="^(M|F|X)$")
    passport_number: Optional[str] = Field(None, max_length=30)


class BookingCreate(BaseModel):
    type: BookingType
    offer_id: str = Field(..., min_length=1, max_length=255)
    offer_snapshot: Optional[Any] = None
    amount: float = Field(..., gt=0)
    currency: str = Field("INR", min_length=3, max_length=3)
    contact: BookingContact
    travelers: List[Traveler] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("notes", mode="before")
    @classmethod
    def sanitize_notes(cls, v):
        return _strip_markup(v)


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    note: Optional[str] = Field(None, max_length=500)
    cancellation_reason: Optional[str] = Field(None, max_length=500)


class Booking(BaseModel):
    """
    Booking aggregate as the engine sees it.

    Built from untyped store rows via from_row(); legacy status labels are
    normalized there, so nothing past the store boundary ever sees them.
    """
    model_config = ConfigDict(use_enum_values=False)

    id: str
    reference: str
    type: BookingType
    status: BookingStatus
    amount: float
    currency: str
    contact: Optional[Dict[str, Any]] = None
    travelers: List[Dict[str, Any]] = Field(default_factory=list)
    offer_id: Optional[str] = None
    offer_snapshot: Optional[Any] = None
    notes: Optional[str] = None

    payment_intent_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    cancellation_reason: Optional[str] = None

    status_timeline: List[StatusEvent] = Field(default_factory=list)

    draft_at: Optional[str] = None
    pending_payment_at: Optional[str] = None
    paid_at: Optional[str] = None
    confirmed_at: Optional[str] = None
    failed_at: Optional[str] = None
    cancelled_at: Optional[str] = None

    created_at: str
    updated_at: str

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return normalize_legacy_status(v)

    @field_validator("travelers", "status_timeline", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Booking":
        known = {key: value for key, value in row.items() if key in cls.model_fields}
        return cls.model_validate(known)

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
