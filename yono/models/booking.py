import uuid
from sqlalchemy import Column, String, Float, Text, JSON, Index
from ..database import Base
from ..utils.db_helpers import now_iso


class Booking(Base):
    """
    One traveler purchase.

    Timestamps are ISO-8601 strings so rows keep the same shape whether they
    come from SQL or from the Supabase REST store.
    """
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reference = Column(String(32), nullable=False, unique=True)
    type = Column(String(20), nullable=False)  # flight, hotel
    status = Column(String(30), nullable=False, default="draft")

    amount = Column(Float, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")

    contact = Column(JSON, nullable=True)
    travelers = Column(JSON, nullable=True)
    offer_id = Column(String(255), nullable=True)
    offer_snapshot = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    # Payment linkage
    payment_intent_id = Column(String(64), nullable=True)
    provider_payment_id = Column(String(255), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Append-only [{status, at, note?}]
    status_timeline = Column(JSON, nullable=True)

    # Set once, on first entry into each status
    draft_at = Column(String(40), nullable=True)
    pending_payment_at = Column(String(40), nullable=True)
    paid_at = Column(String(40), nullable=True)
    confirmed_at = Column(String(40), nullable=True)
    failed_at = Column(String(40), nullable=True)
    cancelled_at = Column(String(40), nullable=True)

    created_at = Column(String(40), default=now_iso)
    updated_at = Column(String(40), default=now_iso)

    __table_args__ = (
        Index("ix_booking_status", "status", "created_at"),
    )

    def __repr__(self):
        return f"<Booking {self.reference} status={self.status}>"
