from sqlalchemy import Column, String, Float, JSON, Index
from ..database import Base
from ..utils.db_helpers import now_iso, new_payment_id


class PaymentIntent(Base):
    """One attempt to collect money for a booking. Never deleted."""
    __tablename__ = "payments"

    id = Column(String(64), primary_key=True, default=new_payment_id)
    booking_id = Column(String(36), nullable=False)

    amount = Column(Float, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")
    # As reported by the provider, no unit conversion (paise for Razorpay)
    amount_captured = Column(Float, nullable=True)
    amount_refunded = Column(Float, nullable=True)

    status = Column(String(30), nullable=False, default="requires_action")
    provider = Column(String(50), nullable=False, default="manual")
    provider_payment_id = Column(String(255), nullable=True)
    provider_order_id = Column(String(255), nullable=True)

    # Client retry key for intent creation
    idempotency_key = Column(String(255), nullable=True)

    # Last webhook event that touched this intent
    webhook_event_id = Column(String(255), nullable=True)
    raw_payload = Column(JSON, nullable=True)

    created_at = Column(String(40), default=now_iso)
    updated_at = Column(String(40), default=now_iso)

    __table_args__ = (
        Index("ix_payment_booking", "booking_id", "created_at"),
        Index("ix_payment_webhook_event", "webhook_event_id"),
        Index("uq_payment_idempotency_key", "idempotency_key", unique=True),
    )

    def __repr__(self):
        return f"<PaymentIntent {self.id} {self.status}>"
