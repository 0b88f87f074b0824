"""
Webhook Event Ledger Model

Idempotency and audit record for one provider-delivered event.
The unique (provider, event_id) pair doubles as the dedup lock:
- Insert succeeds -> this delivery owns the event
- Insert hits the unique constraint -> someone already has it
"""

import uuid
import enum
from sqlalchemy import Column, String, Text, JSON, Index, UniqueConstraint
from ..database import Base
from ..utils.db_helpers import now_iso


class WebhookEventStatus(str, enum.Enum):
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Provider identification
    provider = Column(String(50), nullable=False)
    event_id = Column(String(255), nullable=False)  # header, payload id, or evt_hash_*
    event_type = Column(String(100), nullable=True)

    # Resolved once the payload is parsed
    booking_id = Column(String(36), nullable=True)
    payment_id = Column(String(64), nullable=True)

    status = Column(String(20), default=WebhookEventStatus.PROCESSING.value)
    error = Column(Text, nullable=True)

    # Raw payload for forensic replay
    payload = Column(JSON, nullable=True)

    created_at = Column(String(40), default=now_iso)
    updated_at = Column(String(40), default=now_iso)

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_event_provider_event"),
        Index("ix_webhook_event_status", "status", "created_at"),
        Index("ix_webhook_event_booking", "booking_id"),
    )

    def __repr__(self):
        return f"<WebhookEvent {self.provider} {self.event_id} status={self.status}>"
