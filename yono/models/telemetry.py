"""
Best-effort telemetry tables.

None of these are guaranteed to exist in every environment. Writers go
through FallbackWriter and treat a missing table as an expected outcome.
event_failures deliberately carries the older column layout (error instead of
last_error/attempts) that some deployments still have.
"""

import uuid
from sqlalchemy import Column, String, Text, Integer, JSON, Index
from ..database import Base
from ..utils.db_helpers import now_iso


class AutomationFailure(Base):
    __tablename__ = "automation_failures"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), nullable=True)
    event = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="failed")  # failed, retrying, resolved
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(String(40), default=now_iso)
    updated_at = Column(String(40), default=now_iso)

    __table_args__ = (
        Index("ix_automation_failure_status", "status", "updated_at"),
    )


class EventFailure(Base):
    __tablename__ = "event_failures"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), nullable=True)
    event = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="failed")
    error = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(String(40), default=now_iso)


class SystemLog(Base):
    __tablename__ = "system_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    level = Column(String(10), nullable=True)
    event = Column(String(100), nullable=True)
    booking_id = Column(String(36), nullable=True)
    message = Column(Text, nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(String(40), default=now_iso)

    __table_args__ = (
        Index("ix_system_log_event", "event", "created_at"),
    )


class SystemHeartbeat(Base):
    __tablename__ = "system_heartbeats"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kind = Column(String(50), nullable=False)  # payment_webhook, cron_retry
    meta = Column(JSON, nullable=True)
    created_at = Column(String(40), default=now_iso)

    __table_args__ = (
        Index("ix_system_heartbeat_kind", "kind", "created_at"),
    )


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    booking_id = Column(String(36), nullable=True)
    properties = Column(JSON, nullable=True)
    created_at = Column(String(40), default=now_iso)
