from .booking import Booking
from .payment import PaymentIntent
from .webhook_event import WebhookEvent
from .telemetry import AutomationFailure, EventFailure, SystemLog, SystemHeartbeat, AnalyticsEvent

__all__ = [
    "Booking",
    "PaymentIntent",
    "WebhookEvent",
    "AutomationFailure",
    "EventFailure",
    "SystemLog",
    "SystemHeartbeat",
    "AnalyticsEvent",
]
