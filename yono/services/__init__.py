# Services package
from .booking_store import BookingStore, can_transition
from .payment_ledger import PaymentLedger
from .payment_service import PaymentService
from .telemetry import FallbackWriter, Telemetry
from .webhook_ledger import WebhookLedger
from .webhook_pipeline import WebhookPipeline
from .container import Services, build_services

__all__ = [
    "BookingStore", "can_transition",
    "PaymentLedger",
    "PaymentService",
    "FallbackWriter", "Telemetry",
    "WebhookLedger",
    "WebhookPipeline",
    "Services", "build_services",
]
