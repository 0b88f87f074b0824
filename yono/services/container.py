"""
Wiring of the engine's services around one row store.

Built once in the app lifespan and stored on app.state; tests build their
own against a throwaway store.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from .automation_retry import AutomationRetryWorker
from .booking_store import BookingStore
from .data_store import DataStore
from .health_check import SystemHealthService
from .payment_ledger import PaymentLedger
from .payment_provider import PaymentProvider, get_payment_provider
from .payment_service import PAYMENT_CONFIRMED_EVENT, PaymentService
from .telemetry import Telemetry
from .webhook_ledger import WebhookLedger
from .webhook_pipeline import WebhookPipeline
from ..utils.expiring_store import ExpiringKeyStore


@dataclass
class Services:
    store: DataStore
    bookings: BookingStore
    payments: PaymentLedger
    telemetry: Telemetry
    payment_service: PaymentService
    ledger: WebhookLedger
    pipeline: WebhookPipeline
    retry_worker: AutomationRetryWorker
    health: SystemHealthService


def build_services(
    store: DataStore,
    settings,
    provider_factory: Optional[Callable[[Optional[str]], PaymentProvider]] = None,
) -> Services:
    bookings = BookingStore(store)
    payments = PaymentLedger(store)
    telemetry = Telemetry(store)
    payment_service = PaymentService(
        bookings,
        payments,
        telemetry,
        provider_factory=provider_factory or (lambda name: get_payment_provider(name, settings)),
    )
    ledger = WebhookLedger(
        store,
        timeout=settings.webhook_lock_timeout_seconds,
        stale_after=settings.webhook_processing_stale_seconds,
    )
    pipeline = WebhookPipeline(
        ledger,
        payment_service,
        telemetry,
        ExpiringKeyStore(settings.webhook_inflight_ttl_seconds),
        settings,
    )
    retry_worker = AutomationRetryWorker(
        store,
        telemetry,
        max_attempts=settings.automation_retry_max_attempts,
        batch_size=settings.automation_retry_batch_size,
    )
    retry_worker.register(PAYMENT_CONFIRMED_EVENT, payment_service.redrive_confirmation)
    return Services(
        store=store,
        bookings=bookings,
        payments=payments,
        telemetry=telemetry,
        payment_service=payment_service,
        ledger=ledger,
        pipeline=pipeline,
        retry_worker=retry_worker,
        health=SystemHealthService(store, stale_minutes=settings.webhook_heartbeat_stale_minutes),
    )
