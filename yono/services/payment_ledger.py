"""
Payment Ledger

Payment intent records. Their lifecycle is independent of the booking's:
updates are last-write-wins and intents are never deleted.
"""

import logging
from typing import Any, Optional, Union

from .data_store import DataStore
from ..schemas.payment import PaymentIntent, PaymentStatus
from ..utils.db_helpers import later_iso, new_payment_id, now_iso

logger = logging.getLogger(__name__)


class PaymentLedger:
    TABLE = "payments"

    def __init__(self, store: DataStore):
        self.store = store

    async def create_payment_intent(
        self,
        booking_id: str,
        amount: float,
        currency: str,
        provider: str = "manual",
        **fields: Any,
    ) -> PaymentIntent:
        created_at = now_iso()
        row = {
            "id": new_payment_id(),
            "booking_id": booking_id,
            "amount": amount,
            "currency": currency.upper(),
            "status": PaymentStatus.REQUIRES_ACTION.value,
            "provider": provider,
            "created_at": created_at,
            "updated_at": created_at,
            **{key: value for key, value in fields.items() if value is not None},
        }
        inserted = await self.store.insert_single(self.TABLE, row)
        intent = PaymentIntent.from_row(inserted)
        logger.info(f"Payment intent {intent.id} created for booking {booking_id} ({provider})")
        return intent

    async def get_payment_intent(self, payment_id: str) -> Optional[PaymentIntent]:
        row = await self.store.select_single(self.TABLE, {"id": payment_id})
        return PaymentIntent.from_row(row) if row else None

    async def latest_for_booking(self, booking_id: str) -> Optional[PaymentIntent]:
        rows = await self.store.select_many(
            self.TABLE,
            {"booking_id": booking_id},
            order_by="created_at",
            descending=True,
            limit=1,
        )
        return PaymentIntent.from_row(rows[0]) if rows else None

    async def find_by_webhook_event(self, event_id: str) -> Optional[PaymentIntent]:
        """Intent last touched by the given webhook event id."""
        row = await self.store.select_single(self.TABLE, {"webhook_event_id": event_id})
        return PaymentIntent.from_row(row) if row else None

    async def find_by_idempotency_key(self, key: str) -> Optional[PaymentIntent]:
        row = await self.store.select_single(self.TABLE, {"idempotency_key": key})
        return PaymentIntent.from_row(row) if row else None

    async def update_payment_status(
        self,
        payment_id: str,
        status: Union[PaymentStatus, str],
        provider_payment_id: Optional[str] = None,
        **fields: Any,
    ) -> Optional[PaymentIntent]:
        """Overwrite status (and any given fields). Returns None for an unknown id."""
        current = await self.get_payment_intent(payment_id)
        if current is None:
            return None

        patch = {key: value for key, value in fields.items() if value is not None}
        patch["status"] = PaymentStatus(status).value
        patch["updated_at"] = later_iso(current.updated_at)
        if provider_payment_id:
            patch["provider_payment_id"] = provider_payment_id

        updated = await self.store.update_single(self.TABLE, {"id": payment_id}, patch)
        if updated is None:
            return None
        return PaymentIntent.from_row(updated)
