"""
Booking Store

Persistence and mutation of the Booking aggregate.

Status state machine:
    draft           -> pending_payment, cancelled, failed
    pending_payment -> paid, confirmed, failed, cancelled
    paid            -> confirmed, failed, cancelled
    confirmed       -> cancelled
    failed, cancelled are terminal

A transition to the current status is always legal and does not touch the
timeline. Every mutation runs under one lock per store instance, so the
legality check and the write it guards can never interleave with another
writer in this process.
"""

import asyncio
import logging
import secrets
import time
import uuid
from typing import Any, Dict, List, Optional, Union

from .data_store import DataStore, UniqueViolation
from ..schemas.booking import (
    Booking,
    BookingCreate,
    BookingStatus,
    LEGACY_STATUSES,
    normalize_legacy_status,
)
from ..utils.db_helpers import later_iso, now_iso
from ..utils.errors import BookingNotFound, DomainError, IllegalTransition, ValidationFailed

logger = logging.getLogger(__name__)


TRANSITIONS = {
    BookingStatus.DRAFT: {BookingStatus.PENDING_PAYMENT, BookingStatus.CANCELLED, BookingStatus.FAILED},
    BookingStatus.PENDING_PAYMENT: {
        BookingStatus.PAID,
        BookingStatus.CONFIRMED,
        BookingStatus.FAILED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.PAID: {BookingStatus.CONFIRMED, BookingStatus.FAILED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED},
    BookingStatus.FAILED: set(),
    BookingStatus.CANCELLED: set(),
}

# Per-status "first entered at" columns
STATUS_TIMESTAMP_FIELDS = {status: f"{status.value}_at" for status in BookingStatus}

# Fields update_fields() refuses to touch
PROTECTED_FIELDS = {"id", "reference", "status", "status_timeline", "created_at", "updated_at"} | set(
    STATUS_TIMESTAMP_FIELDS.values()
)

REFERENCE_ATTEMPTS = 3


def can_transition(current: Union[BookingStatus, str], target: Union[BookingStatus, str]) -> bool:
    current = normalize_legacy_status(current)
    target = BookingStatus(target)
    if current == target:
        return True
    return target in TRANSITIONS[current]


def create_reference() -> str:
    """YONO-<last 8 digits of unix ms>-<4 uppercase hex>"""
    millis = str(int(time.time() * 1000))[-8:]
    return f"YONO-{millis}-{secrets.token_hex(2).upper()}"


def _status_filter(status: BookingStatus) -> Any:
    labels = [status.value] + [legacy for legacy, mapped in LEGACY_STATUSES.items() if mapped == status]
    return labels[0] if len(labels) == 1 else ("in", labels)


def _end_of_day(value: str) -> str:
    # A bare date as upper bound means "through the end of that day"
    if len(value) == 10:
        return f"{value}T23:59:59.999Z"
    return value


class BookingStore:
    """Booking persistence on top of a row store."""

    TABLE = "bookings"

    def __init__(self, store: DataStore):
        self.store = store
        self._write_lock = asyncio.Lock()

    async def _load(self, booking_id: str) -> Optional[Booking]:
        row = await self.store.select_single(self.TABLE, {"id": booking_id})
        return Booking.from_row(row) if row else None

    async def create_booking(self, payload: BookingCreate) -> Booking:
        """Persist a new booking in draft with a fresh reference."""
        async with self._write_lock:
            created_at = now_iso()
            row = {
                "id": str(uuid.uuid4()),
                "type": payload.type.value,
                "status": BookingStatus.DRAFT.value,
                "amount": payload.amount,
                "currency": payload.currency,
                "contact": payload.contact.model_dump(),
                "travelers": [traveler.model_dump() for traveler in payload.travelers],
                "offer_id": payload.offer_id,
                "offer_snapshot": payload.offer_snapshot,
                "notes": payload.notes,
                "status_timeline": [{"status": BookingStatus.DRAFT.value, "at": created_at}],
                "draft_at": created_at,
                "created_at": created_at,
                "updated_at": created_at,
            }

            for attempt in range(1, REFERENCE_ATTEMPTS + 1):
                reference = create_reference()
                existing = await self.store.select_single(self.TABLE, {"reference": reference})
                if existing:
                    logger.warning(f"Booking reference collision on {reference} (attempt {attempt})")
                    continue
                try:
                    inserted = await self.store.insert_single(self.TABLE, {**row, "reference": reference})
                except UniqueViolation:
                    logger.warning(f"Booking reference collision on insert {reference} (attempt {attempt})")
                    continue
                booking = Booking.from_row(inserted)
                logger.info(f"Booking created: {booking.reference} ({booking.id})")
                return booking

        raise DomainError(
            "Could not allocate a unique booking reference",
            code="REFERENCE_EXHAUSTED",
            status_code=500,
        )

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return await self._load(booking_id)

    async def list_bookings(
        self,
        status: Optional[Union[BookingStatus, str]] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Booking]:
        """Newest first. Legacy status labels match the status they normalize to."""
        filters: Dict[str, Any] = {}
        if status:
            filters["status"] = _status_filter(BookingStatus(status))

        created_at = []
        if date_from:
            created_at.append(("gte", date_from))
        if date_to:
            created_at.append(("lte", _end_of_day(date_to)))
        if created_at:
            filters["created_at"] = created_at

        rows = await self.store.select_many(
            self.TABLE,
            filters,
            order_by="created_at",
            descending=True,
            limit=limit,
            offset=offset,
        )
        return [Booking.from_row(row) for row in rows]

    async def transition_status(
        self,
        booking_id: str,
        next_status: Union[BookingStatus, str],
        extra: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
    ) -> Booking:
        """
        Move a booking to next_status, applying extra fields in the same write.

        Raises:
            BookingNotFound: no booking with that id
            IllegalTransition: the state machine forbids the move
        """
        try:
            target = BookingStatus(next_status)
        except ValueError:
            raise ValidationFailed(f"Unknown booking status: {next_status}")

        async with self._write_lock:
            booking = await self._load(booking_id)
            if booking is None:
                raise BookingNotFound(booking_id)

            current = booking.status
            if not can_transition(current, target):
                raise IllegalTransition(current.value, target.value)

            patch = {key: value for key, value in (extra or {}).items() if key not in PROTECTED_FIELDS}
            at = later_iso(booking.updated_at)
            patch["updated_at"] = at

            if target != current:
                timeline = [event.model_dump(mode="json", exclude_none=True) for event in booking.status_timeline]
                if not timeline or timeline[-1].get("status") != target.value:
                    entry = {"status": target.value, "at": at}
                    if note:
                        entry["note"] = note
                    timeline.append(entry)
                patch["status"] = target.value
                patch["status_timeline"] = timeline

                stamp_field = STATUS_TIMESTAMP_FIELDS[target]
                if not getattr(booking, stamp_field):
                    patch[stamp_field] = at

            updated = await self.store.update_single(self.TABLE, {"id": booking_id}, patch)
            if updated is None:
                raise BookingNotFound(booking_id)

        if target != current:
            logger.info(f"Booking {booking.reference} status: {current.value} -> {target.value}")
        return Booking.from_row(updated)

    async def update_fields(self, booking_id: str, extra: Dict[str, Any]) -> Booking:
        """Patch non-status fields. Status changes go through transition_status()."""
        blocked = sorted(key for key in extra if key in PROTECTED_FIELDS)
        if blocked:
            raise ValidationFailed(f"Fields cannot be updated directly: {', '.join(blocked)}")

        async with self._write_lock:
            booking = await self._load(booking_id)
            if booking is None:
                raise BookingNotFound(booking_id)

            patch = dict(extra)
            patch["updated_at"] = later_iso(booking.updated_at)
            updated = await self.store.update_single(self.TABLE, {"id": booking_id}, patch)
            if updated is None:
                raise BookingNotFound(booking_id)

        return Booking.from_row(updated)
