from fastapi import APIRouter, Depends, Query, Request, status
from typing import Optional
import logging

from ..schemas.booking import BookingCreate, BookingStatus, BookingStatusUpdate
from ..services.container import Services
from ..utils.dependencies import Identity, get_services, require_roles
from ..utils.errors import BookingNotFound
from ..utils.rate_limiter import get_rate_limit, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("booking_create"))
async def create_booking(
    request: Request,
    payload: BookingCreate,
    identity: Identity = Depends(require_roles("customer", "agent", "admin")),
    services: Services = Depends(get_services),
):
    """Create a booking in draft"""
    booking = await services.bookings.create_booking(payload)
    logger.info(f"Booking {booking.reference} created by {identity.role} {identity.user_id}")
    return {"ok": True, "booking": booking.to_row()}


@router.get("")
@limiter.limit(get_rate_limit("booking_list"))
async def list_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(require_roles("agent", "admin")),
    services: Services = Depends(get_services),
):
    """Bookings, newest first"""
    bookings = await services.bookings.list_bookings(
        status=status_filter, date_from=date_from, date_to=date_to, limit=limit, offset=offset
    )
    return {"ok": True, "bookings": [booking.to_row() for booking in bookings]}


@router.get("/{booking_id}")
async def get_booking(
    booking_id: str,
    identity: Identity = Depends(require_roles("customer", "agent", "admin")),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.get_booking(booking_id)
    if booking is None:
        raise BookingNotFound(booking_id)
    return {"ok": True, "booking": booking.to_row()}


@router.post("/{booking_id}/status")
@limiter.limit(get_rate_limit("booking_update"))
async def transition_booking_status(
    request: Request,
    booking_id: str,
    payload: BookingStatusUpdate,
    identity: Identity = Depends(require_roles("admin")),
    services: Services = Depends(get_services),
):
    """Manual status change. Subject to the same transition rules as payments."""
    extra = {}
    if payload.cancellation_reason:
        extra["cancellation_reason"] = payload.cancellation_reason
    booking = await services.bookings.transition_status(
        booking_id, payload.status, extra=extra, note=payload.note
    )
    logger.info(f"Booking {booking_id} set to {booking.status.value} by admin {identity.user_id}")
    return {"ok": True, "booking": booking.to_row()}
