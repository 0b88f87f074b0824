from fastapi import APIRouter, Depends, Query
from dataclasses import asdict
from typing import Optional

from ..services.container import Services
from ..utils.dependencies import Identity, get_services, require_roles

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/webhooks/events")
async def list_webhook_events(
    provider: Optional[str] = None,
    status: Optional[str] = None,
    booking_id: Optional[str] = None,
    payment_id: Optional[str] = None,
    event_type: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(require_roles("admin")),
    services: Services = Depends(get_services),
):
    """Webhook ledger, newest first. q searches ids, provider, type and status."""
    entries, total = await services.ledger.list_events(
        provider=provider,
        status=status,
        booking_id=booking_id,
        payment_id=payment_id,
        event_type=event_type,
        q=q,
        limit=limit,
        offset=offset,
    )
    return {
        "ok": True,
        "rows": [entry.model_dump(exclude={"payload"}) for entry in entries],
        "total": total,
    }


@router.get("/system/health")
async def system_health(
    identity: Identity = Depends(require_roles("admin")),
    services: Services = Depends(get_services),
):
    report = await services.health.report()
    return {"ok": True, **asdict(report)}
