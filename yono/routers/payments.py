from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from ..config import settings
from ..schemas.payment import PaymentConfirm, PaymentIntentCreate, PaymentIntentResponse, ProviderIntent
from ..services.container import Services
from ..utils.dependencies import Identity, get_services, require_roles
from ..utils.rate_limiter import get_rate_limit, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.post("/webhook")
@limiter.limit(get_rate_limit("webhook"))
async def payment_webhook(
    request: Request,
    provider: Optional[str] = Query(None),
    x_payment_provider: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    """
    Payment provider webhook.

    Authenticated by HMAC signature over the raw body, not by bearer token.
    Duplicate deliveries return {ok: true, skipped: true}.
    """
    raw_body = await request.body()
    provider_name = provider or x_payment_provider or settings.default_webhook_provider
    result = await services.pipeline.handle(provider_name, raw_body, request.headers)
    return JSONResponse(status_code=200, content=result.to_response())


@router.post("/intents")
@limiter.limit(get_rate_limit("payment_intent"))
async def create_payment_intent(
    request: Request,
    payload: PaymentIntentCreate,
    idempotency_key: Optional[str] = Header(None),
    identity: Identity = Depends(require_roles("customer", "agent", "admin")),
    services: Services = Depends(get_services),
):
    """
    Create a payment intent and move the booking to pending_payment.

    A retry carrying the same idempotency key (body field or Idempotency-Key
    header) returns the intent created the first time.
    """
    if idempotency_key and not payload.idempotency_key:
        payload = payload.model_copy(update={"idempotency_key": idempotency_key.strip()})
    created = await services.payment_service.create_payment_intent(payload)
    return PaymentIntentResponse(
        payment=created.payment,
        booking=created.booking,
        provider=ProviderIntent(
            provider=created.provider.provider,
            provider_client_secret=created.provider.provider_client_secret,
            provider_payment_id=created.provider.provider_payment_id,
            short_url=created.provider.short_url,
        ),
    )


@router.post("/intents/{payment_id}/confirm")
async def confirm_payment_intent(
    payment_id: str,
    payload: PaymentConfirm,
    identity: Identity = Depends(require_roles("agent", "admin")),
    services: Services = Depends(get_services),
):
    """Confirm a payment directly with the provider (no webhook)"""
    result = await services.payment_service.confirm_payment(
        payment_id, provider_payment_id=payload.provider_payment_id
    )
    logger.info(f"Payment {payment_id} confirmed by {identity.role} {identity.user_id}: {result.outcome.value}")
    return {
        "ok": True,
        "payment": result.payment.model_dump(mode="json") if result.payment else None,
        "booking": result.booking.to_row(),
        "lifecycle_changed": result.lifecycle_changed,
    }
