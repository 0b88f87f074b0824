"""
Payment Provider Gateway

Swappable payment gateway behind one async interface:
- manual: no external calls, used for offline/bank-transfer flows and tests
- razorpay: payment links + payment fetch over the Razorpay REST API

Requested amounts cross this interface in major units (rupees) and adapters
convert them to whatever the provider expects. Captured amounts come back as
the provider reports them, the same as webhook amounts.
"""

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..config import settings as app_settings
from ..schemas.payment import PaymentStatus
from ..utils.errors import ProviderError, ProviderNotConfigured, ValidationFailed

logger = logging.getLogger(__name__)


@dataclass
class CreateIntentRequest:
    booking_id: str
    amount: float
    currency: str
    description: Optional[str] = None
    customer: Optional[Dict[str, Any]] = None
    notes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateIntentResult:
    provider: str
    provider_client_secret: Optional[str] = None
    provider_payment_id: Optional[str] = None
    provider_order_id: Optional[str] = None
    short_url: Optional[str] = None


@dataclass
class ConfirmPaymentRequest:
    payment_intent_id: str
    provider_payment_id: Optional[str] = None


@dataclass
class ConfirmPaymentResult:
    status: PaymentStatus
    provider_payment_id: str
    amount_captured: Optional[float] = None


class PaymentProvider(ABC):
    name: str = ""

    @abstractmethod
    async def create_intent(self, request: CreateIntentRequest) -> CreateIntentResult:
        ...

    @abstractmethod
    async def confirm_payment(self, request: ConfirmPaymentRequest) -> ConfirmPaymentResult:
        ...

    async def close(self) -> None:
        return None


class ManualPaymentProvider(PaymentProvider):
    """Collects nothing; confirmation is whatever the operator says it is."""

    name = "manual"

    async def create_intent(self, request: CreateIntentRequest) -> CreateIntentResult:
        return CreateIntentResult(
            provider=self.name,
            provider_client_secret=f"manual_secret_{secrets.token_hex(10)}",
        )

    async def confirm_payment(self, request: ConfirmPaymentRequest) -> ConfirmPaymentResult:
        return ConfirmPaymentResult(
            status=PaymentStatus.SUCCEEDED,
            provider_payment_id=request.provider_payment_id or f"manual_txn_{secrets.token_hex(8)}",
        )


def to_minor_units(amount: float) -> int:
    """Rupees -> paise, never below 1."""
    return max(1, int(round(amount * 100)))


def is_duplicate_reference(message: Optional[str]) -> bool:
    lowered = (message or "").lower()
    return "reference" in lowered and ("already" in lowered or "duplicate" in lowered)


class RazorpayPaymentProvider(PaymentProvider):
    """
    Razorpay adapter.

    create_intent issues a payment link with reference_id = booking id, so a
    retried request for the same booking cannot produce a second link; the
    link Razorpay already holds for that reference is returned instead.
    confirm_payment fetches the payment and treats only "captured" as success.
    """

    name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not key_id or not key_secret:
            raise ProviderNotConfigured(
                "Razorpay is not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self.client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException:
            raise ProviderError("Razorpay request timed out")
        except httpx.HTTPError as e:
            raise ProviderError(f"Razorpay request failed: {e}")

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            description = None
            if isinstance(data, dict):
                error = data.get("error")
                description = error.get("description") if isinstance(error, dict) else error
            logger.warning(f"Razorpay {method} {endpoint} -> {response.status_code}: {description}")
            raise ProviderError(description or f"Razorpay error: {response.status_code}")

        if not isinstance(data, dict):
            raise ProviderError("Razorpay returned an unexpected payload")
        return data

    async def create_intent(self, request: CreateIntentRequest) -> CreateIntentResult:
        if request.amount <= 0:
            raise ValidationFailed("Payment amount must be positive")

        body: Dict[str, Any] = {
            "amount": to_minor_units(request.amount),
            "currency": (request.currency or "INR").upper(),
            "reference_id": request.booking_id,
            "accept_partial": False,
            "notes": {"booking_id": request.booking_id, **request.notes},
        }
        if request.description:
            body["description"] = request.description

        customer = request.customer or {}
        details = {
            key: customer.get(source)
            for key, source in (("name", "name"), ("email", "email"), ("contact", "phone"))
            if customer.get(source)
        }
        if details:
            body["customer"] = details

        try:
            data = await self._request("POST", "/payment_links", json=body)
        except ProviderError as e:
            if not is_duplicate_reference(e.message):
                raise
            data = await self._existing_link(request.booking_id)
            if data is None:
                raise
            logger.info(f"Reusing Razorpay payment link {data.get('id')} for booking {request.booking_id}")
        else:
            logger.info(f"Razorpay payment link {data.get('id')} created for booking {request.booking_id}")

        link_id = data.get("id")
        return CreateIntentResult(
            provider=self.name,
            provider_payment_id=link_id,
            provider_order_id=data.get("order_id"),
            short_url=data.get("short_url"),
        )

    async def _existing_link(self, reference_id: str) -> Optional[Dict[str, Any]]:
        """Live payment link already issued for this reference, if any."""
        data = await self._request("GET", "/payment_links", params={"reference_id": reference_id})
        links = data.get("payment_links") or []
        for link in links:
            if isinstance(link, dict) and link.get("status") not in ("cancelled", "expired"):
                return link
        return None

    async def confirm_payment(self, request: ConfirmPaymentRequest) -> ConfirmPaymentResult:
        if not request.provider_payment_id:
            raise ValidationFailed("provider_payment_id is required to confirm a Razorpay payment")

        data = await self._request("GET", f"/payments/{request.provider_payment_id}")
        captured = data.get("status") == "captured"
        amount = data.get("amount")
        return ConfirmPaymentResult(
            status=PaymentStatus.SUCCEEDED if captured else PaymentStatus.FAILED,
            provider_payment_id=data.get("id") or request.provider_payment_id,
            amount_captured=amount if captured and isinstance(amount, (int, float)) else None,
        )

    async def close(self) -> None:
        await self.client.aclose()


def get_payment_provider(name: Optional[str] = None, settings=None) -> PaymentProvider:
    """Factory: provider by name, defaulting to PAYMENT_PROVIDER."""
    settings = settings or app_settings
    name = (name or settings.payment_provider or "manual").lower()

    if name == "manual":
        return ManualPaymentProvider()
    if name == "razorpay":
        return RazorpayPaymentProvider(
            settings.razorpay_key_id,
            settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
            timeout=settings.http_timeout_seconds,
        )
    raise ValidationFailed(f"Unknown payment provider: {name}", code="UNKNOWN_PAYMENT_PROVIDER")
