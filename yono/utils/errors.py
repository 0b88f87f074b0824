"""
Domain errors.

Each carries the HTTP status and the machine-readable code the API returns in
its {ok: false, code, message} envelope. Handlers are registered in main.py.
"""

from typing import Optional


class DomainError(Exception):
    status_code: int = 400
    code: str = "BAD_REQUEST"

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code


class ValidationFailed(DomainError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class BookingNotFound(NotFound):
    code = "BOOKING_NOT_FOUND"

    def __init__(self, booking_id: str):
        super().__init__(f"Booking not found: {booking_id}")
        self.booking_id = booking_id


class PaymentNotFound(NotFound):
    code = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        super().__init__(f"Payment intent not found: {payment_id}")
        self.payment_id = payment_id


class IllegalTransition(DomainError):
    status_code = 400
    code = "ILLEGAL_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Invalid status transition from '{from_status}' to '{to_status}'")
        self.from_status = from_status
        self.to_status = to_status


class ServiceUnavailable(DomainError):
    status_code = 503
    code = "STORE_UNAVAILABLE"


class ProviderNotConfigured(ServiceUnavailable):
    code = "PROVIDER_NOT_CONFIGURED"


class ProviderError(DomainError):
    status_code = 502
    code = "PROVIDER_ERROR"


class WebhookSignatureInvalid(DomainError):
    status_code = 401
    code = "INVALID_WEBHOOK_SIGNATURE"


class WebhookSecretMissing(ServiceUnavailable):
    code = "WEBHOOK_SECRET_MISSING"


class InvalidJson(DomainError):
    status_code = 400
    code = "INVALID_JSON"


class BookingIdMissing(DomainError):
    status_code = 400
    code = "BOOKING_ID_MISSING"


class Unauthorized(DomainError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(DomainError):
    status_code = 403
    code = "FORBIDDEN"
