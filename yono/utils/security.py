import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from ..config import settings

# Header carrying the signature, per webhook provider
SIGNATURE_HEADERS = {
    "razorpay": "X-Razorpay-Signature",
    "stripe": "Stripe-Signature",
}
GENERIC_SIGNATURE_HEADER = "X-Payment-Signature"


def signature_header_for(provider: str) -> str:
    return SIGNATURE_HEADERS.get((provider or "").lower(), GENERIC_SIGNATURE_HEADER)


def compute_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of the raw request body"""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Constant-time comparison against the expected digest"""
    if not secret or not signature:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip())


def create_access_token(subject: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode = {"sub": subject, "role": role, "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify a JWT token"""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None


def verify_internal_token(token: Optional[str]) -> bool:
    expected = settings.internal_api_token
    if not expected or not token:
        return False
    return secrets.compare_digest(token, expected)
