import hashlib
import hmac
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from credit_engine.core.config import get_settings

SESSION_SALT = "matchmaking-session"
SESSION_MAX_AGE_SECONDS = 7 * 24 * 3600


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt=SESSION_SALT,
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    """Issued by the auth service; used here by tests and local tooling."""
    return get_session_serializer().dumps(payload)


def load_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=SESSION_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired):
        return None


def _hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_razorpay_payment(order_id: str, payment_id: str, secret: str) -> str:
    """Signature Razorpay Checkout returns to the browser: HMAC-SHA256 of "order_id|payment_id"."""
    return _hmac_sha256_hex(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def verify_razorpay_payment(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not signature or not secret:
        return False
    return hmac.compare_digest(sign_razorpay_payment(order_id, payment_id, secret), signature)


def verify_razorpay_webhook(payload: bytes, signature: str, secret: str) -> bool:
    if not signature or not secret:
        return False
    return hmac.compare_digest(_hmac_sha256_hex(secret, payload), signature)
