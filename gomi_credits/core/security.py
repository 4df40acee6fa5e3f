import hashlib
import hmac
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from gomi_credits.core.config import get_settings
from gomi_credits.core.exceptions import InvalidArgumentError

SESSION_MAX_AGE = 7 * 24 * 3600
MAX_IDEMPOTENCY_KEY_LENGTH = 128


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="gomi-credits-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    return get_session_serializer().dumps(payload)


def load_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=SESSION_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return None


def sign_webhook_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> bool:
    return hmac.compare_digest(sign_webhook_payload(payload, secret), signature or "")


def normalize_idempotency_key(key: str | None) -> str | None:
    """Optional Idempotency-Key header: blank means none, oversized is rejected."""
    if key is None or not key.strip():
        return None
    key = key.strip()
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise InvalidArgumentError("Idempotency-Key is too long")
    return key
