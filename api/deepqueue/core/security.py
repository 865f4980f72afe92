import base64
import hashlib
import hmac
import secrets
from collections.abc import Iterable

from fastapi import Depends, Header, HTTPException, status

from deepqueue.core.config import Settings, get_settings
from deepqueue.schemas.hookdeck import BasicAuthCredential

SOURCE_AUTH_USERNAME = "deepqueue"


def compute_signature(payload: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw body, as the broker signs deliveries."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(payload: bytes, signatures: Iterable[str | None], secret: str | None) -> bool:
    if not secret:
        return False
    candidates = [signature for signature in signatures if signature]
    if not candidates:
        return False

    expected = compute_signature(payload, secret).encode("ascii")
    return any(hmac.compare_digest(expected, candidate.encode("utf-8")) for candidate in candidates)


def generate_basic_auth(username: str = SOURCE_AUTH_USERNAME) -> BasicAuthCredential:
    password = base64.b64encode(secrets.token_bytes(32)).decode("ascii")
    encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return BasicAuthCredential(username=username, password=password, encoded=encoded)


async def require_operator(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    if not settings.operator_api_key:
        return
    if not x_api_key or not hmac.compare_digest(
        x_api_key.encode("utf-8"),
        settings.operator_api_key.encode("utf-8"),
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"operator routes require a valid {settings.api_key_header}",
        )
