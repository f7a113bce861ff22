"""
Signature verification for inbound Cloud API deliveries.

Meta signs every webhook POST with the app secret:
    X-Hub-Signature-256: sha256=<hex HMAC-SHA256 of the raw body>

Usage:
    @router.post("/webhook")
    async def cloud_api_webhook(
        body: bytes = Depends(require_valid_signature),
    ):
        ...
"""
import hashlib
import hmac

from fastapi import Header, Request

from mobility_hub.core.config import settings
from mobility_hub.core.exceptions import SignatureVerificationError
from mobility_hub.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


def verify_signature(body: bytes, header: str | None, secret: str | None) -> bool:
    """Fails closed: no secret, no header or a wrong digest are all False"""
    if not secret or not header or not header.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(header[len(SIGNATURE_PREFIX):], expected)


async def require_valid_signature(
    request: Request,
    x_hub_signature_256: str | None = Header(None),
) -> bytes:
    """
    Check the signature over the exact raw body before anything parses it.

    Returns the body so the route does not read it twice.
    """
    body = await request.body()

    if not settings.WHATSAPP_CLOUD_API_APP_SECRET:
        logger.error("Cloud API webhook: WHATSAPP_CLOUD_API_APP_SECRET not set, rejecting")
        raise SignatureVerificationError("app secret not configured")

    if not x_hub_signature_256:
        logger.warning("Cloud API webhook without X-Hub-Signature-256")
        raise SignatureVerificationError("missing signature")

    if not verify_signature(body, x_hub_signature_256, settings.WHATSAPP_CLOUD_API_APP_SECRET):
        logger.warning("Cloud API webhook: invalid signature")
        raise SignatureVerificationError()

    return body
