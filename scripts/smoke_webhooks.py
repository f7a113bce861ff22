"""
Smoke tests against a running instance.

Runs lightweight HTTP checks:
- GET /health
- GET /api/whatsapp/webhook (verification handshake)
- POST /api/whatsapp/webhook with a signed text delivery
- POST /api/whatsapp/webhook with a tampered signature (expects 403)

Needs WHATSAPP_CLOUD_API_APP_SECRET and WHATSAPP_CLOUD_API_VERIFY_TOKEN to
match the instance. Outbound sends may fail when the Cloud API is not
reachable; the webhook must still answer 200.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
import uuid

import httpx

from mobility_hub.core.logging import get_logger, setup_logging


logger = get_logger(__name__)


def _base_url() -> str:
    port = os.environ.get("PORT", "8000")
    return os.environ.get("BASE_URL", f"http://127.0.0.1:{port}").rstrip("/")


def _timeout_seconds() -> float:
    return float(os.environ.get("SMOKE_TIMEOUT_SECONDS", "10"))


def _sender() -> str:
    return os.environ.get("SMOKE_SENDER", "250788000000")


def _text_delivery(text: str) -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "smoke",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "messages": [
                                {
                                    "from": _sender(),
                                    "id": f"wamid.smoke-{uuid.uuid4().hex}",
                                    "timestamp": str(int(time.time())),
                                    "type": "text",
                                    "text": {"body": text},
                                }
                            ],
                        },
                    }
                ],
            }
        ],
    }


def _sign(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _check_status(resp: httpx.Response, expected_status: int) -> None:
    if resp.status_code != expected_status:
        raise RuntimeError(
            f"Unexpected status {resp.status_code} for {resp.request.method} {resp.request.url}. "
            f"Body: {(resp.text or '')[:500]}"
        )


def main() -> None:
    setup_logging(level="INFO", json_format=False, app_name="mobility-hub-smoke")

    base_url = _base_url()
    timeout = _timeout_seconds()
    secret = os.environ.get("WHATSAPP_CLOUD_API_APP_SECRET", "")
    verify_token = os.environ.get("WHATSAPP_CLOUD_API_VERIFY_TOKEN", "")

    logger.info("Starting smoke tests", extra_data={"base_url": base_url, "timeout_seconds": timeout})

    with httpx.Client(timeout=timeout) as client:
        resp = client.get(f"{base_url}/health")
        _check_status(resp, 200)

        webhook_url = f"{base_url}/api/whatsapp/webhook"

        if verify_token:
            logger.info("Checking verification handshake", extra_data={"url": webhook_url})
            resp = client.get(
                webhook_url,
                params={"hub.mode": "subscribe", "hub.verify_token": verify_token, "hub.challenge": "424242"},
            )
            _check_status(resp, 200)
            if resp.text != "424242":
                raise RuntimeError(f"Verification echoed {resp.text!r}")

        body = json.dumps(_text_delivery("menu")).encode()

        logger.info("Posting signed delivery", extra_data={"url": webhook_url})
        resp = client.post(
            webhook_url,
            content=body,
            headers={"Content-Type": "application/json", "X-Hub-Signature-256": _sign(body, secret)},
        )
        _check_status(resp, 200 if secret else 403)

        logger.info("Posting tampered delivery", extra_data={"url": webhook_url})
        resp = client.post(
            webhook_url,
            content=body + b" ",
            headers={"Content-Type": "application/json", "X-Hub-Signature-256": _sign(body, secret)},
        )
        _check_status(resp, 403)

    logger.info("Smoke tests completed successfully")


if __name__ == "__main__":
    main()
