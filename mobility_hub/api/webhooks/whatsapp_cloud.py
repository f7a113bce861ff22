"""
WhatsApp Cloud API Webhook Handler

Receives deliveries from Meta, verifies the signature, and runs each
message through the conversation service. Replies are persisted to the
outbox inside the request and sent by a background task after the 200.
"""
from __future__ import annotations

import json

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from mobility_hub.api.dependencies.webhook_auth import require_valid_signature
from mobility_hub.core.config import settings
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.db.database import get_session_factory
from mobility_hub.domain.services.conversation_service import ConversationService
from mobility_hub.domain.services.event_normalizer import normalize_payload
from mobility_hub.state_machine import dispatcher

logger = get_logger(__name__)

router = APIRouter()


def get_conversation_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> ConversationService:
    return ConversationService(session_factory, dispatcher)


# ──────────────────────────────────────────────
#  Meta verification handshake
# ──────────────────────────────────────────────


@router.get(
    "/webhook",
    summary="Cloud API Webhook Verification",
    description="Meta subscription handshake; echoes hub.challenge.",
    response_class=PlainTextResponse,
    tags=["Webhooks"],
)
async def cloud_api_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
) -> PlainTextResponse:
    if (
        hub_mode == "subscribe"
        and hub_challenge
        and settings.WHATSAPP_CLOUD_API_VERIFY_TOKEN
        and hub_verify_token == settings.WHATSAPP_CLOUD_API_VERIFY_TOKEN
    ):
        logger.info("Cloud API webhook verified successfully")
        return PlainTextResponse(hub_challenge)
    logger.warning(
        "Cloud API webhook verification failed",
        extra_data={"hub_mode": hub_mode},
    )
    raise HTTPException(status_code=403, detail="Verification failed")


# ──────────────────────────────────────────────
#  Deliveries
# ──────────────────────────────────────────────


@router.post(
    "/webhook",
    summary="Cloud API Webhook",
    description="Inbound messages from the WhatsApp Cloud API.",
    responses={
        200: {"description": "Delivery acknowledged"},
        403: {"description": "Invalid signature"},
    },
    tags=["Webhooks"],
)
async def cloud_api_webhook(
    background_tasks: BackgroundTasks,
    body: bytes = Depends(require_valid_signature),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    """
    1. signature check (dependency, before parsing)
    2. envelope -> InboundEvents
    3. per event: dedup, dispatch, persist
    4. delivery and commands in the background

    Always 200 once the signature passes, so Meta does not redeliver
    messages we chose to drop.
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Cloud API webhook: body is not JSON, ignoring")
        return {"status": "ignored"}

    try:
        events = normalize_payload(payload)
    except Exception as exc:
        logger.error(
            "Cloud API webhook: could not read delivery, ignoring",
            extra_data={"error": str(exc)},
            exc_info=True,
        )
        return {"status": "ignored"}

    processed = 0
    duplicates = 0

    for event in events:
        try:
            outcome = await service.handle_event(event)
        except Exception as exc:
            # the delivery is still acknowledged; Meta must not redeliver it
            logger.error(
                "Cloud API message processing failed",
                extra_data={
                    "source_id": event.source_id,
                    "phone": PhoneNumberValidator.mask(event.sender),
                    "error": str(exc),
                },
                exc_info=True,
            )
            continue

        if outcome.duplicate:
            duplicates += 1
            continue

        processed += 1
        if outcome.needs_follow_up:
            background_tasks.add_task(
                service.follow_up, event.sender, outcome.outbox_ids, outcome.command
            )

    return {"status": "ok", "processed": processed, "duplicates": duplicates}
