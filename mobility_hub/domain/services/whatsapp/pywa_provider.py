"""
Cloud API provider built on pywa.

Maps each OutboundAction kind onto a pywa call, with per-attempt timeout,
bounded exponential retry and the whatsapp circuit breaker around it all.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from mobility_hub.core.circuit_breaker import CircuitBreaker
from mobility_hub.core.config import settings
from mobility_hub.core.exceptions import WhatsAppError
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from mobility_hub.state_machine.events import ActionKind, OutboundAction

logger = get_logger(__name__)

# Cloud API limits
_MAX_REPLY_BUTTONS = 3
_MAX_LIST_ROWS = 10
_BUTTON_TITLE_CHARS = 20
_ROW_TITLE_CHARS = 24
_ROW_DESCRIPTION_CHARS = 72
_LIST_BUTTON_CHARS = 20
_CALLBACK_DATA_CHARS = 200


class CloudApiProvider(BaseWhatsAppProvider):
    """WhatsApp Cloud API (Meta) through pywa_async."""

    def __init__(self, circuit_breaker: CircuitBreaker) -> None:
        self._circuit_breaker = circuit_breaker
        self._max_retries = settings.WHATSAPP_MAX_RETRIES
        self._send_timeout = settings.WHATSAPP_SEND_TIMEOUT_SECONDS

        # lazy, so tests never need real credentials
        self._client = None

    def _get_client(self):
        if self._client is None:
            from pywa_async import WhatsApp as PyWaClient

            self._client = PyWaClient(
                phone_id=settings.WHATSAPP_CLOUD_API_PHONE_ID,
                token=settings.WHATSAPP_CLOUD_API_TOKEN,
            )
        return self._client

    @property
    def provider_name(self) -> str:
        return "cloud_api"

    def normalize_phone(self, phone: str) -> str:
        """Cloud API wants 250788123456, not +250788123456 or 0788123456."""
        if PhoneNumberValidator.validate(phone):
            return PhoneNumberValidator.to_wa_id(phone)
        return phone

    # ── retry helper ──

    async def _execute_with_retry(
        self,
        operation: str,
        phone_masked: str,
        func: Callable[[], Awaitable[None]],
    ) -> None:
        """
        Run ``func`` with a timeout per attempt and exponential backoff.

        Raises WhatsAppError once every attempt has failed.
        """
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                await asyncio.wait_for(func(), timeout=self._send_timeout)
                return
            except Exception as exc:
                last_error = exc
                if attempt < self._max_retries - 1:
                    backoff = 2 ** attempt
                    logger.warning(
                        f"{operation} failed, retrying",
                        extra_data={
                            "phone": phone_masked,
                            "error": str(exc) or type(exc).__name__,
                            "attempt": attempt + 1,
                            "max_retries": self._max_retries,
                            "backoff_seconds": backoff,
                        },
                    )
                    await asyncio.sleep(backoff)

        raise WhatsAppError(
            message=f"Cloud API {operation} failed after {self._max_retries} attempts",
            details={
                "phone": phone_masked,
                "error": str(last_error) or type(last_error).__name__,
                "attempts": self._max_retries,
            },
        )

    # ── interactive payloads ──

    @staticmethod
    def _build_buttons(action: OutboundAction) -> list:
        from pywa import types as pywa_types

        return [
            pywa_types.Button(
                title=button.title[:_BUTTON_TITLE_CHARS],
                callback_data=button.id[:_CALLBACK_DATA_CHARS],
            )
            for button in action.buttons[:_MAX_REPLY_BUTTONS]
        ]

    @staticmethod
    def _build_section_list(action: OutboundAction):
        from pywa import types as pywa_types

        rows = [
            pywa_types.SectionRow(
                title=row.title[:_ROW_TITLE_CHARS],
                callback_data=row.id[:_CALLBACK_DATA_CHARS],
                description=row.description[:_ROW_DESCRIPTION_CHARS] if row.description else None,
            )
            for row in action.rows[:_MAX_LIST_ROWS]
        ]
        return pywa_types.SectionList(
            button_title=(action.list_button or "Choose")[:_LIST_BUTTON_CHARS],
            sections=[pywa_types.Section(title="Options", rows=rows)],
        )

    # ── sending ──

    async def send(self, action: OutboundAction) -> None:
        if action.kind == ActionKind.DOCUMENT and not action.attachment_ref:
            raise WhatsAppError(
                message="document action without attachment_ref",
                details={"phone": PhoneNumberValidator.mask(action.to)},
            )

        to = self.normalize_phone(action.to)
        phone_masked = PhoneNumberValidator.mask(to)
        client = self._get_client()

        if action.kind == ActionKind.DOCUMENT:
            async def _send_single() -> None:
                await client.send_document(
                    to=to,
                    document=action.attachment_ref,
                    filename=action.filename or "document",
                    caption=action.body or None,
                )
        else:
            if action.kind == ActionKind.BUTTONS and action.buttons:
                buttons = self._build_buttons(action)
            elif action.kind == ActionKind.LIST and action.rows:
                buttons = self._build_section_list(action)
            else:
                buttons = None

            async def _send_single() -> None:
                await client.send_message(to=to, text=action.body, buttons=buttons)

        operation = f"send_{action.kind.value}"

        async def _send_with_retry() -> None:
            await self._execute_with_retry(operation, phone_masked, _send_single)

        await self._circuit_breaker.execute(_send_with_retry)
