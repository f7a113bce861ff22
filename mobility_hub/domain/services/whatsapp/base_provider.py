"""
Base interface for WhatsApp providers.

Business logic depends on this interface only, never on a concrete SDK.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from mobility_hub.state_machine.events import OutboundAction


class BaseWhatsAppProvider(ABC):
    """
    Uniform way to deliver an OutboundAction.

    Implementations own:
    - the HTTP / SDK call
    - retry, timeout and circuit breaker
    - recipient normalization to what the platform expects
    """

    @abstractmethod
    async def send(self, action: OutboundAction) -> None:
        """
        Deliver one action (text, buttons, list or document).

        Raises:
            WhatsAppError: the message could not be delivered.
            CircuitBreakerOpenError: the platform is failing, nothing was sent.
        """

    @abstractmethod
    def normalize_phone(self, phone: str) -> str:
        """Recipient id in the format the platform expects."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name for logs and diagnostics."""
