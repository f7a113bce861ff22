"""
WhatsApp Provider Abstraction Layer

Flows and the outbox only see OutboundAction; the provider turns it into
Cloud API calls.
"""
from mobility_hub.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from mobility_hub.domain.services.whatsapp.provider_factory import (
    get_whatsapp_provider,
    reset_providers,
)

__all__ = [
    "BaseWhatsAppProvider",
    "get_whatsapp_provider",
    "reset_providers",
]
