"""
WhatsApp Providers

Provider abstraction and the provider selected by configuration.
"""

from basecore.settings import get_settings

from whatsapp_crm.providers.base import (
    MediaContent,
    MediaInfo,
    ProviderError,
    ProviderResponse,
    WhatsAppProvider,
)
from whatsapp_crm.providers.meta_cloud import MetaCloudWhatsAppProvider
from whatsapp_crm.providers.stub import StubWhatsAppProvider


def get_provider() -> WhatsAppProvider:
    """Get the provider configured by WHATSAPP_PROVIDER."""
    settings = get_settings()
    if settings.WHATSAPP_PROVIDER == "stub":
        return StubWhatsAppProvider()
    return MetaCloudWhatsAppProvider(timeout=settings.PROVIDER_TIMEOUT_SECONDS)


__all__ = [
    "MediaContent",
    "MediaInfo",
    "MetaCloudWhatsAppProvider",
    "ProviderError",
    "ProviderResponse",
    "StubWhatsAppProvider",
    "WhatsAppProvider",
    "get_provider",
]
