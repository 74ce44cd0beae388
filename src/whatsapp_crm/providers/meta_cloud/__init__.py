"""
Meta Cloud API provider.
"""

from whatsapp_crm.providers.meta_cloud.client import GRAPH_API_BASE_URL, MetaCloudWhatsAppProvider
from whatsapp_crm.providers.meta_cloud.webhook import (
    WebhookChange,
    extract_phone_number_id,
    iter_message_changes,
    validate_signature,
)

__all__ = [
    "GRAPH_API_BASE_URL",
    "MetaCloudWhatsAppProvider",
    "WebhookChange",
    "extract_phone_number_id",
    "iter_message_changes",
    "validate_signature",
]
