"""
CRM contracts: stream envelope, event types and API payloads.
"""

from whatsapp_crm.contracts.envelope import CRMEnvelope
from whatsapp_crm.contracts.event_types import CRMEventType
from whatsapp_crm.contracts.payloads import (
    ConversationOut,
    ConversationUpdate,
    MessageOut,
    SendMessageRequest,
)

__all__ = [
    "ConversationOut",
    "ConversationUpdate",
    "CRMEnvelope",
    "CRMEventType",
    "MessageOut",
    "SendMessageRequest",
]
