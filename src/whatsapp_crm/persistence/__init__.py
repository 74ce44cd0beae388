"""
CRM persistence layer.
"""

from whatsapp_crm.persistence.models import (
    Agent,
    AgentActivityLog,
    Contact,
    Conversation,
    Message,
    Organization,
    ProtocolLog,
    ProtocolSequence,
)
from whatsapp_crm.persistence.repo import CRMRepository

__all__ = [
    "Agent",
    "AgentActivityLog",
    "Contact",
    "Conversation",
    "CRMRepository",
    "Message",
    "Organization",
    "ProtocolLog",
    "ProtocolSequence",
]
