"""
Routing: tenants, contacts, conversations and agent assignment.
"""

from whatsapp_crm.routing.assignment import AgentAssignmentEngine
from whatsapp_crm.routing.contacts import ContactResolver, normalize_phone
from whatsapp_crm.routing.conversation import ConversationManager
from whatsapp_crm.routing.tenant_resolver import TenantResolver

__all__ = [
    "AgentAssignmentEngine",
    "ContactResolver",
    "ConversationManager",
    "TenantResolver",
    "normalize_phone",
]
