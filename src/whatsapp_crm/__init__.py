"""
WhatsApp CRM core.

Webhook ingestion, conversation routing and agent assignment for a
multi-tenant WhatsApp CRM.
"""

__version__ = "1.0.0"
