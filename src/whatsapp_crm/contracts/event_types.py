"""
CRM Event Types

Events carried on the ingestion stream.
"""

from enum import Enum


class CRMEventType(str, Enum):
    """
    Event types for the CRM ingestion stream.

    - WEBHOOK_RECEIVED: An authenticated provider webhook awaiting ingestion
    """

    WEBHOOK_RECEIVED = "whatsapp_webhook_received"

    def __str__(self) -> str:
        return self.value
