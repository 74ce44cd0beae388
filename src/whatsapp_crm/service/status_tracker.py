"""
Delivery Status Tracker

Applies provider delivery callbacks (sent, delivered, read, failed) to
stored messages, keyed by the provider message ID.
"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from whatsapp_crm.persistence.models import MessageStatus
from whatsapp_crm.persistence.repo import CRMRepository

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "failed": MessageStatus.FAILED,
}


def summarize_errors(errors: list[dict[str, Any]] | None) -> str | None:
    """Join provider errors as "code: title; code: title"."""
    if not errors:
        return None
    parts = []
    for error in errors:
        if not isinstance(error, dict):
            continue
        title = error.get("title") or error.get("message") or ""
        parts.append(f"{error.get('code', '')}: {title}")
    return "; ".join(parts) or None


class DeliveryStatusTracker:
    """Updates message status from provider callbacks."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = CRMRepository(db)

    def apply_status(
        self,
        whatsapp_message_id: str,
        status_value: str,
        errors: list[dict[str, Any]] | None = None,
    ) -> int:
        """
        Apply one status callback. Flushes but does not commit.

        Unknown status values and unknown message IDs are ignored; callbacks
        can arrive before the send that produced the message was recorded.

        Returns:
            Number of message rows changed
        """
        status = STATUS_MAP.get(status_value)
        if status is None:
            logger.debug(f"Ignoring unknown status value: {status_value}")
            return 0

        if not whatsapp_message_id:
            return 0

        error_message = summarize_errors(errors) if status == MessageStatus.FAILED else None

        updated = self.repo.update_status_by_whatsapp_id(
            whatsapp_message_id,
            status.value,
            error_message=error_message,
        )

        if updated:
            logger.debug(
                "Applied delivery status",
                extra={"whatsapp_message_id": whatsapp_message_id, "status": status.value},
            )
        else:
            logger.debug(f"No message found for provider ID: {whatsapp_message_id}")

        return updated

    def apply_statuses(self, statuses: list[dict[str, Any]]) -> int:
        """Apply a webhook `statuses` array. Returns rows changed."""
        updated = 0
        for status in statuses:
            updated += self.apply_status(
                status.get("id", ""),
                status.get("status", ""),
                status.get("errors"),
            )
        return updated
