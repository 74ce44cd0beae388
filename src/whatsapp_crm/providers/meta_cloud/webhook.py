"""
Meta Webhook Utilities

Helper functions for processing Meta Cloud API webhooks.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def validate_signature(
    payload: bytes,
    signature_header: str | None,
    app_secret: str | None,
) -> bool:
    """
    Validate Meta webhook signature.

    The comparison is constant-time; a digest of the wrong length is still
    compared against a same-length dummy so timing does not reveal it.

    Args:
        payload: Raw request body bytes (before any JSON parsing)
        signature_header: X-Hub-Signature-256 header value
        app_secret: Facebook App Secret

    Returns:
        True if signature is valid
    """
    if not app_secret:
        logger.error("Webhook app secret is not configured")
        return False

    if not signature_header:
        logger.warning("Missing signature header")
        return False

    if not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning("Invalid signature format")
        return False

    expected = signature_header[len(SIGNATURE_PREFIX):]

    computed = hmac.new(
        app_secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()

    if len(expected) != len(computed):
        hmac.compare_digest(computed, computed)
        return False

    return hmac.compare_digest(computed, expected)


@dataclass
class WebhookChange:
    """One `messages` change of a webhook entry."""

    phone_number_id: str | None
    display_phone_number: str | None
    contacts: list[dict[str, Any]] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)
    statuses: list[dict[str, Any]] = field(default_factory=list)

    def contact_for(self, wa_id: str) -> dict[str, Any]:
        """Return the contact profile block of a sender, if present."""
        for contact in self.contacts:
            if contact.get("wa_id") == wa_id:
                return contact
        return {}


def iter_message_changes(payload: dict[str, Any]) -> Iterator[WebhookChange]:
    """
    Yield every change with field == "messages" in a webhook payload.

    Webhook format:
    {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA_ID",
            "changes": [{
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"display_phone_number": "...", "phone_number_id": "..."},
                    "contacts": [...],
                    "messages": [...],
                    "statuses": [...]
                },
                "field": "messages"
            }]
        }]
    }
    """
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "messages":
                continue

            value = change.get("value") or {}
            metadata = value.get("metadata") or {}

            yield WebhookChange(
                phone_number_id=metadata.get("phone_number_id"),
                display_phone_number=metadata.get("display_phone_number"),
                contacts=value.get("contacts") or [],
                messages=value.get("messages") or [],
                statuses=value.get("statuses") or [],
            )


def extract_phone_number_id(payload: dict[str, Any]) -> str | None:
    """
    Extract the first phone_number_id from a webhook payload.

    Used for log context before full processing.
    """
    for change in iter_message_changes(payload):
        if change.phone_number_id:
            return change.phone_number_id
    return None
