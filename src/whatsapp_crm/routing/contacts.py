"""
Contact Resolution

Finds or creates the contact behind an inbound phone number. Concurrent
deliveries for a new number are settled by the (org_id, phone) unique
constraint: the loser of the insert race re-reads the winner's row.
"""

import logging
import re
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whatsapp_crm.persistence.models import Contact
from whatsapp_crm.persistence.repo import CRMRepository

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """Normalize a phone number to +<digits>."""
    digits = _NON_DIGITS.sub("", phone or "")
    return f"+{digits}" if digits else ""


class ContactResolver:
    """Resolves contacts by (organization, phone)."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = CRMRepository(db)

    def resolve(
        self,
        org_id: UUID,
        phone: str,
        observed_name: str | None = None,
        observed_avatar: str | None = None,
    ) -> Contact:
        """
        Get or create the contact for a phone number.

        An existing contact only has its name filled when it has none, and its
        avatar replaced when the observed one differs. Nothing is written when
        nothing changed.

        Args:
            org_id: Organization ID
            phone: Sender phone as delivered by the provider
            observed_name: WhatsApp profile name, if present
            observed_avatar: Profile picture URL, if present

        Returns:
            The contact (flushed, not committed)
        """
        phone = normalize_phone(phone)
        if not phone:
            raise ValueError("Cannot resolve a contact without a phone number")

        contact = self.repo.get_contact_by_phone(org_id, phone)
        if contact:
            self._apply_observed(contact, observed_name, observed_avatar)
            return contact

        contact = Contact(
            org_id=org_id,
            phone=phone,
            name=observed_name or None,
            profile_picture_url=observed_avatar or None,
            custom_fields={},
            tags=[],
        )

        try:
            with self.db.begin_nested():
                self.db.add(contact)
        except IntegrityError:
            logger.info(
                "Contact created concurrently, re-reading",
                extra={"org_id": str(org_id), "phone": phone},
            )
            contact = self.repo.get_contact_by_phone(org_id, phone)
            if contact is None:
                raise
            self._apply_observed(contact, observed_name, observed_avatar)
            return contact

        logger.info(
            "Created contact",
            extra={"org_id": str(org_id), "contact_id": str(contact.id)},
        )
        return contact

    def _apply_observed(
        self,
        contact: Contact,
        observed_name: str | None,
        observed_avatar: str | None,
    ) -> None:
        changed = False

        if observed_name and not contact.name:
            contact.name = observed_name
            changed = True

        if observed_avatar and observed_avatar != contact.profile_picture_url:
            contact.profile_picture_url = observed_avatar
            changed = True

        if changed:
            self.db.flush()
