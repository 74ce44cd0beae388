"""
Tenant Resolver

Resolves the organization of an incoming webhook using the
phone_number_id mapping, and the access token used to call the provider
on its behalf.
"""

import logging

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from whatsapp_crm.persistence.models import Organization
from whatsapp_crm.persistence.repo import CRMRepository

logger = logging.getLogger(__name__)


class TenantResolver:
    """
    Resolves organizations from WhatsApp webhook data.

    Uses phone_number_id to look up the organization.
    """

    def __init__(
        self,
        db: Session,
        encryption_key: str | None = None,
        fallback_access_token: str | None = None,
    ):
        self.db = db
        self.repo = CRMRepository(db)
        self.encryption_key = encryption_key
        self.fallback_access_token = fallback_access_token

    def resolve_from_phone_number_id(self, phone_number_id: str | None) -> Organization | None:
        """
        Resolve organization from WhatsApp phone number ID.

        Args:
            phone_number_id: WhatsApp Business phone number ID from webhook metadata

        Returns:
            Organization if found, None otherwise
        """
        if not phone_number_id:
            logger.warning("Webhook change without phone_number_id")
            return None

        org = self.repo.get_organization_by_phone_number_id(phone_number_id)

        if org:
            logger.debug(
                "Resolved organization from phone_number_id",
                extra={"phone_number_id": phone_number_id, "org_id": str(org.id)},
            )
        else:
            logger.warning(
                f"No organization found for phone_number_id: {phone_number_id}"
            )

        return org

    def get_access_token(self, org: Organization) -> str | None:
        """
        Get the decrypted access token of an organization.

        Falls back to the process-wide token when the organization has none
        or its token cannot be decrypted.

        Returns:
            Access token, None if not available
        """
        token = org.whatsapp_access_token
        if not token:
            return self.fallback_access_token or None

        # Stored unencrypted (development)
        if not self.encryption_key:
            return token

        try:
            f = Fernet(self.encryption_key.encode())
            return f.decrypt(token.encode()).decode()
        except (InvalidToken, ValueError) as e:
            logger.error(
                f"Failed to decrypt access token: {e!r}",
                extra={"org_id": str(org.id)},
            )
            return self.fallback_access_token or None


def encrypt_access_token(token: str, encryption_key: str | None) -> str:
    """Encrypt an access token for storage (no-op without a key)."""
    if not encryption_key:
        return token
    return Fernet(encryption_key.encode()).encrypt(token.encode()).decode()
