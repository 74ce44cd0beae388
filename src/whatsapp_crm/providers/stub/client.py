"""
Stub WhatsApp Provider

Development provider that records all operations without making real API calls.
Useful for local development and testing.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from whatsapp_crm.providers.base import (
    MediaContent,
    MediaInfo,
    ProviderError,
    ProviderResponse,
    WhatsAppProvider,
)

logger = logging.getLogger(__name__)


class StubWhatsAppProvider(WhatsAppProvider):
    """
    Stub provider for development and testing.

    - Records outbound messages in ``sent_messages``
    - Records read receipts in ``read_receipts``
    - Serves media registered with ``add_media``
    - Can be configured to reject sends
    """

    def __init__(self, fail_sends: bool = False):
        self.fail_sends = fail_sends
        self.sent_messages: list[dict[str, Any]] = []
        self.read_receipts: list[str] = []
        self.media: dict[str, tuple[bytes, str]] = {}

    def add_media(self, media_id: str, content: bytes, mime_type: str) -> None:
        """Make a media ID resolvable and downloadable."""
        self.media[media_id] = (content, mime_type)

    def _record(self, message_type: str, **data: Any) -> ProviderResponse:
        if self.fail_sends:
            logger.info(f"[STUB] Rejecting {message_type} message", extra={"to": data.get("to")})
            return ProviderResponse(
                success=False,
                error_code="131026",
                error_message="Message undeliverable",
                raw_response={"error": {"code": 131026, "message": "Message undeliverable"}},
            )

        message_id = f"wamid.stub_{uuid4().hex[:16]}"
        self.sent_messages.append({
            "type": message_type,
            "message_id": message_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **data,
        })

        logger.info(
            f"[STUB] Sending {message_type} message",
            extra={"to": data.get("to"), "message_id": message_id},
        )

        return ProviderResponse(
            success=True,
            message_id=message_id,
            raw_response={"stub": True, "message_id": message_id},
        )

    async def send_text(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        text: str,
        reply_to: str | None = None,
        preview_url: bool = False,
    ) -> ProviderResponse:
        """Record and return success for text message."""
        return self._record(
            "text",
            phone_number_id=phone_number_id,
            to=to,
            text=text,
            reply_to=reply_to,
        )

    async def send_template(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        template_name: str,
        language_code: str,
        components: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        """Record and return success for template message."""
        return self._record(
            "template",
            phone_number_id=phone_number_id,
            to=to,
            template_name=template_name,
            language_code=language_code,
            components=components,
        )

    async def send_media(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        media_type: str,
        media_url: str | None = None,
        media_id: str | None = None,
        caption: str | None = None,
        filename: str | None = None,
        reply_to: str | None = None,
    ) -> ProviderResponse:
        """Record and return success for media message."""
        return self._record(
            media_type,
            phone_number_id=phone_number_id,
            to=to,
            media_url=media_url,
            media_id=media_id,
            caption=caption,
            filename=filename,
            reply_to=reply_to,
        )

    async def mark_as_read(
        self,
        phone_number_id: str,
        access_token: str,
        message_id: str,
    ) -> bool:
        """Record the read receipt."""
        self.read_receipts.append(message_id)
        return True

    async def get_media_url(
        self,
        media_id: str,
        access_token: str,
    ) -> MediaInfo:
        """Return a fake URL for registered media."""
        if media_id not in self.media:
            raise ProviderError(f"Unknown media {media_id}", code="100")
        return MediaInfo(
            url=f"https://stub.local/media/{media_id}",
            mime_type=self.media[media_id][1],
        )

    async def download_media(
        self,
        url: str,
        access_token: str,
    ) -> MediaContent:
        """Return registered media bytes."""
        media_id = url.rsplit("/", 1)[-1]
        if media_id not in self.media:
            raise ProviderError(f"Unknown media URL {url}", code="404")
        content, mime_type = self.media[media_id]
        return MediaContent(content=content, content_type=mime_type)
