"""
WhatsApp Provider Base

Abstract interface for WhatsApp API providers.
Implementations: Meta Cloud API, Stub (for development and tests).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class ProviderError(Exception):
    """Error from WhatsApp provider."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


@dataclass
class ProviderResponse:
    """
    Response from provider after sending a message.
    """

    success: bool
    message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class MediaInfo:
    """Download location of a provider-hosted media object."""

    url: str
    mime_type: str | None = None


@dataclass
class MediaContent:
    """Downloaded media bytes."""

    content: bytes
    content_type: str = "application/octet-stream"


class WhatsAppProvider(ABC):
    """
    Abstract interface for WhatsApp API providers.

    Send methods never raise on provider rejection; they return a
    ProviderResponse with success=False. Media lookups raise ProviderError.
    """

    @abstractmethod
    async def send_text(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        text: str,
        reply_to: str | None = None,
        preview_url: bool = False,
    ) -> ProviderResponse:
        """
        Send a text message.

        Args:
            phone_number_id: Business phone number ID
            access_token: Access token for this number
            to: Recipient phone number (E.164 format)
            text: Message text
            reply_to: Provider message ID to reply to (optional)
            preview_url: Whether to show URL previews

        Returns:
            ProviderResponse with message ID if successful
        """
        ...

    @abstractmethod
    async def send_template(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        template_name: str,
        language_code: str,
        components: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        """
        Send a template message.

        Args:
            phone_number_id: Business phone number ID
            access_token: Access token for this number
            to: Recipient phone number (E.164 format)
            template_name: Approved template name
            language_code: Template language code (e.g., "pt_BR")
            components: Template components (header, body, buttons variables)

        Returns:
            ProviderResponse with message ID if successful
        """
        ...

    @abstractmethod
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
        """
        Send an image, audio, video, document or sticker.

        Args:
            phone_number_id: Business phone number ID
            access_token: Access token for this number
            to: Recipient phone number (E.164 format)
            media_type: image, audio, video, document or sticker
            media_url: Public link to the media (either this or media_id)
            media_id: Provider media ID of an uploaded file
            caption: Optional caption (image, video, document)
            filename: Optional filename (document)
            reply_to: Provider message ID to reply to (optional)

        Returns:
            ProviderResponse with message ID if successful
        """
        ...

    @abstractmethod
    async def mark_as_read(
        self,
        phone_number_id: str,
        access_token: str,
        message_id: str,
    ) -> bool:
        """
        Mark an inbound message as read.

        Returns:
            True if successful
        """
        ...

    @abstractmethod
    async def get_media_url(
        self,
        media_id: str,
        access_token: str,
    ) -> MediaInfo:
        """
        Resolve a media ID into a short-lived download URL.

        Raises:
            ProviderError: If the provider rejects the lookup
        """
        ...

    @abstractmethod
    async def download_media(
        self,
        url: str,
        access_token: str,
    ) -> MediaContent:
        """
        Download media bytes from a URL returned by get_media_url.

        Raises:
            ProviderError: If the download fails
        """
        ...

    def verify_webhook_challenge(
        self,
        mode: str,
        token: str,
        challenge: str,
        verify_token: str,
    ) -> str | None:
        """
        Handle webhook verification challenge.

        Args:
            mode: hub.mode query parameter
            token: hub.verify_token query parameter
            challenge: hub.challenge query parameter
            verify_token: Our configured verify token

        Returns:
            challenge string if valid, None otherwise
        """
        if mode == "subscribe" and verify_token and token == verify_token:
            return challenge
        return None

    async def close(self) -> None:
        """Release network resources."""
        return None
