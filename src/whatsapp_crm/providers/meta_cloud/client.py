"""
Meta Cloud API WhatsApp Provider

Production provider for WhatsApp Business Cloud API (Graph API v21.0).
"""

import logging
from typing import Any

import httpx

from whatsapp_crm.providers.base import (
    MediaContent,
    MediaInfo,
    ProviderError,
    ProviderResponse,
    WhatsAppProvider,
)

logger = logging.getLogger(__name__)

# Meta Graph API configuration
GRAPH_API_VERSION = "v21.0"
GRAPH_API_BASE_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"

MEDIA_MESSAGE_TYPES = ("image", "audio", "video", "document", "sticker")


class MetaCloudWhatsAppProvider(WhatsAppProvider):
    """
    Meta Cloud API provider for WhatsApp Business.

    Every call carries a bearer token and an explicit timeout. An
    httpx.AsyncClient may be injected (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        timeout: float = 15.0,
        base_url: str = GRAPH_API_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ):
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _make_request(
        self,
        method: str,
        url: str,
        access_token: str,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated Graph API request and return the JSON body."""
        client = await self._get_client()

        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            if method.upper() == "GET":
                response = await client.get(url, headers=headers, timeout=self.timeout)
            else:
                response = await client.post(
                    url, headers=headers, json=json_data, timeout=self.timeout
                )
        except httpx.RequestError as e:
            logger.error(f"HTTP request failed: {e}")
            raise ProviderError(
                message=f"HTTP request failed: {e}",
                code="HTTP_ERROR",
                retryable=True,
            ) from e

        try:
            response_data = response.json()
        except ValueError:
            response_data = {"raw": response.text}

        if response.status_code >= 400:
            error = response_data.get("error", {}) if isinstance(response_data, dict) else {}
            raise ProviderError(
                message=error.get("message", f"HTTP {response.status_code}"),
                code=str(error.get("code", response.status_code)),
                details=response_data if isinstance(response_data, dict) else {},
                retryable=response.status_code >= 500,
            )

        return response_data

    async def _send(
        self,
        phone_number_id: str,
        access_token: str,
        payload: dict[str, Any],
        log_extra: dict[str, Any],
    ) -> ProviderResponse:
        url = f"{self.base_url}/{phone_number_id}/messages"

        try:
            response = await self._make_request("POST", url, access_token, payload)
        except ProviderError as e:
            logger.error(
                f"Failed to send {payload.get('type')} message: {e}",
                extra={**log_extra, "error_code": e.code},
            )
            return ProviderResponse(
                success=False,
                error_code=e.code,
                error_message=str(e),
                raw_response=e.details,
            )

        message_id = (response.get("messages") or [{}])[0].get("id")

        logger.info(
            f"Sent {payload.get('type')} message via Meta API",
            extra={**log_extra, "message_id": message_id},
        )

        return ProviderResponse(
            success=True,
            message_id=message_id,
            raw_response=response,
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
        """Send a text message via Graph API."""
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {
                "preview_url": preview_url,
                "body": text,
            },
        }

        if reply_to:
            payload["context"] = {"message_id": reply_to}

        return await self._send(phone_number_id, access_token, payload, {"to": to})

    async def send_template(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        template_name: str,
        language_code: str,
        components: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        """Send a template message via Graph API."""
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language_code},
            },
        }

        if components:
            payload["template"]["components"] = components

        return await self._send(
            phone_number_id, access_token, payload, {"to": to, "template": template_name}
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
        """Send a media message by link or uploaded media ID."""
        if media_type not in MEDIA_MESSAGE_TYPES:
            raise ValueError(f"Unsupported media type: {media_type}")
        if not media_url and not media_id:
            raise ValueError("Either media_url or media_id is required")

        media: dict[str, Any] = {"id": media_id} if media_id else {"link": media_url}
        if caption and media_type in ("image", "video", "document"):
            media["caption"] = caption
        if filename and media_type == "document":
            media["filename"] = filename

        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": media_type,
            media_type: media,
        }

        if reply_to:
            payload["context"] = {"message_id": reply_to}

        return await self._send(phone_number_id, access_token, payload, {"to": to})

    async def mark_as_read(
        self,
        phone_number_id: str,
        access_token: str,
        message_id: str,
    ) -> bool:
        """Mark a message as read."""
        url = f"{self.base_url}/{phone_number_id}/messages"

        payload = {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id,
        }

        try:
            await self._make_request("POST", url, access_token, payload)
            return True
        except ProviderError as e:
            logger.warning(f"Failed to mark message as read: {e}")
            return False

    async def get_media_url(
        self,
        media_id: str,
        access_token: str,
    ) -> MediaInfo:
        """Get the download URL for a media file."""
        response = await self._make_request("GET", f"{self.base_url}/{media_id}", access_token)

        url = response.get("url")
        if not url:
            raise ProviderError(
                message=f"No URL returned for media {media_id}",
                code="MEDIA_URL_MISSING",
                details=response,
            )

        return MediaInfo(url=url, mime_type=response.get("mime_type"))

    async def download_media(
        self,
        url: str,
        access_token: str,
    ) -> MediaContent:
        """Download media bytes (the URL requires the same bearer token)."""
        client = await self._get_client()

        try:
            response = await client.get(
                url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except httpx.RequestError as e:
            raise ProviderError(
                message=f"Media download failed: {e}",
                code="HTTP_ERROR",
                retryable=True,
            ) from e

        if response.status_code >= 400:
            raise ProviderError(
                message=f"Media download failed with HTTP {response.status_code}",
                code=str(response.status_code),
                retryable=response.status_code >= 500,
            )

        return MediaContent(
            content=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
        )
