"""
Media Fetcher

Copies inbound media out of the provider into durable object storage.
Provider media URLs are short-lived, so the stored message points at our
own copy.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from uuid import UUID

from whatsapp_crm.providers.base import ProviderError, WhatsAppProvider
from whatsapp_crm.service.errors import MediaUnavailableError
from whatsapp_crm.storage.object_store import ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "bin"

EXTENSION_BY_MIME_TYPE = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/amr": "amr",
    "audio/aac": "aac",
    "video/mp4": "mp4",
    "video/3gpp": "3gp",
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/msword": "doc",
    "application/vnd.ms-excel": "xls",
    "text/plain": "txt",
}


def extension_for(mime_type: str | None) -> str:
    """File extension for a MIME type ("audio/ogg; codecs=opus" -> "ogg")."""
    if not mime_type:
        return DEFAULT_EXTENSION
    base = mime_type.split(";", 1)[0].strip().lower()
    return EXTENSION_BY_MIME_TYPE.get(base, DEFAULT_EXTENSION)


def storage_key(conversation_id: UUID, media_id: str, mime_type: str | None, now_ms: int | None = None) -> str:
    """Object key: conversations/<conversation>/<epoch ms>-<media id>.<ext>"""
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"conversations/{conversation_id}/{now_ms}-{media_id}.{extension_for(mime_type)}"


@dataclass
class StoredMedia:
    """Media copied into object storage."""

    url: str
    mime_type: str


class MediaFetcher:
    """Materializes provider media into object storage."""

    def __init__(self, provider: WhatsAppProvider, store: ObjectStore):
        self.provider = provider
        self.store = store

    async def materialize(
        self,
        media_id: str,
        access_token: str,
        conversation_id: UUID,
    ) -> StoredMedia:
        """
        Resolve, download and re-upload a media object.

        Args:
            media_id: Provider media ID from the inbound message
            access_token: Organization access token
            conversation_id: Conversation the media belongs to (storage namespace)

        Returns:
            StoredMedia with the storage URL and MIME type

        Raises:
            MediaUnavailableError: If any step fails
        """
        try:
            info = await self.provider.get_media_url(media_id, access_token)
            media = await self.provider.download_media(info.url, access_token)
        except ProviderError as e:
            raise MediaUnavailableError(f"Could not fetch media {media_id}: {e}") from e

        mime_type = info.mime_type or media.content_type or "application/octet-stream"
        key = storage_key(conversation_id, media_id, mime_type)

        try:
            url = await asyncio.to_thread(self.store.upload, key, media.content, mime_type)
        except ObjectStoreError as e:
            raise MediaUnavailableError(f"Could not store media {media_id}: {e}") from e

        logger.info(
            "Stored inbound media",
            extra={
                "media_id": media_id,
                "conversation_id": str(conversation_id),
                "bytes": len(media.content),
            },
        )

        return StoredMedia(url=url, mime_type=mime_type)
