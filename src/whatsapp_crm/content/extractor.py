"""
Content Extraction

Maps one provider message object onto the stored message shape and builds
the short preview shown in conversation lists.

Both functions are pure and total: an unknown or malformed message yields
a text placeholder, never an exception.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from whatsapp_crm.persistence.models import MessageType

PREVIEW_MAX_LENGTH = 100


class ProviderMessageKind(str, Enum):
    """Message `type` values the provider may deliver."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    REACTION = "reaction"
    INTERACTIVE = "interactive"
    BUTTON = "button"
    CONTACTS = "contacts"
    ORDER = "order"
    SYSTEM = "system"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class ExtractedContent:
    """Normalized content of an inbound message."""

    message_type: str
    text_content: str | None = None
    media_id: str | None = None
    mime_type: str | None = None
    filename: str | None = None


def _block(message: dict[str, Any], key: Any) -> dict[str, Any]:
    if not isinstance(key, str):
        return {}
    value = message.get(key)
    return value if isinstance(value, dict) else {}


def _text(message: dict[str, Any]) -> ExtractedContent:
    return ExtractedContent(
        message_type=MessageType.TEXT.value,
        text_content=_block(message, "text").get("body") or None,
    )


def _media(kind: MessageType, with_caption: bool) -> Callable[[dict[str, Any]], ExtractedContent]:
    def extract(message: dict[str, Any]) -> ExtractedContent:
        media = _block(message, kind.value)
        return ExtractedContent(
            message_type=kind.value,
            text_content=(media.get("caption") or None) if with_caption else None,
            media_id=media.get("id") or None,
            mime_type=media.get("mime_type") or None,
            filename=(media.get("filename") or None) if kind == MessageType.DOCUMENT else None,
        )

    return extract


def _location(message: dict[str, Any]) -> ExtractedContent:
    location = _block(message, "location")
    return ExtractedContent(
        message_type=MessageType.LOCATION.value,
        text_content=json.dumps(
            {
                "latitude": location.get("latitude"),
                "longitude": location.get("longitude"),
                "name": location.get("name"),
                "address": location.get("address"),
            },
            ensure_ascii=False,
        ),
    )


def _reaction(message: dict[str, Any]) -> ExtractedContent:
    return ExtractedContent(
        message_type=MessageType.REACTION.value,
        text_content=_block(message, "reaction").get("emoji") or None,
    )


def _interactive(message: dict[str, Any]) -> ExtractedContent:
    interactive = _block(message, "interactive")
    reply = _block(interactive, interactive.get("type"))
    title = reply.get("title")
    if not title or not isinstance(title, str):
        return _unsupported(message)
    return ExtractedContent(message_type=MessageType.TEXT.value, text_content=title)


def _button(message: dict[str, Any]) -> ExtractedContent:
    button = _block(message, "button")
    text = button.get("text") or button.get("payload")
    if not text:
        return _unsupported(message)
    return ExtractedContent(message_type=MessageType.TEXT.value, text_content=text)


def _unsupported(message: dict[str, Any]) -> ExtractedContent:
    return ExtractedContent(
        message_type=MessageType.TEXT.value,
        text_content=f"[Unsupported message type: {message.get('type')}]",
    )


_EXTRACTORS: dict[ProviderMessageKind, Callable[[dict[str, Any]], ExtractedContent]] = {
    ProviderMessageKind.TEXT: _text,
    ProviderMessageKind.IMAGE: _media(MessageType.IMAGE, with_caption=True),
    ProviderMessageKind.AUDIO: _media(MessageType.AUDIO, with_caption=False),
    ProviderMessageKind.VIDEO: _media(MessageType.VIDEO, with_caption=True),
    ProviderMessageKind.DOCUMENT: _media(MessageType.DOCUMENT, with_caption=True),
    ProviderMessageKind.STICKER: _media(MessageType.STICKER, with_caption=False),
    ProviderMessageKind.LOCATION: _location,
    ProviderMessageKind.REACTION: _reaction,
    ProviderMessageKind.INTERACTIVE: _interactive,
    ProviderMessageKind.BUTTON: _button,
    ProviderMessageKind.CONTACTS: _unsupported,
    ProviderMessageKind.ORDER: _unsupported,
    ProviderMessageKind.SYSTEM: _unsupported,
    ProviderMessageKind.UNSUPPORTED: _unsupported,
}


def extract_content(message: dict[str, Any]) -> ExtractedContent:
    """
    Extract normalized content from a provider message object.

    Args:
        message: One element of a webhook `messages` array

    Returns:
        ExtractedContent; unknown types become a text placeholder
    """
    try:
        kind = ProviderMessageKind(message.get("type"))
    except (TypeError, ValueError):
        return _unsupported(message)
    return _EXTRACTORS[kind](message)


def build_preview(message_type: str, content: str | None) -> str:
    """Build the conversation-list preview for a message."""
    if message_type == MessageType.TEXT.value:
        if not content:
            return ""
        if len(content) > PREVIEW_MAX_LENGTH:
            return content[:PREVIEW_MAX_LENGTH] + "..."
        return content
    if message_type == MessageType.IMAGE.value:
        return f"[Imagem] {content}" if content else "[Imagem]"
    if message_type == MessageType.AUDIO.value:
        return "[Audio]"
    if message_type == MessageType.VIDEO.value:
        return f"[Video] {content}" if content else "[Video]"
    if message_type == MessageType.DOCUMENT.value:
        return f"[Documento] {content}" if content else "[Documento]"
    if message_type == MessageType.STICKER.value:
        return "[Sticker]"
    if message_type == MessageType.LOCATION.value:
        return "[Localização]"
    if message_type == MessageType.REACTION.value:
        return content or "[Reação]"
    return content or ""
