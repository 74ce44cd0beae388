"""
Tests for content extraction and previews.
"""

import json

import pytest

from whatsapp_crm.content.extractor import (
    _EXTRACTORS,
    ProviderMessageKind,
    build_preview,
    extract_content,
)
from whatsapp_crm.persistence.models import MessageType

STORED_TYPES = {t.value for t in MessageType}


class TestExtractContent:
    """Tests for extract_content."""

    def test_text(self):
        """Test text body becomes content."""
        content = extract_content({"type": "text", "text": {"body": "Preciso de cimento"}})
        assert content.message_type == "text"
        assert content.text_content == "Preciso de cimento"
        assert content.media_id is None

    def test_image_with_caption(self):
        """Test image keeps caption, media id and MIME type."""
        content = extract_content({
            "type": "image",
            "image": {"id": "MEDIA_1", "mime_type": "image/jpeg", "caption": "Foto da obra"},
        })
        assert content.message_type == "image"
        assert content.text_content == "Foto da obra"
        assert content.media_id == "MEDIA_1"
        assert content.mime_type == "image/jpeg"

    def test_audio_has_no_caption(self):
        """Test audio never carries text content."""
        content = extract_content({
            "type": "audio",
            "audio": {"id": "MEDIA_2", "mime_type": "audio/ogg; codecs=opus", "caption": "x"},
        })
        assert content.message_type == "audio"
        assert content.text_content is None
        assert content.media_id == "MEDIA_2"

    def test_document_keeps_filename(self):
        """Test document filename is extracted."""
        content = extract_content({
            "type": "document",
            "document": {"id": "MEDIA_3", "mime_type": "application/pdf", "filename": "orcamento.pdf"},
        })
        assert content.message_type == "document"
        assert content.filename == "orcamento.pdf"

    def test_sticker(self):
        """Test sticker is a media message."""
        content = extract_content({"type": "sticker", "sticker": {"id": "MEDIA_4", "mime_type": "image/webp"}})
        assert content.message_type == "sticker"
        assert content.media_id == "MEDIA_4"

    def test_location_is_json(self):
        """Test location is serialized as JSON content."""
        content = extract_content({
            "type": "location",
            "location": {"latitude": -23.55, "longitude": -46.63, "name": "Depósito", "address": "Rua A"},
        })
        assert content.message_type == "location"
        assert json.loads(content.text_content) == {
            "latitude": -23.55,
            "longitude": -46.63,
            "name": "Depósito",
            "address": "Rua A",
        }

    def test_reaction_uses_emoji(self):
        """Test reaction content is the emoji."""
        content = extract_content({"type": "reaction", "reaction": {"message_id": "wamid.x", "emoji": "👍"}})
        assert content.message_type == "reaction"
        assert content.text_content == "👍"

    def test_interactive_button_reply(self):
        """Test interactive reply title becomes text."""
        content = extract_content({
            "type": "interactive",
            "interactive": {"type": "button_reply", "button_reply": {"id": "b1", "title": "Sim"}},
        })
        assert content.message_type == "text"
        assert content.text_content == "Sim"

    def test_interactive_list_reply(self):
        """Test list reply title becomes text."""
        content = extract_content({
            "type": "interactive",
            "interactive": {"type": "list_reply", "list_reply": {"id": "l1", "title": "Cimento"}},
        })
        assert content.text_content == "Cimento"

    def test_template_button(self):
        """Test template quick-reply button text becomes text."""
        content = extract_content({"type": "button", "button": {"payload": "btn_quote", "text": "Cotação"}})
        assert content.message_type == "text"
        assert content.text_content == "Cotação"

    def test_unknown_type_placeholder(self):
        """Test unknown type yields a text placeholder."""
        content = extract_content({"type": "hologram"})
        assert content.message_type == "text"
        assert content.text_content == "[Unsupported message type: hologram]"

    def test_missing_type_placeholder(self):
        """Test a message without type still yields text."""
        content = extract_content({})
        assert content.message_type == "text"
        assert content.text_content.startswith("[Unsupported message type")

    def test_malformed_blocks(self):
        """Test missing or non-dict blocks never raise."""
        assert extract_content({"type": "text"}).text_content is None
        assert extract_content({"type": "image", "image": "oops"}).media_id is None
        assert extract_content({"type": "interactive"}).message_type == "text"

    @pytest.mark.parametrize("reply_type", [["button_reply"], {"kind": "button_reply"}, 7, None])
    def test_interactive_with_malformed_type(self, reply_type):
        """Test a non-string interactive type yields the placeholder."""
        content = extract_content({"type": "interactive", "interactive": {"type": reply_type}})
        assert content.message_type == "text"
        assert content.text_content == "[Unsupported message type: interactive]"

    def test_interactive_with_non_string_title(self):
        """Test a non-string reply title yields the placeholder."""
        content = extract_content({
            "type": "interactive",
            "interactive": {"type": "button_reply", "button_reply": {"title": ["Sim"]}},
        })
        assert content.text_content == "[Unsupported message type: interactive]"

    def test_unhashable_message_type(self):
        """Test a list as message type yields the placeholder."""
        content = extract_content({"type": ["text"]})
        assert content.message_type == "text"
        assert content.text_content.startswith("[Unsupported message type")

    @pytest.mark.parametrize("kind", list(ProviderMessageKind))
    def test_every_kind_maps_to_stored_type(self, kind):
        """Test every provider kind yields a valid stored message type."""
        content = extract_content({"type": kind.value})
        assert content.message_type in STORED_TYPES

    def test_dispatch_table_is_exhaustive(self):
        """Test every provider kind has an extractor."""
        assert set(_EXTRACTORS) == set(ProviderMessageKind)


class TestBuildPreview:
    """Tests for conversation-list previews."""

    def test_text(self):
        """Test short text is kept."""
        assert build_preview("text", "Olá") == "Olá"

    def test_long_text_truncated(self):
        """Test text over 100 characters is truncated with an ellipsis."""
        preview = build_preview("text", "a" * 150)
        assert preview == "a" * 100 + "..."

    def test_exactly_100_chars_not_truncated(self):
        """Test the limit itself is not truncated."""
        assert build_preview("text", "b" * 100) == "b" * 100

    def test_media_labels(self):
        """Test media messages get a label and optional caption."""
        assert build_preview("image", None) == "[Imagem]"
        assert build_preview("image", "Foto") == "[Imagem] Foto"
        assert build_preview("audio", None) == "[Audio]"
        assert build_preview("video", "Clip") == "[Video] Clip"
        assert build_preview("document", None) == "[Documento]"
        assert build_preview("sticker", None) == "[Sticker]"

    def test_location(self):
        """Test location label."""
        assert build_preview("location", '{"latitude": 1}') == "[Localização]"
