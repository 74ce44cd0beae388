"""
Tests for the Meta Cloud API provider.

HTTP traffic goes through an httpx.MockTransport.
"""

import json

import httpx
import pytest

from whatsapp_crm.providers.base import ProviderError
from whatsapp_crm.providers.meta_cloud.client import MetaCloudWhatsAppProvider

BASE_URL = "https://graph.test/v21.0"


def make_provider(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MetaCloudWhatsAppProvider(base_url=BASE_URL, client=client)


class TestSendText:
    """Tests for send_text."""

    async def test_payload_and_response(self):
        """Test the request body, bearer token and returned message ID."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"messages": [{"id": "wamid.abc"}]})

        provider = make_provider(handler)
        response = await provider.send_text("PHONE_1", "token-1", "5511999990000", "Olá", reply_to="wamid.prev")

        assert response.success is True
        assert response.message_id == "wamid.abc"

        request = requests[0]
        assert str(request.url) == f"{BASE_URL}/PHONE_1/messages"
        assert request.headers["Authorization"] == "Bearer token-1"
        body = json.loads(request.content)
        assert body["to"] == "5511999990000"
        assert body["text"]["body"] == "Olá"
        assert body["context"] == {"message_id": "wamid.prev"}

    async def test_error_response(self):
        """Test a Graph API error becomes an unsuccessful response."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"error": {"code": 131047, "message": "Re-engagement message"}},
            )

        response = await make_provider(handler).send_text("PHONE_1", "t", "5511", "Oi")

        assert response.success is False
        assert response.error_code == "131047"
        assert response.error_message == "Re-engagement message"

    async def test_network_error(self):
        """Test transport failures do not raise from send."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        response = await make_provider(handler).send_text("PHONE_1", "t", "5511", "Oi")

        assert response.success is False
        assert response.error_code == "HTTP_ERROR"


class TestSendOther:
    """Tests for templates and media."""

    async def test_template_components(self):
        """Test template name, language and components are sent."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"messages": [{"id": "wamid.t"}]})

        components = [{"type": "body", "parameters": [{"type": "text", "text": "Maria"}]}]
        await make_provider(handler).send_template("P", "t", "5511", "welcome", "pt_BR", components)

        template = bodies[0]["template"]
        assert template["name"] == "welcome"
        assert template["language"] == {"code": "pt_BR"}
        assert template["components"] == components

    async def test_document_link(self):
        """Test documents carry link, caption and filename."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"messages": [{"id": "wamid.d"}]})

        await make_provider(handler).send_media(
            "P", "t", "5511", "document",
            media_url="https://files.test/a.pdf",
            caption="Proposta",
            filename="a.pdf",
        )

        assert bodies[0]["type"] == "document"
        assert bodies[0]["document"] == {
            "link": "https://files.test/a.pdf",
            "caption": "Proposta",
            "filename": "a.pdf",
        }

    async def test_unsupported_media_type(self):
        """Test an unknown media type is rejected before any request."""
        provider = make_provider(lambda request: httpx.Response(500))
        with pytest.raises(ValueError):
            await provider.send_media("P", "t", "5511", "location", media_url="https://x")


class TestReadReceipts:
    """Tests for mark_as_read."""

    async def test_success(self):
        """Test the read receipt body."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        assert await make_provider(handler).mark_as_read("P", "t", "wamid.in") is True
        assert bodies[0] == {"messaging_product": "whatsapp", "status": "read", "message_id": "wamid.in"}

    async def test_failure_returns_false(self):
        """Test a rejected read receipt returns False."""
        provider = make_provider(lambda request: httpx.Response(500, json={"error": {"message": "down"}}))
        assert await provider.mark_as_read("P", "t", "wamid.in") is False


class TestMedia:
    """Tests for media lookups."""

    async def test_get_media_url(self):
        """Test the media lookup returns URL and MIME type."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == f"{BASE_URL}/MEDIA_1"
            return httpx.Response(200, json={"url": "https://cdn.test/m1", "mime_type": "audio/ogg"})

        info = await make_provider(handler).get_media_url("MEDIA_1", "t")
        assert info.url == "https://cdn.test/m1"
        assert info.mime_type == "audio/ogg"

    async def test_missing_url_raises(self):
        """Test a lookup without URL raises ProviderError."""
        provider = make_provider(lambda request: httpx.Response(200, json={"id": "MEDIA_1"}))
        with pytest.raises(ProviderError) as exc_info:
            await provider.get_media_url("MEDIA_1", "t")
        assert exc_info.value.code == "MEDIA_URL_MISSING"

    async def test_download(self):
        """Test media bytes and content type are returned."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer t"
            return httpx.Response(200, content=b"OggS", headers={"content-type": "audio/ogg"})

        media = await make_provider(handler).download_media("https://cdn.test/m1", "t")
        assert media.content == b"OggS"
        assert media.content_type == "audio/ogg"

    async def test_download_failure(self):
        """Test an HTTP error on download raises ProviderError."""
        provider = make_provider(lambda request: httpx.Response(404))
        with pytest.raises(ProviderError):
            await provider.download_media("https://cdn.test/gone", "t")
