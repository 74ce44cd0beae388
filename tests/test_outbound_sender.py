"""
Tests for agent outbound messages.
"""

import json

import httpx
import pytest

from whatsapp_crm.contracts.payloads import SendMessageRequest
from whatsapp_crm.persistence.models import AgentActivityLog, Conversation, Message
from whatsapp_crm.persistence.repo import CRMRepository
from whatsapp_crm.providers.meta_cloud.client import MetaCloudWhatsAppProvider
from whatsapp_crm.providers.stub import StubWhatsAppProvider
from whatsapp_crm.service.errors import (
    InvalidRequestError,
    NotFoundError,
    UpstreamProviderError,
)
from whatsapp_crm.service.outbound_sender import OutboundSender


@pytest.fixture
def agent(org, make_agent):
    return make_agent(org)


@pytest.fixture
def conversation(db, org, make_conversation):
    conversation = make_conversation(org, phone="+5511999990000")
    conversation.unread_count = 3
    db.commit()
    return conversation


@pytest.fixture
def sender(db, provider):
    return OutboundSender(db, provider)


class TestSendText:
    """Tests for text messages."""

    async def test_sends_and_records(self, db, org, agent, conversation, sender, provider):
        """Test a text send is stored and updates the conversation."""
        request = SendMessageRequest(conversation_id=conversation.id, content="Posso ajudar?")

        message = await sender.send(org, agent, request)

        [sent] = provider.sent_messages
        assert sent["to"] == "5511999990000"
        assert sent["text"] == "Posso ajudar?"

        assert message.status == "sent"
        assert message.sender_type == "agent"
        assert message.sender_id == agent.id
        assert message.whatsapp_message_id == sent["message_id"]

        db.expire_all()
        stored = db.get(Conversation, conversation.id)
        assert stored.status == "open"
        assert stored.assigned_agent_id == agent.id
        assert stored.unread_count == 0
        assert stored.last_message_preview == "Posso ajudar?"

        log = db.query(AgentActivityLog).one()
        assert log.activity_type == "message_sent"
        assert log.details["message_id"] == str(message.id)

    async def test_keeps_existing_assignment(self, db, org, make_agent, make_conversation, sender):
        """Test sending does not take over another agent's conversation."""
        owner = make_agent(org)
        helper = make_agent(org)
        conversation = make_conversation(org, status="open", agent=owner)

        await sender.send(org, helper, SendMessageRequest(conversation_id=conversation.id, content="Oi"))

        db.expire_all()
        assert db.get(Conversation, conversation.id).assigned_agent_id == owner.id

    async def test_reply_to_stored_message(self, db, org, agent, conversation, sender, provider):
        """Test replies reference the provider ID of the stored message."""
        inbound = CRMRepository(db).create_message(
            conversation.id,
            sender_type="contact",
            message_type="text",
            content="Oi",
            whatsapp_message_id="wamid.in_1",
            status="delivered",
        )
        db.commit()

        message = await sender.send(
            org,
            agent,
            SendMessageRequest(conversation_id=conversation.id, content="Olá", reply_to_message_id=inbound.id),
        )

        assert provider.sent_messages[0]["reply_to"] == "wamid.in_1"
        assert message.reply_to_message_id == inbound.id


class TestSendOtherTypes:
    """Tests for templates and media."""

    async def test_template(self, db, org, agent, conversation, sender, provider):
        """Test template sends store name, components and a template preview."""
        components = [{"type": "body", "parameters": [{"type": "text", "text": "Maria"}]}]
        message = await sender.send(
            org,
            agent,
            SendMessageRequest(
                conversation_id=conversation.id,
                message_type="template",
                template_name="welcome",
                template_language="pt_BR",
                template_params=components,
            ),
        )

        assert provider.sent_messages[0]["components"] == components
        assert message.template_name == "welcome"
        assert message.template_params == {"components": components}
        db.expire_all()
        assert db.get(Conversation, conversation.id).last_message_preview == "[Template] welcome"

    async def test_image(self, org, agent, conversation, sender, provider):
        """Test media sends pass link and caption."""
        await sender.send(
            org,
            agent,
            SendMessageRequest(
                conversation_id=conversation.id,
                message_type="image",
                media_url="https://files.test/a.jpg",
                content="Catálogo",
            ),
        )

        sent = provider.sent_messages[0]
        assert sent["type"] == "image"
        assert sent["media_url"] == "https://files.test/a.jpg"
        assert sent["caption"] == "Catálogo"


class TestValidation:
    """Tests for rejected requests."""

    @pytest.mark.parametrize(
        "fields",
        [
            {"message_type": "text"},
            {"message_type": "template", "template_name": "welcome"},
            {"message_type": "document", "content": "sem arquivo"},
        ],
    )
    async def test_missing_fields(self, org, agent, conversation, sender, provider, fields):
        """Test incomplete requests are rejected before sending."""
        with pytest.raises(InvalidRequestError):
            await sender.send(org, agent, SendMessageRequest(conversation_id=conversation.id, **fields))
        assert provider.sent_messages == []

    async def test_other_org_conversation(self, org, make_org, agent, make_conversation, sender):
        """Test conversations of another organization are not found."""
        foreign = make_conversation(make_org())
        with pytest.raises(NotFoundError):
            await sender.send(org, agent, SendMessageRequest(conversation_id=foreign.id, content="Oi"))

    async def test_missing_credentials(self, make_org, make_agent, make_conversation, sender):
        """Test an organization without token and no fallback is rejected."""
        org = make_org(whatsapp_access_token=None)
        conversation = make_conversation(org)
        with pytest.raises(InvalidRequestError):
            await sender.send(org, make_agent(org), SendMessageRequest(conversation_id=conversation.id, content="Oi"))


class TestProviderFailure:
    """Tests for provider rejections."""

    async def test_failed_send_is_recorded(self, db, org, agent, conversation):
        """Test a rejected send stores a failed message and raises."""
        sender = OutboundSender(db, StubWhatsAppProvider(fail_sends=True))

        with pytest.raises(UpstreamProviderError) as exc_info:
            await sender.send(org, agent, SendMessageRequest(conversation_id=conversation.id, content="Oi"))

        error = exc_info.value
        assert error.status_code == 502
        assert error.details["details"] == {"code": 131026, "message": "Message undeliverable"}
        assert error.details["error_code"] == "131026"
        assert error.details["message"]["status"] == "failed"

        failed = db.query(Message).one()
        assert failed.status == "failed"
        assert json.loads(failed.error_message) == {"code": 131026, "message": "Message undeliverable"}
        assert failed.whatsapp_message_id is None

        db.expire_all()
        assert db.get(Conversation, conversation.id).unread_count == 3

    async def test_graph_error_body_is_kept(self, db, org, agent, conversation):
        """Test the Graph error code and trace ID reach the stored record and the error."""
        graph_error = {
            "code": 131047,
            "message": "Re-engagement message",
            "error_data": {"details": "More than 24 hours have passed"},
            "fbtrace_id": "AbCdEf123",
        }

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": graph_error})

        provider = MetaCloudWhatsAppProvider(
            base_url="https://graph.test/v21.0",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        sender = OutboundSender(db, provider)

        with pytest.raises(UpstreamProviderError) as exc_info:
            await sender.send(org, agent, SendMessageRequest(conversation_id=conversation.id, content="Oi"))

        assert exc_info.value.details["error_code"] == "131047"
        assert exc_info.value.details["details"]["fbtrace_id"] == "AbCdEf123"

        failed = db.query(Message).one()
        stored_error = json.loads(failed.error_message)
        assert stored_error["code"] == 131047
        assert stored_error["error_data"]["details"] == "More than 24 hours have passed"
