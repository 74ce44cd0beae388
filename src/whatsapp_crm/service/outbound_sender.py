"""
Outbound Sender

Sends agent messages through the provider and records them.

A rejected send is still stored, with status failed and the provider's
error detail, so the agent can see it and retry.
"""

import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from whatsapp_crm.content.extractor import build_preview
from whatsapp_crm.contracts.payloads import MessageOut, SendMessageRequest
from whatsapp_crm.persistence.models import (
    ActivityType,
    Agent,
    Conversation,
    ConversationStatus,
    Message,
    MessageStatus,
    Organization,
    SenderType,
    utcnow,
)
from whatsapp_crm.persistence.repo import CRMRepository
from whatsapp_crm.providers.base import ProviderResponse, WhatsAppProvider
from whatsapp_crm.routing.tenant_resolver import TenantResolver
from whatsapp_crm.service.audit import AuditTrail
from whatsapp_crm.service.errors import (
    InvalidRequestError,
    NotFoundError,
    UpstreamProviderError,
)

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("image", "audio", "video", "document", "sticker")


def provider_error_detail(response: ProviderResponse) -> dict[str, Any]:
    """Error object of a rejected send, as returned by the provider."""
    error = response.raw_response.get("error") if response.raw_response else None
    if isinstance(error, dict) and error:
        return error
    return {"code": response.error_code, "message": response.error_message}


class OutboundSender:
    """
    Handles messages sent by agents.

    Responsibilities:
    - Validate the request for its message type
    - Send through the provider
    - Persist the message (sent or failed)
    - Update conversation aggregates and log agent activity
    """

    def __init__(
        self,
        db: Session,
        provider: WhatsAppProvider,
        tenant_resolver: TenantResolver | None = None,
    ):
        self.db = db
        self.provider = provider
        self.repo = CRMRepository(db)
        self.tenant_resolver = tenant_resolver or TenantResolver(db)
        self.audit = AuditTrail(db)

    async def send(
        self,
        org: Organization,
        agent: Agent,
        request: SendMessageRequest,
    ) -> Message:
        """
        Send a message on behalf of an agent.

        Args:
            org: Agent's organization
            agent: Sending agent
            request: Validated request body

        Returns:
            The stored message (status sent)

        Raises:
            InvalidRequestError: Missing fields for the type, or no credentials
            NotFoundError: Conversation or contact not found
            UpstreamProviderError: Provider rejected the send (failed record attached)
        """
        self._validate(request)

        conversation = self.repo.get_conversation(org.id, request.conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")

        contact = self.repo.get_contact(conversation.contact_id)
        if contact is None or not contact.phone:
            raise InvalidRequestError("Contact phone number not found")

        access_token = self.tenant_resolver.get_access_token(org)
        if not org.whatsapp_phone_number_id or not access_token:
            raise InvalidRequestError("WhatsApp credentials not configured for this organization")

        reply_to_wa_id = None
        if request.reply_to_message_id:
            replied = self.repo.get_message(conversation.id, request.reply_to_message_id)
            if replied is None:
                raise NotFoundError("Replied-to message not found")
            reply_to_wa_id = replied.whatsapp_message_id

        response = await self._dispatch(
            org.whatsapp_phone_number_id,
            access_token,
            contact.phone.lstrip("+"),
            request,
            reply_to_wa_id,
        )

        if not response.success:
            error_detail = provider_error_detail(response)
            failed = self._store(
                conversation,
                agent,
                request,
                response,
                error_message=json.dumps(error_detail, ensure_ascii=False, default=str),
            )
            self.db.commit()
            logger.warning(
                f"Outbound message rejected by provider: {response.error_message}",
                extra={
                    "conversation_id": str(conversation.id),
                    "error_code": response.error_code,
                },
            )
            raise UpstreamProviderError(
                "Failed to send message via WhatsApp",
                details={
                    "details": error_detail,
                    "error_code": response.error_code,
                    "message": MessageOut.model_validate(failed).model_dump(mode="json"),
                },
            )

        stored = self._store(conversation, agent, request, response)
        self._touch_conversation(conversation, agent, request)

        self.audit.log_activity(
            org_id=org.id,
            agent_id=agent.id,
            activity_type=ActivityType.MESSAGE_SENT,
            conversation_id=conversation.id,
            details={
                "conversation_id": str(conversation.id),
                "message_id": str(stored.id),
                "message_type": request.message_type,
            },
        )

        self.db.commit()

        logger.info(
            "Agent message sent",
            extra={
                "conversation_id": str(conversation.id),
                "agent_id": str(agent.id),
                "message_id": stored.whatsapp_message_id,
            },
        )
        return stored

    def _validate(self, request: SendMessageRequest) -> None:
        if request.message_type == "text" and not request.content:
            raise InvalidRequestError("Content is required for text messages")
        if request.message_type == "template" and not (
            request.template_name and request.template_language
        ):
            raise InvalidRequestError(
                "template_name and template_language are required for template messages"
            )
        if request.message_type in MEDIA_TYPES and not request.media_url:
            raise InvalidRequestError("media_url is required for media messages")

    async def _dispatch(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        request: SendMessageRequest,
        reply_to: str | None,
    ) -> ProviderResponse:
        if request.message_type == "text":
            return await self.provider.send_text(
                phone_number_id, access_token, to, request.content, reply_to=reply_to
            )

        if request.message_type == "template":
            return await self.provider.send_template(
                phone_number_id,
                access_token,
                to,
                request.template_name,
                request.template_language,
                components=request.template_params,
            )

        return await self.provider.send_media(
            phone_number_id,
            access_token,
            to,
            request.message_type,
            media_url=request.media_url,
            caption=request.content,
            filename=request.media_filename,
            reply_to=reply_to,
        )

    def _store(
        self,
        conversation: Conversation,
        agent: Agent,
        request: SendMessageRequest,
        response: ProviderResponse,
        error_message: str | None = None,
    ) -> Message:
        template_params: dict[str, Any] | None = (
            {"components": request.template_params} if request.template_params else None
        )

        return self.repo.create_message(
            conversation.id,
            sender_type=SenderType.AGENT.value,
            sender_id=agent.id,
            message_type=request.message_type,
            content=request.content,
            media_url=request.media_url,
            media_filename=request.media_filename,
            template_name=request.template_name,
            template_params=template_params,
            whatsapp_message_id=response.message_id if response.success else None,
            status=(MessageStatus.SENT if response.success else MessageStatus.FAILED).value,
            error_message=error_message,
            reply_to_message_id=request.reply_to_message_id,
        )

    def _touch_conversation(
        self,
        conversation: Conversation,
        agent: Agent,
        request: SendMessageRequest,
    ) -> None:
        if request.message_type == "template":
            preview = f"[Template] {request.template_name}"
        else:
            preview = build_preview(request.message_type, request.content)

        conversation.last_message_at = utcnow()
        conversation.last_message_preview = preview
        conversation.unread_count = 0
        if conversation.status == ConversationStatus.PENDING.value:
            conversation.status = ConversationStatus.OPEN.value
        if conversation.assigned_agent_id is None:
            conversation.assigned_agent_id = agent.id
        self.db.flush()
