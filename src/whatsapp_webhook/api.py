"""
Agent-facing API

Routes used by the agent UI: conversation updates and outbound messages.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from basecore.db import get_db
from basecore.settings import get_settings

from whatsapp_crm.contracts.payloads import (
    ConversationOut,
    ConversationUpdate,
    MessageOut,
    SendMessageRequest,
)
from whatsapp_crm.persistence.models import Agent
from whatsapp_crm.persistence.repo import CRMRepository
from whatsapp_crm.providers import WhatsAppProvider
from whatsapp_crm.routing.conversation import ConversationManager
from whatsapp_crm.routing.tenant_resolver import TenantResolver
from whatsapp_crm.service.errors import ServiceError
from whatsapp_crm.service.outbound_sender import OutboundSender

from whatsapp_webhook.deps import get_current_agent, get_whatsapp_provider

logger = logging.getLogger(__name__)

api_router = APIRouter()


def _to_http(error: ServiceError) -> HTTPException:
    logger.info(
        f"Agent request rejected: {error.message}",
        extra={"status_code": error.status_code},
    )
    detail = {"error": error.message, **error.details} if error.details else error.message
    return HTTPException(status_code=error.status_code, detail=detail)


# =============================================================================
# Conversations
# =============================================================================

@api_router.patch("/conversations/{conversation_id}", response_model=ConversationOut)
async def update_conversation(
    conversation_id: UUID,
    body: ConversationUpdate,
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    """Apply a partial update to a conversation of the agent's organization."""
    try:
        return ConversationManager(db).apply_agent_update(
            agent.org_id,
            conversation_id,
            agent,
            body.changes(),
        )
    except ServiceError as e:
        raise _to_http(e)


# =============================================================================
# Messages
# =============================================================================

@api_router.post("/messages/send", response_model=MessageOut)
async def send_message(
    body: SendMessageRequest,
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
    provider: WhatsAppProvider = Depends(get_whatsapp_provider),
):
    """Send a message to the conversation's contact on behalf of the agent."""
    org = CRMRepository(db).get_organization(agent.org_id)
    if org is None:
        raise HTTPException(status_code=403, detail="Organization not found")

    settings = get_settings()
    sender = OutboundSender(
        db,
        provider,
        tenant_resolver=TenantResolver(
            db,
            encryption_key=settings.WHATSAPP_ENCRYPTION_KEY or None,
            fallback_access_token=settings.WHATSAPP_ACCESS_TOKEN or None,
        ),
    )
    try:
        return await sender.send(org, agent, body)
    except ServiceError as e:
        raise _to_http(e)
