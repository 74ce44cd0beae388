"""
CRM API Payload Models

Pydantic models for the agent-facing REST interface.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ConversationStatusValue = Literal["pending", "open", "waiting", "resolved", "closed"]
QueueValue = Literal["sdr", "closure", "both"]
OutboundMessageType = Literal["text", "template", "image", "audio", "video", "document", "sticker"]


class ConversationUpdate(BaseModel):
    """
    Partial update of a conversation by an agent.

    Only fields present in the request body are applied.
    """

    model_config = ConfigDict(extra="ignore")

    status: ConversationStatusValue | None = Field(None, description="New status")
    assigned_agent_id: UUID | None = Field(None, description="Agent to assign (null to unassign)")
    tags: list[str] | None = Field(None, description="Replacement tag list")
    classification: str | None = Field(None, description="Lead classification")
    queue: QueueValue | None = Field(None, description="Routing queue")
    is_bot_active: bool | None = Field(None, description="Whether the bot drives the conversation")

    def changes(self) -> dict[str, Any]:
        """Fields explicitly provided by the caller."""
        return self.model_dump(exclude_unset=True)


class SendMessageRequest(BaseModel):
    """Outbound message from an agent."""

    conversation_id: UUID = Field(..., description="Target conversation")
    message_type: OutboundMessageType = Field("text", description="Type of message")
    content: str | None = Field(None, description="Text body, or caption for media")
    media_url: str | None = Field(None, description="Public link for media messages")
    media_filename: str | None = Field(None, description="Filename for documents")
    template_name: str | None = Field(None, description="Approved template name")
    template_language: str | None = Field(None, description="Template language code (e.g. pt_BR)")
    template_params: list[dict[str, Any]] | None = Field(None, description="Template components")
    reply_to_message_id: UUID | None = Field(None, description="Stored message being replied to")


class ConversationOut(BaseModel):
    """Conversation as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: UUID
    contact_id: UUID
    assigned_agent_id: UUID | None
    status: str
    queue: str | None
    classification: str | None
    tags: list[str]
    is_bot_active: bool
    protocol_number: str
    last_message_at: datetime | None
    last_message_preview: str | None
    unread_count: int


class MessageOut(BaseModel):
    """Message as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    sender_type: str
    sender_id: UUID | None
    message_type: str
    content: str | None
    media_url: str | None
    template_name: str | None
    whatsapp_message_id: str | None
    status: str
    error_message: str | None
    created_at: datetime
