"""
CRM Database Models

Tables owned by the WhatsApp CRM core.

Tables:
- crm_organizations: Tenants and their WhatsApp Business number
- crm_agents: Human agents (never hard-deleted)
- crm_contacts: Customers, one row per (organization, phone)
- crm_conversations: Conversations with a protocol number and status
- crm_messages: Inbound and outbound messages
- crm_protocol_log: Append-only conversation audit trail
- crm_agent_activity_log: Append-only agent audit trail
- crm_protocol_sequences: Per-day counters for protocol numbers

Race safety lives here: the unique constraints and the partial unique index
on active conversations are what make concurrent webhook deliveries safe.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB

from basecore.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentRole(str, Enum):
    """Role of an agent within an organization."""

    OWNER = "owner"
    ADMIN = "admin"
    AGENT = "agent"


class AgentStatus(str, Enum):
    """Availability of an agent."""

    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


class Queue(str, Enum):
    """Sales queue a conversation or agent belongs to."""

    SDR = "sdr"
    CLOSURE = "closure"
    BOTH = "both"


class ConversationStatus(str, Enum):
    """Status of a conversation."""

    PENDING = "pending"
    OPEN = "open"
    WAITING = "waiting"
    RESOLVED = "resolved"
    CLOSED = "closed"


ACTIVE_CONVERSATION_STATUSES = (
    ConversationStatus.PENDING.value,
    ConversationStatus.OPEN.value,
    ConversationStatus.WAITING.value,
)

# Statuses that count against an agent's capacity
LOAD_CONVERSATION_STATUSES = (
    ConversationStatus.OPEN.value,
    ConversationStatus.WAITING.value,
)


class SenderType(str, Enum):
    """Who produced a message."""

    CONTACT = "contact"
    AGENT = "agent"
    SYSTEM = "system"
    BOT = "bot"


class MessageType(str, Enum):
    """Stored message types."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    TEMPLATE = "template"
    LOCATION = "location"
    STICKER = "sticker"
    REACTION = "reaction"
    INTERNAL_NOTE = "internal_note"


MEDIA_MESSAGE_TYPES = (
    MessageType.IMAGE.value,
    MessageType.AUDIO.value,
    MessageType.VIDEO.value,
    MessageType.DOCUMENT.value,
    MessageType.STICKER.value,
)


class MessageStatus(str, Enum):
    """Delivery status of a message."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class ProtocolAction(str, Enum):
    """Actions recorded in the protocol log."""

    CONVERSATION_CREATED = "conversation_created"
    AGENT_ASSIGNED = "agent_assigned"
    RESOLVED = "resolved"


class ActivityType(str, Enum):
    """Actions recorded in the agent activity log."""

    CONVERSATION_ASSIGNED = "conversation_assigned"
    CONVERSATION_RESOLVED = "conversation_resolved"
    MESSAGE_SENT = "message_sent"
    STATUS_CHANGE = "status_change"


class CRMModelMixin:
    """Common fields for CRM models."""

    id = Column(Uuid, primary_key=True, default=uuid4)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Organization(Base, CRMModelMixin):
    """
    A tenant with one WhatsApp Business number.

    The phone_number_id is used to route incoming webhooks to the organization.
    """

    __tablename__ = "crm_organizations"

    name = Column(String(255), nullable=False)
    whatsapp_phone_number_id = Column(String(100), nullable=True)
    whatsapp_business_account_id = Column(String(100), nullable=True)
    whatsapp_access_token = Column(Text, nullable=True)  # Fernet-encrypted when a key is configured
    whatsapp_webhook_verify_token = Column(String(100), nullable=True)
    auto_reply_message = Column(Text, nullable=True)
    sla_first_response_minutes = Column(Integer, nullable=False, default=5)
    timezone = Column(String(64), nullable=False, default="America/Sao_Paulo")

    __table_args__ = (
        UniqueConstraint("whatsapp_phone_number_id", name="uq_crm_organizations_phone_number_id"),
    )


class Agent(Base, CRMModelMixin):
    """A human agent. Deactivated by status, never deleted."""

    __tablename__ = "crm_agents"

    org_id = Column(Uuid, ForeignKey("crm_organizations.id", ondelete="CASCADE"), nullable=False)
    display_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    role = Column(String(20), nullable=False, default=AgentRole.AGENT.value)
    queue = Column(String(20), nullable=False, default=Queue.BOTH.value)
    status = Column(String(20), nullable=False, default=AgentStatus.OFFLINE.value)
    max_concurrent_chats = Column(Integer, nullable=False, default=10)

    __table_args__ = (
        Index("idx_crm_agents_org_status", "org_id", "status"),
    )


class Contact(Base, CRMModelMixin):
    """A customer reachable on WhatsApp. One row per (organization, phone)."""

    __tablename__ = "crm_contacts"

    org_id = Column(Uuid, ForeignKey("crm_organizations.id", ondelete="CASCADE"), nullable=False)
    phone = Column(String(32), nullable=False)  # +<digits>
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    profile_picture_url = Column(Text, nullable=True)
    custom_fields = Column(JSONType, nullable=False, default=dict)
    tags = Column(JSONType, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("org_id", "phone", name="uq_crm_contacts_org_phone"),
    )


class Conversation(Base, CRMModelMixin):
    """
    A conversation between a contact and the organization.

    At most one conversation per contact may be active (pending, open or
    waiting) at a time; the partial unique index enforces it.
    """

    __tablename__ = "crm_conversations"

    org_id = Column(Uuid, ForeignKey("crm_organizations.id", ondelete="CASCADE"), nullable=False)
    contact_id = Column(Uuid, ForeignKey("crm_contacts.id", ondelete="CASCADE"), nullable=False)
    assigned_agent_id = Column(Uuid, ForeignKey("crm_agents.id", ondelete="SET NULL"), nullable=True)
    queue = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default=ConversationStatus.PENDING.value)
    is_bot_active = Column(Boolean, nullable=False, default=False)
    current_flow_id = Column(Uuid, nullable=True)
    flow_variables = Column(JSONType, nullable=False, default=dict)
    tags = Column(JSONType, nullable=False, default=list)
    classification = Column(String(50), nullable=True)
    protocol_number = Column(String(20), nullable=False)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    last_message_preview = Column(Text, nullable=True)
    unread_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("protocol_number", name="uq_crm_conversations_protocol_number"),
        Index(
            "uq_crm_conversations_active_contact",
            "contact_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'open', 'waiting')"),
            sqlite_where=text("status IN ('pending', 'open', 'waiting')"),
        ),
        Index("idx_crm_conversations_org_status", "org_id", "status"),
        Index("idx_crm_conversations_agent_status", "assigned_agent_id", "status"),
        Index("idx_crm_conversations_org_last_message", "org_id", "last_message_at"),
    )


class Message(Base):
    """
    A message within a conversation.

    whatsapp_message_id is the idempotency key for inbound deliveries and
    the lookup key for delivery status callbacks.
    """

    __tablename__ = "crm_messages"

    id = Column(Uuid, primary_key=True, default=uuid4)
    conversation_id = Column(
        Uuid, ForeignKey("crm_conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_type = Column(String(20), nullable=False)
    sender_id = Column(Uuid, nullable=True)
    message_type = Column(String(20), nullable=False, default=MessageType.TEXT.value)
    content = Column(Text, nullable=True)
    media_url = Column(Text, nullable=True)
    media_mime_type = Column(String(100), nullable=True)
    media_filename = Column(String(255), nullable=True)
    template_name = Column(String(100), nullable=True)
    template_params = Column(JSONType, nullable=True)
    whatsapp_message_id = Column(String(128), nullable=True)
    status = Column(String(20), nullable=False, default=MessageStatus.PENDING.value)
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    reply_to_message_id = Column(Uuid, ForeignKey("crm_messages.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("whatsapp_message_id", name="uq_crm_messages_whatsapp_message_id"),
        Index("idx_crm_messages_conversation_created", "conversation_id", "created_at"),
    )


class ProtocolLog(Base):
    """Append-only audit of conversation lifecycle events."""

    __tablename__ = "crm_protocol_log"

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, ForeignKey("crm_organizations.id", ondelete="CASCADE"), nullable=False)
    conversation_id = Column(
        Uuid, ForeignKey("crm_conversations.id", ondelete="SET NULL"), nullable=True
    )
    protocol_number = Column(String(20), nullable=False)
    action = Column(String(50), nullable=False)
    agent_id = Column(Uuid, nullable=True)
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_crm_protocol_log_conversation", "conversation_id"),
        Index("idx_crm_protocol_log_protocol", "protocol_number"),
    )


class AgentActivityLog(Base):
    """Append-only audit of agent actions."""

    __tablename__ = "crm_agent_activity_log"

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, ForeignKey("crm_organizations.id", ondelete="CASCADE"), nullable=False)
    agent_id = Column(Uuid, ForeignKey("crm_agents.id", ondelete="CASCADE"), nullable=False)
    activity_type = Column(String(50), nullable=False)
    conversation_id = Column(Uuid, nullable=True)
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_crm_agent_activity_agent_created", "agent_id", "created_at"),
    )


class ProtocolSequence(Base):
    """Last protocol counter handed out for a calendar day (YYYYMMDD)."""

    __tablename__ = "crm_protocol_sequences"

    day = Column(String(8), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
