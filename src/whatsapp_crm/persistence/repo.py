"""
CRM Repository

Repository pattern for CRM database operations.
Provides lookups and the atomic updates the ingestion path relies on.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from whatsapp_crm.persistence.models import (
    ACTIVE_CONVERSATION_STATUSES,
    LOAD_CONVERSATION_STATUSES,
    Agent,
    Contact,
    Conversation,
    ConversationStatus,
    Message,
    Organization,
    utcnow,
)


class CRMRepository:
    """Repository for CRM database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Organizations
    # =========================================================================

    def get_organization(self, org_id: UUID) -> Organization | None:
        """Get organization by ID."""
        return self.db.get(Organization, org_id)

    def get_organization_by_phone_number_id(self, phone_number_id: str) -> Organization | None:
        """Get organization bound to a WhatsApp phone number ID."""
        return (
            self.db.query(Organization)
            .filter(Organization.whatsapp_phone_number_id == phone_number_id)
            .first()
        )

    # =========================================================================
    # Agents
    # =========================================================================

    def get_agent(self, org_id: UUID, agent_id: UUID) -> Agent | None:
        """Get an agent within an organization."""
        return (
            self.db.query(Agent)
            .filter(Agent.org_id == org_id, Agent.id == agent_id)
            .first()
        )

    def get_agent_by_id(self, agent_id: UUID) -> Agent | None:
        """Get an agent by ID regardless of organization."""
        return self.db.get(Agent, agent_id)

    def lock_agent(self, agent_id: UUID) -> Agent | None:
        """Load an agent row with SELECT ... FOR UPDATE."""
        return (
            self.db.query(Agent)
            .filter(Agent.id == agent_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def list_agents(self, org_id: UUID) -> list[Agent]:
        """List agents of an organization."""
        return (
            self.db.query(Agent)
            .filter(Agent.org_id == org_id)
            .order_by(Agent.display_name)
            .all()
        )

    def list_available_agents(
        self,
        org_id: UUID,
        statuses: tuple[str, ...],
        roles: tuple[str, ...],
        queues: tuple[str, ...] | None = None,
    ) -> list[Agent]:
        """List agents matching status, role and (optionally) queue filters."""
        query = self.db.query(Agent).filter(
            Agent.org_id == org_id,
            Agent.status.in_(statuses),
            Agent.role.in_(roles),
        )
        if queues:
            query = query.filter(Agent.queue.in_(queues))
        return query.all()

    def count_open_by_agent(self, org_id: UUID, agent_ids: list[UUID]) -> dict[UUID, int]:
        """Count open/waiting conversations per agent in one grouped query."""
        if not agent_ids:
            return {}

        rows = (
            self.db.query(Conversation.assigned_agent_id, func.count(Conversation.id))
            .filter(
                Conversation.org_id == org_id,
                Conversation.assigned_agent_id.in_(agent_ids),
                Conversation.status.in_(LOAD_CONVERSATION_STATUSES),
            )
            .group_by(Conversation.assigned_agent_id)
            .all()
        )
        counts = {agent_id: 0 for agent_id in agent_ids}
        counts.update({agent_id: count for agent_id, count in rows})
        return counts

    def count_open_for_agent(self, agent_id: UUID) -> int:
        """Count open/waiting conversations assigned to one agent."""
        return (
            self.db.query(func.count(Conversation.id))
            .filter(
                Conversation.assigned_agent_id == agent_id,
                Conversation.status.in_(LOAD_CONVERSATION_STATUSES),
            )
            .scalar()
        ) or 0

    # =========================================================================
    # Contacts
    # =========================================================================

    def get_contact_by_phone(self, org_id: UUID, phone: str) -> Contact | None:
        """Get contact by organization and normalized phone."""
        return (
            self.db.query(Contact)
            .filter(Contact.org_id == org_id, Contact.phone == phone)
            .first()
        )

    def get_contact(self, contact_id: UUID) -> Contact | None:
        """Get contact by ID."""
        return self.db.get(Contact, contact_id)

    # =========================================================================
    # Conversations
    # =========================================================================

    def get_conversation(self, org_id: UUID, conversation_id: UUID) -> Conversation | None:
        """Get a conversation within an organization."""
        return (
            self.db.query(Conversation)
            .filter(Conversation.org_id == org_id, Conversation.id == conversation_id)
            .first()
        )

    def get_active_conversation(self, contact_id: UUID) -> Conversation | None:
        """Get the most recent pending/open/waiting conversation of a contact."""
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.contact_id == contact_id,
                Conversation.status.in_(ACTIVE_CONVERSATION_STATUSES),
            )
            .order_by(Conversation.created_at.desc())
            .populate_existing()
            .first()
        )

    def list_conversations(
        self,
        org_id: UUID,
        status: str | None = None,
        limit: int = 50,
    ) -> list[Conversation]:
        """List conversations of an organization, most recent activity first."""
        query = self.db.query(Conversation).filter(Conversation.org_id == org_id)
        if status:
            query = query.filter(Conversation.status == status)
        return (
            query.order_by(Conversation.last_message_at.desc().nulls_last())
            .limit(limit)
            .all()
        )

    def list_unassigned_pending(self, org_id: UUID) -> list[Conversation]:
        """List pending conversations with no agent and no active bot, oldest first."""
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.org_id == org_id,
                Conversation.status == ConversationStatus.PENDING.value,
                Conversation.assigned_agent_id.is_(None),
                Conversation.is_bot_active == False,  # noqa: E712
            )
            .order_by(Conversation.created_at)
            .all()
        )

    def record_inbound_activity(
        self,
        conversation_id: UUID,
        preview: str,
        at: datetime | None = None,
    ) -> None:
        """
        Update conversation aggregates for a new inbound message.

        unread_count is incremented in SQL so concurrent deliveries never lose
        an increment.
        """
        self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(
                last_message_at=at or utcnow(),
                last_message_preview=preview,
                unread_count=Conversation.unread_count + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    def claim_pending_conversation(self, conversation_id: UUID, agent_id: UUID) -> bool:
        """
        Assign a pending, unassigned conversation to an agent.

        Returns False when another worker already moved the conversation out
        of the pending/unassigned state.
        """
        result = self.db.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation_id,
                Conversation.status == ConversationStatus.PENDING.value,
                Conversation.assigned_agent_id.is_(None),
            )
            .values(
                status=ConversationStatus.OPEN.value,
                assigned_agent_id=agent_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # =========================================================================
    # Messages
    # =========================================================================

    def is_message_processed(self, whatsapp_message_id: str) -> bool:
        """Check if a provider message ID has already been stored."""
        return (
            self.db.query(Message.id)
            .filter(Message.whatsapp_message_id == whatsapp_message_id)
            .first()
        ) is not None

    def get_message(self, conversation_id: UUID, message_id: UUID) -> Message | None:
        """Get a message within a conversation."""
        return (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation_id, Message.id == message_id)
            .first()
        )

    def get_message_by_whatsapp_id(self, whatsapp_message_id: str) -> Message | None:
        """Get message by provider message ID."""
        return (
            self.db.query(Message)
            .filter(Message.whatsapp_message_id == whatsapp_message_id)
            .first()
        )

    def create_message(self, conversation_id: UUID, **fields: Any) -> Message:
        """Add a message to the session and flush it."""
        message = Message(conversation_id=conversation_id, **fields)
        self.db.add(message)
        self.db.flush()
        return message

    def update_status_by_whatsapp_id(
        self,
        whatsapp_message_id: str,
        status: str,
        error_message: str | None = None,
    ) -> int:
        """Set a message's delivery status. Returns the number of rows changed."""
        values: dict[str, Any] = {"status": status, "status_updated_at": utcnow()}
        if error_message is not None:
            values["error_message"] = error_message

        result = self.db.execute(
            update(Message)
            .where(Message.whatsapp_message_id == whatsapp_message_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
