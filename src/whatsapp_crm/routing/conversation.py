"""
Conversation Management

Finds or opens the active conversation of a contact, allocates protocol
numbers and applies agent-driven updates.

Lifecycle:
    pending -> open -> waiting -> resolved -> closed

A contact has at most one conversation in pending/open/waiting. Once a
conversation is resolved or closed, the next inbound message opens a new
one with a new protocol number.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whatsapp_crm.persistence.models import (
    ActivityType,
    Agent,
    Conversation,
    ConversationStatus,
    Organization,
    ProtocolAction,
    ProtocolSequence,
    Queue,
)
from whatsapp_crm.persistence.repo import CRMRepository
from whatsapp_crm.service.audit import AuditTrail
from whatsapp_crm.service.errors import ConflictError, InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Sao_Paulo"

UPDATABLE_FIELDS = (
    "status",
    "assigned_agent_id",
    "tags",
    "classification",
    "queue",
    "is_bot_active",
)


def org_local_day(tz_name: str | None, now: datetime | None = None) -> str:
    """Calendar day (YYYYMMDD) in the organization's timezone."""
    try:
        tz = ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {tz_name!r}, using {DEFAULT_TIMEZONE}")
        tz = ZoneInfo(DEFAULT_TIMEZONE)
    now = now or datetime.now(timezone.utc)
    return now.astimezone(tz).strftime("%Y%m%d")


class ConversationManager:
    """
    Manages conversations and their transitions.

    Provides methods to:
    - Resolve the active conversation of a contact
    - Allocate protocol numbers
    - Apply agent updates (status, assignment, tags, ...)
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = CRMRepository(db)
        self.audit = AuditTrail(db)

    # =========================================================================
    # Protocol numbers
    # =========================================================================

    def next_protocol_number(self, tz_name: str | None, now: datetime | None = None) -> str:
        """
        Allocate the next protocol number for the organization's current day.

        The per-day counter row is incremented with a single UPDATE ... RETURNING,
        so concurrent allocations serialize on the row lock and never collide.

        Returns:
            Protocol number formatted as YYYYMMDD-NNNNN
        """
        day = org_local_day(tz_name, now)

        value = self._increment_sequence(day)
        if value is None:
            try:
                with self.db.begin_nested():
                    self.db.add(ProtocolSequence(day=day, last_value=1))
                value = 1
            except IntegrityError:
                # Another transaction opened the day first
                value = self._increment_sequence(day)
                if value is None:
                    raise

        return f"{day}-{value:05d}"

    def _increment_sequence(self, day: str) -> int | None:
        return self.db.execute(
            update(ProtocolSequence)
            .where(ProtocolSequence.day == day)
            .values(last_value=ProtocolSequence.last_value + 1)
            .returning(ProtocolSequence.last_value)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve(self, org: Organization, contact_id: UUID) -> tuple[Conversation, bool]:
        """
        Get the active conversation of a contact or open a new one.

        Args:
            org: Owning organization
            contact_id: Contact ID

        Returns:
            Tuple of (conversation, is_new)
        """
        conversation = self.repo.get_active_conversation(contact_id)
        if conversation:
            return conversation, False

        conversation = Conversation(
            org_id=org.id,
            contact_id=contact_id,
            status=ConversationStatus.PENDING.value,
            protocol_number=self.next_protocol_number(org.timezone),
            is_bot_active=False,
            unread_count=0,
            tags=[],
            flow_variables={},
        )

        try:
            with self.db.begin_nested():
                self.db.add(conversation)
        except IntegrityError:
            existing = self.repo.get_active_conversation(contact_id)
            if existing is None:
                raise
            logger.info(
                "Conversation opened concurrently, using existing",
                extra={"contact_id": str(contact_id), "conversation_id": str(existing.id)},
            )
            return existing, False

        logger.info(
            "Opened conversation",
            extra={
                "org_id": str(org.id),
                "conversation_id": str(conversation.id),
                "protocol_number": conversation.protocol_number,
            },
        )

        self.audit.log_protocol(
            org_id=org.id,
            conversation_id=conversation.id,
            protocol_number=conversation.protocol_number,
            action=ProtocolAction.CONVERSATION_CREATED,
            details={"source": "whatsapp_incoming"},
        )

        return conversation, True

    # =========================================================================
    # Agent updates
    # =========================================================================

    def apply_agent_update(
        self,
        org_id: UUID,
        conversation_id: UUID,
        actor: Agent,
        changes: dict[str, Any],
    ) -> Conversation:
        """
        Apply an agent's partial update to a conversation and commit it.

        Only keys present in ``changes`` are applied. Assignment changes and
        transitions into ``resolved`` are recorded in the audit tables.

        Raises:
            InvalidRequestError: No updatable field given, or a value is invalid
            NotFoundError: Conversation or target agent not in the organization
            ConflictError: Change would leave the contact with two active conversations
        """
        changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        if not changes:
            raise InvalidRequestError("No valid fields to update")

        conversation = self.repo.get_conversation(org_id, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")

        self._validate(org_id, changes)

        previous_status = conversation.status
        previous_agent_id = conversation.assigned_agent_id

        for field_name, value in changes.items():
            setattr(conversation, field_name, value)

        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                "Contact already has an active conversation",
                details={"conversation_id": str(conversation_id)},
            ) from e

        new_agent_id = changes.get("assigned_agent_id", previous_agent_id)
        if "assigned_agent_id" in changes and new_agent_id and new_agent_id != previous_agent_id:
            self.audit.log_activity(
                org_id=org_id,
                agent_id=new_agent_id,
                activity_type=ActivityType.CONVERSATION_ASSIGNED,
                conversation_id=conversation.id,
                details={
                    "conversation_id": str(conversation.id),
                    "assigned_by": str(actor.id),
                },
            )

        if (
            changes.get("status") == ConversationStatus.RESOLVED.value
            and previous_status != ConversationStatus.RESOLVED.value
        ):
            self.audit.log_activity(
                org_id=org_id,
                agent_id=actor.id,
                activity_type=ActivityType.CONVERSATION_RESOLVED,
                conversation_id=conversation.id,
                details={"protocol_number": conversation.protocol_number},
            )
            self.audit.log_protocol(
                org_id=org_id,
                conversation_id=conversation.id,
                protocol_number=conversation.protocol_number,
                action=ProtocolAction.RESOLVED,
                agent_id=actor.id,
                details={"message": f"Resolved by {actor.display_name}"},
            )

        self.db.commit()

        logger.info(
            "Conversation updated by agent",
            extra={
                "conversation_id": str(conversation.id),
                "agent_id": str(actor.id),
                "fields": sorted(changes),
            },
        )

        return conversation

    def _validate(self, org_id: UUID, changes: dict[str, Any]) -> None:
        status = changes.get("status")
        if "status" in changes and status not in {s.value for s in ConversationStatus}:
            raise InvalidRequestError(f"Invalid status: {status}")

        queue = changes.get("queue")
        if queue is not None and queue not in {q.value for q in Queue}:
            raise InvalidRequestError(f"Invalid queue: {queue}")

        if "is_bot_active" in changes and not isinstance(changes["is_bot_active"], bool):
            raise InvalidRequestError("is_bot_active must be a boolean")

        tags = changes.get("tags")
        if "tags" in changes and (
            not isinstance(tags, list) or not all(isinstance(t, str) for t in tags)
        ):
            raise InvalidRequestError("tags must be a list of strings")

        agent_id = changes.get("assigned_agent_id")
        if agent_id is not None:
            if not isinstance(agent_id, UUID):
                try:
                    agent_id = UUID(str(agent_id))
                except ValueError:
                    raise InvalidRequestError(f"Invalid agent ID: {agent_id}")
                changes["assigned_agent_id"] = agent_id
            if self.repo.get_agent(org_id, agent_id) is None:
                raise NotFoundError("Agent not found")
