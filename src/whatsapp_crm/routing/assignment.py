"""
Agent Assignment

Assigns pending conversations to the least busy available agent.

Candidates are agents with status online or away and role agent, admin or
owner, optionally restricted to a queue (agents in that queue or "both").
Online agents are preferred over away agents, then fewer open conversations,
then lower agent ID.

Capacity is protected against concurrent assignments: the chosen agent's
row is locked, their load is recounted under the lock, and the conversation
is claimed with a conditional update that only matches while it is still
pending and unassigned.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from whatsapp_crm.persistence.models import (
    ActivityType,
    Agent,
    AgentRole,
    AgentStatus,
    Conversation,
    ProtocolAction,
    Queue,
)
from whatsapp_crm.persistence.repo import CRMRepository
from whatsapp_crm.service.audit import AuditTrail

logger = logging.getLogger(__name__)

ELIGIBLE_STATUSES = (AgentStatus.ONLINE.value, AgentStatus.AWAY.value)
ELIGIBLE_ROLES = (AgentRole.AGENT.value, AgentRole.ADMIN.value, AgentRole.OWNER.value)
ASSIGNMENT_METHOD = "round_robin_least_busy"


@dataclass
class Candidate:
    """An eligible agent and their current load."""

    agent: Agent
    open_count: int

    @property
    def has_capacity(self) -> bool:
        return self.open_count < self.agent.max_concurrent_chats


def rank_candidates(candidates: list[Candidate]) -> list[Candidate]:
    """Order candidates: online first, then fewest open conversations, then agent ID."""
    return sorted(
        candidates,
        key=lambda c: (
            c.agent.status != AgentStatus.ONLINE.value,
            c.open_count,
            str(c.agent.id),
        ),
    )


class AgentAssignmentEngine:
    """Chooses and assigns an agent for pending conversations."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = CRMRepository(db)
        self.audit = AuditTrail(db)

    def find_candidates(self, org_id: UUID, queue: str | None = None) -> list[Candidate]:
        """
        List eligible agents with spare capacity, ranked.

        Args:
            org_id: Organization ID
            queue: Restrict to agents of this queue (or "both")

        Returns:
            Ranked candidates; empty when nobody can take the conversation
        """
        queues = (queue, Queue.BOTH.value) if queue and queue != Queue.BOTH.value else None

        agents = self.repo.list_available_agents(
            org_id,
            statuses=ELIGIBLE_STATUSES,
            roles=ELIGIBLE_ROLES,
            queues=queues,
        )
        counts = self.repo.count_open_by_agent(org_id, [a.id for a in agents])

        candidates = [Candidate(agent=a, open_count=counts.get(a.id, 0)) for a in agents]
        return rank_candidates([c for c in candidates if c.has_capacity])

    def assign(
        self,
        org_id: UUID,
        conversation_id: UUID,
        queue: str | None = None,
    ) -> Agent | None:
        """
        Assign a pending, unassigned conversation to the best candidate.

        Leaves the conversation pending when no candidate has capacity, and
        does nothing when another delivery already assigned it. Flushes but
        does not commit.

        Returns:
            The assigned agent, or None
        """
        candidates = self.find_candidates(org_id, queue)
        if not candidates:
            logger.info(
                "No agent available, conversation stays pending",
                extra={"org_id": str(org_id), "conversation_id": str(conversation_id)},
            )
            return None

        for candidate in candidates:
            # a skipped candidate's row lock is released with its savepoint
            savepoint = self.db.begin_nested()
            agent = self.repo.lock_agent(candidate.agent.id)
            if agent is None:
                savepoint.rollback()
                continue

            open_count = self.repo.count_open_for_agent(agent.id)
            if open_count >= agent.max_concurrent_chats:
                logger.debug(
                    "Agent reached capacity while assigning",
                    extra={"agent_id": str(agent.id), "open_count": open_count},
                )
                savepoint.rollback()
                continue

            if not self.repo.claim_pending_conversation(conversation_id, agent.id):
                logger.debug(
                    "Conversation already assigned",
                    extra={"conversation_id": str(conversation_id)},
                )
                savepoint.rollback()
                return None

            savepoint.commit()
            self._record_assignment(org_id, conversation_id, agent)
            return agent

        logger.info(
            "All candidates reached capacity, conversation stays pending",
            extra={"org_id": str(org_id), "conversation_id": str(conversation_id)},
        )
        return None

    def assign_pending(self, org_id: UUID) -> int:
        """
        Sweep pending unassigned conversations of an organization.

        Each assignment is committed on its own. Returns the number assigned.
        """
        assigned = 0
        for conversation in self.repo.list_unassigned_pending(org_id):
            if self.assign(org_id, conversation.id, conversation.queue):
                assigned += 1
            self.db.commit()
        return assigned

    def _record_assignment(self, org_id: UUID, conversation_id: UUID, agent: Agent) -> None:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is not None:
            self.db.refresh(conversation)

        logger.info(
            "Assigned conversation to agent",
            extra={
                "org_id": str(org_id),
                "conversation_id": str(conversation_id),
                "agent_id": str(agent.id),
            },
        )

        if conversation is not None:
            self.audit.log_protocol(
                org_id=org_id,
                conversation_id=conversation_id,
                protocol_number=conversation.protocol_number,
                action=ProtocolAction.AGENT_ASSIGNED,
                agent_id=agent.id,
                details={
                    "agent_id": str(agent.id),
                    "agent_name": agent.display_name,
                    "method": ASSIGNMENT_METHOD,
                },
            )

        self.audit.log_activity(
            org_id=org_id,
            agent_id=agent.id,
            activity_type=ActivityType.CONVERSATION_ASSIGNED,
            conversation_id=conversation_id,
            details={"conversation_id": str(conversation_id), "method": ASSIGNMENT_METHOD},
        )
