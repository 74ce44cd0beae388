"""
Audit Trail

Writes protocol-log and agent-activity entries. Entries are best effort:
a failed write is logged and discarded without affecting the caller's
transaction.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whatsapp_crm.persistence.models import (
    ActivityType,
    AgentActivityLog,
    ProtocolAction,
    ProtocolLog,
)

logger = logging.getLogger(__name__)


class AuditTrail:
    """Best-effort writer for the append-only audit tables."""

    def __init__(self, db: Session):
        self.db = db

    def log_protocol(
        self,
        org_id: UUID,
        conversation_id: UUID,
        protocol_number: str,
        action: ProtocolAction,
        agent_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Append a protocol-log entry. Returns False if the write failed."""
        return self._write(
            ProtocolLog(
                org_id=org_id,
                conversation_id=conversation_id,
                protocol_number=protocol_number,
                action=action.value,
                agent_id=agent_id,
                details=details,
            )
        )

    def log_activity(
        self,
        org_id: UUID,
        agent_id: UUID,
        activity_type: ActivityType,
        conversation_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Append an agent-activity entry. Returns False if the write failed."""
        return self._write(
            AgentActivityLog(
                org_id=org_id,
                agent_id=agent_id,
                activity_type=activity_type.value,
                conversation_id=conversation_id,
                details=details,
            )
        )

    def _write(self, entry: ProtocolLog | AgentActivityLog) -> bool:
        try:
            with self.db.begin_nested():
                self.db.add(entry)
            return True
        except SQLAlchemyError as e:
            logger.warning(
                f"Failed to write {entry.__tablename__} entry: {e}",
                extra={"table": entry.__tablename__},
            )
            return False
