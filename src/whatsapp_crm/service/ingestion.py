"""
Ingestion Pipeline

Processes an authenticated webhook payload:
1. Resolves the organization from phone_number_id
2. Resolves contact and conversation
3. Extracts content and copies media into storage
4. Persists the message (idempotent on the provider message ID)
5. Updates conversation aggregates
6. Assigns an agent, sends the auto-reply, marks the message as read
7. Applies delivery statuses

Steps after the message is persisted are isolated from each other: a
failure is logged and the remaining steps still run. Detached ingestion
does not raise to the caller unless asked to, which the stream worker does
so that a failed entry stays pending.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from basecore.settings import get_settings

from whatsapp_crm.content.extractor import ExtractedContent, build_preview, extract_content
from whatsapp_crm.media.fetcher import MediaFetcher
from whatsapp_crm.persistence.models import (
    MEDIA_MESSAGE_TYPES,
    ConversationStatus,
    Message,
    MessageStatus,
    MessageType,
    Organization,
    SenderType,
)
from whatsapp_crm.persistence.repo import CRMRepository
from whatsapp_crm.providers.base import WhatsAppProvider
from whatsapp_crm.providers.meta_cloud.webhook import WebhookChange, iter_message_changes
from whatsapp_crm.routing.assignment import AgentAssignmentEngine
from whatsapp_crm.routing.contacts import ContactResolver
from whatsapp_crm.routing.conversation import ConversationManager
from whatsapp_crm.routing.tenant_resolver import TenantResolver
from whatsapp_crm.service.errors import MediaUnavailableError
from whatsapp_crm.service.status_tracker import DeliveryStatusTracker

logger = logging.getLogger(__name__)


def message_timestamp(message: dict[str, Any]) -> datetime | None:
    """Provider send time of a message (epoch seconds string), if parseable."""
    try:
        return datetime.fromtimestamp(int(message.get("timestamp")), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


@dataclass
class ConversationSnapshot:
    """Conversation state as read when the message arrived."""

    id: UUID
    status: str
    assigned_agent_id: UUID | None
    is_bot_active: bool
    queue: str | None

    @property
    def was_pending(self) -> bool:
        return self.status == ConversationStatus.PENDING.value

    @property
    def needs_assignment(self) -> bool:
        return self.was_pending and self.assigned_agent_id is None and not self.is_bot_active


class IngestionPipeline:
    """
    Runs inbound webhook payloads through the CRM.

    Responsibilities:
    - Persist each inbound message exactly once
    - Keep conversation aggregates current
    - Trigger assignment, auto-reply and read receipts
    - Apply delivery statuses
    """

    def __init__(
        self,
        db: Session,
        provider: WhatsAppProvider,
        media_fetcher: MediaFetcher | None = None,
        encryption_key: str | None = None,
        fallback_access_token: str | None = None,
    ):
        self.db = db
        self.provider = provider
        self.media_fetcher = media_fetcher
        self.repo = CRMRepository(db)
        self.tenant_resolver = TenantResolver(
            db,
            encryption_key=encryption_key,
            fallback_access_token=fallback_access_token,
        )
        self.contacts = ContactResolver(db)
        self.conversations = ConversationManager(db)
        self.assignment = AgentAssignmentEngine(db)
        self.status_tracker = DeliveryStatusTracker(db)

    async def process_payload(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Process every `messages` change of a webhook payload.

        Returns:
            One result dict per inbound message
        """
        results: list[dict[str, Any]] = []

        for change in iter_message_changes(payload):
            if change.messages:
                org = self.tenant_resolver.resolve_from_phone_number_id(change.phone_number_id)
                if org is None:
                    results.extend(
                        {
                            "message_id": m.get("id"),
                            "status": "skipped",
                            "reason": "unknown_organization",
                        }
                        for m in change.messages
                    )
                else:
                    for message in change.messages:
                        results.append(await self.process_message(org, change, message))

            if change.statuses:
                self.process_statuses(change.statuses)

        return results

    def process_statuses(self, statuses: list[dict[str, Any]]) -> int:
        """Apply delivery statuses and commit. Returns rows changed."""
        try:
            updated = self.status_tracker.apply_statuses(statuses)
            self.db.commit()
            return updated
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to apply delivery statuses: {e}", exc_info=True)
            return 0

    async def process_message(
        self,
        org: Organization,
        change: WebhookChange,
        message: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Process a single inbound message.

        Args:
            org: Resolved organization
            change: Webhook change the message belongs to (sender profiles)
            message: Provider message object

        Returns:
            Processing result dict
        """
        provider_message_id = message.get("id")
        sender = message.get("from") or ""

        result: dict[str, Any] = {
            "message_id": provider_message_id,
            "from": sender,
            "status": "processed",
        }

        if provider_message_id and self.repo.is_message_processed(provider_message_id):
            logger.debug(f"Message {provider_message_id} already processed, skipping")
            return {**result, "status": "skipped", "reason": "already_processed"}

        # Contact and conversation
        try:
            profile = change.contact_for(sender).get("profile") or {}
            contact = self.contacts.resolve(
                org.id,
                sender,
                observed_name=profile.get("name"),
            )
            conversation, is_new = self.conversations.resolve(org, contact.id)
            snapshot = ConversationSnapshot(
                id=conversation.id,
                status=conversation.status,
                assigned_agent_id=conversation.assigned_agent_id,
                is_bot_active=bool(conversation.is_bot_active),
                queue=conversation.queue,
            )
            contact_id = contact.id
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to resolve contact/conversation: {e}",
                exc_info=True,
                extra={"org_id": str(org.id), "message_id": provider_message_id},
            )
            return {**result, "status": "failed", "error": str(e)}

        result.update(
            conversation_id=str(snapshot.id),
            contact_id=str(contact_id),
            is_new_conversation=is_new,
        )

        try:
            content = extract_content(message)
        except Exception as e:
            logger.error(
                f"Failed to extract message content: {e}",
                exc_info=True,
                extra={"message_id": provider_message_id},
            )
            return {**result, "status": "failed", "error": str(e)}

        access_token = self.tenant_resolver.get_access_token(org)

        # Media
        media_url = None
        mime_type = content.mime_type
        if content.media_id and access_token and self.media_fetcher:
            try:
                stored = await self.media_fetcher.materialize(
                    content.media_id, access_token, snapshot.id
                )
                media_url, mime_type = stored.url, stored.mime_type
            except MediaUnavailableError as e:
                logger.warning(
                    f"Media unavailable, storing message without it: {e}",
                    extra={"media_id": content.media_id, "conversation_id": str(snapshot.id)},
                )
            except Exception as e:
                logger.error(
                    f"Unexpected media failure: {e}",
                    exc_info=True,
                    extra={"media_id": content.media_id},
                )
        result["media_stored"] = media_url is not None

        # Message and aggregates
        try:
            stored_message = self._persist_inbound(
                snapshot.id, contact_id, message, content, media_url, mime_type
            )
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"Message {provider_message_id} inserted concurrently, skipping")
            return {**result, "status": "skipped", "reason": "already_processed"}
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to persist inbound message: {e}",
                exc_info=True,
                extra={"message_id": provider_message_id},
            )
            return {**result, "status": "failed", "error": str(e)}

        result["stored_message_id"] = str(stored_message.id)

        if snapshot.is_bot_active:
            logger.debug(
                "Bot active, skipping assignment and replies",
                extra={"conversation_id": str(snapshot.id)},
            )
            result["bot_active"] = True
            return result

        # Assignment
        if snapshot.needs_assignment:
            result["assigned_agent_id"] = self._assign(org, snapshot)

        # Auto-reply
        if snapshot.was_pending and org.auto_reply_message and access_token:
            result["auto_reply"] = await self._send_auto_reply(
                org, snapshot.id, sender, access_token
            )

        # Read receipt
        if provider_message_id and access_token:
            result["marked_read"] = await self._mark_read(org, provider_message_id, access_token)

        return result

    def _persist_inbound(
        self,
        conversation_id: UUID,
        contact_id: UUID,
        message: dict[str, Any],
        content: ExtractedContent,
        media_url: str | None,
        mime_type: str | None,
    ) -> Message:
        reply_to_id = None
        context_id = (message.get("context") or {}).get("id")
        if context_id:
            replied = self.repo.get_message_by_whatsapp_id(context_id)
            if replied and replied.conversation_id == conversation_id:
                reply_to_id = replied.id

        stored = Message(
            conversation_id=conversation_id,
            sender_type=SenderType.CONTACT.value,
            sender_id=contact_id,
            message_type=content.message_type,
            content=content.text_content,
            media_url=media_url,
            media_mime_type=mime_type if content.message_type in MEDIA_MESSAGE_TYPES else None,
            media_filename=content.filename,
            whatsapp_message_id=message.get("id") or None,
            status=MessageStatus.DELIVERED.value,
            reply_to_message_id=reply_to_id,
        )

        with self.db.begin_nested():
            self.db.add(stored)

        self.repo.record_inbound_activity(
            conversation_id,
            build_preview(content.message_type, content.text_content),
            at=message_timestamp(message),
        )
        self.db.commit()

        logger.info(
            "Stored inbound message",
            extra={
                "conversation_id": str(conversation_id),
                "message_id": stored.whatsapp_message_id,
                "type": content.message_type,
            },
        )
        return stored

    def _assign(self, org: Organization, snapshot: ConversationSnapshot) -> str | None:
        try:
            agent = self.assignment.assign(org.id, snapshot.id, snapshot.queue)
            self.db.commit()
            return str(agent.id) if agent else None
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Agent assignment failed: {e}",
                exc_info=True,
                extra={"conversation_id": str(snapshot.id)},
            )
            return None

    async def _send_auto_reply(
        self,
        org: Organization,
        conversation_id: UUID,
        to: str,
        access_token: str,
    ) -> bool:
        try:
            response = await self.provider.send_text(
                phone_number_id=org.whatsapp_phone_number_id,
                access_token=access_token,
                to=to,
                text=org.auto_reply_message,
            )
        except Exception as e:
            logger.error(f"Auto-reply send failed: {e}", exc_info=True)
            return False

        if not response.success:
            logger.warning(
                f"Auto-reply rejected by provider: {response.error_message}",
                extra={"conversation_id": str(conversation_id), "error_code": response.error_code},
            )
            return False

        try:
            with self.db.begin_nested():
                self.db.add(
                    Message(
                        conversation_id=conversation_id,
                        sender_type=SenderType.SYSTEM.value,
                        message_type=MessageType.TEXT.value,
                        content=org.auto_reply_message,
                        whatsapp_message_id=response.message_id,
                        status=MessageStatus.SENT.value,
                    )
                )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Auto-reply sent but not recorded: {e}")

        return True

    async def _mark_read(self, org: Organization, message_id: str, access_token: str) -> bool:
        try:
            return await self.provider.mark_as_read(
                org.whatsapp_phone_number_id, access_token, message_id
            )
        except Exception as e:
            logger.warning(f"Mark as read failed: {e}", extra={"message_id": message_id})
            return False


def build_pipeline(
    db: Session,
    provider: WhatsAppProvider,
    media_fetcher: MediaFetcher | None = None,
) -> IngestionPipeline:
    """Create a pipeline configured from settings."""
    settings = get_settings()
    return IngestionPipeline(
        db,
        provider,
        media_fetcher=media_fetcher,
        encryption_key=settings.WHATSAPP_ENCRYPTION_KEY or None,
        fallback_access_token=settings.WHATSAPP_ACCESS_TOKEN or None,
    )


async def ingest_payload(
    payload: dict[str, Any],
    session_factory: Callable[[], Session],
    provider: WhatsAppProvider,
    media_fetcher: MediaFetcher | None = None,
    raise_errors: bool = False,
) -> list[dict[str, Any]]:
    """
    Process a payload in its own session.

    This is the error boundary of detached ingestion: failures are logged
    and dropped unless raise_errors is set, in which case they propagate so
    a stream consumer can leave the entry pending.
    """
    db = session_factory()
    try:
        results = await build_pipeline(db, provider, media_fetcher).process_payload(payload)
        logger.info(
            "Processed webhook payload",
            extra={
                "messages": len(results),
                "failed": sum(1 for r in results if r.get("status") == "failed"),
            },
        )
        return results
    except Exception as e:
        logger.error(f"Webhook ingestion failed: {e}", exc_info=True)
        if raise_errors:
            raise
        return []
    finally:
        db.close()
