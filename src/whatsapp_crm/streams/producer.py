"""
Ingestion Stream Producer

Publishes authenticated webhook payloads to Redis Streams.
"""

import logging
from typing import Any

import redis

from whatsapp_crm.contracts.envelope import CRMEnvelope
from whatsapp_crm.contracts.event_types import CRMEventType
from whatsapp_crm.streams.groups import INGEST_STREAM, INGEST_STREAM_MAX_LEN

logger = logging.getLogger(__name__)


class IngestStreamProducer:
    """Producer for the ingestion stream."""

    def __init__(
        self,
        redis_client: redis.Redis,
        max_len: int = INGEST_STREAM_MAX_LEN,
    ):
        self.redis = redis_client
        self.max_len = max_len

    def publish_webhook(
        self,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> str:
        """
        Publish a verified webhook payload for the worker.

        Args:
            payload: Parsed webhook body, unchanged
            correlation_id: Optional ID for tracing (e.g. phone_number_id)

        Returns:
            Stream message ID
        """
        envelope = CRMEnvelope.create(
            event_type=CRMEventType.WEBHOOK_RECEIVED.value,
            payload=payload,
            correlation_id=correlation_id,
            metadata={"source": "whatsapp-webhook"},
        )

        msg_id = self.redis.xadd(
            INGEST_STREAM,
            envelope.to_stream_data(),
            maxlen=self.max_len,
            approximate=True,
        )

        logger.debug(
            f"Published to {INGEST_STREAM}",
            extra={
                "stream": INGEST_STREAM,
                "event_id": str(envelope.event_id),
                "msg_id": msg_id,
            },
        )
        return msg_id
