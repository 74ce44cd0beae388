"""
Ingestion Stream Consumer

Consumes webhook payloads from Redis Streams using XREADGROUP.
"""

import logging
from typing import Any

import redis

from whatsapp_crm.contracts.envelope import CRMEnvelope
from whatsapp_crm.streams.groups import INGEST_GROUP, INGEST_STREAM

logger = logging.getLogger(__name__)


class IngestStreamConsumer:
    """
    Consumer for the ingestion stream.

    Uses XREADGROUP for consumer group support and reliable delivery.
    Entries stay pending until acked; idle pending entries are reclaimed.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        consumer_name: str,
        stream_name: str = INGEST_STREAM,
        group_name: str = INGEST_GROUP,
    ):
        self.redis = redis_client
        self.consumer_name = consumer_name
        self.stream_name = stream_name
        self.group_name = group_name

    def read_messages(
        self,
        count: int = 10,
        block_ms: int = 5000,
    ) -> list[tuple[str, CRMEnvelope]]:
        """
        Read new entries from the stream.

        Args:
            count: Maximum entries to read
            block_ms: Milliseconds to block waiting for entries

        Returns:
            List of (message_id, envelope) tuples
        """
        try:
            result = self.redis.xreadgroup(
                self.group_name,
                self.consumer_name,
                {self.stream_name: ">"},
                count=count,
                block=block_ms,
            )
        except redis.ResponseError as e:
            if "NOGROUP" in str(e):
                logger.error(
                    f"Consumer group {self.group_name} does not exist for {self.stream_name}"
                )
            raise

        if not result:
            return []

        messages = []
        for _stream, entries in result:
            messages.extend(self._parse_entries(entries))
        return messages

    def ack(self, message_id: str) -> int:
        """
        Acknowledge an entry as processed.

        Returns:
            Number of entries acknowledged (0 or 1)
        """
        return self.redis.xack(self.stream_name, self.group_name, message_id)

    def get_pending(
        self,
        min_idle_ms: int = 60000,
        count: int = 100,
    ) -> list[dict[str, Any]]:
        """
        Get pending entries that have been idle too long.

        Args:
            min_idle_ms: Minimum idle time in milliseconds
            count: Maximum entries to return

        Returns:
            List of pending entry info dicts
        """
        try:
            pending_range = self.redis.xpending_range(
                self.stream_name,
                self.group_name,
                min="-",
                max="+",
                count=count,
            )
        except redis.ResponseError:
            return []

        return [
            {
                "message_id": entry["message_id"],
                "consumer": entry["consumer"],
                "idle_ms": entry["time_since_delivered"],
                "delivery_count": entry["times_delivered"],
            }
            for entry in pending_range
            if entry.get("time_since_delivered", 0) >= min_idle_ms
        ]

    def reclaim_pending(
        self,
        min_idle_ms: int = 60000,
        count: int = 100,
    ) -> list[tuple[str, CRMEnvelope]]:
        """
        Claim idle pending entries for this consumer.

        Returns:
            List of (message_id, envelope) tuples now owned by this consumer
        """
        pending = self.get_pending(min_idle_ms, count)
        if not pending:
            return []

        message_ids = [p["message_id"] for p in pending]
        try:
            result = self.redis.xclaim(
                self.stream_name,
                self.group_name,
                self.consumer_name,
                min_idle_ms,
                message_ids,
            )
        except redis.ResponseError as e:
            logger.error(f"Failed to claim messages: {e}")
            return []

        return self._parse_entries(result)

    def _parse_entries(self, entries) -> list[tuple[str, CRMEnvelope]]:
        messages = []
        for msg_id, data in entries:
            if not data:
                # Entry trimmed from the stream while pending
                self.ack(msg_id)
                continue
            try:
                messages.append((msg_id, CRMEnvelope.from_stream_message(msg_id, data)))
            except (KeyError, ValueError) as e:
                logger.error(f"Failed to parse message {msg_id}: {e}")
                # ACK invalid entries to prevent blocking
                self.ack(msg_id)
        return messages
