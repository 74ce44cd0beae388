"""
Redis Stream Configuration

Stream name, consumer group, and setup utilities for stream dispatch mode.
"""

import logging

import redis

from basecore.redis import ensure_stream_group

logger = logging.getLogger(__name__)

INGEST_STREAM = "crm:whatsapp:ingest"
INGEST_GROUP = "crm-ingestion"
INGEST_STREAM_MAX_LEN = 100000


def ensure_ingest_stream(client: redis.Redis) -> None:
    """
    Ensure the ingestion stream and its consumer group exist.

    Called on startup by the webhook (stream mode) and the worker.
    """
    if ensure_stream_group(client, INGEST_STREAM, INGEST_GROUP):
        logger.info(f"Created consumer group '{INGEST_GROUP}' for stream '{INGEST_STREAM}'")


def get_pending_count(client: redis.Redis) -> int:
    """Get count of pending (unacknowledged) ingestion entries."""
    try:
        info = client.xpending(INGEST_STREAM, INGEST_GROUP)
        return info.get("pending", 0) if info else 0
    except redis.ResponseError:
        return 0
