"""
Ingestion Redis Streams

Producer and consumer for the stream dispatch mode.
"""

from whatsapp_crm.streams.consumer import IngestStreamConsumer
from whatsapp_crm.streams.groups import INGEST_GROUP, INGEST_STREAM, ensure_ingest_stream
from whatsapp_crm.streams.producer import IngestStreamProducer

__all__ = [
    "INGEST_GROUP",
    "INGEST_STREAM",
    "IngestStreamConsumer",
    "IngestStreamProducer",
    "ensure_ingest_stream",
]
