"""
WhatsApp Worker Service

Consumes verified webhook payloads from the ingestion stream and runs them
through the ingestion pipeline.

Features:
- XREADGROUP consumer for horizontal scaling
- PEL reclaim for entries left pending by a crashed worker
- Idempotent processing (duplicates are skipped by the pipeline)
- Graceful shutdown
"""

import asyncio
import logging
import os
import signal
import socket
import threading

from basecore.db import get_sessionmaker
from basecore.logging import setup_logging
from basecore.redis import get_redis_client
from basecore.settings import Settings, get_settings

from whatsapp_crm.contracts.event_types import CRMEventType
from whatsapp_crm.media.fetcher import MediaFetcher
from whatsapp_crm.providers import WhatsAppProvider, get_provider
from whatsapp_crm.service.ingestion import ingest_payload
from whatsapp_crm.storage.object_store import get_object_store
from whatsapp_crm.streams.consumer import IngestStreamConsumer
from whatsapp_crm.streams.groups import ensure_ingest_stream

logger = logging.getLogger(__name__)

shutdown_requested = threading.Event()


def signal_handler(signum, frame):
    logger.info(f"Received signal {signum}, requesting shutdown...")
    shutdown_requested.set()


def consumer_name(settings: Settings) -> str:
    return settings.WORKER_CONSUMER_NAME or f"whatsapp-worker-{socket.gethostname()}-{os.getpid()}"


async def process_entries(
    consumer: IngestStreamConsumer,
    entries: list,
    provider: WhatsAppProvider,
    media_fetcher: MediaFetcher | None,
) -> int:
    """
    Run stream entries through the pipeline and ack them.

    Entries whose processing raises, or that contain a failed message, are
    left pending for reclaim. Stored messages are skipped on redelivery.

    Returns:
        Number of entries acked
    """
    session_factory = get_sessionmaker()
    processed = 0

    for msg_id, envelope in entries:
        if envelope.event_type != CRMEventType.WEBHOOK_RECEIVED.value:
            logger.debug(f"Ignoring event type: {envelope.event_type}")
            consumer.ack(msg_id)
            continue

        try:
            results = await ingest_payload(
                envelope.payload,
                session_factory,
                provider,
                media_fetcher,
                raise_errors=True,
            )
        except Exception as e:
            logger.error(f"Failed to process stream entry {msg_id}: {e}", exc_info=True)
            continue

        failed = [r for r in results if r.get("status") == "failed"]
        if failed:
            logger.warning(
                f"Stream entry {msg_id} had {len(failed)} failed messages, leaving it pending",
                extra={"msg_id": msg_id, "event_id": str(envelope.event_id)},
            )
            continue

        consumer.ack(msg_id)
        processed += 1
        logger.debug(
            "Processed stream entry",
            extra={"msg_id": msg_id, "event_id": str(envelope.event_id), "results": len(results)},
        )

    return processed


def run_reclaim_loop(consumer: IngestStreamConsumer, pending: list, settings: Settings):
    """Background thread that claims idle pending entries for this worker."""
    logger.info(
        "Starting PEL reclaim loop "
        f"(interval={settings.WORKER_RECLAIM_INTERVAL}s, "
        f"idle_threshold={settings.WORKER_RECLAIM_IDLE_MS}ms)"
    )

    while not shutdown_requested.wait(settings.WORKER_RECLAIM_INTERVAL):
        try:
            reclaimed = consumer.reclaim_pending(min_idle_ms=settings.WORKER_RECLAIM_IDLE_MS)
            if reclaimed:
                logger.info(f"Reclaimed {len(reclaimed)} pending entries")
                pending.extend(reclaimed)
        except Exception as e:
            logger.error(f"Error in reclaim loop: {e}", exc_info=True)


async def main_loop():
    """Main worker loop."""
    settings = get_settings()
    redis_client = get_redis_client()
    ensure_ingest_stream(redis_client)

    name = consumer_name(settings)
    consumer = IngestStreamConsumer(redis_client, name)
    provider = get_provider()
    media_fetcher = MediaFetcher(provider, get_object_store(settings))

    logger.info(
        "Starting WhatsApp worker "
        f"(consumer={name}, batch={settings.WORKER_BATCH_SIZE}, provider={settings.WHATSAPP_PROVIDER})"
    )

    reclaimed: list = []
    reclaim_thread = threading.Thread(
        target=run_reclaim_loop,
        args=(IngestStreamConsumer(redis_client, name), reclaimed, settings),
        daemon=True,
    )
    reclaim_thread.start()

    try:
        while not shutdown_requested.is_set():
            try:
                entries = consumer.read_messages(
                    count=settings.WORKER_BATCH_SIZE,
                    block_ms=settings.WORKER_BLOCK_MS,
                )
                while reclaimed:
                    entries.append(reclaimed.pop())

                if not entries:
                    await asyncio.sleep(0.1)
                    continue

                count = await process_entries(consumer, entries, provider, media_fetcher)
                logger.info(f"Processed {count} stream entries")

            except Exception as e:
                logger.error(f"Error in main loop: {e}", exc_info=True)
                await asyncio.sleep(1)
    finally:
        await provider.close()

    logger.info("WhatsApp worker shutting down gracefully")


def main():
    """Entry point."""
    setup_logging()
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
    logger.info("WhatsApp worker starting...")
    asyncio.run(main_loop())


if __name__ == "__main__":
    main()
