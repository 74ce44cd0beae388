"""
WhatsApp Webhook Service

FastAPI app that receives WhatsApp webhooks from Meta Cloud API and serves
the agent-facing API.

Responsibilities:
- Answer the subscription handshake
- Verify webhook signatures over the raw body
- Return 200 quickly and run ingestion afterwards, either as a background
  task or through the Redis ingestion stream
"""

import json
import logging

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response
from sqlalchemy.orm import sessionmaker

from basecore.logging import setup_logging
from basecore.redis import get_redis_client
from basecore.settings import get_settings

from whatsapp_crm.media.fetcher import MediaFetcher
from whatsapp_crm.providers import WhatsAppProvider
from whatsapp_crm.providers.meta_cloud.webhook import extract_phone_number_id, validate_signature
from whatsapp_crm.service.ingestion import ingest_payload
from whatsapp_crm.streams.groups import ensure_ingest_stream
from whatsapp_crm.streams.producer import IngestStreamProducer

from whatsapp_webhook.api import api_router
from whatsapp_webhook.deps import get_media_fetcher, get_session_factory, get_whatsapp_provider

setup_logging()
logger = logging.getLogger(__name__)

STREAM_MODE = "stream"

app = FastAPI(
    title="WhatsApp CRM Webhook",
    description="Receives WhatsApp webhooks and serves the agent API",
    version="1.0.0",
)
app.include_router(api_router)


@app.on_event("startup")
async def startup():
    """Ensure the ingestion stream exists when running in stream mode."""
    settings = get_settings()
    if settings.INGESTION_MODE == STREAM_MODE:
        ensure_ingest_stream(get_redis_client())
    logger.info(
        "WhatsApp webhook service started",
        extra={"ingestion_mode": settings.INGESTION_MODE, "provider": settings.WHATSAPP_PROVIDER},
    )


@app.on_event("shutdown")
async def shutdown():
    await get_whatsapp_provider().close()


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "service": "whatsapp-webhook"}


@app.get("/webhook")
async def verify_webhook(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    provider: WhatsAppProvider = Depends(get_whatsapp_provider),
):
    """
    Handle Meta webhook verification.

    Meta sends a GET request with hub.mode, hub.verify_token, and hub.challenge.
    We must return hub.challenge if the token matches.
    """
    logger.info(
        "Webhook verification request",
        extra={"mode": hub_mode, "token_received": bool(hub_verify_token)},
    )

    challenge = provider.verify_webhook_challenge(
        mode=hub_mode or "",
        token=hub_verify_token or "",
        challenge=hub_challenge or "",
        verify_token=get_settings().WHATSAPP_VERIFY_TOKEN,
    )

    if challenge:
        logger.info("Webhook verification successful")
        return Response(content=challenge, media_type="text/plain")

    logger.warning("Webhook verification failed")
    raise HTTPException(status_code=403, detail="Verification failed")


@app.post("/webhook")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    session_factory: sessionmaker = Depends(get_session_factory),
    provider: WhatsAppProvider = Depends(get_whatsapp_provider),
    media_fetcher: MediaFetcher = Depends(get_media_fetcher),
):
    """
    Receive a webhook from Meta Cloud API.

    Flow:
    1. Validate signature over the raw body
    2. Parse payload
    3. Dispatch ingestion (background task or stream)
    4. Return 200 immediately
    """
    settings = get_settings()
    if not settings.WHATSAPP_APP_SECRET:
        logger.error("WHATSAPP_APP_SECRET is not configured, rejecting webhook")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    body = await request.body()

    signature = request.headers.get("X-Hub-Signature-256")
    if not validate_signature(body, signature, settings.WHATSAPP_APP_SECRET):
        logger.warning("Invalid Meta webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        logger.warning("Invalid JSON payload")
        raise HTTPException(status_code=400, detail="Invalid JSON")

    if not isinstance(payload, dict):
        logger.warning("Webhook payload is not an object")
        raise HTTPException(status_code=400, detail="Invalid JSON")

    if settings.INGESTION_MODE == STREAM_MODE:
        IngestStreamProducer(get_redis_client()).publish_webhook(
            payload,
            correlation_id=extract_phone_number_id(payload),
        )
    else:
        background_tasks.add_task(
            ingest_payload,
            payload,
            session_factory,
            provider,
            media_fetcher,
        )

    return {"status": "ok"}


def run():
    """Entry point."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8090)


if __name__ == "__main__":
    run()
