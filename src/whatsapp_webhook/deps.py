"""FastAPI dependencies for the webhook and agent API."""

import functools
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session, sessionmaker

from basecore.db import get_db, get_sessionmaker

from whatsapp_crm.media.fetcher import MediaFetcher
from whatsapp_crm.persistence.models import Agent
from whatsapp_crm.persistence.repo import CRMRepository
from whatsapp_crm.providers import WhatsAppProvider, get_provider
from whatsapp_crm.storage.object_store import get_object_store


def get_session_factory() -> sessionmaker:
    """Session factory for work that outlives the request."""
    return get_sessionmaker()


@functools.lru_cache()
def get_whatsapp_provider() -> WhatsAppProvider:
    """Provider shared by requests and background ingestion (cached)."""
    return get_provider()


@functools.lru_cache()
def get_media_fetcher() -> MediaFetcher:
    """Media fetcher bound to the shared provider and object store (cached)."""
    return MediaFetcher(get_whatsapp_provider(), get_object_store())


def get_current_agent(
    x_agent_id: str | None = Header(None, alias="X-Agent-Id"),
    db: Session = Depends(get_db),
) -> Agent:
    """
    Resolve the calling agent.

    The upstream auth gateway sets X-Agent-Id after authenticating the user.
    """
    if not x_agent_id:
        raise HTTPException(status_code=401, detail="Missing agent identity")

    try:
        agent_id = UUID(x_agent_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid agent identity")

    agent = CRMRepository(db).get_agent_by_id(agent_id)
    if agent is None:
        raise HTTPException(status_code=403, detail="Agent not found")
    return agent
