"""
Pytest fixtures for WhatsApp CRM tests.

Tests run against an in-memory SQLite database shared through a single
connection. Every component under test receives the same session, the way a
request handler or the ingestion task would receive its own.
"""

from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from basecore.db import Base
from basecore.settings import get_settings

from whatsapp_crm.media.fetcher import MediaFetcher
from whatsapp_crm.persistence.models import (
    Agent,
    AgentRole,
    AgentStatus,
    Contact,
    Conversation,
    Organization,
    Queue,
)
from whatsapp_crm.providers.stub import StubWhatsAppProvider
from whatsapp_crm.storage.object_store import ObjectStore, ObjectStoreError

TEST_APP_SECRET = "test_app_secret"
TEST_VERIFY_TOKEN = "test_verify_token"
TEST_PHONE_NUMBER_ID = "PHONE_123"


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    """Deterministic settings for every test."""
    monkeypatch.setenv("WHATSAPP_APP_SECRET", TEST_APP_SECRET)
    monkeypatch.setenv("WHATSAPP_VERIFY_TOKEN", TEST_VERIFY_TOKEN)
    monkeypatch.setenv("WHATSAPP_PROVIDER", "stub")
    monkeypatch.setenv("WHATSAPP_ACCESS_TOKEN", "")
    monkeypatch.setenv("WHATSAPP_ENCRYPTION_KEY", "")
    monkeypatch.setenv("INGESTION_MODE", "background")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def engine():
    """In-memory SQLite engine with SAVEPOINT support."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    """Database session shared by the code under test and assertions."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def provider():
    """Stub provider recording every outbound call."""
    return StubWhatsAppProvider()


class InMemoryObjectStore(ObjectStore):
    """Object store double keeping uploads in a dict."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.objects: dict[str, tuple[bytes, str]] = {}

    def upload(self, key: str, content: bytes, content_type: str) -> str:
        if self.fail:
            raise ObjectStoreError(f"Upload of {key} failed")
        self.objects[key] = (content, content_type)
        return f"https://media.test/{key}"


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
def media_fetcher(provider, object_store):
    return MediaFetcher(provider, object_store)


@pytest.fixture
def make_org(db):
    """Factory for organizations (committed)."""

    def _make(**fields: Any) -> Organization:
        values = {
            "name": "Loja Teste",
            "whatsapp_phone_number_id": f"PHONE_{uuid4().hex[:8]}",
            "whatsapp_access_token": "test-access-token",
            "timezone": "America/Sao_Paulo",
        }
        values.update(fields)
        org = Organization(**values)
        db.add(org)
        db.commit()
        return org

    return _make


@pytest.fixture
def org(make_org):
    """Organization bound to TEST_PHONE_NUMBER_ID."""
    return make_org(whatsapp_phone_number_id=TEST_PHONE_NUMBER_ID)


@pytest.fixture
def make_agent(db):
    """Factory for agents (committed)."""

    def _make(org: Organization, **fields: Any) -> Agent:
        values = {
            "org_id": org.id,
            "display_name": f"Agent {uuid4().hex[:4]}",
            "role": AgentRole.AGENT.value,
            "queue": Queue.BOTH.value,
            "status": AgentStatus.ONLINE.value,
            "max_concurrent_chats": 10,
        }
        values.update(fields)
        agent = Agent(**values)
        db.add(agent)
        db.commit()
        return agent

    return _make


@pytest.fixture
def webhook_payload():
    """Builder for Meta webhook payloads."""

    def _build(
        messages: list[dict[str, Any]] | None = None,
        statuses: list[dict[str, Any]] | None = None,
        phone_number_id: str = TEST_PHONE_NUMBER_ID,
        contacts: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        value: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "metadata": {
                "display_phone_number": "5511999999999",
                "phone_number_id": phone_number_id,
            },
        }
        if messages is not None:
            value["messages"] = messages
            value["contacts"] = contacts if contacts is not None else [
                {"profile": {"name": "Maria Silva"}, "wa_id": m.get("from")} for m in messages
            ]
        if statuses is not None:
            value["statuses"] = statuses

        return {
            "object": "whatsapp_business_account",
            "entry": [
                {
                    "id": "WABA_123456",
                    "changes": [{"value": value, "field": "messages"}],
                }
            ],
        }

    return _build


@pytest.fixture
def text_message():
    """Builder for inbound text messages."""

    def _build(body: str = "Olá", message_id: str | None = None, sender: str = "5511999990000"):
        return {
            "from": sender,
            "id": message_id or f"wamid.{uuid4().hex}",
            "timestamp": "1704067200",
            "type": "text",
            "text": {"body": body},
        }

    return _build


@pytest.fixture
def make_conversation(db):
    """Factory for conversations (committed), each with its own contact."""

    def _make(
        org: Organization,
        status: str = "pending",
        agent: Agent | None = None,
        queue: str | None = None,
        is_bot_active: bool = False,
        phone: str | None = None,
    ) -> Conversation:
        contact = Contact(
            org_id=org.id,
            phone=phone or f"+55{uuid4().int % 10**11:011d}",
            custom_fields={},
            tags=[],
        )
        db.add(contact)
        db.flush()
        conversation = Conversation(
            org_id=org.id,
            contact_id=contact.id,
            status=status,
            assigned_agent_id=agent.id if agent else None,
            queue=queue,
            is_bot_active=is_bot_active,
            protocol_number=f"20260101-{uuid4().hex[:5]}",
            tags=[],
            flow_variables={},
            unread_count=0,
        )
        db.add(conversation)
        db.commit()
        return conversation

    return _make
