"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database engine / sessions / session factory (async SQLite in memory)
- HTTP test client with dependency overrides
- A recording WhatsApp provider in place of the Cloud API
- Inbound event and webhook payload builders
"""
import hashlib
import hmac
import json
from typing import AsyncGenerator

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mobility_hub.core.circuit_breaker import CircuitBreaker
from mobility_hub.core.config import settings
from mobility_hub.db.database import Base, get_db, get_session_factory
from mobility_hub.db.models.chat_session import ChatSession
from mobility_hub.db.models.outbox_message import OutboxMessage
from mobility_hub.domain.services.whatsapp import provider_factory
from mobility_hub.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from mobility_hub.main import app
from mobility_hub.state_machine.events import EventKind, InboundEvent, OutboundAction


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_USER = "250788123456"
TEST_APP_SECRET = "test-app-secret"
TEST_VERIFY_TOKEN = "test-verify-token"
TEST_ADMIN_KEY = "test-admin-key"
TEST_MERCHANT_CODE = "123456"

# 2026-03-15 10:00 Africa/Kigali
TEST_TIMESTAMP = 1773561600


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker:
    """Factory for services that open their own units of work"""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, session_factory):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Every test starts with closed breakers"""
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def configured_settings(monkeypatch):
    """Secrets the webhook, admin bridge and payment plan need"""
    monkeypatch.setattr(settings, "WHATSAPP_CLOUD_API_APP_SECRET", TEST_APP_SECRET)
    monkeypatch.setattr(settings, "WHATSAPP_CLOUD_API_VERIFY_TOKEN", TEST_VERIFY_TOKEN)
    monkeypatch.setattr(settings, "ADMIN_API_KEY", TEST_ADMIN_KEY)
    monkeypatch.setattr(settings, "MOMO_MERCHANT_CODE", TEST_MERCHANT_CODE)


# ============================================================================
# WhatsApp provider
# ============================================================================

class RecordingProvider(BaseWhatsAppProvider):
    """Keeps every sent action; optionally fails for chosen recipients"""

    def __init__(self) -> None:
        self.sent: list[OutboundAction] = []
        self.fail_for: set[str] = set()

    async def send(self, action: OutboundAction) -> None:
        from mobility_hub.core.exceptions import WhatsAppError

        if action.to in self.fail_for:
            raise WhatsAppError("recipient unreachable")
        self.sent.append(action)

    def normalize_phone(self, phone: str) -> str:
        return phone

    @property
    def provider_name(self) -> str:
        return "recording"


@pytest.fixture(autouse=True)
def whatsapp_provider(monkeypatch) -> RecordingProvider:
    """Replaces the process-wide Cloud API provider"""
    provider = RecordingProvider()
    monkeypatch.setattr(provider_factory, "_provider", provider)
    return provider


# ============================================================================
# Builders
# ============================================================================

_message_counter = 0


def _next_source_id() -> str:
    """Unique platform message id, so events never dedupe by accident"""
    global _message_counter
    _message_counter += 1
    return f"wamid.test-{_message_counter}"


def make_event(kind: EventKind = EventKind.TEXT, sender: str = TEST_USER, **fields) -> InboundEvent:
    """InboundEvent with a fresh source id unless one is given"""
    fields.setdefault("source_id", _next_source_id())
    fields.setdefault("timestamp", TEST_TIMESTAMP)
    return InboundEvent(kind=kind, sender=sender, **fields)


def text_event(text: str, **fields) -> InboundEvent:
    return make_event(EventKind.TEXT, text=text, **fields)


def button_event(action: str, **fields) -> InboundEvent:
    return make_event(EventKind.BUTTON, action=action, **fields)


def list_event(action: str, secondary_id: str | None = None, **fields) -> InboundEvent:
    return make_event(EventKind.LIST, action=action, secondary_id=secondary_id, **fields)


def cloud_payload(*messages: dict) -> dict:
    """Cloud API delivery envelope around ``messages``"""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "waba-1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {"messaging_product": "whatsapp", "messages": list(messages)},
                    }
                ],
            }
        ],
    }


def cloud_text_message(text: str, message_id: str | None = None, sender: str = TEST_USER) -> dict:
    return {
        "from": sender,
        "id": message_id or _next_source_id(),
        "timestamp": str(TEST_TIMESTAMP),
        "type": "text",
        "text": {"body": text},
    }


def sign(body: bytes, secret: str = TEST_APP_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def signed_request(payload: dict) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode()
    return body, {"Content-Type": "application/json", "X-Hub-Signature-256": sign(body)}


async def load_session(session_factory, user_id: str = TEST_USER) -> ChatSession | None:
    async with session_factory() as db:
        result = await db.execute(select(ChatSession).where(ChatSession.user_id == user_id))
        return result.scalar_one_or_none()


async def load_outbox(session_factory) -> list[OutboxMessage]:
    async with session_factory() as db:
        result = await db.execute(select(OutboxMessage).order_by(OutboxMessage.id))
        return list(result.scalars().all())
