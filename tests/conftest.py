"""
Shared fixtures: in-memory SQLite session factory, seeded tenants, and fake
embedding/chat clients standing in for the upstream AI services.
"""

import uuid
from datetime import date
from typing import List, Optional

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ragbot.config import Settings
from ragbot.db import Base
from ragbot.errors import EmbeddingServiceError, GenerationServiceError
from ragbot.models import Chat, Document, Tenant, UsageRequest, WidgetEvent

# Each keyword is one embedding axis; the last axis is a small constant bias
KEYWORDS = ("refund", "shipping", "warranty", "weather")


class FakeEmbedder:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingServiceError("Failed to generate embedding", details="quota exceeded")
        lower = text.lower()
        return [float(lower.count(k)) for k in KEYWORDS] + [0.05]

    async def embed_batch(self, texts) -> List[List[float]]:
        return [await self.embed(t) for t in texts]


class FakeChat:
    def __init__(
        self,
        reply: str = "According to the policy, refunds take 30 days.",
        fragments=("Paris ", "is the ", "capital."),
        fail_at: Optional[int] = None,
    ):
        self.reply = reply
        self.fragments = list(fragments)
        self.fail_at = fail_at
        self.complete_calls: List[list] = []
        self.stream_calls: List[list] = []

    async def complete(self, messages):
        self.complete_calls.append(list(messages))
        return self.reply

    def stream(self, messages):
        self.stream_calls.append(list(messages))
        return self._fragments()

    async def _fragments(self):
        for i, fragment in enumerate(self.fragments):
            if self.fail_at == i:
                raise GenerationServiceError("Perplexity API error 503", details={"error": "overloaded"})
            yield fragment


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        EMBED_DIM=len(KEYWORDS) + 1,
        CHUNK_SIZE=1000,
        CHUNK_OVERLAP=200,
        MAX_UPLOAD_BYTES=10 * 1024 * 1024,
        MATCH_THRESHOLD=0.5,
        MATCH_COUNT=5,
    )


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


async def _add_tenant(session_factory, name: str, api_key: str, settings=None) -> Tenant:
    tenant = Tenant(id=str(uuid.uuid4()), api_key=api_key, name=name, settings=settings)
    async with session_factory() as session:
        session.add(tenant)
        await session.commit()
    return tenant


@pytest.fixture
async def tenant_a(session_factory) -> Tenant:
    return await _add_tenant(
        session_factory,
        "Acme Store",
        "key-acme",
        settings={"primaryColor": "#FF0000", "logo": "https://acme.example/logo.png", "greeting": "Hi from Acme"},
    )


@pytest.fixture
async def tenant_b(session_factory) -> Tenant:
    return await _add_tenant(session_factory, "Globex", "key-globex")


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def chat_client() -> FakeChat:
    return FakeChat()


async def count_documents(session_factory, tenant_id: str) -> int:
    async with session_factory() as session:
        res = await session.execute(select(func.count()).select_from(Document).where(Document.tenant_id == tenant_id))
        return res.scalar_one()


async def usage_rows(session_factory, tenant_id: str, endpoint: str, day: date) -> List[UsageRequest]:
    async with session_factory() as session:
        res = await session.execute(
            select(UsageRequest).where(
                UsageRequest.tenant_id == tenant_id,
                UsageRequest.endpoint == endpoint,
                UsageRequest.day == day,
            )
        )
        return list(res.scalars().all())


async def load_chat(session_factory, conversation_id: str) -> Optional[Chat]:
    async with session_factory() as session:
        return await session.get(Chat, conversation_id)


async def widget_events(session_factory, tenant_id: str) -> List[WidgetEvent]:
    async with session_factory() as session:
        res = await session.execute(select(WidgetEvent).where(WidgetEvent.tenant_id == tenant_id))
        return list(res.scalars().all())
