"""FastAPI dependencies.

Process-wide clients are created once and cached; tests replace any of them
through `app.dependency_overrides`.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings, settings
from .db import get_session_local
from .errors import AuthenticationError
from .services.embedding import EmbeddingClient
from .services.generator import ResponseGenerator
from .services.ingest import IngestionCoordinator
from .services.llm import ChatClient
from .services.rag import Retriever
from .services.rate_limit import InMemoryRateLimiter, RateLimiter
from .services.usage import UsageTracker
from .stores import ChatStore, DocumentStore, TenantStore, UsageStore


def get_settings() -> Settings:
    return settings


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_local()


@lru_cache
def get_embedder() -> EmbeddingClient:
    return EmbeddingClient(settings=settings)


@lru_cache
def get_chat_client() -> ChatClient:
    return ChatClient(settings=settings)


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return InMemoryRateLimiter(settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)


def get_usage_tracker(session_factory=Depends(get_session_factory)) -> UsageTracker:
    return UsageTracker(UsageStore(session_factory))


def get_ingestion_coordinator(
    session_factory=Depends(get_session_factory),
    embedder: EmbeddingClient = Depends(get_embedder),
    usage: UsageTracker = Depends(get_usage_tracker),
    cfg: Settings = Depends(get_settings),
) -> IngestionCoordinator:
    return IngestionCoordinator(
        TenantStore(session_factory),
        DocumentStore(session_factory),
        embedder,
        usage,
        settings=cfg,
    )


def get_response_generator(
    session_factory=Depends(get_session_factory),
    embedder: EmbeddingClient = Depends(get_embedder),
    chat: ChatClient = Depends(get_chat_client),
    cfg: Settings = Depends(get_settings),
) -> ResponseGenerator:
    retriever = Retriever(
        DocumentStore(session_factory),
        embedder,
        threshold=cfg.MATCH_THRESHOLD,
        top_k=cfg.MATCH_COUNT,
    )
    return ResponseGenerator(retriever, chat, ChatStore(session_factory))


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """API key from `Authorization: Bearer <key>`, or None."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip() or None


@dataclass
class SessionUser:
    user_id: str
    tenant_id: str


def get_session_user(
    x_user_id: Optional[str] = Header(None),
    x_tenant_id: Optional[str] = Header(None),
) -> SessionUser:
    # Set by the upstream session layer; the tenant defaults to the user
    if not x_user_id:
        raise AuthenticationError("Unauthorized")
    return SessionUser(user_id=x_user_id, tenant_id=x_tenant_id or x_user_id)
