"""Datastore collaborators.

Each store wraps the async session factory and opens one short session per
operation. Write failures surface as PersistenceError.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import PersistenceError
from .models import Chat, Document, DocumentSection, Tenant, UsageRequest, WidgetEvent


@dataclass
class SectionRow:
    content: str
    embedding: List[float]


class TenantStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_by_api_key(self, api_key: str) -> Optional[Tenant]:
        if not api_key:
            return None
        async with self.session_factory() as session:
            res = await session.execute(select(Tenant).where(Tenant.api_key == api_key))
            return res.scalar_one_or_none()

    async def get(self, tenant_id: str) -> Optional[Tenant]:
        async with self.session_factory() as session:
            return await session.get(Tenant, tenant_id)


class DocumentStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_document(self, tenant_id: str, name: str, origin: str) -> Document:
        try:
            async with self.session_factory() as session:
                doc = Document(tenant_id=tenant_id, name=name[:512], origin=origin[:2048])
                session.add(doc)
                await session.commit()
                return doc
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("Failed to create document", details=str(e)) from e

    async def add_sections(self, document_id: int, tenant_id: str, rows: Sequence[SectionRow]) -> int:
        """Insert all sections of one document in a single write."""
        try:
            async with self.session_factory() as session:
                session.add_all([
                    DocumentSection(document_id=document_id, tenant_id=tenant_id, content=r.content, embedding=r.embedding)
                    for r in rows
                ])
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("Failed to store document sections", details=str(e)) from e
        return len(rows)

    async def sections_for_tenant(self, tenant_id: str) -> List[DocumentSection]:
        # Both the section and its parent document must belong to the tenant
        async with self.session_factory() as session:
            res = await session.execute(
                select(DocumentSection)
                .join(Document, Document.id == DocumentSection.document_id)
                .where(DocumentSection.tenant_id == tenant_id, Document.tenant_id == tenant_id)
                .order_by(DocumentSection.id)
            )
            return list(res.scalars().all())


class UsageStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def increment(self, tenant_id: str, endpoint: str, day: date, user_id: Optional[str] = None) -> int:
        """Read-then-increment-or-insert the (tenant, endpoint, day) counter; returns the new count."""
        try:
            async with self.session_factory() as session:
                res = await session.execute(
                    select(UsageRequest).where(
                        UsageRequest.tenant_id == tenant_id,
                        UsageRequest.endpoint == endpoint,
                        UsageRequest.day == day,
                    )
                )
                row = res.scalar_one_or_none()
                if row is None:
                    row = UsageRequest(tenant_id=tenant_id, user_id=user_id, endpoint=endpoint, day=day, count=1)
                    session.add(row)
                else:
                    row.count += 1
                await session.commit()
                return row.count
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("Failed to track usage", details=str(e)) from e


class ChatStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save(self, conversation_id: str, user_id: str, payload: Dict[str, Any]) -> None:
        try:
            async with self.session_factory() as session:
                chat = await session.get(Chat, conversation_id)
                if chat is None:
                    session.add(Chat(id=conversation_id, user_id=user_id, payload=payload))
                elif chat.user_id != user_id:
                    raise PersistenceError("Conversation belongs to another user")
                else:
                    chat.payload = payload
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("Failed to save chat", details=str(e)) from e


class WidgetEventStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(
        self,
        tenant_id: str,
        event_type: str,
        referrer_origin: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        try:
            async with self.session_factory() as session:
                session.add(WidgetEvent(
                    tenant_id=tenant_id,
                    event_type=event_type,
                    referrer_origin=referrer_origin,
                    user_agent=user_agent,
                ))
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("Failed to record widget event", details=str(e)) from e
